"""Scheduler and runner entrypoint schemas."""

from typing import Any

from pydantic import BaseModel


class TickRequest(BaseModel):
    queue_pull: bool = True


class TickResponse(BaseModel):
    ok: bool
    agencies: int = 0
    queued_renew: int = 0
    queued_pull: int = 0
    requeued: int = 0
    stale_watches: int = 0
    error: str | None = None


class RunRequest(BaseModel):
    limit: int = 20


class RunResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    results: list[dict[str, Any]]


class TriggerResponse(BaseModel):
    ok: bool
    processed: int
