"""Typed payloads for sync jobs, one variant per job kind."""

import uuid
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from calsync.models.watch_channel import WatchScope


class RenewWatchPayload(BaseModel):
    kind: Literal["renew-watch"] = "renew-watch"
    scope: WatchScope | None = None


class PullChangesPayload(BaseModel):
    kind: Literal["pull-changes"] = "pull-changes"
    watch_id: uuid.UUID
    channel_id: str | None = None
    resource_state: str | None = None
    message_number: str | None = None
    source: Literal["webhook", "scheduler"] = "scheduler"


class UpsertEventPayload(BaseModel):
    kind: Literal["upsert-event"] = "upsert-event"
    event_id: uuid.UUID
    send_invites: bool = False


class CreateResourceCalendarPayload(BaseModel):
    kind: Literal["create-resource-calendar"] = "create-resource-calendar"
    resource_id: uuid.UUID


JobPayload = Annotated[
    Union[RenewWatchPayload, PullChangesPayload, UpsertEventPayload, CreateResourceCalendarPayload],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


def parse_payload(data: dict) -> JobPayload:
    """Validate a stored payload back into its typed variant."""
    return _payload_adapter.validate_python(data)
