"""Calendar sync request/response schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel


class WatchCreateRequest(BaseModel):
    agency_id: uuid.UUID
    calendar_id: str | None = None


class WatchCreateResponse(BaseModel):
    ok: bool = True
    channel_id: str
    resource_id: str | None
    expiration: datetime | None
    sync_token_stored: bool


class EventUpsertRequest(BaseModel):
    agency_id: uuid.UUID
    event_id: uuid.UUID
    send_invites: bool = False


class EventUpsertResponse(BaseModel):
    ok: bool = True
    organization_calendar_external_id: str | None
    resource_calendar_external_id: str | None = None
    html_links: dict[str, str]


class QueueUpsertRequest(BaseModel):
    event_id: uuid.UUID
    send_invites: bool = False


class QueueUpsertResponse(BaseModel):
    ok: bool = True
    job_id: str


class ResourceCalendarResponse(BaseModel):
    ok: bool = True
    job_id: str


class WatchStatusResponse(BaseModel):
    id: str
    calendar_id: str
    scope: str
    expiration: datetime | None
    last_received_at: datetime | None
    last_pulled_at: datetime | None
    stale: bool


class CalendarStatusResponse(BaseModel):
    connected: bool
    status: str
    last_error: str | None = None
    organization_calendar_id: str | None = None
    watches: list[WatchStatusResponse] = []
