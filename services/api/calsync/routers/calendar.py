"""Calendar sync routes: watch creation, event upsert, and sync status."""

import logging
import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException

from calsync.config import Settings, get_settings
from calsync.dependencies import (
    get_current_agency_id,
    get_repositories,
    get_sync_services,
    require_sync_secret,
)
from calsync.errors import SyncError
from calsync.middleware.error_handler import sync_error_to_http
from calsync.models.base import utcnow
from calsync.models.oauth_credential import CredentialStatus
from calsync.models.watch_channel import WatchScope
from calsync.repositories import SyncRepositories
from calsync.schemas.calendar import (
    CalendarStatusResponse,
    EventUpsertRequest,
    EventUpsertResponse,
    QueueUpsertRequest,
    QueueUpsertResponse,
    ResourceCalendarResponse,
    WatchCreateRequest,
    WatchCreateResponse,
    WatchStatusResponse,
)
from calsync.schemas.sync_job import CreateResourceCalendarPayload, UpsertEventPayload
from calsync.services.calendar_upsert import ORGANIZATION, RESOURCE
from calsync.services.sync_services import SyncServices

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.post("/watch", response_model=WatchCreateResponse)
async def create_watch(
    body: WatchCreateRequest,
    agency_id: uuid.UUID = Depends(get_current_agency_id),
    services: SyncServices = Depends(get_sync_services),
    settings: Settings = Depends(get_settings),
):
    """Create (or replace) the organization calendar watch for the caller's agency."""
    if body.agency_id != agency_id:
        raise HTTPException(status_code=403, detail="Not a member of this agency")

    calendar_id = (body.calendar_id or "").strip() or settings.default_calendar_id
    try:
        watch = await services.watches.create_or_renew_watch(agency_id, calendar_id, WatchScope.ORGANIZATION)
    except SyncError as exc:
        # Keep side effects such as a "needs reconnect" mark
        await services.repos.commit()
        raise sync_error_to_http(exc) from exc

    return WatchCreateResponse(
        channel_id=watch.channel_id,
        resource_id=watch.provider_resource_id,
        expiration=watch.expiration,
        sync_token_stored=bool(watch.sync_token),
    )


@router.post("/events/upsert", response_model=EventUpsertResponse, dependencies=[Depends(require_sync_secret)])
async def upsert_event(
    body: EventUpsertRequest,
    services: SyncServices = Depends(get_sync_services),
):
    """Project one event onto its calendars now (internal callers only)."""
    try:
        result = await services.upserts.upsert_event(body.agency_id, body.event_id, body.send_invites)
    except SyncError as exc:
        await services.repos.commit()
        raise sync_error_to_http(exc) from exc

    await services.repos.commit()
    if not result.succeeded:
        errors = result.errors
        if errors:
            raise sync_error_to_http(errors[0])
        raise HTTPException(status_code=400, detail="No calendar target configured")

    organization = result.target(ORGANIZATION)
    resource = result.target(RESOURCE)
    html_links = {t.target: t.html_link for t in result.targets if t.succeeded and t.html_link}
    return EventUpsertResponse(
        organization_calendar_external_id=organization.external_id if organization else None,
        resource_calendar_external_id=resource.external_id if resource and resource.succeeded else None,
        html_links=html_links,
    )


@router.post("/events/queue-upsert", response_model=QueueUpsertResponse)
async def queue_upsert(
    body: QueueUpsertRequest,
    agency_id: uuid.UUID = Depends(get_current_agency_id),
    services: SyncServices = Depends(get_sync_services),
):
    """Enqueue an upsert-event job for the runner."""
    event = await services.repos.records.get_event(agency_id, body.event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")

    job = await services.queue.enqueue(
        agency_id,
        UpsertEventPayload(event_id=event.id, send_invites=body.send_invites),
        source="api",
    )
    return QueueUpsertResponse(job_id=str(job.id))


@router.post("/resources/{resource_id}/calendar", response_model=ResourceCalendarResponse)
async def queue_resource_calendar(
    resource_id: uuid.UUID,
    agency_id: uuid.UUID = Depends(get_current_agency_id),
    services: SyncServices = Depends(get_sync_services),
):
    """Enqueue creation of a dedicated calendar for one of the agency's resources."""
    resource = await services.repos.records.get_resource(agency_id, resource_id)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    if resource.google_calendar_id:
        raise HTTPException(status_code=409, detail="Resource already has a calendar")

    job = await services.queue.enqueue(
        agency_id,
        CreateResourceCalendarPayload(resource_id=resource.id),
        source="api",
    )
    return ResourceCalendarResponse(job_id=str(job.id))


@router.get("/status", response_model=CalendarStatusResponse)
async def calendar_status(
    agency_id: uuid.UUID = Depends(get_current_agency_id),
    repos: SyncRepositories = Depends(get_repositories),
    settings: Settings = Depends(get_settings),
):
    """Connection state and watch health for the caller's agency."""
    credential = await repos.credentials.get_for_agency(agency_id)
    watches = await repos.watches.list_for_agency(agency_id)
    stale_before = utcnow() - timedelta(minutes=settings.max_pull_staleness_minutes)

    watch_rows = [
        WatchStatusResponse(
            id=str(w.id),
            calendar_id=w.calendar_id,
            scope=WatchScope(w.scope).value,
            expiration=w.expiration,
            last_received_at=w.last_received_at,
            last_pulled_at=w.last_pulled_at,
            stale=w.last_pulled_at is None or w.last_pulled_at < stale_before,
        )
        for w in watches
    ]

    if credential is None:
        return CalendarStatusResponse(connected=False, status="not_connected", watches=watch_rows)

    status = CredentialStatus(credential.status)
    return CalendarStatusResponse(
        connected=status == CredentialStatus.CONNECTED,
        status=status.value,
        last_error=credential.last_error,
        organization_calendar_id=credential.organization_calendar_id,
        watches=watch_rows,
    )
