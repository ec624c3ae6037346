"""Idempotent projection of internal events onto external calendars.

An event is written to the organization calendar and, when its resource has a
calendar of its own, to that calendar as well. The stored external ids are the
idempotency key: a stored id is always updated, never re-created.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any

from calsync import metrics
from calsync.config import Settings
from calsync.errors import ExternalEventNotFoundError, OutcomeKind, ProviderError, SyncValidationError
from calsync.models.base import utcnow
from calsync.models.event_projection import CalendarEventProjection, ProjectionStatus
from calsync.models.records import Client, Event, Resource
from calsync.repositories import SyncRepositories
from calsync.services.google_calendar_client import CalendarClientFactory, GoogleCalendarClient
from calsync.services.outcomes import Outcome, outcome_from_exception
from calsync.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

# Private extended properties carried by every event we write
EVENT_ID_PROPERTY = "calsync_event_id"
AGENCY_ID_PROPERTY = "calsync_agency_id"

DEFAULT_SUMMARY = "Event"
DEFAULT_DURATION = timedelta(hours=1)

ORGANIZATION = "organization"
RESOURCE = "resource"


def _parse_time(value: str) -> time:
    try:
        return time.fromisoformat(value.strip())
    except ValueError as exc:
        raise SyncValidationError(f"invalid event time {value!r}") from exc


def _format_local(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%S")


def build_event_payload(
    event: Event,
    resource: Resource | None,
    client: Client | None,
    timezone_name: str,
) -> dict[str, Any]:
    """Build a Calendar API event body for an internal event.

    Only the business name, invoice name and notes reach the description;
    amounts, statuses and internal ids stay out of attendee-visible fields.
    """
    summary_parts = [event.business_name or DEFAULT_SUMMARY]
    if resource is not None and resource.name:
        summary_parts.append(resource.name)

    description_parts = []
    if event.business_name:
        description_parts.append(f"Business: {event.business_name}")
    if event.invoice_name:
        description_parts.append(f"Invoice name: {event.invoice_name}")
    if event.notes:
        description_parts.append(f"Notes: {event.notes}")

    if event.event_time:
        start = datetime.combine(event.event_date, _parse_time(event.event_time))
        if event.event_time_end:
            end = datetime.combine(event.event_date, _parse_time(event.event_time_end))
            if end <= start:
                end += timedelta(days=1)
        else:
            end = start + DEFAULT_DURATION
        start_field = {"dateTime": _format_local(start), "timeZone": timezone_name}
        end_field = {"dateTime": _format_local(end), "timeZone": timezone_name}
    else:
        # All-day: the end date is exclusive
        start_field = {"date": event.event_date.isoformat()}
        end_field = {"date": (event.event_date + timedelta(days=1)).isoformat()}

    attendees: list[dict[str, str]] = []
    seen: set[str] = set()
    for email in (
        (resource.calendar_email or resource.email) if resource is not None else None,
        client.email if client is not None else None,
    ):
        if email and email.lower() not in seen:
            seen.add(email.lower())
            attendees.append({"email": email})

    payload: dict[str, Any] = {
        "summary": " · ".join(summary_parts),
        "description": "\n".join(description_parts),
        "start": start_field,
        "end": end_field,
        "guestsCanModify": True,
        "extendedProperties": {
            "private": {
                AGENCY_ID_PROPERTY: str(event.agency_id),
                EVENT_ID_PROPERTY: str(event.id),
            }
        },
    }
    if attendees:
        payload["attendees"] = attendees
    return payload


@dataclass
class TargetResult:
    target: str
    calendar_id: str
    action: str = "skipped"
    external_id: str | None = None
    html_link: str | None = None
    stale_id_cleared: bool = False
    error: ProviderError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.action in ("created", "updated")


@dataclass
class UpsertResult:
    projection: CalendarEventProjection
    targets: list[TargetResult] = field(default_factory=list)

    def target(self, name: str) -> TargetResult | None:
        return next((t for t in self.targets if t.target == name), None)

    @property
    def succeeded(self) -> bool:
        return any(t.succeeded for t in self.targets)

    @property
    def errors(self) -> list[ProviderError]:
        return [t.error for t in self.targets if t.error is not None]

    def outcome(self) -> Outcome:
        data = {
            "targets": {t.target: {"action": t.action, "external_id": t.external_id} for t in self.targets},
        }
        if self.succeeded:
            return Outcome.ok(self.projection.event_id, **data)
        errors = self.errors
        if not errors:
            return Outcome.fatal("no calendar target configured", error_code="validation_error", **data)
        detail = "; ".join(e.message for e in errors)
        # Retry when any target may still succeed later
        if any(e.outcome_kind == OutcomeKind.RETRYABLE for e in errors):
            return Outcome.retryable(detail, error_code="retry", **data)
        first = outcome_from_exception(errors[0])
        return Outcome.fatal(detail, error_code=first.error_code, **data)


class CalendarUpsertEngine:
    def __init__(
        self,
        settings: Settings,
        repos: SyncRepositories,
        tokens: TokenManager,
        client_factory: CalendarClientFactory,
    ) -> None:
        self._settings = settings
        self._repos = repos
        self._tokens = tokens
        self._client_factory = client_factory

    async def upsert_event(self, agency_id: uuid.UUID, event_id: uuid.UUID, send_invites: bool = False) -> UpsertResult:
        """Create or update the external copies of one internal event.

        ``send_invites`` must be given explicitly by the caller: True notifies
        every attendee, False notifies nobody.
        """
        event = await self._repos.records.get_event(agency_id, event_id)
        if event is None:
            raise SyncValidationError(f"event {event_id} not found")
        resource = await self._repos.records.get_resource(agency_id, event.resource_id) if event.resource_id else None
        client = await self._repos.records.get_client(agency_id, event.client_id) if event.client_id else None

        credential, access_token = await self._tokens.get_token_for_agency(agency_id)
        calendar = self._client_factory(access_token)

        body = build_event_payload(event, resource, client, self._settings.calendar_timezone)
        send_updates = "all" if send_invites else "none"

        projection = await self._repos.projections.get(event.id)
        if projection is None:
            projection = CalendarEventProjection(
                event_id=event.id,
                agency_id=agency_id,
                status=ProjectionStatus.PENDING,
            )

        result = UpsertResult(projection=projection)

        organization_calendar_id = credential.organization_calendar_id or self._settings.default_calendar_id
        organization = await self._upsert_target(
            calendar,
            ORGANIZATION,
            organization_calendar_id,
            projection.organization_external_id,
            body,
            send_updates,
        )
        result.targets.append(organization)

        if resource is not None and resource.google_calendar_id:
            result.targets.append(
                await self._upsert_target(
                    calendar,
                    RESOURCE,
                    resource.google_calendar_id,
                    projection.resource_external_id,
                    body,
                    send_updates,
                )
            )

        self._apply_to_projection(projection, result)
        await self._repos.projections.save(projection)

        logger.info(
            "Upserted event %s: %s status=%s",
            event.id,
            ", ".join(f"{t.target}={t.action}" for t in result.targets),
            ProjectionStatus(projection.status).value,
        )
        return result

    async def _upsert_target(
        self,
        calendar: GoogleCalendarClient,
        target: str,
        calendar_id: str,
        external_id: str | None,
        body: dict[str, Any],
        send_updates: str,
    ) -> TargetResult:
        result = TargetResult(target=target, calendar_id=calendar_id)
        try:
            if external_id:
                try:
                    response = await calendar.patch_event(calendar_id, external_id, body, send_updates)
                    result.action = "updated"
                except ExternalEventNotFoundError:
                    logger.info("External %s event %s is gone, recreating", target, external_id)
                    result.stale_id_cleared = True
                    response = await calendar.insert_event(calendar_id, body, send_updates)
                    result.action = "created"
            else:
                response = await calendar.insert_event(calendar_id, body, send_updates)
                result.action = "created"
        except ProviderError as exc:
            logger.warning("Upsert on %s calendar failed: %s", target, exc.message)
            result.action = "failed"
            result.error = exc
            metrics.calendar_writes_total.labels(target=target, action="failed").inc()
            return result

        result.external_id = response.get("id")
        result.html_link = response.get("htmlLink")
        metrics.calendar_writes_total.labels(target=target, action=result.action).inc()
        return result

    @staticmethod
    def _apply_to_projection(projection: CalendarEventProjection, result: UpsertResult) -> None:
        for target in result.targets:
            if target.succeeded:
                if target.target == ORGANIZATION:
                    projection.organization_calendar_id = target.calendar_id
                    projection.organization_external_id = target.external_id
                    projection.organization_html_link = target.html_link
                else:
                    projection.resource_calendar_id = target.calendar_id
                    projection.resource_external_id = target.external_id
                    projection.resource_html_link = target.html_link
            elif target.stale_id_cleared:
                # The old id is known to be dead; keep it out of the next attempt
                if target.target == ORGANIZATION:
                    projection.organization_external_id = None
                    projection.organization_html_link = None
                else:
                    projection.resource_external_id = None
                    projection.resource_html_link = None

        if result.succeeded:
            projection.status = ProjectionStatus.SYNCED
            projection.last_synced_at = utcnow()
            projection.last_error = None
        else:
            projection.status = ProjectionStatus.ERROR
            projection.last_error = "; ".join(e.message for e in result.errors) or "no calendar target configured"
