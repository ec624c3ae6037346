"""Push-notification watch channels: creation, renewal, and change pulls."""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from calsync.config import Settings
from calsync.errors import (
    CredentialExpiredError,
    ProviderError,
    SyncCursorExpiredError,
    SyncError,
    SyncValidationError,
    WatchNotFoundError,
)
from calsync.models.base import generate_uuid, utcnow
from calsync.models.event_projection import CalendarEventProjection, ProjectionStatus
from calsync.models.watch_channel import WatchChannel, WatchScope
from calsync.repositories import SyncRepositories
from calsync.services.calendar_upsert import EVENT_ID_PROPERTY
from calsync.services.google_calendar_client import CalendarClientFactory, GoogleCalendarClient
from calsync.services.outcomes import Outcome
from calsync.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class PullResult:
    applied: int = 0
    skipped: int = 0
    deleted: int = 0
    next_cursor: str | None = None
    full_resync: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "skipped": self.skipped,
            "deleted": self.deleted,
            "full_resync": self.full_resync,
            "cursor_stored": self.next_cursor is not None,
        }


def _short(channel_id: str | None) -> str:
    return (channel_id or "")[:8]


def _parse_expiration(raw: Any) -> datetime | None:
    """Google returns channel expiration as epoch milliseconds (string)."""
    if raw in (None, ""):
        return None
    return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)


class WatchManager:
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

    async def create_or_renew_watch(
        self,
        agency_id: uuid.UUID,
        calendar_id: str,
        scope: WatchScope,
        resource_id: uuid.UUID | None = None,
    ) -> WatchChannel:
        """Open a new channel for (agency, calendar, scope) and retire the old one.

        Postcondition: the new channel is registered with the provider before
        the previous channel is stopped, so there is never a window with no
        active channel. Stopping the old channel is best-effort.
        """
        if not calendar_id:
            raise SyncValidationError("calendar id is required")
        if not self._settings.calendar_webhook_url:
            raise SyncValidationError("CALENDAR_WEBHOOK_URL is not configured")

        credential, access_token = await self._tokens.get_token_for_agency(agency_id)
        client = self._client_factory(access_token)
        existing = await self._repos.watches.find(agency_id, calendar_id, scope)

        # Keep the stored cursor on renewal so changes since the last pull are not skipped
        if existing is not None and existing.sync_token:
            cursor = existing.sync_token
        else:
            cursor = await client.fetch_sync_token(calendar_id)

        channel_id = str(uuid.uuid4())
        channel_token = secrets.token_urlsafe(32)
        response = await client.watch_events(
            calendar_id,
            channel_id=channel_id,
            channel_token=channel_token,
            address=self._settings.calendar_webhook_url,
            ttl_seconds=self._settings.watch_ttl_seconds,
        )

        if existing is not None:
            await self.stop_channel(client, existing)
            watch = existing
        else:
            watch = WatchChannel(
                id=generate_uuid(),
                agency_id=agency_id,
                provider="google",
                calendar_id=calendar_id,
                scope=scope,
            )

        watch.resource_ref_id = resource_id if resource_id is not None else watch.resource_ref_id
        watch.channel_id = channel_id
        watch.channel_token = channel_token
        watch.provider_resource_id = response.get("resourceId")
        watch.expiration = _parse_expiration(response.get("expiration"))
        watch.sync_token = cursor
        await self._repos.watches.save(watch)

        if scope == WatchScope.ORGANIZATION and credential.organization_calendar_id != calendar_id:
            credential.organization_calendar_id = calendar_id
            await self._repos.credentials.save(credential)

        logger.info(
            "Watch %s for agency %s calendar=%s scope=%s channel=%s… expires=%s",
            "renewed" if existing is not None else "created",
            agency_id,
            calendar_id,
            scope.value,
            _short(channel_id),
            watch.expiration,
        )
        return watch

    async def stop_channel(self, client: GoogleCalendarClient, watch: WatchChannel) -> Outcome:
        """Best-effort stop of a channel; failures are reported, never raised."""
        if not watch.provider_resource_id:
            return Outcome.ignorable("channel has no provider resource id")
        try:
            await client.stop_channel(watch.channel_id, watch.provider_resource_id)
        except ProviderError as exc:
            logger.warning("Could not stop channel %s…: %s", _short(watch.channel_id), exc.message)
            return Outcome.ignorable(exc.message, code=exc.code)
        return Outcome.ok()

    async def renew_agency_watches(self, agency_id: uuid.UUID, scope: WatchScope | None = None) -> Outcome:
        """Renew every watch of an agency that expires inside the renewal window.

        With a scope, only watches of that scope are considered.
        """
        watches = await self._repos.watches.list_for_agency(agency_id)
        if scope is not None:
            watches = [w for w in watches if WatchScope(w.scope) == scope]
        horizon = utcnow() + timedelta(seconds=self._settings.watch_renew_before_seconds)
        renewed = 0
        failures: list[str] = []
        for watch in watches:
            if watch.expiration is not None and watch.expiration > horizon:
                continue
            try:
                await self.create_or_renew_watch(
                    watch.agency_id,
                    watch.calendar_id,
                    WatchScope(watch.scope),
                    watch.resource_ref_id,
                )
                renewed += 1
            except CredentialExpiredError:
                raise
            except SyncError as exc:
                logger.warning("Renewal failed for watch %s: %s", watch.id, exc.message)
                failures.append(f"{watch.calendar_id}: {exc.message}")

        data = {"renewed": renewed, "checked": len(watches), "failed": len(failures)}
        if failures:
            return Outcome.retryable("; ".join(failures), error_code="renewal_failed", **data)
        return Outcome.ok(**data)

    async def pull_changes(self, watch_id: uuid.UUID) -> PullResult:
        """Apply the provider's change feed for one watch and advance its cursor.

        A rejected cursor falls back to a full re-list from scratch.
        """
        watch = await self._repos.watches.get(watch_id)
        if watch is None:
            raise WatchNotFoundError(f"watch {watch_id} no longer exists")

        _, access_token = await self._tokens.get_token_for_agency(watch.agency_id)
        client = self._client_factory(access_token)

        result = PullResult()
        if watch.sync_token:
            try:
                items, next_cursor = await client.list_events(watch.calendar_id, watch.sync_token)
            except SyncCursorExpiredError:
                logger.info("Sync cursor expired for watch %s, running full resync", watch.id)
                watch.sync_token = None
                result.full_resync = True
                items, next_cursor = await client.list_events(watch.calendar_id, None)
        else:
            result.full_resync = True
            items, next_cursor = await client.list_events(watch.calendar_id, None)

        for item in items:
            applied = await self._apply_item(watch, item)
            if applied == "applied":
                result.applied += 1
            elif applied == "deleted":
                result.deleted += 1
            else:
                result.skipped += 1

        if next_cursor:
            watch.sync_token = next_cursor
        watch.last_pulled_at = utcnow()
        await self._repos.watches.save(watch)
        result.next_cursor = watch.sync_token

        logger.info(
            "Pulled watch %s: applied=%d deleted=%d skipped=%d full_resync=%s",
            watch.id,
            result.applied,
            result.deleted,
            result.skipped,
            result.full_resync,
        )
        return result

    async def _apply_item(self, watch: WatchChannel, item: dict[str, Any]) -> str:
        tag = (item.get("extendedProperties") or {}).get("private", {}).get(EVENT_ID_PROPERTY)
        if not tag:
            return "skipped"
        try:
            event_id = uuid.UUID(str(tag))
        except ValueError:
            return "skipped"

        event = await self._repos.records.get_event(watch.agency_id, event_id)
        if event is None:
            return "skipped"

        is_organization = watch.scope == WatchScope.ORGANIZATION
        projection = await self._repos.projections.get(event.id)

        if item.get("status") == "cancelled":
            live_copy = projection is None or projection.organization_external_id == item.get("id")
            if projection is not None:
                if is_organization and projection.organization_external_id == item.get("id"):
                    projection.organization_external_id = None
                    projection.organization_html_link = None
                elif not is_organization and projection.resource_external_id == item.get("id"):
                    projection.resource_external_id = None
                    projection.resource_html_link = None
                await self._repos.projections.save(projection)
            # A stale duplicate being deleted must not cancel the live event
            if is_organization and live_copy and event.status != "cancelled":
                await self._repos.records.update_event(event, status="cancelled")
            return "deleted"

        if projection is None:
            projection = CalendarEventProjection(event_id=event.id, agency_id=event.agency_id)
        if is_organization:
            projection.organization_calendar_id = watch.calendar_id
            projection.organization_external_id = item.get("id")
            projection.organization_html_link = item.get("htmlLink")
        else:
            projection.resource_calendar_id = watch.calendar_id
            projection.resource_external_id = item.get("id")
            projection.resource_html_link = item.get("htmlLink")
        projection.status = ProjectionStatus.SYNCED
        projection.last_synced_at = utcnow()
        projection.last_error = None
        await self._repos.projections.save(projection)

        if is_organization:
            new_date = _start_date(item, self._settings.calendar_timezone)
            if new_date is not None and new_date != event.event_date:
                await self._repos.records.update_event(event, event_date=new_date)
        return "applied"

    async def create_resource_calendar(self, agency_id: uuid.UUID, resource_id: uuid.UUID) -> Outcome:
        """Create a dedicated calendar for a resource, share it, and watch it.

        Sharing and watching are best-effort; the calendar id is persisted as
        soon as the calendar exists.
        """
        resource = await self._repos.records.get_resource(agency_id, resource_id)
        if resource is None:
            raise SyncValidationError(f"resource {resource_id} not found")
        if resource.google_calendar_id:
            return Outcome.ignorable("resource already has a calendar", calendar_id=resource.google_calendar_id)

        _, access_token = await self._tokens.get_token_for_agency(agency_id)
        client = self._client_factory(access_token)
        calendar = await client.create_calendar(resource.name, self._settings.calendar_timezone)
        calendar_id = calendar["id"]
        await self._repos.records.update_resource(resource, google_calendar_id=calendar_id)

        shared = False
        share_email = resource.calendar_email or resource.email
        if share_email:
            try:
                await client.insert_acl(calendar_id, share_email, role="writer")
                shared = True
            except ProviderError as exc:
                logger.warning("Could not share calendar for resource %s: %s", resource.id, exc.message)

        watched = False
        try:
            await self.create_or_renew_watch(agency_id, calendar_id, WatchScope.RESOURCE, resource.id)
            watched = True
        except CredentialExpiredError:
            raise
        except SyncError as exc:
            logger.warning("Could not watch calendar for resource %s: %s", resource.id, exc.message)

        logger.info("Created calendar for resource %s (shared=%s watched=%s)", resource.id, shared, watched)
        return Outcome.ok(calendar_id, calendar_id=calendar_id, shared=shared, watched=watched)


def _start_date(item: dict[str, Any], timezone_name: str) -> date | None:
    start = item.get("start") or {}
    if start.get("date"):
        return date.fromisoformat(start["date"])
    if start.get("dateTime"):
        moment = datetime.fromisoformat(start["dateTime"].replace("Z", "+00:00"))
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=ZoneInfo(timezone_name))
        return moment.astimezone(ZoneInfo(timezone_name)).date()
    return None
