"""Google Calendar API integration."""

import asyncio
import logging
from typing import Any, Callable

import google_auth_httplib2
import httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calsync.config import Settings
from calsync.errors import (
    ExternalEventNotFoundError,
    ProviderAuthError,
    ProviderError,
    ProviderRequestError,
    SyncCursorExpiredError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

# Upper bound on pages read by a single list call
_MAX_LIST_PAGES = 50
_PAGE_SIZE = 250


def classify_http_error(exc: HttpError, *, event_resource: bool = False, cursor_list: bool = False) -> ProviderError:
    """Map a Calendar API HttpError onto the sync error taxonomy."""
    status = int(exc.resp.status)
    reason = _error_reason(exc)
    if status == 410 and cursor_list:
        return SyncCursorExpiredError(f"sync token expired: {reason}", status=status)
    if status in (404, 410) and event_resource:
        return ExternalEventNotFoundError(f"external event gone: {reason}", status=status)
    if status in (401, 403) and not _is_rate_limited(exc, reason):
        return ProviderAuthError(f"calendar API rejected credentials: {reason}", status=status)
    if status == 429 or status == 403 or status >= 500:
        return TransientProviderError(f"calendar API unavailable ({status}): {reason}", status=status)
    return ProviderRequestError(f"calendar API request failed ({status}): {reason}", status=status)


def _error_reason(exc: HttpError) -> str:
    return str(getattr(exc, "reason", "") or exc.resp.reason or "")


def _is_rate_limited(exc: HttpError, reason: str) -> bool:
    # Google reports quota exhaustion as 403 with a rate-limit reason
    text = f"{reason} {getattr(exc, 'error_details', '')}".lower()
    return "ratelimitexceeded" in text or "rate limit" in text


class GoogleCalendarClient:
    """Thin async wrapper around the Calendar v3 API for one access token.

    google-api-python-client is synchronous, so every request runs in the
    default executor. Each request carries the socket timeout configured in
    settings and is never retried here; retries belong to the job queue.
    """

    def __init__(self, access_token: str, settings: Settings, http: Any = None) -> None:
        self._settings = settings
        if http is None:
            credentials = Credentials(token=access_token)
            http = google_auth_httplib2.AuthorizedHttp(
                credentials,
                http=httplib2.Http(timeout=settings.google_api_timeout_seconds),
            )
        self._service = build("calendar", "v3", http=http, cache_discovery=False)

    async def _execute(
        self,
        request_factory: Callable[[], Any],
        *,
        event_resource: bool = False,
        cursor_list: bool = False,
    ) -> dict[str, Any]:
        loop = asyncio.get_event_loop()
        try:
            response = await loop.run_in_executor(None, lambda: request_factory().execute(num_retries=0))
        except HttpError as exc:
            raise classify_http_error(exc, event_resource=event_resource, cursor_list=cursor_list) from exc
        except (TimeoutError, httplib2.HttpLib2Error, OSError) as exc:
            raise TransientProviderError(f"calendar API call failed: {type(exc).__name__}") from exc
        return response or {}

    async def fetch_sync_token(self, calendar_id: str) -> str | None:
        """Walk the event list cheaply (ids only) to obtain a fresh sync token."""
        page_token = None
        for _ in range(_MAX_LIST_PAGES):
            params: dict[str, Any] = {
                "calendarId": calendar_id,
                "maxResults": _PAGE_SIZE,
                "showDeleted": True,
                "singleEvents": True,
                "fields": "nextPageToken,nextSyncToken",
            }
            if page_token:
                params["pageToken"] = page_token
            response = await self._execute(lambda p=params: self._service.events().list(**p))
            if response.get("nextSyncToken"):
                return response["nextSyncToken"]
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        logger.warning("No sync token returned for calendar %s", calendar_id)
        return None

    async def list_events(self, calendar_id: str, sync_token: str | None = None) -> tuple[list[dict[str, Any]], str | None]:
        """List changed events since ``sync_token`` (or everything when None).

        Returns the items and the next sync token. Raises
        ``SyncCursorExpiredError`` when the provider rejects the token.
        """
        items: list[dict[str, Any]] = []
        page_token = None
        next_sync_token = None
        for _ in range(_MAX_LIST_PAGES):
            params: dict[str, Any] = {
                "calendarId": calendar_id,
                "maxResults": _PAGE_SIZE,
                "showDeleted": True,
                "singleEvents": True,
            }
            if sync_token:
                params["syncToken"] = sync_token
            if page_token:
                params["pageToken"] = page_token
            response = await self._execute(
                lambda p=params: self._service.events().list(**p),
                cursor_list=bool(sync_token),
            )
            items.extend(response.get("items", []))
            next_sync_token = response.get("nextSyncToken") or next_sync_token
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return items, next_sync_token

    async def watch_events(
        self,
        calendar_id: str,
        channel_id: str,
        channel_token: str,
        address: str,
        ttl_seconds: int,
    ) -> dict[str, Any]:
        body = {
            "id": channel_id,
            "type": "web_hook",
            "address": address,
            "token": channel_token,
            "params": {"ttl": str(ttl_seconds)},
        }
        return await self._execute(lambda: self._service.events().watch(calendarId=calendar_id, body=body))

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        body = {"id": channel_id, "resourceId": resource_id}
        await self._execute(lambda: self._service.channels().stop(body=body), event_resource=True)

    async def insert_event(self, calendar_id: str, body: dict[str, Any], send_updates: str) -> dict[str, Any]:
        return await self._execute(
            lambda: self._service.events().insert(calendarId=calendar_id, body=body, sendUpdates=send_updates)
        )

    async def patch_event(
        self,
        calendar_id: str,
        event_id: str,
        body: dict[str, Any],
        send_updates: str,
    ) -> dict[str, Any]:
        return await self._execute(
            lambda: self._service.events().patch(
                calendarId=calendar_id,
                eventId=event_id,
                body=body,
                sendUpdates=send_updates,
            ),
            event_resource=True,
        )

    async def create_calendar(self, summary: str, time_zone: str) -> dict[str, Any]:
        body = {"summary": summary, "timeZone": time_zone}
        return await self._execute(lambda: self._service.calendars().insert(body=body))

    async def insert_acl(self, calendar_id: str, email: str, role: str = "writer") -> dict[str, Any]:
        body = {"role": role, "scope": {"type": "user", "value": email}}
        return await self._execute(
            lambda: self._service.acl().insert(calendarId=calendar_id, body=body, sendNotifications=False)
        )


CalendarClientFactory = Callable[[str], GoogleCalendarClient]


def default_client_factory(settings: Settings) -> CalendarClientFactory:
    """Return a factory building a client per access token."""

    def _factory(access_token: str) -> GoogleCalendarClient:
        return GoogleCalendarClient(access_token, settings)

    return _factory
