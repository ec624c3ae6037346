"""Tests for the Calendar API wrapper and its error classification."""

import json

import httplib2
import pytest
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpMockSequence

from calsync.errors import (
    ExternalEventNotFoundError,
    ProviderAuthError,
    ProviderRequestError,
    SyncCursorExpiredError,
    TransientProviderError,
)
from calsync.services.google_calendar_client import GoogleCalendarClient, classify_http_error


def _error_body(message: str, reason: str = "") -> str:
    error: dict = {"code": 0, "message": message}
    if reason:
        error["errors"] = [{"reason": reason, "message": message}]
    return json.dumps({"error": error})


def _http_error(status: int, message: str = "failure", reason: str = "") -> HttpError:
    return HttpError(httplib2.Response({"status": status}), _error_body(message, reason).encode())


def _client(settings, responses: list[tuple[dict, str]]) -> GoogleCalendarClient:
    return GoogleCalendarClient("access-token", settings, http=HttpMockSequence(responses))


class TestClassifyHttpError:
    def test_gone_cursor(self):
        assert isinstance(classify_http_error(_http_error(410), cursor_list=True), SyncCursorExpiredError)

    def test_gone_event(self):
        assert isinstance(classify_http_error(_http_error(410), event_resource=True), ExternalEventNotFoundError)
        assert isinstance(classify_http_error(_http_error(404), event_resource=True), ExternalEventNotFoundError)

    def test_not_found_on_other_resources_is_request_error(self):
        assert isinstance(classify_http_error(_http_error(404)), ProviderRequestError)

    def test_auth_errors(self):
        assert isinstance(classify_http_error(_http_error(401, "Invalid Credentials")), ProviderAuthError)
        assert isinstance(classify_http_error(_http_error(403, "Forbidden", "forbidden")), ProviderAuthError)

    def test_rate_limit_403_is_transient(self):
        error = classify_http_error(_http_error(403, "Rate Limit Exceeded", "rateLimitExceeded"))
        assert isinstance(error, TransientProviderError)
        assert error.status == 403

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_server_and_throttle_errors_are_transient(self, status):
        assert isinstance(classify_http_error(_http_error(status)), TransientProviderError)

    def test_bad_request(self):
        error = classify_http_error(_http_error(400, "Invalid value"))
        assert isinstance(error, ProviderRequestError)
        assert "Invalid value" in error.message


class TestGoogleCalendarClient:
    @pytest.mark.asyncio
    async def test_list_events_follows_pages(self, settings):
        client = _client(
            settings,
            [
                ({"status": "200"}, json.dumps({"items": [{"id": "a"}], "nextPageToken": "page-2"})),
                ({"status": "200"}, json.dumps({"items": [{"id": "b"}], "nextSyncToken": "cursor-9"})),
            ],
        )

        items, cursor = await client.list_events("primary", "cursor-8")

        assert [i["id"] for i in items] == ["a", "b"]
        assert cursor == "cursor-9"

    @pytest.mark.asyncio
    async def test_list_events_with_expired_cursor(self, settings):
        client = _client(settings, [({"status": "410"}, _error_body("Sync token is no longer valid", "fullSyncRequired"))])

        with pytest.raises(SyncCursorExpiredError):
            await client.list_events("primary", "cursor-old")

    @pytest.mark.asyncio
    async def test_fetch_sync_token(self, settings):
        client = _client(
            settings,
            [
                ({"status": "200"}, json.dumps({"nextPageToken": "p2"})),
                ({"status": "200"}, json.dumps({"nextSyncToken": "cursor-1"})),
            ],
        )

        assert await client.fetch_sync_token("primary") == "cursor-1"

    @pytest.mark.asyncio
    async def test_watch_events(self, settings):
        client = _client(
            settings,
            [({"status": "200"}, json.dumps({"id": "chan-1", "resourceId": "res-1", "expiration": "1767225600000"}))],
        )

        response = await client.watch_events("primary", "chan-1", "token", "https://hooks.example.com", 3600)

        assert response["resourceId"] == "res-1"

    @pytest.mark.asyncio
    async def test_patch_missing_event(self, settings):
        client = _client(settings, [({"status": "404"}, _error_body("Not Found", "notFound"))])

        with pytest.raises(ExternalEventNotFoundError):
            await client.patch_event("primary", "ext-1", {"summary": "x"}, "none")

    @pytest.mark.asyncio
    async def test_insert_server_error_is_transient(self, settings):
        client = _client(settings, [({"status": "503"}, _error_body("Backend Error", "backendError"))])

        with pytest.raises(TransientProviderError):
            await client.insert_event("primary", {"summary": "x"}, "none")

    @pytest.mark.asyncio
    async def test_insert_returns_created_event(self, settings):
        client = _client(
            settings,
            [({"status": "200"}, json.dumps({"id": "ext-1", "htmlLink": "https://calendar.example/ext-1"}))],
        )

        created = await client.insert_event("primary", {"summary": "x"}, "none")

        assert created["id"] == "ext-1"

    @pytest.mark.asyncio
    async def test_stop_channel_empty_response(self, settings):
        client = _client(settings, [({"status": "204"}, "")])

        await client.stop_channel("chan-1", "res-1")
