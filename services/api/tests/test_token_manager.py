"""Tests for the OAuth token lifecycle."""

import uuid
from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from calsync.errors import CredentialExpiredError, ProviderRequestError, TransientProviderError
from calsync.models.base import utcnow
from calsync.models.oauth_credential import CredentialStatus
from calsync.services.token_manager import TokenManager


def _transport(status_code: int, body: dict, calls: list | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, json=body)

    return httpx.MockTransport(handler)


def _manager(settings, repos, crypto, transport=None) -> TokenManager:
    return TokenManager(settings, repos.credentials, crypto, transport=transport)


class TestGetCredential:
    @pytest.mark.asyncio
    async def test_missing_credential_needs_reconnect(self, settings, repos, crypto):
        manager = _manager(settings, repos, crypto)
        with pytest.raises(CredentialExpiredError):
            await manager.get_credential(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_needs_reconnect_status_is_refused(self, settings, repos, crypto, credential, agency_id):
        credential.status = CredentialStatus.NEEDS_RECONNECT
        credential.last_error = "refresh token rejected: invalid_grant"
        manager = _manager(settings, repos, crypto)

        with pytest.raises(CredentialExpiredError) as exc_info:
            await manager.get_credential(agency_id)
        assert exc_info.value.code == "needs_reconnect"


class TestGetValidAccessToken:
    @pytest.mark.asyncio
    async def test_fresh_token_returned_without_refresh(self, settings, repos, crypto, credential):
        calls: list = []
        manager = _manager(settings, repos, crypto, _transport(200, {}, calls))

        token = await manager.get_valid_access_token(credential)

        assert token == "access-token-1"
        assert calls == []

    @pytest.mark.asyncio
    async def test_token_inside_skew_is_refreshed(self, settings, repos, crypto, credential):
        credential.expires_at = utcnow() + timedelta(seconds=30)
        calls: list = []
        manager = _manager(
            settings,
            repos,
            crypto,
            _transport(200, {"access_token": "access-token-2", "expires_in": 3600}, calls),
        )

        token = await manager.get_valid_access_token(credential)

        assert token == "access-token-2"
        assert len(calls) == 1
        form = parse_qs(calls[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["refresh-token-1"]
        assert crypto.decrypt(credential.encrypted_access_token) == "access-token-2"
        assert credential.expires_at - utcnow() > timedelta(minutes=50)
        assert credential.status == CredentialStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_stored(self, settings, repos, crypto, credential):
        credential.expires_at = utcnow() - timedelta(minutes=5)
        manager = _manager(
            settings,
            repos,
            crypto,
            _transport(200, {"access_token": "a2", "expires_in": 3600, "refresh_token": "refresh-token-2"}),
        )

        await manager.get_valid_access_token(credential)

        assert crypto.decrypt(credential.encrypted_refresh_token) == "refresh-token-2"

    @pytest.mark.asyncio
    async def test_returned_token_is_valid_beyond_skew(self, settings, repos, crypto, credential):
        credential.expires_at = utcnow() - timedelta(hours=2)
        manager = _manager(settings, repos, crypto, _transport(200, {"access_token": "a3", "expires_in": 3600}))

        await manager.get_valid_access_token(credential)

        assert credential.expires_at - utcnow() > timedelta(seconds=settings.token_refresh_skew_seconds)

    @pytest.mark.asyncio
    async def test_invalid_grant_marks_needs_reconnect(self, settings, repos, crypto, credential):
        credential.expires_at = utcnow() - timedelta(minutes=1)
        manager = _manager(settings, repos, crypto, _transport(400, {"error": "invalid_grant"}))

        with pytest.raises(CredentialExpiredError):
            await manager.get_valid_access_token(credential)

        assert credential.status == CredentialStatus.NEEDS_RECONNECT
        assert "invalid_grant" in credential.last_error
        assert repos.credentials.save_count == 1

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, settings, repos, crypto, credential):
        credential.expires_at = utcnow() - timedelta(minutes=1)
        manager = _manager(settings, repos, crypto, _transport(503, {"error": "backend_error"}))

        with pytest.raises(TransientProviderError):
            await manager.get_valid_access_token(credential)
        assert credential.status == CredentialStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, settings, repos, crypto, credential):
        credential.expires_at = utcnow() - timedelta(minutes=1)

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        manager = _manager(settings, repos, crypto, httpx.MockTransport(handler))

        with pytest.raises(TransientProviderError):
            await manager.get_valid_access_token(credential)

    @pytest.mark.asyncio
    async def test_other_client_error_is_not_retryable(self, settings, repos, crypto, credential):
        credential.expires_at = utcnow() - timedelta(minutes=1)
        manager = _manager(settings, repos, crypto, _transport(400, {"error": "invalid_request"}))

        with pytest.raises(ProviderRequestError):
            await manager.get_valid_access_token(credential)
        assert credential.status == CredentialStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, settings, repos, crypto, credential):
        credential.expires_at = utcnow() - timedelta(minutes=1)
        credential.encrypted_refresh_token = None
        manager = _manager(settings, repos, crypto)

        with pytest.raises(CredentialExpiredError):
            await manager.get_valid_access_token(credential)
        assert credential.status == CredentialStatus.NEEDS_RECONNECT

    @pytest.mark.asyncio
    async def test_inside_skew_without_refresh_token_still_usable(self, settings, repos, crypto, credential):
        credential.expires_at = utcnow() + timedelta(seconds=30)
        credential.encrypted_refresh_token = None
        manager = _manager(settings, repos, crypto)

        assert await manager.get_valid_access_token(credential) == "access-token-1"


class TestGetTokenForAgency:
    @pytest.mark.asyncio
    async def test_returns_credential_and_token(self, settings, repos, crypto, credential, agency_id):
        manager = _manager(settings, repos, crypto)

        cred, token = await manager.get_token_for_agency(agency_id)

        assert cred is credential
        assert token == "access-token-1"
