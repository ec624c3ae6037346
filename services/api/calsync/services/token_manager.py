"""OAuth access-token lifecycle for calendar provider credentials."""

import logging
import uuid
from datetime import timedelta

import httpx

from calsync import metrics
from calsync.config import Settings
from calsync.errors import CredentialExpiredError, ProviderRequestError, TransientProviderError
from calsync.models.base import utcnow
from calsync.models.oauth_credential import CredentialStatus, OAuthCredential
from calsync.repositories.credentials import CredentialRepository
from calsync.services.crypto_service import CryptoService

logger = logging.getLogger(__name__)


class TokenManager:
    """Hands out access tokens that are valid for at least the refresh skew.

    Two callers may refresh the same credential concurrently; both responses are
    valid at the provider and whichever is persisted last wins.
    """

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialRepository,
        crypto: CryptoService,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._credentials = credentials
        self._crypto = crypto
        self._transport = transport

    async def get_credential(self, agency_id: uuid.UUID) -> OAuthCredential:
        credential = await self._credentials.get_for_agency(agency_id)
        if credential is None:
            raise CredentialExpiredError("calendar provider is not connected")
        if credential.status == CredentialStatus.NEEDS_RECONNECT:
            raise CredentialExpiredError(credential.last_error or "calendar provider needs reconnect")
        return credential

    async def get_token_for_agency(self, agency_id: uuid.UUID) -> tuple[OAuthCredential, str]:
        credential = await self.get_credential(agency_id)
        return credential, await self.get_valid_access_token(credential)

    async def get_valid_access_token(self, credential: OAuthCredential) -> str:
        """Return a usable access token, refreshing it first when it is about to expire."""
        access_token, refresh_token = self._crypto.open_tokens(credential)
        if not self._needs_refresh(credential):
            return access_token

        if not refresh_token:
            if self._is_expired(credential):
                await self._mark_needs_reconnect(credential, "access token expired and no refresh token is stored")
                raise CredentialExpiredError("access token expired and no refresh token is stored")
            # Inside the skew window but not yet expired: still usable
            return access_token

        return await self._refresh(credential, refresh_token)

    def _needs_refresh(self, credential: OAuthCredential) -> bool:
        if credential.expires_at is None:
            return False
        skew = timedelta(seconds=self._settings.token_refresh_skew_seconds)
        return credential.expires_at - utcnow() <= skew

    def _is_expired(self, credential: OAuthCredential) -> bool:
        return credential.expires_at is not None and credential.expires_at <= utcnow()

    async def _refresh(self, credential: OAuthCredential, refresh_token: str) -> str:
        data = {
            "client_id": self._settings.google_client_id,
            "client_secret": self._settings.google_client_secret.get_secret_value(),
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._settings.google_api_timeout_seconds,
            ) as client:
                response = await client.post(self._settings.google_token_url, data=data)
        except httpx.HTTPError as exc:
            metrics.token_refreshes_total.labels(result="transient_error").inc()
            raise TransientProviderError(f"token refresh failed: {type(exc).__name__}") from exc

        if response.status_code >= 500 or response.status_code == 429:
            metrics.token_refreshes_total.labels(result="transient_error").inc()
            raise TransientProviderError(f"token endpoint returned {response.status_code}", status=response.status_code)

        if response.status_code != 200:
            error = _oauth_error(response)
            if error in ("invalid_grant", "unauthorized_client"):
                metrics.token_refreshes_total.labels(result="revoked").inc()
                await self._mark_needs_reconnect(credential, f"refresh token rejected: {error}")
                raise CredentialExpiredError(f"refresh token rejected: {error}")
            metrics.token_refreshes_total.labels(result="error").inc()
            logger.error("Token refresh failed for agency %s: status=%s error=%s", credential.agency_id, response.status_code, error)
            raise ProviderRequestError(f"token refresh failed: {error}", status=response.status_code)

        token_data = response.json()
        access_token = token_data["access_token"]
        expires_in = int(token_data.get("expires_in", 3600))

        # Google may rotate the refresh token
        self._crypto.seal_tokens(credential, access_token, token_data.get("refresh_token"))
        credential.expires_at = utcnow() + timedelta(seconds=expires_in)
        if token_data.get("scope"):
            credential.scopes = token_data["scope"]
        credential.status = CredentialStatus.CONNECTED
        credential.last_error = None
        await self._credentials.save(credential)

        metrics.token_refreshes_total.labels(result="refreshed").inc()
        logger.info("Refreshed access token for agency %s (expires_in=%ds)", credential.agency_id, expires_in)
        return access_token

    async def _mark_needs_reconnect(self, credential: OAuthCredential, reason: str) -> None:
        credential.status = CredentialStatus.NEEDS_RECONNECT
        credential.last_error = reason
        await self._credentials.save(credential)
        logger.warning("Credential for agency %s needs reconnect: %s", credential.agency_id, reason)


def _oauth_error(response: httpx.Response) -> str:
    try:
        return str(response.json().get("error", "unknown_error"))
    except ValueError:
        return "unknown_error"
