"""Google OAuth consent (PKCE) for an agency's calendar credential."""

import base64
import hashlib
import json
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx
import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException, Query

from calsync.config import Settings, get_settings
from calsync.dependencies import get_current_agency_id, get_repositories
from calsync.models.base import generate_uuid
from calsync.models.oauth_credential import CredentialStatus, OAuthCredential
from calsync.repositories import SyncRepositories
from calsync.schemas.oauth import OAuthCallbackResponse, OAuthStartResponse
from calsync.services.crypto_service import get_crypto_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/oauth/google", tags=["oauth"])

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "openid",
    "email",
]

# PKCE state TTL: 10 minutes
_PKCE_STATE_TTL = 600
_redis_client: aioredis.Redis | None = None


async def _get_redis(settings: Settings) -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


async def _store_pkce_state(state: str, data: dict, settings: Settings) -> None:
    """Store PKCE state in Redis with TTL."""
    r = await _get_redis(settings)
    await r.set(f"pkce:{state}", json.dumps(data), ex=_PKCE_STATE_TTL)


async def _pop_pkce_state(state: str, settings: Settings) -> dict | None:
    """Atomically retrieve and delete PKCE state from Redis."""
    r = await _get_redis(settings)
    key = f"pkce:{state}"
    pipe = r.pipeline()
    pipe.get(key)
    pipe.delete(key)
    results = await pipe.execute()
    raw = results[0]
    if raw is None:
        return None
    return json.loads(raw)


def _code_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@router.post("/start", response_model=OAuthStartResponse)
async def google_oauth_start(
    agency_id: uuid.UUID = Depends(get_current_agency_id),
    settings: Settings = Depends(get_settings),
):
    """Start the consent flow for the caller's agency. Returns the auth URL."""
    state = secrets.token_urlsafe(32)
    code_verifier = secrets.token_urlsafe(64)

    await _store_pkce_state(
        state,
        {
            "code_verifier": code_verifier,
            "agency_id": str(agency_id),
            "created_at": datetime.now(timezone.utc).isoformat(),
        },
        settings,
    )

    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.google_redirect_uri,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "state": state,
        "code_challenge": _code_challenge(code_verifier),
        "code_challenge_method": "S256",
        "access_type": "offline",
        "include_granted_scopes": "true",
        "prompt": "consent",
    }
    return OAuthStartResponse(auth_url=f"{GOOGLE_AUTH_URL}?{urlencode(params)}", state=state)


@router.get("/callback", response_model=OAuthCallbackResponse)
async def google_oauth_callback(
    code: str = Query(...),
    state: str = Query(...),
    repos: SyncRepositories = Depends(get_repositories),
    settings: Settings = Depends(get_settings),
):
    """Exchange the authorization code and store the agency's credential."""
    pending = await _pop_pkce_state(state, settings)
    if not pending:
        raise HTTPException(status_code=400, detail="Invalid or expired state")
    agency_id = uuid.UUID(pending["agency_id"])

    async with httpx.AsyncClient(timeout=settings.google_api_timeout_seconds) as client:
        token_response = await client.post(
            settings.google_token_url,
            data={
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret.get_secret_value(),
                "code": code,
                "code_verifier": pending["code_verifier"],
                "grant_type": "authorization_code",
                "redirect_uri": settings.google_redirect_uri,
            },
        )

    if token_response.status_code != 200:
        logger.error("Google token exchange failed for agency %s: status=%s", agency_id, token_response.status_code)
        raise HTTPException(status_code=400, detail="Token exchange failed")

    token_data = token_response.json()
    crypto = get_crypto_service(settings)
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(token_data.get("expires_in", 3600)))
    scopes = token_data.get("scope") or " ".join(SCOPES)

    credential = await repos.credentials.get_for_agency(agency_id)
    if credential is None:
        credential = OAuthCredential(id=generate_uuid(), agency_id=agency_id, provider="google")
    crypto.seal_tokens(credential, token_data["access_token"], token_data.get("refresh_token"))
    credential.expires_at = expires_at
    credential.scopes = scopes
    credential.status = CredentialStatus.CONNECTED
    credential.last_error = None
    await repos.credentials.save(credential)

    logger.info("Stored Google credential for agency %s", agency_id)
    return OAuthCallbackResponse(agency_id=str(agency_id), scopes=scopes)
