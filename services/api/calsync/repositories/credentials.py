"""Credential store."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calsync.models.oauth_credential import OAuthCredential


class CredentialRepository:
    """Read/write access to stored OAuth credentials."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_for_agency(self, agency_id: uuid.UUID, provider: str = "google") -> OAuthCredential | None:
        result = await self._session.execute(
            select(OAuthCredential).where(
                OAuthCredential.agency_id == agency_id,
                OAuthCredential.provider == provider,
            )
        )
        return result.scalar_one_or_none()

    async def save(self, credential: OAuthCredential) -> OAuthCredential:
        """Persist a credential (last writer wins)."""
        self._session.add(credential)
        await self._session.flush()
        return credential
