"""Watch channel store."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calsync.models.watch_channel import WatchChannel, WatchScope


class WatchRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, watch_id: uuid.UUID) -> WatchChannel | None:
        return await self._session.get(WatchChannel, watch_id)

    async def get_by_channel_id(self, channel_id: str) -> WatchChannel | None:
        result = await self._session.execute(select(WatchChannel).where(WatchChannel.channel_id == channel_id))
        return result.scalar_one_or_none()

    async def find(self, agency_id: uuid.UUID, calendar_id: str, scope: WatchScope) -> WatchChannel | None:
        result = await self._session.execute(
            select(WatchChannel).where(
                WatchChannel.agency_id == agency_id,
                WatchChannel.calendar_id == calendar_id,
                WatchChannel.scope == scope,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_agency(self, agency_id: uuid.UUID) -> list[WatchChannel]:
        result = await self._session.execute(
            select(WatchChannel).where(WatchChannel.agency_id == agency_id).order_by(WatchChannel.created_at)
        )
        return list(result.scalars().all())

    async def list_all(self, limit: int = 5000) -> list[WatchChannel]:
        """All watches, least recently pulled first."""
        result = await self._session.execute(
            select(WatchChannel).order_by(WatchChannel.last_pulled_at.asc().nulls_first()).limit(limit)
        )
        return list(result.scalars().all())

    async def save(self, watch: WatchChannel) -> WatchChannel:
        self._session.add(watch)
        await self._session.flush()
        return watch
