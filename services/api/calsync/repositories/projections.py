"""Event projection store."""

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from calsync.models.event_projection import CalendarEventProjection


class ProjectionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, event_id: uuid.UUID) -> CalendarEventProjection | None:
        return await self._session.get(CalendarEventProjection, event_id)

    async def save(self, projection: CalendarEventProjection) -> CalendarEventProjection:
        self._session.add(projection)
        await self._session.flush()
        return projection
