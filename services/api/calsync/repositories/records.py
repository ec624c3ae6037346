"""Row access to the application's business records.

Every lookup is scoped by agency so a job can never touch another tenant's rows.
"""

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calsync.models.records import Client, Event, Resource, User


class RecordRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        return await self._session.get(User, user_id)

    async def get_event(self, agency_id: uuid.UUID, event_id: uuid.UUID) -> Event | None:
        result = await self._session.execute(
            select(Event).where(Event.agency_id == agency_id, Event.id == event_id)
        )
        return result.scalar_one_or_none()

    async def get_resource(self, agency_id: uuid.UUID, resource_id: uuid.UUID) -> Resource | None:
        result = await self._session.execute(
            select(Resource).where(Resource.agency_id == agency_id, Resource.id == resource_id)
        )
        return result.scalar_one_or_none()

    async def get_client(self, agency_id: uuid.UUID, client_id: uuid.UUID) -> Client | None:
        result = await self._session.execute(
            select(Client).where(Client.agency_id == agency_id, Client.id == client_id)
        )
        return result.scalar_one_or_none()

    async def update_event(self, event: Event, **fields: Any) -> Event:
        for key, value in fields.items():
            setattr(event, key, value)
        await self._session.flush()
        return event

    async def update_resource(self, resource: Resource, **fields: Any) -> Resource:
        for key, value in fields.items():
            setattr(resource, key, value)
        await self._session.flush()
        return resource
