"""Durable stores used by the sync engine.

Services never hold state between invocations; each one re-reads what it needs
through these repositories.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from calsync.repositories.credentials import CredentialRepository
from calsync.repositories.jobs import JobRepository
from calsync.repositories.projections import ProjectionRepository
from calsync.repositories.records import RecordRepository
from calsync.repositories.watches import WatchRepository


@dataclass
class SyncRepositories:
    credentials: CredentialRepository
    watches: WatchRepository
    jobs: JobRepository
    projections: ProjectionRepository
    records: RecordRepository
    session: AsyncSession | None = None

    @classmethod
    def from_session(cls, session: AsyncSession) -> "SyncRepositories":
        return cls(
            credentials=CredentialRepository(session),
            watches=WatchRepository(session),
            jobs=JobRepository(session),
            projections=ProjectionRepository(session),
            records=RecordRepository(session),
            session=session,
        )

    async def commit(self) -> None:
        if self.session is not None:
            await self.session.commit()

    async def rollback(self) -> None:
        if self.session is not None:
            await self.session.rollback()


__all__ = [
    "SyncRepositories",
    "CredentialRepository",
    "WatchRepository",
    "JobRepository",
    "ProjectionRepository",
    "RecordRepository",
]
