"""Sync job store."""

import uuid

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from calsync.models.sync_job import JobKind, JobStatus, SyncJob


class JobRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, job_id: uuid.UUID) -> SyncJob | None:
        return await self._session.get(SyncJob, job_id)

    async def add(self, job: SyncJob) -> SyncJob:
        self._session.add(job)
        await self._session.flush()
        return job

    async def save(self, job: SyncJob) -> SyncJob:
        self._session.add(job)
        await self._session.flush()
        return job

    async def claim_pending(self, limit: int) -> list[SyncJob]:
        """Claim up to ``limit`` pending jobs, oldest first, and mark them running.

        Rows are locked with SKIP LOCKED so concurrent runners never claim the
        same job; the status change becomes visible when the caller commits.
        """
        result = await self._session.execute(
            select(SyncJob)
            .where(SyncJob.status == JobStatus.PENDING)
            .order_by(SyncJob.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        jobs = list(result.scalars().all())
        for job in jobs:
            job.transition(JobStatus.RUNNING)
        await self._session.flush()
        return jobs

    async def list_retry_candidates(self, kind: JobKind, max_attempts: int, limit: int) -> list[SyncJob]:
        """Failed retryable jobs of ``kind`` that have not been re-queued yet."""
        child = aliased(SyncJob)
        result = await self._session.execute(
            select(SyncJob)
            .where(
                SyncJob.kind == kind,
                SyncJob.status == JobStatus.FAILED,
                SyncJob.retryable.is_(True),
                SyncJob.attempt < max_attempts,
                ~exists().where(child.retry_of_id == SyncJob.id),
            )
            .order_by(SyncJob.finished_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())
