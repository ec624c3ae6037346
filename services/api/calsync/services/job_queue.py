"""Durable job queue contract.

Producers (webhook ingestor, scheduler, API) enqueue typed payloads; the
runner claims pending rows and closes them as succeeded or failed. A job never
leaves a terminal state: a retry is a new row pointing at the failed one.
"""

import logging
import uuid
from typing import Any

from calsync import metrics
from calsync.models.base import generate_uuid, utcnow
from calsync.models.sync_job import JobKind, JobStatus, SyncJob
from calsync.repositories.jobs import JobRepository
from calsync.schemas.sync_job import JobPayload, parse_payload

logger = logging.getLogger(__name__)


class JobQueue:
    def __init__(self, jobs: JobRepository) -> None:
        self._jobs = jobs

    async def enqueue(
        self,
        agency_id: uuid.UUID,
        payload: JobPayload,
        *,
        source: str = "api",
        provider: str = "google",
        attempt: int = 1,
        retry_of_id: uuid.UUID | None = None,
    ) -> SyncJob:
        # Round-trip through the union so an invalid payload fails here, not in the runner
        validated = parse_payload(payload.model_dump(mode="json"))
        job = SyncJob(
            id=generate_uuid(),
            agency_id=agency_id,
            provider=provider,
            kind=JobKind(validated.kind),
            status=JobStatus.PENDING,
            payload=validated.model_dump(mode="json"),
            attempt=attempt,
            retry_of_id=retry_of_id,
            created_at=utcnow(),
        )
        await self._jobs.add(job)
        metrics.jobs_enqueued_total.labels(kind=job.kind.value, source=source).inc()
        logger.debug("Enqueued %s job %s for agency %s", job.kind.value, job.id, agency_id)
        return job

    async def claim(self, limit: int) -> list[SyncJob]:
        return await self._jobs.claim_pending(limit)

    async def complete(self, job: SyncJob, result: dict[str, Any] | None = None) -> SyncJob:
        job.transition(JobStatus.SUCCEEDED)
        job.result = result
        job.retryable = None
        await self._jobs.save(job)
        metrics.jobs_finished_total.labels(kind=JobKind(job.kind).value, status=JobStatus.SUCCEEDED.value).inc()
        return job

    async def fail(self, job: SyncJob, error: str, *, retryable: bool, result: dict[str, Any] | None = None) -> SyncJob:
        job.transition(JobStatus.FAILED)
        job.last_error = error[:2000]
        job.retryable = retryable
        job.result = result
        await self._jobs.save(job)
        metrics.jobs_finished_total.labels(kind=JobKind(job.kind).value, status=JobStatus.FAILED.value).inc()
        return job

    async def requeue(self, job: SyncJob, *, source: str = "scheduler") -> SyncJob:
        """Insert a fresh pending copy of a failed job."""
        return await self.enqueue(
            job.agency_id,
            parse_payload(job.payload),
            source=source,
            provider=job.provider,
            attempt=job.attempt + 1,
            retry_of_id=job.id,
        )

    def payload_of(self, job: SyncJob) -> JobPayload:
        return parse_payload(job.payload)
