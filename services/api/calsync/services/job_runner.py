"""Thin consumer for the sync job queue.

Claims pending jobs, dispatches each one by payload type, and closes it as
succeeded or failed from the handler's ``Outcome``. Every job is committed on
its own so one failure never rolls back another job's result.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from calsync.errors import SyncError, SyncValidationError
from calsync.models.sync_job import JobKind, SyncJob
from calsync.repositories import SyncRepositories
from calsync.schemas.sync_job import (
    CreateResourceCalendarPayload,
    JobPayload,
    PullChangesPayload,
    RenewWatchPayload,
    UpsertEventPayload,
)
from calsync.services.calendar_upsert import CalendarUpsertEngine
from calsync.services.job_queue import JobQueue
from calsync.services.outcomes import Outcome, outcome_from_exception
from calsync.services.watch_manager import WatchManager

logger = logging.getLogger(__name__)

MAX_BATCH = 50


@dataclass
class RunSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)


class JobRunner:
    def __init__(
        self,
        repos: SyncRepositories,
        queue: JobQueue,
        watches: WatchManager,
        upserts: CalendarUpsertEngine,
    ) -> None:
        self._repos = repos
        self._queue = queue
        self._watches = watches
        self._upserts = upserts

    async def run_pending(self, limit: int = 20) -> RunSummary:
        limit = max(1, min(limit, MAX_BATCH))
        jobs = await self._queue.claim(limit)
        # Publish the running state and release the row locks before doing slow work
        await self._repos.commit()

        summary = RunSummary()
        for job in jobs:
            report = await self._run_one(job)
            summary.processed += 1
            if report["status"] == "succeeded":
                summary.succeeded += 1
            else:
                summary.failed += 1
            summary.results.append(report)

        if jobs:
            logger.info(
                "Runner processed %d job(s): succeeded=%d failed=%d",
                summary.processed,
                summary.succeeded,
                summary.failed,
            )
        return summary

    async def _run_one(self, job: SyncJob) -> dict[str, Any]:
        job_id = job.id
        kind = JobKind(job.kind)
        try:
            outcome = await self.dispatch(job, self._queue.payload_of(job))
        except SyncError as exc:
            outcome = outcome_from_exception(exc)
        except Exception as exc:
            logger.exception("Job %s (%s) crashed", job_id, kind.value)
            await self._repos.rollback()
            job = await self._repos.jobs.get(job_id)
            outcome = outcome_from_exception(exc)

        result = {"outcome": outcome.kind.value, "detail": outcome.detail, **outcome.data}
        if outcome.succeeded:
            await self._queue.complete(job, result=result)
            status = "succeeded"
        else:
            await self._queue.fail(
                job,
                outcome.detail or outcome.error_code or "failed",
                retryable=outcome.retryable_failure,
                result=result,
            )
            status = "failed"
            logger.warning("Job %s (%s) failed: %s", job_id, kind.value, outcome.detail)
        await self._repos.commit()

        return {
            "job_id": str(job_id),
            "kind": kind.value,
            "status": status,
            "outcome": outcome.kind.value,
            "error": None if outcome.succeeded else outcome.detail,
        }

    async def dispatch(self, job: SyncJob, payload: JobPayload) -> Outcome:
        if isinstance(payload, RenewWatchPayload):
            return await self._watches.renew_agency_watches(job.agency_id, payload.scope)
        if isinstance(payload, PullChangesPayload):
            pulled = await self._watches.pull_changes(payload.watch_id)
            return Outcome.ok(**pulled.as_dict())
        if isinstance(payload, UpsertEventPayload):
            upserted = await self._upserts.upsert_event(job.agency_id, payload.event_id, payload.send_invites)
            return upserted.outcome()
        if isinstance(payload, CreateResourceCalendarPayload):
            return await self._watches.create_resource_calendar(job.agency_id, payload.resource_id)
        raise SyncValidationError(f"no handler for job kind {job.kind}")
