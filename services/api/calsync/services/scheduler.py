"""Periodic scheduler tick.

Each tick queues a renew-watch job per agency and, independent of webhook
delivery, a safety-net pull-changes job per watch. Watches pulled longest ago
go first so every watch is pulled within a bounded number of ticks.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import timedelta

from calsync.config import Settings
from calsync.models.base import utcnow
from calsync.models.sync_job import JobKind
from calsync.repositories import SyncRepositories
from calsync.schemas.sync_job import PullChangesPayload, RenewWatchPayload
from calsync.services.job_queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    agencies: int = 0
    queued_renew: int = 0
    queued_pull: int = 0
    requeued: int = 0
    stale_watches: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class Scheduler:
    def __init__(self, settings: Settings, repos: SyncRepositories, queue: JobQueue) -> None:
        self._settings = settings
        self._repos = repos
        self._queue = queue

    async def tick(self, queue_pull: bool = True) -> TickResult:
        result = TickResult()
        watches = await self._repos.watches.list_all()

        agencies: list[uuid.UUID] = []
        for watch in watches:
            if watch.agency_id not in agencies:
                agencies.append(watch.agency_id)
        result.agencies = len(agencies)

        for agency_id in agencies:
            await self._queue.enqueue(agency_id, RenewWatchPayload(), source="scheduler")
            result.queued_renew += 1

        stale_before = utcnow() - timedelta(minutes=self._settings.max_pull_staleness_minutes)
        result.stale_watches = sum(
            1 for w in watches if w.last_pulled_at is None or w.last_pulled_at < stale_before
        )

        if queue_pull:
            for watch in watches[: self._settings.scheduler_pull_cap]:
                await self._queue.enqueue(
                    watch.agency_id,
                    PullChangesPayload(watch_id=watch.id, channel_id=watch.channel_id, source="scheduler"),
                    source="scheduler",
                    provider=watch.provider,
                )
                result.queued_pull += 1

        result.requeued = await self.requeue_failed_upserts()

        if result.stale_watches:
            logger.warning(
                "%d watch(es) not pulled in the last %d minutes",
                result.stale_watches,
                self._settings.max_pull_staleness_minutes,
            )
        logger.info(
            "Scheduler tick: agencies=%d renew=%d pull=%d requeued=%d",
            result.agencies,
            result.queued_renew,
            result.queued_pull,
            result.requeued,
        )
        return result

    async def requeue_failed_upserts(self) -> int:
        """Insert new rows for failed, retryable upsert jobs under the attempt cap."""
        candidates = await self._repos.jobs.list_retry_candidates(
            JobKind.UPSERT_EVENT,
            max_attempts=self._settings.max_job_attempts,
            limit=self._settings.scheduler_pull_cap,
        )
        for job in candidates:
            await self._queue.requeue(job)
        return len(candidates)
