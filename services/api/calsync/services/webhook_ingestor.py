"""Inbound calendar push notifications.

The ingestor authenticates a notification against the stored channel secret
and turns it into a pull-changes job. It never calls the provider and never
tells the caller whether a channel id exists.
"""

import enum
import hmac
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from calsync import metrics
from calsync.models.base import utcnow
from calsync.models.sync_job import SyncJob
from calsync.repositories import SyncRepositories
from calsync.schemas.sync_job import PullChangesPayload
from calsync.services.job_queue import JobQueue

logger = logging.getLogger(__name__)


class IngestResult(str, enum.Enum):
    QUEUED = "queued"
    MISSING_CHANNEL = "missing_channel"
    UNKNOWN_CHANNEL = "unknown_channel"
    BAD_TOKEN = "bad_token"


@dataclass(frozen=True)
class ChannelNotification:
    channel_id: str | None
    resource_id: str | None
    resource_state: str | None
    channel_token: str | None
    message_number: str | None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "ChannelNotification":
        lowered = {k.lower(): v for k, v in headers.items()}

        def header(name: str) -> str | None:
            value = lowered.get(name)
            return value.strip() if value and value.strip() else None

        return cls(
            channel_id=header("x-goog-channel-id"),
            resource_id=header("x-goog-resource-id"),
            resource_state=header("x-goog-resource-state"),
            channel_token=header("x-goog-channel-token"),
            message_number=header("x-goog-message-number"),
        )


class WebhookIngestor:
    def __init__(self, repos: SyncRepositories, queue: JobQueue) -> None:
        self._repos = repos
        self._queue = queue

    async def handle_notification(self, notification: ChannelNotification) -> tuple[IngestResult, SyncJob | None]:
        if not notification.channel_id:
            return self._absorb(IngestResult.MISSING_CHANNEL), None

        watch = await self._repos.watches.get_by_channel_id(notification.channel_id)
        if watch is None:
            return self._absorb(IngestResult.UNKNOWN_CHANNEL), None

        presented = notification.channel_token or ""
        if not presented or not watch.channel_token or not hmac.compare_digest(
            presented.encode("utf-8"), watch.channel_token.encode("utf-8")
        ):
            return self._absorb(IngestResult.BAD_TOKEN), None

        watch.last_received_at = utcnow()
        await self._repos.watches.save(watch)

        job = await self._queue.enqueue(
            watch.agency_id,
            PullChangesPayload(
                watch_id=watch.id,
                channel_id=notification.channel_id,
                resource_state=notification.resource_state,
                message_number=notification.message_number,
                source="webhook",
            ),
            source="webhook",
            provider=watch.provider,
        )
        metrics.webhook_notifications_total.labels(result=IngestResult.QUEUED.value).inc()
        logger.info(
            "Webhook for channel %s… state=%s queued job %s",
            notification.channel_id[:8],
            notification.resource_state,
            job.id,
        )
        return IngestResult.QUEUED, job

    @staticmethod
    def _absorb(result: IngestResult) -> IngestResult:
        metrics.webhook_notifications_total.labels(result=result.value).inc()
        logger.debug("Webhook absorbed: %s", result.value)
        return result
