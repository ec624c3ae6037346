"""Calendar push-notification webhook.

Always answers 200: an unknown channel or a wrong token is absorbed silently
so callers learn nothing about which channel ids exist, and the provider never
retries a delivery we already acknowledged.
"""

import logging

from fastapi import APIRouter, Depends, Request

from calsync.dependencies import get_repositories
from calsync.repositories import SyncRepositories
from calsync.services.job_queue import JobQueue
from calsync.services.webhook_ingestor import ChannelNotification, WebhookIngestor

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calendar", tags=["calendar-webhook"])


@router.post("/webhook")
async def calendar_webhook(
    request: Request,
    repos: SyncRepositories = Depends(get_repositories),
):
    notification = ChannelNotification.from_headers(request.headers)
    ingestor = WebhookIngestor(repos, JobQueue(repos.jobs))
    try:
        await ingestor.handle_notification(notification)
        await repos.commit()
    except Exception:
        logger.exception("Calendar webhook ingestion failed")
        await repos.rollback()
    return {"status": "ok"}
