"""Scheduler entrypoint for the external cron."""

import logging

from fastapi import APIRouter, Depends

from calsync.config import Settings, get_settings
from calsync.dependencies import get_repositories, require_cron_secret
from calsync.repositories import SyncRepositories
from calsync.schemas.sync import TickRequest, TickResponse
from calsync.services.job_queue import JobQueue
from calsync.services.scheduler import Scheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.post("/tick", response_model=TickResponse, dependencies=[Depends(require_cron_secret)])
async def scheduler_tick(
    body: TickRequest | None = None,
    repos: SyncRepositories = Depends(get_repositories),
    settings: Settings = Depends(get_settings),
):
    """Queue renewals and safety-net pulls. Failures are logged, never raised to cron."""
    body = body or TickRequest()
    scheduler = Scheduler(settings, repos, JobQueue(repos.jobs))
    try:
        result = await scheduler.tick(queue_pull=body.queue_pull)
        await repos.commit()
    except Exception as exc:
        logger.exception("Scheduler tick failed")
        await repos.rollback()
        return TickResponse(ok=False, error=type(exc).__name__)
    return TickResponse(ok=True, **result.as_dict())
