"""Celery tasks driving the scheduler tick and the job runner."""

import asyncio
import logging
import time

from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from calsync import metrics
from calsync.config import get_settings
from calsync.repositories import SyncRepositories
from calsync.services.sync_services import build_sync_services

logger = logging.getLogger(__name__)


def _get_async_session() -> tuple[AsyncEngine, async_sessionmaker]:
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


async def _run_scheduler_tick(queue_pull: bool) -> dict:
    settings = get_settings()
    engine, session_factory = _get_async_session()
    try:
        async with session_factory() as db:
            repos = SyncRepositories.from_session(db)
            services = build_sync_services(settings, repos)
            result = await services.scheduler.tick(queue_pull=queue_pull)
            await repos.commit()
    finally:
        await engine.dispose()
    return result.as_dict()


async def _run_pending_jobs(limit: int) -> dict:
    settings = get_settings()
    engine, session_factory = _get_async_session()
    try:
        async with session_factory() as db:
            repos = SyncRepositories.from_session(db)
            services = build_sync_services(settings, repos)
            summary = await services.runner.run_pending(limit)
    finally:
        await engine.dispose()
    return {"processed": summary.processed, "succeeded": summary.succeeded, "failed": summary.failed}


def _timed(task_name: str, coro_factory) -> dict:
    start = time.monotonic()
    try:
        result = asyncio.run(coro_factory())
    except Exception:
        metrics.celery_task_total.labels(task_name=task_name, status="failure").inc()
        raise
    finally:
        metrics.celery_task_duration_seconds.labels(task_name=task_name).observe(time.monotonic() - start)
    metrics.celery_task_total.labels(task_name=task_name, status="success").inc()
    return result


@shared_task(name="calsync.tasks.sync_tasks.scheduler_tick")
def scheduler_tick(queue_pull: bool = True) -> dict:
    """Periodic task: queue renew-watch and safety-net pull-changes jobs."""
    result = _timed("scheduler_tick", lambda: _run_scheduler_tick(queue_pull))
    logger.info("Scheduler tick task finished: %s", result)
    return result


@shared_task(name="calsync.tasks.sync_tasks.process_sync_jobs")
def process_sync_jobs(limit: int = 20) -> dict:
    """Periodic task: claim and run pending sync jobs."""
    return _timed("process_sync_jobs", lambda: _run_pending_jobs(limit))
