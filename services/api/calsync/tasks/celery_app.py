"""Celery application configuration."""

from celery import Celery

from calsync.config import get_settings

settings = get_settings()

celery_app = Celery(
    "calsync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_routes={
        "calsync.tasks.sync_tasks.*": {"queue": "sync"},
    },
    beat_schedule={
        # Renewals plus safety-net pulls, independent of webhook delivery
        "scheduler-tick": {
            "task": "calsync.tasks.sync_tasks.scheduler_tick",
            "schedule": settings.scheduler_interval_seconds,
        },
        # Drain the job queue
        "process-sync-jobs": {
            "task": "calsync.tasks.sync_tasks.process_sync_jobs",
            "schedule": settings.runner_interval_seconds,
        },
    },
)

celery_app.autodiscover_tasks(["calsync.tasks"], related_name="sync_tasks")
