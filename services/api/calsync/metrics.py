"""Prometheus metric definitions for calsync.

Single source of truth for all custom metrics. Import from here in API and Celery code.
"""

from prometheus_client import Counter, Histogram

# --- Celery task metrics ---

celery_task_total = Counter(
    "calsync_celery_task_total",
    "Total Celery tasks executed",
    ["task_name", "status"],
)

celery_task_duration_seconds = Histogram(
    "calsync_celery_task_duration_seconds",
    "Celery task execution duration in seconds",
    ["task_name"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# --- Sync metrics ---

jobs_enqueued_total = Counter(
    "calsync_jobs_enqueued_total",
    "Total sync jobs enqueued by kind and producer",
    ["kind", "source"],
)

jobs_finished_total = Counter(
    "calsync_jobs_finished_total",
    "Total sync jobs finished by kind and terminal status",
    ["kind", "status"],
)

webhook_notifications_total = Counter(
    "calsync_webhook_notifications_total",
    "Inbound calendar webhook notifications by result",
    ["result"],
)

token_refreshes_total = Counter(
    "calsync_token_refreshes_total",
    "OAuth token refresh attempts by result",
    ["result"],
)

calendar_writes_total = Counter(
    "calsync_calendar_writes_total",
    "Calendar event writes by target calendar and action",
    ["target", "action"],
)
