"""Tests for Prometheus metric definitions and the Celery task wrappers."""

from unittest.mock import AsyncMock, patch

import pytest

from calsync.metrics import (
    calendar_writes_total,
    celery_task_duration_seconds,
    celery_task_total,
    jobs_enqueued_total,
    jobs_finished_total,
    token_refreshes_total,
    webhook_notifications_total,
)
from calsync.schemas.sync_job import RenewWatchPayload


class TestMetricDefinitions:
    def test_celery_task_total_labels(self):
        assert celery_task_total._type == "counter"
        assert celery_task_total._labelnames == ("task_name", "status")

    def test_celery_task_duration_is_histogram(self):
        assert celery_task_duration_seconds._type == "histogram"
        assert celery_task_duration_seconds._labelnames == ("task_name",)

    def test_job_counters(self):
        assert jobs_enqueued_total._labelnames == ("kind", "source")
        assert jobs_finished_total._labelnames == ("kind", "status")

    def test_sync_counters(self):
        assert webhook_notifications_total._labelnames == ("result",)
        assert token_refreshes_total._labelnames == ("result",)
        assert calendar_writes_total._labelnames == ("target", "action")


class TestSyncMetricsIncrement:
    @pytest.mark.asyncio
    async def test_enqueue_counts_by_kind_and_source(self, services, agency_id):
        counter = jobs_enqueued_total.labels(kind="renew-watch", source="scheduler")
        before = counter._value.get()

        await services.queue.enqueue(agency_id, RenewWatchPayload(), source="scheduler")

        assert counter._value.get() == before + 1

    @pytest.mark.asyncio
    async def test_calendar_write_counted(self, services, credential, agency_id, event):
        counter = calendar_writes_total.labels(target="organization", action="created")
        before = counter._value.get()

        await services.upserts.upsert_event(agency_id, event.id)

        assert counter._value.get() == before + 1


class TestCeleryTasks:
    def test_scheduler_tick_records_success(self):
        from calsync.tasks import sync_tasks

        counter = celery_task_total.labels(task_name="scheduler_tick", status="success")
        before = counter._value.get()
        tick = AsyncMock(return_value={"agencies": 1})

        with patch.object(sync_tasks, "_run_scheduler_tick", tick):
            result = sync_tasks.scheduler_tick.run(queue_pull=False)

        assert result == {"agencies": 1}
        tick.assert_awaited_once_with(False)
        assert counter._value.get() == before + 1

    def test_process_sync_jobs_records_failure(self):
        from calsync.tasks import sync_tasks

        counter = celery_task_total.labels(task_name="process_sync_jobs", status="failure")
        before = counter._value.get()

        with patch.object(sync_tasks, "_run_pending_jobs", AsyncMock(side_effect=RuntimeError("db down"))):
            with pytest.raises(RuntimeError):
                sync_tasks.process_sync_jobs.run(limit=5)

        assert counter._value.get() == before + 1
