"""Durable sync job queue model."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from calsync.errors import InvalidJobTransitionError
from calsync.models.base import Base, UUIDPrimaryKeyMixin, enum_values, utcnow


class JobKind(str, enum.Enum):
    RENEW_WATCH = "renew-watch"
    PULL_CHANGES = "pull-changes"
    UPSERT_EVENT = "upsert-event"
    CREATE_RESOURCE_CALENDAR = "create-resource-calendar"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Transitions are one-directional; a retry is a new row.
_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED})


class SyncJob(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "sync_jobs"

    agency_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="google")
    kind: Mapped[JobKind] = mapped_column(
        Enum(JobKind, name="sync_job_kind", values_callable=enum_values),
        nullable=False,
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="sync_job_status", values_callable=enum_values),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retryable: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    retry_of_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("sync_jobs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=utcnow,
        nullable=False,
        index=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def transition(self, to: JobStatus) -> None:
        """Move to ``to`` or raise if the move would go backwards."""
        current = JobStatus(self.status)
        if to not in _ALLOWED_TRANSITIONS[current]:
            raise InvalidJobTransitionError(f"sync job {self.id}: {current.value} -> {to.value} not allowed")
        self.status = to
        now = utcnow()
        if to == JobStatus.RUNNING:
            self.started_at = now
            self.last_error = None
        else:
            self.finished_at = now

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status) in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<SyncJob {self.id} kind={self.kind} status={self.status}>"
