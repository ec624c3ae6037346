"""Correlation between an internal event and its external calendar copies."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from calsync.models.base import Base, TimestampMixin, enum_values


class ProjectionStatus(str, enum.Enum):
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class CalendarEventProjection(Base, TimestampMixin):
    __tablename__ = "calendar_event_projections"

    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        primary_key=True,
    )
    agency_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # The external ids are the idempotency key: present means update, never create.
    organization_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    organization_external_id: Mapped[str | None] = mapped_column(String(1024), nullable=True, index=True)
    organization_html_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    resource_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resource_external_id: Mapped[str | None] = mapped_column(String(1024), nullable=True, index=True)
    resource_html_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ProjectionStatus] = mapped_column(
        Enum(ProjectionStatus, name="projection_status", values_callable=enum_values),
        default=ProjectionStatus.PENDING,
        nullable=False,
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CalendarEventProjection event_id={self.event_id} status={self.status}>"
