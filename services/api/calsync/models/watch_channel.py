"""Push-notification watch channel model."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from calsync.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_values


class WatchScope(str, enum.Enum):
    ORGANIZATION = "organization"
    RESOURCE = "resource"


class WatchChannel(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "watch_channels"
    # At most one active channel per (agency, calendar, scope)
    __table_args__ = (UniqueConstraint("agency_id", "calendar_id", "scope", name="uq_watch_agency_calendar_scope"),)

    agency_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="google")
    calendar_id: Mapped[str] = mapped_column(String(255), nullable=False)
    scope: Mapped[WatchScope] = mapped_column(
        Enum(WatchScope, name="watch_scope", values_callable=enum_values),
        nullable=False,
    )
    resource_ref_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=True,
    )
    channel_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    channel_token: Mapped[str] = mapped_column(String(128), nullable=False)
    provider_resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expiration: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_pulled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<WatchChannel {self.id} scope={self.scope} calendar={self.calendar_id}>"
