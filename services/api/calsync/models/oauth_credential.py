"""OAuth credential model with encrypted storage."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from calsync.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_values


class CredentialStatus(str, enum.Enum):
    CONNECTED = "connected"
    NEEDS_RECONNECT = "needs_reconnect"


class OAuthCredential(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "oauth_credentials"
    __table_args__ = (UniqueConstraint("agency_id", "provider", name="uq_credential_agency_provider"),)

    agency_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agencies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="google")
    # Tokens stored as encrypted bytes (libsodium crypto_secretbox)
    encrypted_access_token: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    encrypted_refresh_token: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scopes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[CredentialStatus] = mapped_column(
        Enum(CredentialStatus, name="credential_status", values_callable=enum_values),
        default=CredentialStatus.CONNECTED,
        nullable=False,
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Organization calendar chosen when the organization watch was created
    organization_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<OAuthCredential agency_id={self.agency_id} provider={self.provider}>"
