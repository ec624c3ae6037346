"""Initial schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None

credential_status = postgresql.ENUM("connected", "needs_reconnect", name="credential_status", create_type=False)
watch_scope = postgresql.ENUM("organization", "resource", name="watch_scope", create_type=False)
sync_job_kind = postgresql.ENUM(
    "renew-watch",
    "pull-changes",
    "upsert-event",
    "create-resource-calendar",
    name="sync_job_kind",
    create_type=False,
)
sync_job_status = postgresql.ENUM("pending", "running", "succeeded", "failed", name="sync_job_status", create_type=False)
projection_status = postgresql.ENUM("pending", "synced", "error", name="projection_status", create_type=False)

_ENUMS = (credential_status, watch_scope, sync_job_kind, sync_job_status, projection_status)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    # --- record store ---
    op.create_table(
        "agencies",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id", ondelete="SET NULL"), nullable=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_agency_id", "users", ["agency_id"])
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "resources",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("calendar_email", sa.String(320), nullable=True),
        sa.Column("google_calendar_id", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_resources_agency_id", "resources", ["agency_id"])

    op.create_table(
        "clients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_clients_agency_id", "clients", ["agency_id"])

    op.create_table(
        "events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("resource_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("resources.id", ondelete="SET NULL"), nullable=True),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True),
        sa.Column("business_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("invoice_name", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("event_date", sa.Date, nullable=False),
        sa.Column("event_time", sa.String(8), nullable=True),
        sa.Column("event_time_end", sa.String(8), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="scheduled"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_events_agency_id", "events", ["agency_id"])

    # --- oauth_credentials ---
    op.create_table(
        "oauth_credentials",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False, server_default="google"),
        sa.Column("encrypted_access_token", sa.LargeBinary, nullable=False),
        sa.Column("encrypted_refresh_token", sa.LargeBinary, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", sa.Text, nullable=False, server_default=""),
        sa.Column("status", credential_status, nullable=False, server_default="connected"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("organization_calendar_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("agency_id", "provider", name="uq_credential_agency_provider"),
    )
    op.create_index("ix_oauth_credentials_agency_id", "oauth_credentials", ["agency_id"])

    # --- watch_channels ---
    op.create_table(
        "watch_channels",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False, server_default="google"),
        sa.Column("calendar_id", sa.String(255), nullable=False),
        sa.Column("scope", watch_scope, nullable=False),
        sa.Column("resource_ref_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("resources.id", ondelete="CASCADE"), nullable=True),
        sa.Column("channel_id", sa.String(64), nullable=False, unique=True),
        sa.Column("channel_token", sa.String(128), nullable=False),
        sa.Column("provider_resource_id", sa.String(255), nullable=True),
        sa.Column("expiration", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_token", sa.Text, nullable=True),
        sa.Column("last_received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_pulled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("agency_id", "calendar_id", "scope", name="uq_watch_agency_calendar_scope"),
    )
    op.create_index("ix_watch_channels_agency_id", "watch_channels", ["agency_id"])
    op.create_index("ix_watch_channels_channel_id", "watch_channels", ["channel_id"])

    # --- sync_jobs ---
    op.create_table(
        "sync_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False, server_default="google"),
        sa.Column("kind", sync_job_kind, nullable=False),
        sa.Column("status", sync_job_status, nullable=False, server_default="pending"),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("result", postgresql.JSONB, nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("retryable", sa.Boolean, nullable=True),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="1"),
        sa.Column("retry_of_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("sync_jobs.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_sync_jobs_agency_id", "sync_jobs", ["agency_id"])
    op.create_index("ix_sync_jobs_status", "sync_jobs", ["status"])
    op.create_index("ix_sync_jobs_created_at", "sync_jobs", ["created_at"])
    op.create_index("ix_sync_jobs_retry_of_id", "sync_jobs", ["retry_of_id"])
    # Claim query: pending rows in FIFO order
    op.create_index(
        "ix_sync_jobs_pending_fifo",
        "sync_jobs",
        ["created_at"],
        postgresql_where=sa.text("status = 'pending'"),
    )

    # --- calendar_event_projections ---
    op.create_table(
        "calendar_event_projections",
        sa.Column("event_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_calendar_id", sa.String(255), nullable=True),
        sa.Column("organization_external_id", sa.String(1024), nullable=True),
        sa.Column("organization_html_link", sa.Text, nullable=True),
        sa.Column("resource_calendar_id", sa.String(255), nullable=True),
        sa.Column("resource_external_id", sa.String(1024), nullable=True),
        sa.Column("resource_html_link", sa.Text, nullable=True),
        sa.Column("status", projection_status, nullable=False, server_default="pending"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_calendar_event_projections_agency_id", "calendar_event_projections", ["agency_id"])
    op.create_index(
        "ix_calendar_event_projections_organization_external_id",
        "calendar_event_projections",
        ["organization_external_id"],
    )
    op.create_index(
        "ix_calendar_event_projections_resource_external_id",
        "calendar_event_projections",
        ["resource_external_id"],
    )


def downgrade() -> None:
    op.drop_table("calendar_event_projections")
    op.drop_table("sync_jobs")
    op.drop_table("watch_channels")
    op.drop_table("oauth_credentials")
    op.drop_table("events")
    op.drop_table("clients")
    op.drop_table("resources")
    op.drop_table("users")
    op.drop_table("agencies")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
