"""calsync database models."""

from calsync.models.event_projection import CalendarEventProjection, ProjectionStatus
from calsync.models.oauth_credential import CredentialStatus, OAuthCredential
from calsync.models.records import Agency, Client, Event, Resource, User
from calsync.models.sync_job import JobKind, JobStatus, SyncJob
from calsync.models.watch_channel import WatchChannel, WatchScope

__all__ = [
    "Agency",
    "User",
    "Resource",
    "Client",
    "Event",
    "OAuthCredential",
    "CredentialStatus",
    "WatchChannel",
    "WatchScope",
    "SyncJob",
    "JobKind",
    "JobStatus",
    "CalendarEventProjection",
    "ProjectionStatus",
]
