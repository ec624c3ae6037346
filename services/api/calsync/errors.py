"""Error taxonomy for the calendar sync engine.

Every error carries the outcome class it maps to, so job handlers and HTTP
endpoints can decide between dropping, retrying on the next tick, or surfacing
a "needs reconnect" state without inspecting messages.
"""

import enum


class OutcomeKind(str, enum.Enum):
    OK = "ok"
    IGNORABLE = "ignorable"
    RETRYABLE = "retryable"
    FATAL = "fatal"


class SyncError(Exception):
    """Base class for sync engine errors."""

    outcome_kind: OutcomeKind = OutcomeKind.FATAL
    code: str = "sync_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class SyncValidationError(SyncError):
    """Missing owner, calendar id, or other caller input. Never retried."""

    code = "validation_error"


class CredentialExpiredError(SyncError):
    """No usable token and no way to refresh it. Requires re-consent."""

    code = "needs_reconnect"


class WatchNotFoundError(SyncError):
    """The watch a job refers to no longer exists (replaced or removed)."""

    outcome_kind = OutcomeKind.IGNORABLE
    code = "watch_not_found"


class InvalidJobTransitionError(SyncError):
    code = "invalid_job_transition"


class ProviderError(SyncError):
    """A call to the calendar provider failed."""

    code = "provider_error"

    def __init__(self, message: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientProviderError(ProviderError):
    """5xx, rate limit, timeout or network failure. Retry on the next tick."""

    outcome_kind = OutcomeKind.RETRYABLE
    code = "retry"


class ProviderAuthError(ProviderError):
    """The provider rejected our access token (401/403)."""

    code = "provider_auth_error"


class ProviderRequestError(ProviderError):
    """Any other 4xx: the request itself is wrong and will not succeed on retry."""

    code = "provider_request_error"


class ExternalEventNotFoundError(ProviderError):
    """The external event id we hold is gone (404/410 on an event resource)."""

    outcome_kind = OutcomeKind.IGNORABLE
    code = "external_event_not_found"


class SyncCursorExpiredError(ProviderError):
    """The provider invalidated our incremental sync cursor (410 on a list)."""

    outcome_kind = OutcomeKind.RETRYABLE
    code = "sync_cursor_expired"
