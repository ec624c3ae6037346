"""Explicit result type for sync operations.

Handlers return an ``Outcome`` instead of letting callers guess from an
exception whether a failure can be dropped, retried, or needs a human.
"""

from dataclasses import dataclass, field
from typing import Any

from calsync.errors import OutcomeKind, SyncError


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    detail: str | None = None
    value: Any = None
    error_code: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, value: Any = None, **data: Any) -> "Outcome":
        return cls(OutcomeKind.OK, value=value, data=data)

    @classmethod
    def ignorable(cls, detail: str, **data: Any) -> "Outcome":
        return cls(OutcomeKind.IGNORABLE, detail=detail, data=data)

    @classmethod
    def retryable(cls, detail: str, error_code: str | None = None, **data: Any) -> "Outcome":
        return cls(OutcomeKind.RETRYABLE, detail=detail, error_code=error_code, data=data)

    @classmethod
    def fatal(cls, detail: str, error_code: str | None = None, **data: Any) -> "Outcome":
        return cls(OutcomeKind.FATAL, detail=detail, error_code=error_code, data=data)

    @property
    def succeeded(self) -> bool:
        """True for outcomes that should close a job as succeeded."""
        return self.kind in (OutcomeKind.OK, OutcomeKind.IGNORABLE)

    @property
    def retryable_failure(self) -> bool:
        return self.kind == OutcomeKind.RETRYABLE


def outcome_from_exception(exc: BaseException) -> Outcome:
    """Classify an exception into an outcome.

    Unknown exceptions are treated as retryable: the next scheduler tick
    re-queues the work and the error text is kept on the job row.
    """
    if isinstance(exc, SyncError):
        return Outcome(exc.outcome_kind, detail=exc.message, error_code=exc.code)
    if isinstance(exc, TimeoutError):
        return Outcome.retryable(f"timeout: {exc}", error_code="retry")
    return Outcome.retryable(f"{type(exc).__name__}: {exc}", error_code="unexpected_error")
