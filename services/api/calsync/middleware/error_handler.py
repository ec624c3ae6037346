"""Error handling: unhandled exceptions and sync error translation."""

import logging
import traceback

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from calsync.errors import (
    CredentialExpiredError,
    OutcomeKind,
    ProviderError,
    SyncError,
    SyncValidationError,
)
from calsync.middleware.logging import redact_pii

logger = logging.getLogger(__name__)


def sync_error_status(exc: SyncError) -> int:
    """HTTP status for a sync error surfaced to an authenticated caller."""
    if isinstance(exc, CredentialExpiredError):
        return 409
    if exc.outcome_kind == OutcomeKind.RETRYABLE:
        return 503
    if isinstance(exc, SyncValidationError):
        return 400
    if isinstance(exc, ProviderError):
        return 502
    return 500


def sync_error_to_http(exc: SyncError, status_code: int | None = None) -> HTTPException:
    """Structured error the UI can act on ("needs reconnect", "retry")."""
    return HTTPException(
        status_code=status_code or sync_error_status(exc),
        detail={
            "code": exc.code,
            "message": redact_pii(exc.message),
            "retryable": exc.outcome_kind == OutcomeKind.RETRYABLE,
        },
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch unhandled exceptions and return safe error responses."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                "Unhandled exception on %s %s: %s\n%s",
                request.method,
                request.url.path,
                redact_pii(str(exc)),
                redact_pii(traceback.format_exc()),
            )
            return JSONResponse(
                status_code=500,
                content={
                    "detail": "An internal error occurred. Please try again later.",
                    "error_type": type(exc).__name__,
                },
            )
