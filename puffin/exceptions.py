"""
Exception hierarchy for the Puffin sync engine.

Every failure the sync engine can report is a SyncError subclass carrying
a machine-readable ``error_code`` and a ``user_message`` suitable for display.
The orchestrator converts these into ``{"success": False, "error": ...}``
results; only TransientRemoteError is retried.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class ErrorContext:
    """Where an error happened."""
    operation: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


def create_error_context(operation: str = "", **details: Any) -> ErrorContext:
    """Build an ErrorContext for the given operation."""
    return ErrorContext(operation=operation, details=details)


class SyncError(Exception):
    """Base exception for all sync engine errors."""

    default_error_code = "SYNC_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        user_message: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.context = context or ErrorContext()
        self.user_message = user_message or message
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "context": self.context.to_dict(),
        }


class AuthError(SyncError):
    """Not authenticated, or the token refresh/exchange failed."""
    default_error_code = "AUTH_REQUIRED"


class TargetError(SyncError):
    """The sync target is missing, unshared, or not writable."""
    default_error_code = "TARGET_UNAVAILABLE"


class RemoteError(SyncError):
    """An error response from the remote storage API."""
    default_error_code = "REMOTE_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class TransientRemoteError(RemoteError):
    """Rate limit or server error (429/5xx); eligible for retry."""
    default_error_code = "REMOTE_TRANSIENT"


class PermanentRemoteError(RemoteError):
    """Any other remote error response; never retried."""
    default_error_code = "REMOTE_PERMANENT"


class LocalIOError(SyncError):
    """Backup, download or file-replace failure on the local disk."""
    default_error_code = "LOCAL_IO_FAILED"


class ValidationError(SyncError):
    """Malformed target URL/id or an invalid downloaded database."""
    default_error_code = "VALIDATION_FAILED"


class ConflictError(SyncError):
    """Local and remote copies both changed since the last sync."""
    default_error_code = "SYNC_CONFLICT"


def handle_unexpected_error(error: BaseException, operation: str = "") -> SyncError:
    """Wrap a foreign exception so callers always see a SyncError."""
    if isinstance(error, SyncError):
        return error

    logger.error(f"Unexpected error during {operation or 'operation'}: {error}", exc_info=error)
    return SyncError(
        message=f"Unexpected error: {error}",
        error_code="UNEXPECTED_ERROR",
        context=create_error_context(operation=operation),
        user_message="An unexpected error occurred. Please try again.",
        cause=error,
    )
