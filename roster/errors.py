"""Error taxonomy shared by the validators, the student service and the API."""
from __future__ import annotations

from enum import Enum
from typing import Dict


class ErrorSeverity(str, Enum):
    """How loudly a failure should be reported."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class StudentError(Exception):
    """Base class for every classified failure raised by the roster core."""

    kind = "storage_failure"
    code = 500
    severity = ErrorSeverity.CRITICAL
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self) -> Dict[str, str]:
        return {"error": self.message}


class InvalidArgument(StudentError):
    """Malformed or missing caller input."""

    kind = "invalid_argument"
    code = 400
    severity = ErrorSeverity.WARNING
    default_message = "Invalid request"


class Unauthenticated(StudentError):
    """A sensitive operation was attempted without a caller identity."""

    kind = "unauthenticated"
    code = 401
    severity = ErrorSeverity.WARNING
    default_message = "Authentication required"


class NotFound(StudentError):
    """The id is unknown or does not belong to a student."""

    kind = "not_found"
    code = 404
    severity = ErrorSeverity.INFO
    default_message = "Student not found"


class StorageFailure(StudentError):
    """The repository failed in a way that is not otherwise classified."""

    kind = "storage_failure"
    code = 500
    severity = ErrorSeverity.CRITICAL
    default_message = "Database operation failed"


def classify(exc: BaseException) -> StudentError:
    """Return ``exc`` when already classified, otherwise an opaque 500.

    The original exception text is never copied into the returned error.
    """

    if isinstance(exc, StudentError):
        return exc
    return StorageFailure("Internal server error")


__all__ = [
    "ErrorSeverity",
    "StudentError",
    "InvalidArgument",
    "Unauthenticated",
    "NotFound",
    "StorageFailure",
    "classify",
]
