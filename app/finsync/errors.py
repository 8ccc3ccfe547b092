"""
Error taxonomy shared by services and route handlers.

Services raise these; handlers catch FinSyncError, roll back, flash the message
and abandon the operation. Messages are human readable and safe to show.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    REMOTE_FAILURE = "remote_failure"
    DECODE_FAILURE = "decode_failure"
    CONFLICT = "conflict"


class FinSyncError(RuntimeError):
    kind: ErrorKind = ErrorKind.REMOTE_FAILURE

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def __str__(self) -> str:
        return self.message


class ValidationError(FinSyncError):
    kind = ErrorKind.VALIDATION


class NotFoundError(FinSyncError):
    kind = ErrorKind.NOT_FOUND


class PermissionDeniedError(FinSyncError):
    kind = ErrorKind.PERMISSION_DENIED


class RemoteFailureError(FinSyncError):
    kind = ErrorKind.REMOTE_FAILURE


class DecodeFailureError(FinSyncError):
    kind = ErrorKind.DECODE_FAILURE


class ConflictError(FinSyncError):
    """Stale write: the row changed since the caller read it."""

    kind = ErrorKind.CONFLICT
