"""Error taxonomy for progression operations.

Every failure an engine operation can surface is a ProgressionError carrying a
machine-readable ``kind`` and a human-readable message. The HTTP layer maps the
kind to a status code; callers decide whether to retry from the kind alone.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_COMPLETED = "already_completed"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    STORE = "store"


class ProgressionError(Exception):
    """Base class for all classified progression failures."""

    kind: ErrorKind = ErrorKind.STORE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "detail": self.message}


class NotFoundError(ProgressionError):
    """Unknown user, lesson, skill or challenge id. No state was changed."""

    kind = ErrorKind.NOT_FOUND


class AlreadyCompletedError(ProgressionError):
    """The action was already applied. Benign and safe to treat as success."""

    kind = ErrorKind.ALREADY_COMPLETED


class ValidationError(ProgressionError, ValueError):
    """Input rejected before any write."""

    kind = ErrorKind.VALIDATION


class ConflictError(ProgressionError):
    """Lost an optimistic-write race. The whole operation must be retried."""

    kind = ErrorKind.CONFLICT


class StoreError(ProgressionError):
    """Persistence layer failure. The original exception is chained as __cause__."""

    kind = ErrorKind.STORE
