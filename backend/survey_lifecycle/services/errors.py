"""Typed rejections raised by the survey status engine and its service.

Every error carries an :class:`ErrorKind` so callers branch on the kind
instead of matching message text. Only :class:`PersistenceFailure` is
retryable; the rest fail identically on every retry.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable


class ErrorKind(str, enum.Enum):
    INVALID_STATUS = "invalid_status"
    ALREADY_CLOSED = "already_closed"
    NO_OP = "no_op"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    PERSISTENCE_FAILURE = "persistence_failure"


class SurveyStatusError(Exception):
    kind: ErrorKind
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidStatus(SurveyStatusError):
    kind = ErrorKind.INVALID_STATUS


class AlreadyClosed(SurveyStatusError):
    kind = ErrorKind.ALREADY_CLOSED


class NoOp(SurveyStatusError):
    kind = ErrorKind.NO_OP


class InvalidTransition(SurveyStatusError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, message: str, allowed: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.allowed = tuple(allowed)


class SurveyNotFound(SurveyStatusError):
    kind = ErrorKind.NOT_FOUND


class Forbidden(SurveyStatusError):
    kind = ErrorKind.FORBIDDEN


class PersistenceFailure(SurveyStatusError):
    """The store rejected the write; the whole operation may be retried."""

    kind = ErrorKind.PERSISTENCE_FAILURE
    retryable = True
