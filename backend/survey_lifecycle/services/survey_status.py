"""Survey status engine.

A survey moves through ``pending -> active <-> paused -> closed``. The stored
``status`` is authoritative except in one case: once ``end_at`` has passed, an
``active`` or ``paused`` survey is effectively ``closed``. Closure is computed
lazily (on read or on the next transition attempt); nothing closes surveys on
a timer.

Everything here is free of I/O. Functions mutate the survey object they are
given and leave persistence to the caller, which must apply the result in a
single transaction.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from survey_lifecycle.core.clock import ensure_aware
from survey_lifecycle.core.logging_config import survey_context
from survey_lifecycle.services.errors import (
    AlreadyClosed,
    InvalidStatus,
    InvalidTransition,
    NoOp,
)

logger = logging.getLogger(__name__)


class SurveyStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"


TRANSITIONS: dict[SurveyStatus, tuple[SurveyStatus, ...]] = {
    SurveyStatus.PENDING: (SurveyStatus.ACTIVE,),
    SurveyStatus.ACTIVE: (SurveyStatus.PAUSED, SurveyStatus.CLOSED),
    SurveyStatus.PAUSED: (SurveyStatus.ACTIVE, SurveyStatus.CLOSED),
    SurveyStatus.CLOSED: (),
}

# Statuses that a passed deadline turns into ``closed``.
_DEADLINE_BOUND = frozenset({SurveyStatus.ACTIVE, SurveyStatus.PAUSED})

STATUS_LABELS: dict[SurveyStatus, str] = {
    SurveyStatus.PENDING: "not started",
    SurveyStatus.ACTIVE: "active",
    SurveyStatus.PAUSED: "paused",
    SurveyStatus.CLOSED: "closed",
}

_CONFIRMATIONS: dict[SurveyStatus, str] = {
    SurveyStatus.ACTIVE: "Survey has been activated.",
    SurveyStatus.PAUSED: "Survey has been paused.",
    SurveyStatus.CLOSED: "Survey has been closed.",
}

AUTO_CLOSED_MESSAGE = "Survey was closed automatically because its deadline has passed."


@dataclass
class TransitionOutcome:
    survey: Any
    previous_status: SurveyStatus
    status: SurveyStatus
    message: str
    synchronized: bool = False
    end_at_derived: bool = False
    early_activation: bool = False

    @property
    def changed(self) -> bool:
        return self.previous_status is not self.status


@dataclass
class ReviewOutcome:
    survey: Any
    previous_status: SurveyStatus
    message: str
    synchronized: bool = False


def parse_status(value: SurveyStatus | str | None) -> SurveyStatus:
    """Convert caller input into a :class:`SurveyStatus` or raise ``InvalidStatus``."""
    if isinstance(value, SurveyStatus):
        return value
    try:
        return SurveyStatus(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(s.value for s in SurveyStatus)
        raise InvalidStatus(f"Invalid status {value!r}; expected one of: {valid}.") from None


def compute_effective_status(survey: Any, now: datetime) -> SurveyStatus:
    """Status the survey is really in at ``now``.

    This is the only place that compares ``now`` against ``end_at``.
    """
    stored = parse_status(survey.status)
    if stored is SurveyStatus.CLOSED:
        return SurveyStatus.CLOSED
    end_at = survey.end_at
    if end_at is not None and stored in _DEADLINE_BOUND and ensure_aware(now) > ensure_aware(end_at):
        return SurveyStatus.CLOSED
    return stored


def synchronize(survey: Any, now: datetime) -> tuple[Any, bool]:
    """Write the effective status back onto the record. Never touches ``end_at``."""
    effective = compute_effective_status(survey, now)
    if effective.value != survey.status:
        logger.info(
            "Survey %s synchronized from %s to %s",
            survey.id,
            survey.status,
            effective.value,
            extra=survey_context(survey.id, status=effective),
        )
        survey.status = effective.value
        return survey, True
    return survey, False


def derive_end_at(survey: Any, now: datetime) -> datetime | None:
    """Deadline implied by activating at ``now``, or None when there is no positive time limit."""
    time_limit = survey.time_limit
    if time_limit is None or time_limit <= 0:
        return None
    return ensure_aware(now) + timedelta(minutes=time_limit)


def request_transition(
    survey: Any, new_status: SurveyStatus | str, now: datetime
) -> TransitionOutcome:
    """Validate and apply a status change requested at ``now``.

    Raises ``InvalidStatus``, ``AlreadyClosed``, ``NoOp`` or
    ``InvalidTransition``. A synchronization performed before the rejection
    stays applied to ``survey``.
    """
    target = parse_status(new_status)
    previous = parse_status(survey.status)

    survey, synced = synchronize(survey, now)
    current = parse_status(survey.status)

    if current is SurveyStatus.CLOSED and target is not SurveyStatus.CLOSED:
        if synced:
            raise AlreadyClosed(
                "Survey was closed automatically because its deadline has passed; "
                "no further status change is allowed."
            )
        raise AlreadyClosed("Survey is closed; no further status change is allowed.")

    if current is target:
        if synced:
            return TransitionOutcome(
                survey=survey,
                previous_status=previous,
                status=current,
                message=AUTO_CLOSED_MESSAGE,
                synchronized=True,
            )
        raise NoOp(f"Survey is already {STATUS_LABELS[current]}.")

    derived_end_at = derive_end_at(survey, now) if target is SurveyStatus.ACTIVE else None

    allowed = TRANSITIONS[current]
    if target not in allowed:
        names = " or ".join(f'"{s.value}"' for s in allowed)
        label = STATUS_LABELS[current]
        raise InvalidTransition(
            f'Cannot change a {label} survey to "{target.value}"; allowed: {names}.',
            allowed=[s.value for s in allowed],
        )

    early = False
    if target is SurveyStatus.ACTIVE and current is SurveyStatus.PENDING and survey.start_at is not None:
        if ensure_aware(now) < ensure_aware(survey.start_at):
            early = True
            logger.warning(
                "Survey %s activated before its start time %s",
                survey.id,
                survey.start_at.isoformat(),
                extra=survey_context(survey.id),
            )

    if derived_end_at is not None:
        survey.end_at = derived_end_at
    survey.status = target.value

    return TransitionOutcome(
        survey=survey,
        previous_status=previous,
        status=target,
        message=_CONFIRMATIONS[target],
        synchronized=synced,
        end_at_derived=derived_end_at is not None,
        early_activation=early,
    )


def set_review_permission(survey: Any, allow: bool, now: datetime) -> ReviewOutcome:
    """Toggle ``allow_review`` after synchronizing; status and ``end_at`` are left alone."""
    previous = parse_status(survey.status)
    survey, synced = synchronize(survey, now)
    survey.allow_review = bool(allow)
    message = "Result review enabled." if allow else "Result review disabled."
    return ReviewOutcome(
        survey=survey,
        previous_status=previous,
        message=message,
        synchronized=synced,
    )
