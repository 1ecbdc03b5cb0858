"""Entry points that drive a survey through its lifecycle.

Each mutation runs in one transaction: lock the row, capture ``now`` once,
let the status engine decide, write the audit row, commit. Business
rejections come back as a :class:`StatusChangeResult` with ``survey=None``;
store failures roll back and propagate as ``PersistenceFailure`` so callers
can tell "rejected" apart from "try again".
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from survey_lifecycle.core.clock import Clock, SystemClock
from survey_lifecycle.core.logging_config import survey_context
from survey_lifecycle.core.metrics import (
    survey_auto_closed_total,
    survey_persistence_failures_total,
    survey_status_rejections_total,
    survey_status_transitions_total,
)
from survey_lifecycle.core.permissions import (
    SURVEY_MANAGER_ROLES,
    Actor,
    can_manage_survey,
    can_view_survey,
)
from survey_lifecycle.models.survey import Survey, SurveyAuditLog
from survey_lifecycle.schemas.survey import SurveyCreate
from survey_lifecycle.services.errors import (
    ErrorKind,
    Forbidden,
    PersistenceFailure,
    SurveyNotFound,
    SurveyStatusError,
)
from survey_lifecycle.services.survey_status import (
    SurveyStatus,
    compute_effective_status,
    parse_status,
    request_transition,
    set_review_permission,
    synchronize,
)
from survey_lifecycle.services.survey_store import SurveyStore

logger = logging.getLogger(__name__)

ACTION_STATUS_CHANGED = "status_changed"
ACTION_STATUS_SYNCHRONIZED = "status_synchronized"
ACTION_REVIEW_PERMISSION_CHANGED = "review_permission_changed"


@dataclass
class StatusChangeResult:
    survey: Survey | None
    message: str
    error: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_survey_id(value: uuid.UUID | str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise SurveyNotFound("Survey not found.") from None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class StateManagementService:
    def __init__(self, store: SurveyStore, clock: Clock | None = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()

    # ── Mutations ────────────────────────────────────────────────────────

    async def change_survey_status(
        self, survey_id: uuid.UUID | str, status: SurveyStatus | str, actor: Actor
    ) -> StatusChangeResult:
        try:
            sid = parse_survey_id(survey_id)
            target = parse_status(status)
        except SurveyStatusError as exc:
            return self._rejected(exc, survey_id, actor)

        async def apply(survey: Survey, now: datetime) -> str:
            outcome = request_transition(survey, target, now)
            if outcome.synchronized:
                await self._record_synchronization(survey, outcome.previous_status.value, actor)
            if outcome.changed and not outcome.synchronized:
                await self.store.add_audit(
                    survey.id,
                    ACTION_STATUS_CHANGED,
                    user_id=actor.id,
                    details={
                        "from": outcome.previous_status.value,
                        "to": outcome.status.value,
                        "end_at": _iso(survey.end_at),
                        "end_at_derived": outcome.end_at_derived,
                        "early_activation": outcome.early_activation,
                    },
                )
                survey_status_transitions_total.labels(
                    from_status=outcome.previous_status.value,
                    to_status=outcome.status.value,
                ).inc()
            return outcome.message

        return await self._mutate("change_status", sid, actor, apply)

    async def toggle_review_permission(
        self, survey_id: uuid.UUID | str, allow_review: bool, actor: Actor
    ) -> StatusChangeResult:
        try:
            sid = parse_survey_id(survey_id)
        except SurveyStatusError as exc:
            return self._rejected(exc, survey_id, actor)

        async def apply(survey: Survey, now: datetime) -> str:
            before = survey.allow_review
            outcome = set_review_permission(survey, allow_review, now)
            if outcome.synchronized:
                await self._record_synchronization(survey, outcome.previous_status.value, actor)
            await self.store.add_audit(
                survey.id,
                ACTION_REVIEW_PERMISSION_CHANGED,
                user_id=actor.id,
                details={"from": bool(before), "to": bool(allow_review)},
            )
            return outcome.message

        return await self._mutate("toggle_review", sid, actor, apply)

    async def create_survey(self, data: SurveyCreate, actor: Actor) -> Survey:
        if actor.role not in SURVEY_MANAGER_ROLES:
            raise Forbidden("You are not allowed to create surveys.")
        survey = Survey(
            title=data.title,
            description=data.description,
            created_by=actor.id,
            status=SurveyStatus.PENDING.value,
            start_at=data.start_at,
            end_at=data.end_at,
            time_limit=data.time_limit,
            allow_review=data.allow_review,
        )
        try:
            await self.store.add(survey)
            await self.store.commit()
            await self.store.refresh(survey)
        except SQLAlchemyError as exc:
            raise await self._persistence_failed("create", None) from exc
        logger.info(
            "Survey %s created by %s",
            survey.id,
            actor.id,
            extra=survey_context(survey.id, actor.id, status=survey.status),
        )
        return survey

    # ── Reads (synchronizing) ────────────────────────────────────────────

    async def list_surveys(self, actor: Actor, status: str | None = None) -> list[Survey]:
        """Visible surveys, newest first, with expired ones written through as closed.

        Admins see every survey; everyone else only the surveys they created.
        ``status`` filters on the synchronized status.
        """
        wanted = parse_status(status) if status else None
        now = self.clock.now()
        try:
            surveys = await self.store.list_surveys(owner_id=None if actor.is_admin else actor.id)
            changed: list[Survey] = []
            gone: set[uuid.UUID] = set()
            locked_any = False
            for survey in surveys:
                if compute_effective_status(survey, now).value == survey.status:
                    continue
                # Re-read under the row lock; a concurrent transition may already have moved it.
                locked = await self.store.get_for_update(survey.id)
                locked_any = True
                if locked is None:
                    gone.add(survey.id)
                    continue
                previous = locked.status
                _, synced = synchronize(locked, now)
                if synced:
                    changed.append(locked)
                    await self._record_synchronization(locked, previous, actor)
            if locked_any:
                # Releases the row locks without expiring the listed surveys.
                await self.store.commit()
            for survey in changed:
                await self.store.refresh(survey)
        except SQLAlchemyError as exc:
            raise await self._persistence_failed("list", None) from exc
        surveys = [s for s in surveys if s.id not in gone]
        if wanted is not None:
            surveys = [s for s in surveys if s.status == wanted.value]
        return surveys

    async def get_survey(self, survey_id: uuid.UUID | str, actor: Actor) -> Survey:
        sid = parse_survey_id(survey_id)
        now = self.clock.now()
        try:
            survey = await self.store.get(sid)
            if survey is None:
                raise SurveyNotFound("Survey not found.")
            if not can_view_survey(actor, survey.created_by):
                raise Forbidden("You are not allowed to view this survey.")
            if compute_effective_status(survey, now).value != survey.status:
                # Only an expired survey takes the lock; it is re-read under it.
                locked = await self.store.get_for_update(sid)
                if locked is None:
                    raise SurveyNotFound("Survey not found.")
                survey = locked
                previous = survey.status
                _, synced = synchronize(survey, now)
                if synced:
                    await self._record_synchronization(survey, previous, actor)
                await self.store.commit()
                if synced:
                    await self.store.refresh(survey)
        except SQLAlchemyError as exc:
            raise await self._persistence_failed("get", sid) from exc
        return survey

    async def get_audit_logs(
        self, survey_id: uuid.UUID | str, actor: Actor
    ) -> list[SurveyAuditLog]:
        sid = parse_survey_id(survey_id)
        try:
            survey = await self.store.get(sid)
            if survey is None:
                raise SurveyNotFound("Survey not found.")
            if not can_view_survey(actor, survey.created_by):
                raise Forbidden("You are not allowed to view this survey.")
            return await self.store.list_audit_logs(sid)
        except SQLAlchemyError as exc:
            raise await self._persistence_failed("audit_logs", sid) from exc

    def effective_status(self, survey: Survey, now: datetime | None = None) -> SurveyStatus:
        """Read-only status view for callers that must not write (e.g. serializers)."""
        return compute_effective_status(survey, now or self.clock.now())

    # ── Internals ────────────────────────────────────────────────────────

    async def _mutate(
        self,
        operation: str,
        survey_id: uuid.UUID,
        actor: Actor,
        apply: Callable[[Survey, datetime], Awaitable[str]],
    ) -> StatusChangeResult:
        now = self.clock.now()
        try:
            try:
                survey = await self._load_managed(survey_id, actor)
                stored_status = survey.status
                try:
                    message = await apply(survey, now)
                except SurveyStatusError:
                    await self._keep_synchronized(survey, stored_status, actor)
                    raise
            except SurveyStatusError as exc:
                await self.store.rollback()
                return self._rejected(exc, survey_id, actor)
            await self.store.commit()
            # Server-side columns (updated_at, version) are expired by the UPDATE.
            await self.store.refresh(survey)
        except SQLAlchemyError as exc:
            raise await self._persistence_failed(operation, survey_id) from exc

        logger.info(
            "Survey %s %s by %s: %s",
            survey.id,
            operation,
            actor.id,
            message,
            extra=survey_context(survey.id, actor.id, status=survey.status),
        )
        return StatusChangeResult(survey=survey, message=message)

    async def _load_managed(self, survey_id: uuid.UUID, actor: Actor) -> Survey:
        if actor.role not in SURVEY_MANAGER_ROLES:
            raise Forbidden("You are not allowed to change survey settings.")
        survey = await self.store.get_for_update(survey_id)
        if survey is None:
            raise SurveyNotFound("Survey not found.")
        if not can_manage_survey(actor, survey.created_by):
            raise Forbidden("You can only manage surveys you created.")
        return survey

    async def _keep_synchronized(self, survey: Survey, stored_status: str, actor: Actor) -> None:
        """Commit a write-through closure even though the request itself was rejected."""
        if survey.status == stored_status:
            return
        await self._record_synchronization(survey, stored_status, actor)
        await self.store.commit()

    async def _record_synchronization(self, survey: Survey, previous: str, actor: Actor) -> None:
        survey_auto_closed_total.inc()
        await self.store.add_audit(
            survey.id,
            ACTION_STATUS_SYNCHRONIZED,
            user_id=actor.id,
            details={"from": previous, "to": survey.status, "end_at": _iso(survey.end_at)},
        )

    def _rejected(
        self, exc: SurveyStatusError, survey_id: uuid.UUID | str, actor: Actor
    ) -> StatusChangeResult:
        survey_status_rejections_total.labels(kind=exc.kind.value).inc()
        logger.info(
            "Survey %s request rejected (%s): %s",
            survey_id,
            exc.kind.value,
            exc.message,
            extra=survey_context(survey_id, actor.id, error_kind=exc.kind),
        )
        return StatusChangeResult(survey=None, message=exc.message, error=exc.kind)

    async def _persistence_failed(
        self, operation: str, survey_id: uuid.UUID | None
    ) -> PersistenceFailure:
        """Roll back and build the retryable error. Call from inside the except block."""
        await self.store.rollback()
        survey_persistence_failures_total.labels(operation=operation).inc()
        logger.exception(
            "Survey %s %s failed in the store",
            survey_id,
            operation,
            extra=survey_context(survey_id),
        )
        return PersistenceFailure("The survey could not be saved, please retry.")
