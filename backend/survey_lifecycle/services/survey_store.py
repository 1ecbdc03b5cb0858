"""Persistence for surveys and their audit trail."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from survey_lifecycle.models.survey import Survey, SurveyAuditLog


class SurveyStore:
    """Loads and saves surveys inside the caller's session transaction.

    ``get_for_update`` takes a row lock so concurrent transitions of the same
    survey run one after another; surveys with different ids never contend.
    The ``version`` column adds an optimistic check on every UPDATE.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, survey_id: uuid.UUID) -> Survey | None:
        result = await self.db.execute(
            select(Survey).where(Survey.id == survey_id, Survey.deleted_at.is_(None))
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, survey_id: uuid.UUID) -> Survey | None:
        result = await self.db.execute(
            select(Survey)
            .where(Survey.id == survey_id, Survey.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_surveys(self, owner_id: uuid.UUID | None = None) -> list[Survey]:
        q = select(Survey).where(Survey.deleted_at.is_(None))
        if owner_id is not None:
            q = q.where(Survey.created_by == owner_id)
        q = q.order_by(Survey.created_at.desc())
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def add(self, survey: Survey) -> Survey:
        self.db.add(survey)
        await self.db.flush()
        return survey

    async def add_audit(
        self,
        survey_id: uuid.UUID,
        action: str,
        user_id: uuid.UUID | None = None,
        details: dict | None = None,
    ) -> SurveyAuditLog:
        entry = SurveyAuditLog(
            survey_id=survey_id,
            user_id=user_id,
            action=action,
            details=details or {},
        )
        self.db.add(entry)
        return entry

    async def list_audit_logs(self, survey_id: uuid.UUID, limit: int = 100) -> list[SurveyAuditLog]:
        result = await self.db.execute(
            select(SurveyAuditLog)
            .where(SurveyAuditLog.survey_id == survey_id)
            .order_by(SurveyAuditLog.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def refresh(self, survey: Survey) -> None:
        await self.db.refresh(survey)
