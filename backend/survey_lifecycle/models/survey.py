from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from survey_lifecycle.models.base import Base, TimestampMixin, UUIDMixin

SURVEY_STATUSES = ("pending", "active", "paused", "closed")


class Survey(Base, UUIDMixin, TimestampMixin):
    """A survey and the fields its lifecycle depends on."""

    __tablename__ = "surveys"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'active', 'paused', 'closed')",
            name="ck_surveys_status",
        ),
        Index("ix_surveys_created_by", "created_by"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    time_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    allow_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Bumped on every UPDATE; a stale writer fails its flush with StaleDataError.
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Survey(id={self.id}, status={self.status}, end_at={self.end_at})>"


class SurveyAuditLog(Base, UUIDMixin):
    """Append-only trail of lifecycle actions on a survey."""

    __tablename__ = "survey_audit_logs"

    survey_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("surveys.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    # status_changed, status_synchronized, review_permission_changed
    details: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
