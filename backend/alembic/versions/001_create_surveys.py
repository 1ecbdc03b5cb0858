"""create surveys and survey_audit_logs tables

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    from sqlalchemy import inspect as sa_inspect

    conn = op.get_bind()
    inspector = sa_inspect(conn)

    if not inspector.has_table("surveys"):
        op.create_table(
            "surveys",
            sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_by", sa.UUID(as_uuid=True), nullable=True),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
            sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("time_limit", sa.Integer(), nullable=True),
            sa.Column("allow_review", sa.Boolean(), nullable=False, server_default="false"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint(
                "status IN ('pending', 'active', 'paused', 'closed')",
                name="ck_surveys_status",
            ),
        )
        op.create_index("ix_surveys_created_by", "surveys", ["created_by"])

    if not inspector.has_table("survey_audit_logs"):
        op.create_table(
            "survey_audit_logs",
            sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
            sa.Column(
                "survey_id",
                sa.UUID(as_uuid=True),
                sa.ForeignKey("surveys.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("user_id", sa.UUID(as_uuid=True), nullable=True),
            sa.Column("action", sa.String(50), nullable=False),
            sa.Column("details", postgresql.JSONB(), server_default="{}"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_survey_audit_logs_survey_id", "survey_audit_logs", ["survey_id"])
        op.create_index("ix_survey_audit_logs_created_at", "survey_audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("survey_audit_logs")
    op.drop_table("surveys")
