"""Initial schema for questions, assessments, steps, certificates and jobs

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None

LEVEL_VALUES = ("A1", "A2", "B1", "B2", "C1", "C2")

# The PostgreSQL type is created once up front and shared by every column
pg_competency_level = postgresql.ENUM(*LEVEL_VALUES, name="competency_level", create_type=False)
competency_level_enum = sa.Enum(*LEVEL_VALUES, name="competency_level").with_variant(
    pg_competency_level, "postgresql"
)


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=None if nullable else sa.func.now(),
        nullable=nullable,
    )


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        pg_competency_level.create(bind, checkfirst=True)

    op.create_table(
        "questions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("competency", sa.String(length=128), nullable=False),
        sa.Column("level", competency_level_enum, nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("options", sa.JSON(), nullable=False),
        sa.Column("correct_option", sa.String(length=1), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("previous_version_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_questions_competency", "questions", ["competency"])
    op.create_index("ix_questions_level", "questions", ["level"])
    op.create_index("ix_questions_is_active", "questions", ["is_active"])

    op.create_table(
        "assessments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("confirmed_level", competency_level_enum, nullable=True),
        sa.Column("final_level", competency_level_enum, nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("total_time_spent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("certificate_id", sa.String(length=36), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("completed_at", nullable=True),
    )
    op.create_index("ix_assessments_user_id", "assessments", ["user_id"])
    op.create_index("ix_assessments_is_completed", "assessments", ["is_completed"])
    op.create_index("ix_assessments_is_blocked", "assessments", ["is_blocked"])

    op.create_table(
        "assessment_steps",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "assessment_id",
            sa.String(length=36),
            sa.ForeignKey("assessments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("step", sa.Integer(), nullable=False),
        sa.Column("question_ids", sa.JSON(), nullable=False),
        sa.Column("served_question_ids", sa.JSON(), nullable=False),
        sa.Column("answers", sa.JSON(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("total_questions", sa.Integer(), nullable=True),
        sa.Column("percentage", sa.Float(), nullable=True),
        sa.Column("decision", sa.JSON(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        _timestamp("started_at", nullable=True),
        _timestamp("lease_expires_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.UniqueConstraint("assessment_id", "step", name="uq_assessment_step"),
        sa.UniqueConstraint(
            "assessment_id", "idempotency_key", name="uq_assessment_step_idempotency"
        ),
    )
    op.create_index("ix_assessment_steps_assessment_id", "assessment_steps", ["assessment_id"])
    op.create_index(
        "ix_assessment_steps_idempotency_key",
        "assessment_steps",
        ["idempotency_key"],
    )

    op.create_table(
        "certificates",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "assessment_id",
            sa.String(length=36),
            sa.ForeignKey("assessments.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("level", competency_level_enum, nullable=False),
        sa.Column("certificate_number", sa.String(length=64), nullable=False, unique=True),
        sa.Column("verification_code", sa.String(length=64), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        _timestamp("issued_at"),
        sa.UniqueConstraint("user_id", "level", name="uq_certificate_user_level"),
    )
    op.create_index("ix_certificates_user_id", "certificates", ["user_id"])
    op.create_index("ix_certificates_assessment_id", "certificates", ["assessment_id"])

    op.create_table(
        "async_jobs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "assessment_id",
            sa.String(length=36),
            sa.ForeignKey("assessments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("job_type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("error_payload", sa.JSON(), nullable=True),
        _timestamp("queued_at"),
        _timestamp("started_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        _timestamp("next_run_at", nullable=True),
    )
    op.create_index("ix_async_jobs_assessment_id", "async_jobs", ["assessment_id"])
    op.create_index("ix_async_jobs_status", "async_jobs", ["status"])


def downgrade() -> None:
    op.drop_table("async_jobs")
    op.drop_table("certificates")
    op.drop_table("assessment_steps")
    op.drop_table("assessments")
    op.drop_table("questions")
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        pg_competency_level.drop(bind, checkfirst=True)
