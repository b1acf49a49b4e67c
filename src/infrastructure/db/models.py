from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from src.domain.errors import StepNotCompletedError
from src.domain.levels import CompetencyLevel

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _level_enum() -> Enum:
    return Enum(
        CompetencyLevel,
        name="competency_level",
        values_callable=lambda e: [x.value for x in e],
    )


class AssessmentState(str, enum.Enum):
    """Derived lifecycle state of an assessment aggregate."""

    STEP_IN_PROGRESS = "step_in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class JobType(str, enum.Enum):
    CERTIFICATE = "certificate"


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def pending_statuses(cls) -> tuple[str, ...]:
        return (cls.QUEUED.value, cls.IN_PROGRESS.value)


class Question(Base):
    """A multiple-choice question; rows are versioned, never edited once served."""

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    competency: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    level: Mapped[CompetencyLevel] = mapped_column(_level_enum(), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False)
    correct_option: Mapped[str] = mapped_column(String(1), nullable=False)

    # Versioning and soft delete
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    previous_version_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Question(id={self.id}, level={self.level.value}, v{self.version})>"


class Assessment(Base):
    __tablename__ = "assessments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Hi level of the last step passed with the advance threshold
    confirmed_level: Mapped[CompetencyLevel | None] = mapped_column(_level_enum(), nullable=True)
    final_level: Mapped[CompetencyLevel | None] = mapped_column(_level_enum(), nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    total_time_spent: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    certificate_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    steps: Mapped[list[StepRecord]] = relationship(
        back_populates="assessment",
        cascade="all,delete-orphan",
        order_by="StepRecord.step",
    )
    jobs: Mapped[list[AsyncJob]] = relationship(
        back_populates="assessment", cascade="all,delete-orphan"
    )

    @property
    def state(self) -> AssessmentState:
        if self.is_blocked:
            return AssessmentState.BLOCKED
        if self.is_completed:
            return AssessmentState.COMPLETED
        return AssessmentState.STEP_IN_PROGRESS

    @property
    def is_active(self) -> bool:
        return not (self.is_completed or self.is_blocked)

    def step_record(self, step: int) -> StepRecord | None:
        return next((record for record in self.steps if record.step == step), None)


class StepRecord(Base):
    """Per-step questions, answers and result. Frozen once ``completed_at`` is set."""

    __tablename__ = "assessment_steps"
    __table_args__ = (
        UniqueConstraint("assessment_id", "step", name="uq_assessment_step"),
        UniqueConstraint("assessment_id", "idempotency_key", name="uq_assessment_step_idempotency"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    assessment_id: Mapped[str] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    question_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    served_question_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    answers: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    score_: Mapped[int | None] = mapped_column("score", Integer, nullable=True)
    total_questions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    percentage_: Mapped[float | None] = mapped_column("percentage", Float, nullable=True)
    decision: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    assessment: Mapped[Assessment] = relationship(back_populates="steps")

    @property
    def is_opened(self) -> bool:
        return self.started_at is not None

    @property
    def score(self) -> int:
        self._require_completed()
        return self.score_ or 0

    @property
    def percentage(self) -> float:
        self._require_completed()
        return self.percentage_ or 0.0

    def _require_completed(self) -> None:
        if self.completed_at is None:
            raise StepNotCompletedError(f"Step {self.step} result read before completion")


class Certificate(Base):
    """Reference to a certificate issued by the external certificate service."""

    __tablename__ = "certificates"
    __table_args__ = (UniqueConstraint("user_id", "level", name="uq_certificate_user_level"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    assessment_id: Mapped[str] = mapped_column(
        ForeignKey("assessments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    level: Mapped[CompetencyLevel] = mapped_column(_level_enum(), nullable=False)
    certificate_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    verification_code: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    assessment: Mapped[Assessment] = relationship()


class AsyncJob(Base):
    """Tracks out-of-band work (certificate issuance) with retry bookkeeping."""

    __tablename__ = "async_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    assessment_id: Mapped[str] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.QUEUED.value, nullable=False, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    queued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    assessment: Mapped[Assessment] = relationship(back_populates="jobs")


__all__ = [
    "AssessmentState",
    "JobType",
    "JobStatus",
    "Question",
    "Assessment",
    "StepRecord",
    "Certificate",
    "AsyncJob",
]
