from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from src.domain.levels import CompetencyLevel
from src.infrastructure.db.models import (
    Assessment,
    AsyncJob,
    Certificate,
    JobStatus,
    JobType,
    Question,
    StepRecord,
)

logger = structlog.get_logger()


@dataclass
class AssessmentRepository:
    """Queries over the assessment aggregate and its step records."""

    session: AsyncSession

    async def has_blocked(self, user_id: str) -> bool:
        stmt = (
            select(Assessment.id)
            .where(Assessment.user_id == user_id, Assessment.is_blocked.is_(True))
            .limit(1)
        )
        return await self.session.scalar(stmt) is not None

    async def find_active(self, user_id: str, *, for_update: bool = False) -> Assessment | None:
        stmt = (
            select(Assessment)
            .where(
                Assessment.user_id == user_id,
                Assessment.is_completed.is_(False),
                Assessment.is_blocked.is_(False),
            )
            .options(selectinload(Assessment.steps))
            .order_by(Assessment.created_at.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Assessment)
        return await self.session.scalar(stmt)

    async def find_latest(self, user_id: str, *, for_update: bool = False) -> Assessment | None:
        stmt = (
            select(Assessment)
            .where(Assessment.user_id == user_id)
            .options(selectinload(Assessment.steps))
            .order_by(Assessment.created_at.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Assessment)
        return await self.session.scalar(stmt)

    async def get(self, assessment_id: str) -> Assessment | None:
        stmt = (
            select(Assessment)
            .where(Assessment.id == assessment_id)
            .options(selectinload(Assessment.steps))
        )
        return await self.session.scalar(stmt)

    async def find_by_idempotency_key(self, user_id: str, key: str) -> StepRecord | None:
        """Keys are scoped per user; the newest submission wins if a key was reused."""
        stmt = (
            select(StepRecord)
            .join(Assessment, StepRecord.assessment_id == Assessment.id)
            .where(Assessment.user_id == user_id, StepRecord.idempotency_key == key)
            .order_by(StepRecord.completed_at.desc())
            .limit(1)
        )
        return await self.session.scalar(stmt)

    async def list_for_user(
        self, user_id: str, *, offset: int, limit: int
    ) -> tuple[list[Assessment], int]:
        total = await self.session.scalar(
            select(func.count()).select_from(Assessment).where(Assessment.user_id == user_id)
        )
        stmt = (
            select(Assessment)
            .where(Assessment.user_id == user_id)
            .options(selectinload(Assessment.steps))
            .order_by(Assessment.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = list((await self.session.execute(stmt)).scalars().all())
        return rows, int(total or 0)

    async def close_step(self, record_id: str, completed_at: datetime) -> bool:
        """Stamp ``completed_at`` only if nobody else did; False when we lost the race."""
        result = await self.session.execute(
            update(StepRecord)
            .where(StepRecord.id == record_id, StepRecord.completed_at.is_(None))
            .values(completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


@dataclass
class QuestionRepository:
    session: AsyncSession

    async def active_for_level(
        self, level: CompetencyLevel, exclude_ids: Sequence[str] = ()
    ) -> list[Question]:
        stmt = select(Question).where(Question.level == level, Question.is_active.is_(True))
        if exclude_ids:
            stmt = stmt.where(Question.id.not_in(list(exclude_ids)))
        return list((await self.session.execute(stmt.order_by(Question.id))).scalars().all())

    async def by_ids(self, question_ids: Sequence[str]) -> dict[str, Question]:
        if not question_ids:
            return {}
        stmt = select(Question).where(Question.id.in_(list(question_ids)))
        return {q.id: q for q in (await self.session.execute(stmt)).scalars().all()}


@dataclass
class CertificateRepository:
    session: AsyncSession

    async def for_user(self, user_id: str) -> list[Certificate]:
        stmt = (
            select(Certificate)
            .where(Certificate.user_id == user_id)
            .order_by(Certificate.issued_at.desc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def highest_for_user(self, user_id: str) -> Certificate | None:
        certificates = await self.for_user(user_id)
        if not certificates:
            return None
        return max(certificates, key=lambda certificate: certificate.level.rank)

    async def get(self, certificate_id: str) -> Certificate | None:
        return await self.session.get(Certificate, certificate_id)

    async def by_number(self, certificate_number: str) -> Certificate | None:
        stmt = select(Certificate).where(Certificate.certificate_number == certificate_number)
        return await self.session.scalar(stmt)


@dataclass
class JobRepository:
    session: AsyncSession

    async def get(self, job_id: str) -> AsyncJob | None:
        return await self.session.get(AsyncJob, job_id)

    async def pending_certificate_job(self, assessment_id: str) -> AsyncJob | None:
        stmt = (
            select(AsyncJob)
            .where(
                AsyncJob.assessment_id == assessment_id,
                AsyncJob.job_type == JobType.CERTIFICATE.value,
                AsyncJob.status.in_(JobStatus.pending_statuses()),
            )
            .order_by(AsyncJob.queued_at.desc())
            .limit(1)
        )
        return await self.session.scalar(stmt)

    async def due_certificate_jobs(
        self, now: datetime, stale_before: datetime, limit: int = 50
    ) -> list[AsyncJob]:
        """Queued jobs whose retry time has passed, plus in-progress jobs nobody finished."""
        due = (AsyncJob.status == JobStatus.QUEUED.value) & (
            AsyncJob.next_run_at.is_(None) | (AsyncJob.next_run_at <= now)
        )
        stale = (AsyncJob.status == JobStatus.IN_PROGRESS.value) & (
            AsyncJob.started_at <= stale_before
        )
        stmt = (
            select(AsyncJob)
            .where(AsyncJob.job_type == JobType.CERTIFICATE.value, due | stale)
            .order_by(AsyncJob.queued_at)
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())


class UnitOfWork:
    """Groups repository work on one session into a single transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.assessments = AssessmentRepository(session)
        self.questions = QuestionRepository(session)
        self.certificates = CertificateRepository(session)
        self.jobs = JobRepository(session)

    async def __aenter__(self) -> UnitOfWork:
        logger.debug("uow_enter")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            await self.commit()
        logger.debug("uow_exit", exc_type=str(exc_type) if exc_type else None)

    async def commit(self) -> None:
        await self.session.commit()
        logger.debug("uow_commit")

    async def rollback(self) -> None:
        await self.session.rollback()
        logger.debug("uow_rollback")
