"""
Assessment lifecycle.

The only code path that creates assessments, opens steps, accepts step
submissions and applies progression decisions.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.config import Settings, get_settings
from src.domain import User
from src.domain.errors import (
    AssessmentAlreadyActiveError,
    AssessmentNotFoundError,
    InvalidStepError,
    StaleQuestionSetError,
    StepAlreadySubmittedError,
    StepLeaseExpiredError,
    StepNotCurrentError,
    StepNotOpenedError,
    UserBlockedError,
)
from src.domain.progression import ProgressionDecision, ProgressionEngine
from src.domain.scoring import SubmittedAnswer, score_step
from src.domain.services.certificates import CertificateIssuanceTrigger, certificate_payload
from src.domain.services.selection import QuestionSelector
from src.infrastructure.db.models import Assessment, AsyncJob, Question, StepRecord
from src.infrastructure.repositories.unit_of_work import UnitOfWork

logger = structlog.get_logger()


@dataclass(slots=True)
class StepQuestionPayload:
    id: str
    competency: str
    level: str
    text: str
    options: dict[str, str]


@dataclass(slots=True)
class StepSubmissionResult:
    assessment_id: str
    step: int
    score: int
    total_questions: int
    percentage: float
    final_level: str | None
    proceed_to_next: bool
    is_completed: bool
    is_blocked: bool
    next_step: int | None
    certificate_pending: bool = False
    certificate_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _isoformat(value: datetime | None) -> str | None:
    value = _as_aware(value)
    return value.isoformat() if value else None


class AssessmentService:
    """Domain logic for assessment lifecycle operations."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: Settings | None = None,
        selector: QuestionSelector | None = None,
        engine: ProgressionEngine | None = None,
        certificate_trigger: CertificateIssuanceTrigger | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.uow = UnitOfWork(session)
        self.selector = selector or QuestionSelector(
            session, questions_per_step=self.settings.questions_per_step
        )
        self.engine = engine or ProgressionEngine(
            thresholds=self.settings.thresholds,
            step_count=self.settings.step_count,
        )
        self.certificate_trigger = certificate_trigger

    async def start_assessment(self, *, user: User) -> dict[str, Any]:
        async with self.uow:
            if await self.uow.assessments.has_blocked(user.user_id):
                raise UserBlockedError("User is permanently blocked from taking the assessment")

            active = await self.uow.assessments.find_active(user.user_id)
            if active is not None:
                raise AssessmentAlreadyActiveError(
                    f"Assessment {active.id} is already in progress"
                )

            assessment = Assessment(user_id=user.user_id, current_step=1)
            assessment.steps = [
                StepRecord(step=step, question_ids=[], served_question_ids=[], answers=[])
                for step in range(1, self.settings.step_count + 1)
            ]
            self.session.add(assessment)
            await self.session.flush()

        await logger.ainfo("assessment_started", assessment_id=assessment.id, user_id=user.user_id)
        return self.serialize_assessment(assessment)

    async def get_step_questions(self, *, user: User, step: int) -> dict[str, Any]:
        self._validate_step_number(step)
        async with self.uow:
            assessment = await self._require_active(user, for_update=True)
            record = self._require_current_record(assessment, step)
            if record.completed_at is not None:
                raise StepAlreadySubmittedError(f"Step {step} has already been submitted")

            now = datetime.now(UTC)
            lease_expires_at = _as_aware(record.lease_expires_at)
            if record.is_opened and lease_expires_at is not None and now <= lease_expires_at:
                questions = await self._load_assigned(record)
                reissued = False
            else:
                reissued = record.is_opened
                questions = await self.selector.select_questions(
                    step, exclude_question_ids=list(record.served_question_ids or [])
                )
                question_ids = [question.id for question in questions]
                record.question_ids = question_ids
                record.served_question_ids = [*(record.served_question_ids or []), *question_ids]
                record.started_at = now
                record.lease_expires_at = now + timedelta(
                    seconds=self.settings.step_duration_seconds + self.settings.step_grace_seconds
                )

        await logger.ainfo(
            "step_questions_issued",
            assessment_id=assessment.id,
            step=step,
            count=len(questions),
            reissued=reissued,
        )
        return {
            "assessment_id": assessment.id,
            "step": step,
            "questions": [asdict(self._question_payload(question)) for question in questions],
            "started_at": _isoformat(record.started_at),
            "expires_at": _isoformat(record.lease_expires_at),
            "time_per_question": self.settings.time_per_question_seconds,
        }

    async def submit_step(
        self,
        *,
        user: User,
        step: int,
        answers: Sequence[SubmittedAnswer],
        idempotency_key: str | None = None,
    ) -> StepSubmissionResult:
        """Score a step and apply its progression decision atomically."""
        self._validate_step_number(step)

        if idempotency_key:
            replay = await self._replay_submission(user, idempotency_key)
            if replay is not None:
                return replay

        try:
            return await self._submit_step(
                user=user, step=step, answers=answers, idempotency_key=idempotency_key
            )
        except StepAlreadySubmittedError:
            # A concurrent retry carrying the same key may have won the race
            if idempotency_key:
                replay = await self._replay_submission(user, idempotency_key)
                if replay is not None:
                    return replay
            raise

    async def _submit_step(
        self,
        *,
        user: User,
        step: int,
        answers: Sequence[SubmittedAnswer],
        idempotency_key: str | None,
    ) -> StepSubmissionResult:
        job: AsyncJob | None = None
        async with self.uow:
            assessment = await self.uow.assessments.find_latest(user.user_id, for_update=True)
            if assessment is None:
                raise AssessmentNotFoundError("No assessment for this user")

            record = assessment.step_record(step)
            if record is not None and record.completed_at is not None:
                raise StepAlreadySubmittedError(f"Step {step} has already been submitted")
            if not assessment.is_active:
                raise StepNotCurrentError(f"Assessment {assessment.id} is already finished")
            record = self._require_current_record(assessment, step)

            if not record.is_opened:
                raise StepNotOpenedError(f"Questions for step {step} were never requested")

            now = datetime.now(UTC)
            lease_expires_at = _as_aware(record.lease_expires_at)
            if lease_expires_at is not None and now > lease_expires_at:
                raise StepLeaseExpiredError(
                    f"Step {step} expired at {lease_expires_at.isoformat()}; "
                    "request questions again"
                )

            assigned = list(record.question_ids or [])
            unknown = sorted({a.question_id for a in answers} - set(assigned))
            if unknown:
                raise StaleQuestionSetError(
                    f"Answers reference {len(unknown)} question(s) not assigned to step {step}",
                    unknown_ids=unknown,
                )

            if not await self.uow.assessments.close_step(record.id, now):
                raise StepAlreadySubmittedError(f"Step {step} has already been submitted")

            answer_key = {
                question_id: question.correct_option
                for question_id, question in (await self.uow.questions.by_ids(assigned)).items()
            }
            # Keep the assigned order so total_questions never shrinks
            ordered_key = {qid: answer_key.get(qid, "") for qid in assigned}
            result = score_step(answers, ordered_key)

            record.completed_at = now
            record.answers = [answer.to_dict() for answer in answers]
            record.score_ = result.score
            record.total_questions = result.total_questions
            record.percentage_ = result.percentage
            record.idempotency_key = idempotency_key

            decision = self.engine.evaluate(record, prior_level=assessment.confirmed_level)
            self._apply_decision(assessment, decision, now)
            assessment.total_time_spent = (assessment.total_time_spent or 0.0) + sum(
                max(answer.time_spent, 0.0) for answer in answers
            )

            if decision.awards_level and self.certificate_trigger is not None:
                job = self.certificate_trigger.enqueue(assessment, decision.final_level)

        await logger.ainfo(
            "step_submitted",
            assessment_id=assessment.id,
            user_id=user.user_id,
            step=step,
            score=result.score,
            total_questions=result.total_questions,
            percentage=result.percentage,
            outcome=decision.outcome.value,
            final_level=decision.final_level.value if decision.final_level else None,
        )

        submission = self._submission_result(assessment, record, decision)
        if job is not None and self.certificate_trigger is not None:
            try:
                outcome = await self.certificate_trigger.process_job(job.id)
            except Exception:  # noqa: BLE001 - the scoring commit stands; the sweep retries the job
                await logger.aexception(
                    "certificate_trigger_failed", assessment_id=assessment.id, job_id=job.id
                )
                return submission
            submission.certificate_id = outcome.certificate_id
            submission.certificate_pending = outcome.certificate_id is None
        return submission

    async def get_status(self, *, user: User) -> dict[str, Any]:
        assessment = await self.uow.assessments.find_latest(user.user_id)
        certificate = await self.uow.certificates.highest_for_user(user.user_id)
        return {
            "has_assessment": assessment is not None,
            "assessment": self.serialize_assessment(assessment) if assessment else None,
            "certificate": certificate_payload(certificate) if certificate else None,
        }

    async def get_history(self, *, user: User, page: int = 1, limit: int = 10) -> dict[str, Any]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        assessments, total = await self.uow.assessments.list_for_user(
            user.user_id, offset=(page - 1) * limit, limit=limit
        )
        return {
            "assessments": [self.serialize_assessment(a) for a in assessments],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    def serialize_assessment(self, assessment: Assessment) -> dict[str, Any]:
        return {
            "id": assessment.id,
            "user_id": assessment.user_id,
            "state": assessment.state.value,
            "current_step": assessment.current_step,
            "final_level": assessment.final_level.value if assessment.final_level else None,
            "is_completed": assessment.is_completed,
            "is_blocked": assessment.is_blocked,
            "total_time_spent": assessment.total_time_spent or 0.0,
            "certificate_id": assessment.certificate_id,
            "created_at": _isoformat(assessment.created_at),
            "completed_at": _isoformat(assessment.completed_at),
            "steps": [self._serialize_step(record) for record in assessment.steps],
        }

    @staticmethod
    def _serialize_step(record: StepRecord) -> dict[str, Any]:
        completed = record.completed_at is not None
        return {
            "step": record.step,
            "question_count": len(record.question_ids or []),
            "score": record.score if completed else None,
            "total_questions": record.total_questions if completed else None,
            "percentage": record.percentage if completed else None,
            "started_at": _isoformat(record.started_at),
            "completed_at": _isoformat(record.completed_at),
        }

    def _apply_decision(
        self, assessment: Assessment, decision: ProgressionDecision, now: datetime
    ) -> None:
        if decision.proceed_to_next:
            assessment.current_step = decision.step + 1
            assessment.confirmed_level = decision.confirmed_level
            return

        assessment.is_completed = True
        assessment.is_blocked = decision.is_blocked
        assessment.final_level = decision.final_level
        assessment.completed_at = now

    def _submission_result(
        self, assessment: Assessment, record: StepRecord, decision: ProgressionDecision
    ) -> StepSubmissionResult:
        return StepSubmissionResult(
            assessment_id=assessment.id,
            step=record.step,
            score=record.score,
            total_questions=record.total_questions or 0,
            percentage=record.percentage,
            final_level=decision.final_level.value if decision.final_level else None,
            proceed_to_next=decision.proceed_to_next,
            is_completed=decision.is_completed,
            is_blocked=decision.is_blocked,
            next_step=decision.step + 1 if decision.proceed_to_next else None,
            certificate_pending=decision.awards_level and assessment.certificate_id is None,
            certificate_id=assessment.certificate_id,
        )

    async def _replay_submission(
        self, user: User, idempotency_key: str
    ) -> StepSubmissionResult | None:
        record = await self.uow.assessments.find_by_idempotency_key(user.user_id, idempotency_key)
        if record is None:
            return None
        assessment = await self.uow.assessments.get(record.assessment_id)
        if assessment is None:
            return None

        decision = self.engine.evaluate(record, prior_level=assessment.confirmed_level)
        await logger.ainfo(
            "step_submission_replayed",
            assessment_id=assessment.id,
            step=record.step,
            idempotency_key=idempotency_key,
        )
        return self._submission_result(assessment, record, decision)

    async def _require_active(self, user: User, *, for_update: bool = False) -> Assessment:
        assessment = await self.uow.assessments.find_active(user.user_id, for_update=for_update)
        if assessment is None:
            if await self.uow.assessments.has_blocked(user.user_id):
                raise UserBlockedError("User is permanently blocked from taking the assessment")
            raise AssessmentNotFoundError("No active assessment for this user")
        return assessment

    @staticmethod
    def _require_current_record(assessment: Assessment, step: int) -> StepRecord:
        if step != assessment.current_step:
            raise StepNotCurrentError(
                f"Step {step} is not the current step ({assessment.current_step})"
            )
        record = assessment.step_record(step)
        if record is None:
            raise InvalidStepError(f"Assessment has no record for step {step}")
        return record

    def _validate_step_number(self, step: int) -> None:
        if not 1 <= step <= self.settings.step_count:
            raise InvalidStepError(f"Step must be between 1 and {self.settings.step_count}")

    async def _load_assigned(self, record: StepRecord) -> list[Question]:
        by_id = await self.uow.questions.by_ids(list(record.question_ids or []))
        return [by_id[qid] for qid in record.question_ids if qid in by_id]

    @staticmethod
    def _question_payload(question: Question) -> StepQuestionPayload:
        return StepQuestionPayload(
            id=question.id,
            competency=question.competency,
            level=question.level.value,
            text=question.text,
            options={key: question.options.get(key, "") for key in ("a", "b", "c", "d")},
        )
