"""
Certificate issuance trigger and certificate lookups.

Issuance is an outbox: the scoring transaction inserts a ``certificate``
AsyncJob, and this module turns the job into a certificate by calling the
external certificate service. Failures are recorded on the job and retried
out of band; they never undo a scoring decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.config import Settings, get_settings
from src.domain import User
from src.domain.levels import CompetencyLevel
from src.infrastructure.db.models import (
    Assessment,
    AsyncJob,
    Certificate,
    JobStatus,
    JobType,
)
from src.infrastructure.repositories.unit_of_work import UnitOfWork
from src.libs.certificate_client import CertificateClientProtocol, CertificateServiceError
from src.workers.queue import RetrySchedulerProtocol

logger = structlog.get_logger()


class CertificateNotFoundError(Exception):
    """Raised when a certificate does not exist."""


class CertificateNotOwnedError(Exception):
    """Raised when a user requests a certificate that is not theirs."""


class NoAwardedLevelError(Exception):
    """Raised when regenerating a certificate for an assessment without an award."""


def certificate_payload(certificate: Certificate) -> dict[str, Any]:
    return {
        "id": certificate.id,
        "user_id": certificate.user_id,
        "assessment_id": certificate.assessment_id,
        "level": certificate.level.value,
        "certificate_number": certificate.certificate_number,
        "verification_code": certificate.verification_code,
        "issued_at": certificate.issued_at.isoformat() if certificate.issued_at else None,
    }


@dataclass(slots=True)
class IssuanceOutcome:
    job_id: str
    status: str
    certificate_id: str | None = None
    detail: str | None = None


class CertificateIssuanceTrigger:
    """Creates and runs certificate issuance jobs."""

    def __init__(
        self,
        session: AsyncSession,
        client: CertificateClientProtocol,
        scheduler: RetrySchedulerProtocol | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.client = client
        self.scheduler = scheduler
        self.settings = settings or get_settings()
        self.uow = UnitOfWork(session)

    def enqueue(self, assessment: Assessment, level: CompetencyLevel) -> AsyncJob:
        """Add an issuance job to the caller's transaction (not committed here)."""
        job = AsyncJob(
            assessment_id=assessment.id,
            job_type=JobType.CERTIFICATE.value,
            status=JobStatus.QUEUED.value,
            max_attempts=self.settings.certificate_max_attempts,
            payload={
                "user_id": assessment.user_id,
                "assessment_id": assessment.id,
                "level": level.value,
            },
        )
        self.session.add(job)
        return job

    async def process_job(self, job_id: str) -> IssuanceOutcome:
        """Run one issuance attempt. Never raises for downstream failures."""
        job = await self.uow.jobs.get(job_id)
        if job is None:
            raise CertificateNotFoundError(f"Certificate job {job_id} not found")

        if job.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
            return IssuanceOutcome(job_id=job.id, status=job.status)

        payload = job.payload or {}
        user_id = payload["user_id"]
        level = CompetencyLevel(payload["level"])
        assessment = await self.uow.assessments.get(job.assessment_id)
        if assessment is None:
            raise CertificateNotFoundError(f"Assessment {job.assessment_id} not found")

        held = await self.uow.certificates.highest_for_user(user_id)
        if held is not None and held.level >= level:
            return await self._link_existing(job, assessment, held)

        if job.attempts >= job.max_attempts:
            # Only an abandoned in-progress job can get here
            return await self._record_failure(
                job, CertificateServiceError("Attempts exhausted before the job finished")
            )

        now = datetime.now(UTC)
        job.status = JobStatus.IN_PROGRESS.value
        job.started_at = now
        job.attempts += 1
        await self.session.commit()

        try:
            issued = await self.client.issue_certificate(
                user_id=user_id,
                assessment_id=assessment.id,
                level=level.value,
            )
        except CertificateServiceError as exc:
            return await self._record_failure(job, exc)
        except Exception as exc:  # noqa: BLE001 - any client fault is a retryable failure
            await logger.aexception("certificate_client_unexpected_error", job_id=job.id)
            return await self._record_failure(job, exc)

        certificate = Certificate(
            user_id=user_id,
            assessment_id=assessment.id,
            level=level,
            certificate_number=issued.certificate_number,
            verification_code=issued.verification_code,
            external_id=issued.certificate_id,
        )
        self.session.add(certificate)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            await logger.awarning(
                "certificate_duplicate_detected", job_id=job.id, user_id=user_id, level=level.value
            )
            job = await self.uow.jobs.get(job_id)
            assessment = await self.uow.assessments.get(job.assessment_id)
            held = await self.uow.certificates.highest_for_user(user_id)
            return await self._link_existing(job, assessment, held)

        assessment.certificate_id = certificate.id
        job.status = JobStatus.COMPLETED.value
        job.completed_at = datetime.now(UTC)
        job.error_payload = None
        job.next_run_at = None
        await self.session.commit()

        await logger.ainfo(
            "certificate_issued",
            job_id=job.id,
            assessment_id=assessment.id,
            user_id=user_id,
            level=level.value,
            certificate_number=certificate.certificate_number,
            latency_ms=issued.latency_ms,
        )
        return IssuanceOutcome(job_id=job.id, status=job.status, certificate_id=certificate.id)

    async def process_due_jobs(self, limit: int = 50) -> list[IssuanceOutcome]:
        """Retry every queued certificate job whose ``next_run_at`` has passed."""
        now = datetime.now(UTC)
        stale_before = now - timedelta(seconds=self.settings.certificate_stale_after_seconds)
        jobs = await self.uow.jobs.due_certificate_jobs(now, stale_before, limit=limit)
        job_ids = [job.id for job in jobs]
        stale_ids = [job.id for job in jobs if job.status == JobStatus.IN_PROGRESS.value]
        if stale_ids:
            await logger.awarning("certificate_stale_jobs_recovered", job_ids=stale_ids)
        outcomes = [await self.process_job(job_id) for job_id in job_ids]
        await logger.ainfo("certificate_sweep_finished", processed=len(outcomes))
        return outcomes

    async def regenerate(self, *, user: User, assessment_id: str) -> IssuanceOutcome:
        """Re-queue issuance for a completed assessment that carries an award."""
        assessment = await self.uow.assessments.get(assessment_id)
        if assessment is None:
            raise CertificateNotFoundError(f"Assessment {assessment_id} not found")
        if assessment.user_id != user.user_id:
            raise CertificateNotOwnedError("You do not own this assessment")
        if assessment.final_level is None:
            raise NoAwardedLevelError("Assessment has no awarded level")

        if assessment.certificate_id is not None:
            return IssuanceOutcome(
                job_id="",
                status=JobStatus.COMPLETED.value,
                certificate_id=assessment.certificate_id,
                detail="already_issued",
            )

        job = await self.uow.jobs.pending_certificate_job(assessment.id)
        if job is None:
            job = self.enqueue(assessment, assessment.final_level)
            await self.session.commit()
            await logger.ainfo("certificate_requeued", assessment_id=assessment.id, job_id=job.id)
        return await self.process_job(job.id)

    async def _link_existing(
        self, job: AsyncJob, assessment: Assessment, held: Certificate
    ) -> IssuanceOutcome:
        assessment.certificate_id = held.id
        job.status = JobStatus.COMPLETED.value
        job.completed_at = datetime.now(UTC)
        job.error_payload = {
            "skipped": "higher_or_equal_certificate_held",
            "held_level": held.level.value,
        }
        await self.session.commit()
        await logger.ainfo(
            "certificate_issuance_skipped",
            job_id=job.id,
            assessment_id=assessment.id,
            held_level=held.level.value,
        )
        return IssuanceOutcome(
            job_id=job.id,
            status=job.status,
            certificate_id=held.id,
            detail="existing_certificate",
        )

    async def _record_failure(self, job: AsyncJob, exc: Exception) -> IssuanceOutcome:
        now = datetime.now(UTC)
        job.error_payload = {"error": str(exc), "type": type(exc).__name__, "at": now.isoformat()}
        if job.attempts >= job.max_attempts:
            job.status = JobStatus.FAILED.value
            job.completed_at = now
            job.next_run_at = None
        else:
            delay = self.settings.certificate_retry_base_seconds * 2 ** (job.attempts - 1)
            job.status = JobStatus.QUEUED.value
            job.next_run_at = now + timedelta(seconds=delay)
        await self.session.commit()

        await logger.aerror(
            "certificate_issuance_failed",
            job_id=job.id,
            assessment_id=job.assessment_id,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            final=job.status == JobStatus.FAILED.value,
            error=str(exc),
        )

        if job.status == JobStatus.QUEUED.value and self.scheduler is not None:
            try:
                self.scheduler.schedule(job.id, job.next_run_at)
            except Exception as schedule_exc:  # noqa: BLE001 - the sweep picks the job up anyway
                await logger.awarning(
                    "certificate_retry_schedule_failed",
                    job_id=job.id,
                    error=str(schedule_exc),
                )

        return IssuanceOutcome(job_id=job.id, status=job.status, detail=str(exc))


class CertificateService:
    """Read side for certificates."""

    def __init__(self, session: AsyncSession) -> None:
        self.uow = UnitOfWork(session)

    async def list_for_user(self, user: User) -> list[dict[str, Any]]:
        certificates = await self.uow.certificates.for_user(user.user_id)
        return [certificate_payload(certificate) for certificate in certificates]

    async def get(self, *, user: User, certificate_id: str) -> dict[str, Any]:
        certificate = await self.uow.certificates.get(certificate_id)
        if certificate is None:
            raise CertificateNotFoundError(f"Certificate {certificate_id} not found")
        if certificate.user_id != user.user_id and not user.has_role("admin"):
            raise CertificateNotOwnedError("You do not own this certificate")
        return certificate_payload(certificate)

    async def verify(self, *, certificate_number: str, verification_code: str) -> dict[str, Any]:
        certificate = await self.uow.certificates.by_number(certificate_number.strip())
        if certificate is None or certificate.verification_code != verification_code.strip():
            await logger.ainfo(
                "certificate_verification_failed", certificate_number=certificate_number
            )
            return {"is_valid": False, "certificate": None}

        return {
            "is_valid": True,
            "certificate": {
                "certificate_number": certificate.certificate_number,
                "level": certificate.level.value,
                "issued_date": certificate.issued_at.isoformat() if certificate.issued_at else None,
                "holder_id": certificate.user_id,
            },
        }
