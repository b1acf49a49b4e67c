"""High-level helpers for running certificate issuance jobs outside a request."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from src.domain.services.certificates import CertificateIssuanceTrigger, IssuanceOutcome
from src.infrastructure.db.session import get_session_factory
from src.libs.certificate_client import CertificateClientProtocol, CertificateServiceClient
from src.workers.queue import RetrySchedulerProtocol, RQRetryScheduler

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class JobExecutionResult:
    job_id: str
    status: str
    certificate_id: str | None = None
    detail: str | None = None

    @classmethod
    def from_outcome(cls, outcome: IssuanceOutcome) -> JobExecutionResult:
        return cls(
            job_id=outcome.job_id,
            status=outcome.status,
            certificate_id=outcome.certificate_id,
            detail=outcome.detail,
        )


async def run_certificate_job(
    job_id: str,
    *,
    client: CertificateClientProtocol | None = None,
    scheduler: RetrySchedulerProtocol | None = None,
) -> JobExecutionResult:
    """Run one certificate job in its own session."""
    session_factory = get_session_factory()
    async with session_factory() as session:
        trigger = CertificateIssuanceTrigger(
            session,
            client or CertificateServiceClient(),
            scheduler if scheduler is not None else RQRetryScheduler(),
        )
        outcome = await trigger.process_job(job_id)
    logger.info("certificate_job_processed", job_id=job_id, status=outcome.status)
    return JobExecutionResult.from_outcome(outcome)


async def process_due_certificate_jobs(
    limit: int = 50,
    *,
    client: CertificateClientProtocol | None = None,
    scheduler: RetrySchedulerProtocol | None = None,
) -> list[JobExecutionResult]:
    """Sweep queued certificate jobs whose retry time has come."""
    session_factory = get_session_factory()
    async with session_factory() as session:
        trigger = CertificateIssuanceTrigger(
            session,
            client or CertificateServiceClient(),
            scheduler,
        )
        outcomes = await trigger.process_due_jobs(limit=limit)

    results = [JobExecutionResult.from_outcome(outcome) for outcome in outcomes]
    if not results:
        logger.info("certificate_sweep_idle")
    return results
