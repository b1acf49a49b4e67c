"""RQ queue helpers shared by the API process and the worker."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

import structlog
from redis import Redis
from rq import Queue
from src.core.config import get_settings

logger = structlog.get_logger()

CERTIFICATE_QUEUE = "certificates"
QUEUE_NAMES: tuple[str, ...] = ("default", CERTIFICATE_QUEUE)
# RQ resolves jobs by dotted path inside the worker process
ISSUE_CERTIFICATE_JOB = "src.workers.jobs.issue_certificate_job"


class RetrySchedulerProtocol(Protocol):
    """Schedules a certificate job to run again later."""

    def schedule(self, job_id: str, run_at: datetime) -> None: ...


class RQRetryScheduler:
    """Schedules certificate retries on the RQ ``certificates`` queue."""

    def __init__(self, connection: Redis | None = None) -> None:
        self._connection = connection

    @property
    def connection(self) -> Redis:
        if self._connection is None:
            self._connection = Redis.from_url(get_settings().redis_url)
        return self._connection

    def schedule(self, job_id: str, run_at: datetime) -> None:
        queue = Queue(CERTIFICATE_QUEUE, connection=self.connection)
        queue.enqueue_at(
            run_at,
            ISSUE_CERTIFICATE_JOB,
            job_id,
            job_id=f"certificate-{job_id}-{int(run_at.timestamp())}",
        )
        logger.info("certificate_retry_scheduled", job_id=job_id, run_at=run_at.isoformat())
