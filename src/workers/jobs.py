"""
RQ entry points.

RQ runs plain callables, so each job wraps its coroutine in ``asyncio.run``.
The pooled engine is bound to the loop that created it and is disposed
before that loop closes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import asdict
from typing import Any, TypeVar

import structlog
from src.infrastructure.db.session import dispose_engine
from src.workers.pipeline import process_due_certificate_jobs, run_certificate_job

logger = structlog.get_logger()

T = TypeVar("T")


async def _run_then_dispose(awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    finally:
        await dispose_engine()


def issue_certificate_job(job_id: str) -> dict[str, Any]:
    """Attempt certificate issuance for one AsyncJob row."""
    try:
        result = asyncio.run(_run_then_dispose(run_certificate_job(job_id)))
    except Exception as e:
        logger.error("certificate_job_crashed", job_id=job_id, error=str(e), exc_info=True)
        raise
    return asdict(result)


def sweep_certificate_jobs(limit: int = 50) -> dict[str, Any]:
    """Retry every due certificate job whose scheduled retry never fired."""
    results = asyncio.run(_run_then_dispose(process_due_certificate_jobs(limit)))
    summary = {
        "processed": len(results),
        "completed": sum(1 for r in results if r.status == "completed"),
        "failed": sum(1 for r in results if r.status == "failed"),
    }
    logger.info("certificate_sweep_job_finished", **summary)
    return summary
