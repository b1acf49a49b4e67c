from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog
from redis import Redis
from rq import Queue, Worker
from src.core.config import get_settings
from src.core.logging import setup_logging
from src.workers.queue import ISSUE_CERTIFICATE_JOB, QUEUE_NAMES

logger = structlog.get_logger()


async def main() -> None:
    """Bootstrap the worker, wiring queues and job handlers."""
    setup_logging()
    settings = get_settings()
    redis_connection = Redis.from_url(settings.redis_url)
    logger.info(
        "worker_bootstrap",
        queues=list(QUEUE_NAMES),
        retry_job=ISSUE_CERTIFICATE_JOB,
    )

    await asyncio.to_thread(_run_worker, redis_connection, QUEUE_NAMES)


def _run_worker(connection: Redis, queue_names: Sequence[str]) -> None:
    """Run the RQ worker with its scheduler so ``enqueue_at`` retries fire."""
    queues = [Queue(name, connection=connection) for name in queue_names]
    worker = Worker(queues, connection=connection, name="digicomp-worker")
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    asyncio.run(main())
