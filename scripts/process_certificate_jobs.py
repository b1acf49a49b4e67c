#!/usr/bin/env python3
"""
Retry certificate issuance without running the RQ worker.

Usage:
    python scripts/process_certificate_jobs.py            # sweep due jobs
    python scripts/process_certificate_jobs.py <job_id>   # run one job now
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.logging import setup_logging
from src.infrastructure.db.session import dispose_engine
from src.workers.pipeline import process_due_certificate_jobs, run_certificate_job

_MARKERS = {"completed": "✅", "queued": "⏳"}


async def main() -> None:
    setup_logging(json_logs=False)
    try:
        if len(sys.argv) > 1:
            results = [await run_certificate_job(sys.argv[1])]
        else:
            results = await process_due_certificate_jobs()
    finally:
        await dispose_engine()

    if not results:
        print("Nothing to do: no certificate jobs are due")
        return
    for result in results:
        marker = _MARKERS.get(result.status, "❌")
        print(f"{marker} {result.job_id}: {result.status} {result.detail or ''}".rstrip())


if __name__ == "__main__":
    asyncio.run(main())
