from __future__ import annotations

from datetime import UTC, datetime

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter
from sqlalchemy import func, select, text
from src.core.config import get_settings
from src.infrastructure.db.models import Question
from src.infrastructure.db.session import get_session_factory

router = APIRouter(tags=["Observability"])
logger = structlog.get_logger()


async def check_database() -> dict:
    """Check the database connection and report active questions per level."""
    try:
        session_factory = get_session_factory()
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
            rows = await session.execute(
                select(Question.level, func.count())
                .where(Question.is_active.is_(True))
                .group_by(Question.level)
            )
            pool = {level.value: count for level, count in rows.all()}
            return {"status": "ok", "question_pool": pool}
    except Exception as e:  # noqa: BLE001 - reported in the probe payload
        return {"status": "error", "message": str(e)[:100]}


async def check_redis() -> dict:
    """Check the Redis connection backing the certificate retry queue."""
    try:
        settings = get_settings()
        client = aioredis.from_url(settings.redis_url)
        try:
            await client.ping()
        finally:
            await client.aclose()
        return {"status": "ok"}
    except Exception as e:  # noqa: BLE001 - reported in the probe payload
        return {"status": "error", "message": str(e)[:100]}


@router.get("/health", summary="Service health probe")
async def health_check() -> dict:
    """Return basic service and datastore status information."""
    settings = get_settings()

    database_status = await check_database()
    redis_status = await check_redis()

    overall_status = "ok"
    if database_status.get("status") != "ok" or redis_status.get("status") != "ok":
        overall_status = "degraded"

    payload = {
        "service": settings.app_name,
        "version": settings.version,
        "status": overall_status,
        "timestamp": datetime.now(UTC).isoformat(),
        "datastores": {
            "database": database_status,
            "redis": redis_status,
        },
    }
    logger.info("health_probe", status=overall_status)
    return payload
