"""
Health checks — dependency probes for the readiness endpoint.

Two levels:
- liveness: the process is up (no dependency checks)
- readiness: database, Redis (cache + queue) and the Celery broker
"""
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from hookrelay.core.config import settings
from hookrelay.core.logging import get_logger
from hookrelay.core.redis_client import RedisFactory, get_redis
from hookrelay.db.database import AsyncSessionLocal, SessionFactory

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# filtered messages, no infrastructure details
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_CELERY = "error: celery_unavailable"


async def _check_db(session_factory: SessionFactory) -> str:
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("DB health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis(redis_factory: RedisFactory) -> str:
    try:
        client = await redis_factory()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def _check_celery() -> str:
    """Ping the Celery broker (Redis) used by the maintenance tasks."""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


async def check_readiness(
    session_factory: SessionFactory = AsyncSessionLocal,
    redis_factory: RedisFactory = get_redis,
) -> dict[str, Any]:
    """
    Readiness across all external dependencies.

    status is "healthy" when every check is "ok", otherwise "degraded".
    """
    checks = {
        "db": await _check_db(session_factory),
        "redis": await _check_redis(redis_factory),
        "celery": await _check_celery(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks}
