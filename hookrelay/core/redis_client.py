"""
Redis client shared by the event cache, the subscriber cache and the
delivery queue.

One lazily created ``redis.asyncio`` client per process. The delivery worker
holds a connection in BRPOP for up to QUEUE_BLOCK_TIMEOUT_SECONDS, so the
socket timeout is kept above the block timeout.
"""
import asyncio
from typing import Awaitable, Callable
from urllib.parse import urlparse

import redis.asyncio as aioredis

from hookrelay.core.config import settings
from hookrelay.core.logging import get_logger

logger = get_logger(__name__)

# Services take a factory instead of a client so tests can inject a fake
RedisFactory = Callable[[], Awaitable[aioredis.Redis]]

_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def redacted_url(url: str) -> str:
    """REDIS_URL without its password, for logs."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "redis://****"
    if not parsed.password:
        return url
    netloc = parsed.netloc.replace(f":{parsed.password}@", ":****@", 1)
    return parsed._replace(netloc=netloc).geturl()


def _build_client() -> aioredis.Redis:
    return aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        socket_timeout=settings.QUEUE_BLOCK_TIMEOUT_SECONDS + settings.REDIS_SOCKET_TIMEOUT_MARGIN_SECONDS,
        health_check_interval=30,
    )


async def get_redis() -> aioredis.Redis:
    """Return the process-wide client, connecting (and pinging) on first use."""
    global _client
    if _client is not None:
        return _client

    async with _init_lock:
        # שתי קריאות מקבילות: רק הראשונה יוצרת חיבור
        if _client is None:
            client = _build_client()
            await client.ping()
            _client = client
            logger.info("Redis client initialized", extra_data={
                "url": redacted_url(settings.REDIS_URL),
                "max_connections": settings.REDIS_MAX_CONNECTIONS,
            })
    return _client


async def close_redis() -> None:
    """Called from application shutdown."""
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
    logger.info("Redis connection closed")
