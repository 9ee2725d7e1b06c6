"""
Delivery Queue — Redis list carrying event references from ingestion to the worker.

Producers LPUSH, the single consumer pops from the right (FIFO). Items are
references: the worker re-reads the event by id, the payload on the wire is
informational only.

Wire format: {"eventId": str, "eventType": str, "payload": <json>, "timestamp": <ms>}

Single consumer: there is no lease/visibility timeout, so two
workers on the same key race for items.
"""
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError

from hookrelay.core.config import settings
from hookrelay.core.exceptions import PersistenceError
from hookrelay.core.logging import get_logger
from hookrelay.core.redis_client import RedisFactory, get_redis

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueueItem:
    """Minimal event reference. Exists only inside the queue."""
    event_id: str
    event_type: str
    enqueued_at: datetime

    @classmethod
    def from_wire(cls, raw: str) -> "QueueItem":
        data = json.loads(raw)
        return cls(
            event_id=str(data["eventId"]),
            event_type=str(data["eventType"]),
            enqueued_at=datetime.fromtimestamp(int(data["timestamp"]) / 1000, tz=timezone.utc),
        )


def encode_item(event_id: str, event_type: str, payload: Any) -> str:
    return json.dumps({
        "eventId": event_id,
        "eventType": event_type,
        "payload": payload,
        "timestamp": int(time.time() * 1000),
    }, ensure_ascii=False, default=str)


class DeliveryQueue:
    """FIFO transport over a Redis list"""

    def __init__(self, redis_factory: RedisFactory = get_redis, key: str | None = None):
        self._redis_factory = redis_factory
        self.key = key or settings.DELIVERY_QUEUE_KEY

    async def push(self, event_id: str, event_type: str, payload: Any = None) -> None:
        try:
            client = await self._redis_factory()
            await client.lpush(self.key, encode_item(event_id, event_type, payload))
        except (RedisError, OSError) as e:
            raise PersistenceError("queue.push", str(e), {"event_id": event_id}) from e
        logger.debug("Event published to delivery queue", extra_data={"event_id": event_id})

    async def pop(self) -> QueueItem | None:
        """Non-blocking pop. None when the queue is empty."""
        try:
            client = await self._redis_factory()
            raw = await client.rpop(self.key)
        except (RedisError, OSError) as e:
            raise PersistenceError("queue.pop", str(e)) from e
        return self._decode(raw)

    async def pop_blocking(self, timeout: int) -> QueueItem | None:
        """Wait up to ``timeout`` seconds for an item (BRPOP)."""
        try:
            client = await self._redis_factory()
            result = await client.brpop([self.key], timeout=timeout)
        except (RedisError, OSError) as e:
            raise PersistenceError("queue.pop_blocking", str(e)) from e
        if not result:
            return None
        _, raw = result
        return self._decode(raw)

    async def size(self) -> int:
        try:
            client = await self._redis_factory()
            return await client.llen(self.key)
        except (RedisError, OSError) as e:
            raise PersistenceError("queue.size", str(e)) from e

    def _decode(self, raw: str | None) -> QueueItem | None:
        if raw is None:
            return None
        try:
            return QueueItem.from_wire(raw)
        except (ValueError, KeyError, TypeError) as e:
            # פריט פגום נזרק: החזרה לתור תחסום אותו לנצח
            logger.error(
                "Dropping malformed queue item",
                extra_data={"raw": raw[:200], "error": str(e)},
            )
            return None
