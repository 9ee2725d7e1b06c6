"""
Event Ingestor — accepts events from internal producers.

Flow: validate → derive idempotency key → cache fast path → insert (the
unique index decides duplicates) → cache → enqueue exactly one QueueItem.
"""
import hashlib
import json
from typing import Any

from redis.exceptions import RedisError

from hookrelay.core.config import settings
from hookrelay.core.exceptions import EventNotFoundError, PersistenceError, ValidationError
from hookrelay.core.logging import get_logger
from hookrelay.core.redis_client import RedisFactory, get_redis
from hookrelay.core.validation import EventValidator
from hookrelay.db.event_store import EventStore
from hookrelay.db.models.event import Event
from hookrelay.domain.services.delivery_queue import DeliveryQueue
from hookrelay.domain.services.signer import canonical_json

logger = get_logger(__name__)

EVENT_KEY_PREFIX = "event:"
EVENT_ID_KEY_PREFIX = "event:id:"


def derive_idempotency_key(event_type: str, payload: dict[str, Any]) -> str:
    """
    Deterministic key for submissions without one.

    Identical (type, payload) pairs map to the same key, so a producer
    re-sending the same event is deduplicated.
    """
    material = f"{event_type}:".encode("utf-8") + canonical_json(payload)
    return hashlib.sha256(material).hexdigest()


class EventIngestor:
    """Ingestion entry point plus the read side of the event log"""

    def __init__(
        self,
        event_store: EventStore,
        queue: DeliveryQueue,
        redis_factory: RedisFactory = get_redis,
        cache_ttl: int | None = None,
        allowed_types: set[str] | None = None,
    ):
        self.event_store = event_store
        self.queue = queue
        self._redis_factory = redis_factory
        self.cache_ttl = cache_ttl or settings.CACHE_TTL_EVENT_SECONDS
        self.allowed_types = settings.allowed_event_types if allowed_types is None else allowed_types

    def _validate(
        self,
        event_type: str,
        event_name: str,
        payload: Any,
        source: str,
        idempotency_key: str | None,
    ) -> None:
        checks = (
            ("event_type", EventValidator.validate_type(event_type, self.allowed_types)),
            ("event_name", EventValidator.validate_text(
                event_name, "Event name", EventValidator.MAX_NAME_LENGTH)),
            ("source", EventValidator.validate_text(
                source, "Source", EventValidator.MAX_SOURCE_LENGTH)),
            ("payload", EventValidator.validate_payload(payload)),
            ("idempotency_key", EventValidator.validate_idempotency_key(idempotency_key)),
        )
        for field, (is_valid, error) in checks:
            if not is_valid:
                raise ValidationError(error, field=field)

    async def submit(
        self,
        event_type: str,
        event_name: str,
        payload: dict[str, Any],
        source: str,
        idempotency_key: str | None = None,
    ) -> Event:
        """
        Persist and enqueue an event.

        Returns the cached event when the key was seen recently. Raises
        DuplicateEventError when the database already holds the key,
        ValidationError for malformed input, PersistenceError when a store
        or the queue is unavailable.
        """
        self._validate(event_type, event_name, payload, source, idempotency_key)
        key = idempotency_key or derive_idempotency_key(event_type, payload)

        cached = await self._cache_get(f"{EVENT_KEY_PREFIX}{key}")
        if cached is not None:
            logger.info(
                "Duplicate submission served from cache",
                extra_data={"idempotency_key": key, "event_id": cached.get("id")},
            )
            return Event.from_dict(cached)

        event = await self.event_store.create(
            event_type=event_type,
            event_name=event_name,
            payload=payload,
            source=source,
            idempotency_key=key,
        )

        await self._cache_set(f"{EVENT_KEY_PREFIX}{key}", event.to_dict())

        try:
            await self.queue.push(event.id, event.event_type, event.payload)
        except PersistenceError:
            logger.error(
                "Failed to enqueue event",
                extra_data={"event_id": event.id, "event_type": event.event_type},
                exc_info=True,
            )
            # undo the insert so the producer can resubmit under the same key
            await self._cache_delete(f"{EVENT_KEY_PREFIX}{key}")
            await self._discard_unqueued(event)
            raise

        logger.info("Event ingested", extra_data={
            "event_id": event.id,
            "event_type": event.event_type,
            "source": event.source,
        })
        return event

    async def _discard_unqueued(self, event: Event) -> None:
        try:
            await self.event_store.delete(event.id)
        except PersistenceError as e:
            # the key stays taken; resubmissions report DuplicateEventError
            logger.error(
                "Failed to remove unqueued event",
                extra_data={
                    "event_id": event.id,
                    "idempotency_key": event.idempotency_key,
                    "error": e.message,
                },
            )

    async def get_event(self, event_id: str) -> Event:
        cached = await self._cache_get(f"{EVENT_ID_KEY_PREFIX}{event_id}")
        if cached is not None:
            return Event.from_dict(cached)

        event = await self.event_store.find_by_id(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        # processed_at changes once, so only settled events are cached by id
        if event.processed_at is not None:
            await self._cache_set(f"{EVENT_ID_KEY_PREFIX}{event_id}", event.to_dict())
        return event

    async def list_events(
        self,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Event]:
        if not 1 <= limit <= 500:
            raise ValidationError("limit must be between 1 and 500", field="limit")
        if offset < 0:
            raise ValidationError("offset must be non-negative", field="offset")
        return await self.event_store.list_events(event_type=event_type, limit=limit, offset=offset)

    async def event_stats(self) -> dict[str, Any]:
        return await self.event_store.stats()

    # ==================== cache helpers ====================
    # Redis is only a fast path: failures here are logged and ignored.

    async def _cache_get(self, key: str) -> dict[str, Any] | None:
        try:
            client = await self._redis_factory()
            raw = await client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("Event cache read failed", extra_data={"key": key, "error": str(e)})
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    async def _cache_set(self, key: str, value: dict[str, Any]) -> None:
        try:
            client = await self._redis_factory()
            await client.setex(key, self.cache_ttl, json.dumps(value, default=str))
        except (RedisError, OSError) as e:
            logger.warning("Event cache write failed", extra_data={"key": key, "error": str(e)})

    async def _cache_delete(self, key: str) -> None:
        try:
            client = await self._redis_factory()
            await client.delete(key)
        except (RedisError, OSError) as e:
            logger.warning("Event cache delete failed", extra_data={"key": key, "error": str(e)})
