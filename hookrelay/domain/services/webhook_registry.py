"""
Webhook Registry — cached resolution of active subscribers.

Cache keys:
    webhook:event:{type}   active subscribers of one event type
    active_webhooks        every active subscription
    webhook:{id}           single subscription (includes the secret)

Entries carry the signing secret and live only in the internal cache; they are
never returned by a public serialisation. Invalidation is last-writer-wins:
a read racing a mutation may repopulate a stale entry that then expires with
its TTL.
"""
import json
from typing import Any

from redis.exceptions import RedisError

from hookrelay.core.config import settings
from hookrelay.core.logging import get_logger
from hookrelay.core.redis_client import RedisFactory, get_redis
from hookrelay.db.models.webhook import Webhook
from hookrelay.db.subscription_store import SubscriptionStore

logger = get_logger(__name__)

EVENT_KEY_PREFIX = "webhook:event:"
ACTIVE_WEBHOOKS_KEY = "active_webhooks"
WEBHOOK_KEY_PREFIX = "webhook:"


class WebhookRegistry:
    def __init__(
        self,
        subscription_store: SubscriptionStore,
        redis_factory: RedisFactory = get_redis,
        webhook_ttl: int | None = None,
        active_ttl: int | None = None,
    ):
        self.subscription_store = subscription_store
        self._redis_factory = redis_factory
        self.webhook_ttl = webhook_ttl or settings.CACHE_TTL_WEBHOOK_SECONDS
        self.active_ttl = active_ttl or settings.CACHE_TTL_ACTIVE_WEBHOOKS_SECONDS
        subscription_store.on_change(self.invalidate)

    async def active_subscribers_for(self, event_type: str) -> list[Webhook]:
        key = f"{EVENT_KEY_PREFIX}{event_type}"
        cached = await self._cache_get(key)
        if cached is not None:
            return [Webhook.from_cache(item) for item in cached]

        webhooks = await self.subscription_store.find_by_event_type(event_type)
        await self._cache_set(key, [w.to_cache() for w in webhooks], self.webhook_ttl)
        return webhooks

    async def active_webhooks(self) -> list[Webhook]:
        cached = await self._cache_get(ACTIVE_WEBHOOKS_KEY)
        if cached is not None:
            return [Webhook.from_cache(item) for item in cached]

        webhooks = await self.subscription_store.find_active()
        await self._cache_set(ACTIVE_WEBHOOKS_KEY, [w.to_cache() for w in webhooks], self.active_ttl)
        return webhooks

    async def get_webhook(self, webhook_id: str) -> Webhook | None:
        """Any subscription by id, active or not. None when it does not exist."""
        key = f"{WEBHOOK_KEY_PREFIX}{webhook_id}"
        cached = await self._cache_get(key)
        if cached is not None:
            return Webhook.from_cache(cached)

        webhook = await self.subscription_store.find_by_id(webhook_id)
        if webhook is not None:
            await self._cache_set(key, webhook.to_cache(), self.webhook_ttl)
        return webhook

    async def invalidate(self, webhook_id: str | None = None) -> None:
        """
        Drop every per-type entry and the aggregate list, plus the per-id
        entry when ``webhook_id`` is given.

        A mutation may add or remove event types, so all per-type entries go.
        """
        try:
            client = await self._redis_factory()
            keys = [key async for key in client.scan_iter(match=f"{EVENT_KEY_PREFIX}*")]
            keys.append(ACTIVE_WEBHOOKS_KEY)
            if webhook_id:
                keys.append(f"{WEBHOOK_KEY_PREFIX}{webhook_id}")
            await client.delete(*keys)
        except (RedisError, OSError) as e:
            logger.error(
                "Subscriber cache invalidation failed",
                extra_data={"webhook_id": webhook_id, "error": str(e)},
            )
            return
        logger.debug("Subscriber cache invalidated", extra_data={
            "webhook_id": webhook_id,
            "keys": len(keys),
        })

    # Redis is only a fast path: a cache outage falls through to the store.

    async def _cache_get(self, key: str) -> Any | None:
        try:
            client = await self._redis_factory()
            raw = await client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("Subscriber cache read failed", extra_data={"key": key, "error": str(e)})
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    async def _cache_set(self, key: str, value: Any, ttl: int) -> None:
        try:
            client = await self._redis_factory()
            await client.setex(key, ttl, json.dumps(value, default=str))
        except (RedisError, OSError) as e:
            logger.warning("Subscriber cache write failed", extra_data={"key": key, "error": str(e)})
