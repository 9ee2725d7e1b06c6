"""
Tests for WebhookRegistry and the subscription store it caches
"""
import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from hookrelay.core.exceptions import WebhookNotFoundError
from hookrelay.db.subscription_store import WebhookCreate, WebhookUpdate


class TestActiveSubscribers:
    async def test_only_active_matching_subscriptions(self, runtime, webhook_factory):
        a = await webhook_factory(event_types=["job.created", "job.closed"])
        b = await webhook_factory(event_types=["job.created"])
        await webhook_factory(event_types=["candidate.applied"])
        inactive = await webhook_factory(event_types=["job.created"])
        await runtime.subscription_store.set_active(inactive.id, False)

        subscribers = await runtime.registry.active_subscribers_for("job.created")

        assert {w.id for w in subscribers} == {a.id, b.id}

    async def test_cached_under_event_key(self, runtime, webhook_factory, fake_redis):
        webhook = await webhook_factory(event_types=["job.created"])

        await runtime.registry.active_subscribers_for("job.created")

        cached = json.loads(await fake_redis.get("webhook:event:job.created"))
        assert [item["id"] for item in cached] == [webhook.id]
        assert cached[0]["secret_key"] == webhook.secret_key
        assert fake_redis._ttls["webhook:event:job.created"] == 3600

    async def test_cache_hit_keeps_secret(self, runtime, webhook_factory):
        webhook = await webhook_factory()
        await runtime.registry.active_subscribers_for("job.created")

        [cached] = await runtime.registry.active_subscribers_for("job.created")

        assert cached.id == webhook.id
        assert cached.secret_key == webhook.secret_key
        assert cached.url == webhook.url

    async def test_empty_result_is_cached(self, runtime, fake_redis):
        assert await runtime.registry.active_subscribers_for("nobody.listens") == []
        assert await fake_redis.get("webhook:event:nobody.listens") == "[]"


class TestInvalidation:
    async def test_deactivation_invalidates(self, runtime, webhook_factory, fake_redis):
        webhook = await webhook_factory()
        await runtime.registry.active_subscribers_for("job.created")
        await runtime.registry.active_webhooks()
        await runtime.registry.get_webhook(webhook.id)

        await runtime.subscription_store.set_active(webhook.id, False)

        assert await fake_redis.get("webhook:event:job.created") is None
        assert await fake_redis.get("active_webhooks") is None
        assert await fake_redis.get(f"webhook:{webhook.id}") is None
        assert await runtime.registry.active_subscribers_for("job.created") == []

    async def test_event_type_change_invalidates_every_type(self, runtime, webhook_factory):
        webhook = await webhook_factory(event_types=["job.created"])
        await runtime.registry.active_subscribers_for("job.created")
        assert await runtime.registry.active_subscribers_for("job.closed") == []

        await runtime.subscription_store.update(webhook.id, WebhookUpdate(event_types=["job.closed"]))

        assert await runtime.registry.active_subscribers_for("job.created") == []
        assert [w.id for w in await runtime.registry.active_subscribers_for("job.closed")] == [webhook.id]

    async def test_creation_invalidates(self, runtime, webhook_factory):
        await webhook_factory()
        assert len(await runtime.registry.active_subscribers_for("job.created")) == 1

        await webhook_factory()

        assert len(await runtime.registry.active_subscribers_for("job.created")) == 2

    async def test_delete_invalidates(self, runtime, webhook_factory):
        webhook = await webhook_factory()
        await runtime.registry.get_webhook(webhook.id)

        await runtime.subscription_store.delete(webhook.id)

        assert await runtime.registry.get_webhook(webhook.id) is None
        assert await runtime.registry.active_webhooks() == []

    async def test_cache_outage_does_not_break_mutation(self, runtime, webhook_factory, fake_redis):
        webhook = await webhook_factory()
        fake_redis.fail_on.add("delete")

        updated = await runtime.subscription_store.update(webhook.id, WebhookUpdate(name="Renamed hook"))

        assert updated.name == "Renamed hook"


class TestGetWebhook:
    async def test_inactive_webhook_still_resolvable(self, runtime, webhook_factory):
        webhook = await webhook_factory()
        await runtime.subscription_store.set_active(webhook.id, False)

        fetched = await runtime.registry.get_webhook(webhook.id)

        assert fetched is not None
        assert fetched.is_active is False

    async def test_missing(self, runtime):
        assert await runtime.registry.get_webhook("nope") is None


class TestSubscriptionStore:
    async def test_secret_generated_once_and_hidden(self, webhook_factory):
        webhook = await webhook_factory()

        assert len(webhook.secret_key) == 64
        assert "secret_key" not in webhook.to_public_dict()

    async def test_update_missing(self, runtime):
        with pytest.raises(WebhookNotFoundError):
            await runtime.subscription_store.update("nope", WebhookUpdate(name="Whatever"))

    async def test_update_rejects_unknown_fields(self):
        with pytest.raises(PydanticValidationError):
            WebhookUpdate(secret_key="stolen")

    @pytest.mark.parametrize("data", [
        {"name": "ok name", "url": "ftp://example.com", "event_types": ["job.created"]},
        {"name": "ok name", "url": "https://example.com", "event_types": []},
        {"name": "ok name", "url": "https://example.com", "event_types": ["Bad Type"]},
        {"name": "ab", "url": "https://example.com", "event_types": ["job.created"]},
    ])
    def test_create_validation(self, data):
        with pytest.raises(PydanticValidationError):
            WebhookCreate(**data)

    def test_duplicate_event_types_collapsed(self):
        data = WebhookCreate(
            name="Hook", url="https://example.com", event_types=["a.b", "a.b", "c.d"]
        )
        assert data.event_types == ["a.b", "c.d"]
