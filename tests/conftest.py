"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database session factory (async SQLite file per test)
- In-memory Redis replacement (cache + delivery queue)
- Subscriber endpoints built on httpx.MockTransport
- Test data factories
"""
import asyncio
import fnmatch
import json
from collections import deque
from typing import Callable
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from hookrelay.db.database import Base
from hookrelay.db.models.webhook import Webhook
from hookrelay.db.subscription_store import WebhookCreate
from hookrelay.domain.services.http_transport import HttpTransport
from hookrelay.domain.services.retry_scheduler import RetryPolicy
from hookrelay.workers.runtime import build_runtime

# הערה: לא מגדירים event_loop fixture מותאם אישית כי pytest-asyncio 0.23+
# מטפל בזה אוטומטית עם asyncio_mode=auto ו-asyncio_default_fixture_loop_scope=function


# ============================================================================
# Database
# ============================================================================

@pytest.fixture(scope="function")
async def async_engine(tmp_path):
    """
    SQLite file database. Worker dispatches open concurrent sessions, which a
    single shared in-memory connection would serialize incorrectly.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'hookrelay.db'}",
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


# ============================================================================
# Redis
# ============================================================================

class FakeRedis:
    """In-memory Redis replacement: strings with TTL tracking plus lists."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self._lists: dict[str, deque] = {}
        self.fail_on: set[str] = set()

    def _maybe_fail(self, command: str) -> None:
        if command in self.fail_on:
            from redis.exceptions import ConnectionError as RedisConnectionError
            raise RedisConnectionError(f"{command} unavailable")

    async def ping(self) -> bool:
        self._maybe_fail("ping")
        return True

    async def get(self, key: str) -> str | None:
        self._maybe_fail("get")
        return self._store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._maybe_fail("setex")
        self._store[key] = value
        self._ttls[key] = ttl

    async def delete(self, *keys: str) -> None:
        self._maybe_fail("delete")
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)
            self._lists.pop(key, None)

    async def scan_iter(self, match: str = "*"):
        for key in list(self._store) + list(self._lists):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def lpush(self, key: str, *values: str) -> int:
        self._maybe_fail("lpush")
        items = self._lists.setdefault(key, deque())
        for value in values:
            items.appendleft(value)
        return len(items)

    async def rpop(self, key: str) -> str | None:
        self._maybe_fail("rpop")
        items = self._lists.get(key)
        if not items:
            return None
        return items.pop()

    async def brpop(self, keys: list[str], timeout: int = 0):
        self._maybe_fail("brpop")
        for key in keys:
            items = self._lists.get(key)
            if items:
                return key, items.pop()
        # a short yield stands in for the server-side block
        await asyncio.sleep(0.01)
        return None

    async def llen(self, key: str) -> int:
        self._maybe_fail("llen")
        return len(self._lists.get(key, ()))

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()
        self._lists.clear()

    def queued(self, key: str) -> list[dict]:
        """Decoded queue contents, oldest first."""
        return [json.loads(raw) for raw in reversed(self._lists.get(key, deque()))]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def redis_factory(fake_redis):
    async def _get_fake_redis():
        return fake_redis
    return _get_fake_redis


@pytest.fixture(autouse=True)
def patch_global_redis(fake_redis):
    """Code paths that reach for the singleton get the fake too."""
    async def _get_fake_redis():
        return fake_redis

    with patch("hookrelay.core.redis_client.get_redis", _get_fake_redis):
        yield


# ============================================================================
# Subscriber endpoints
# ============================================================================

class SubscriberEndpoints:
    """
    Routes outbound POSTs by URL to scripted responses and records every
    request received.

    A script is a list of status codes or exceptions, consumed in order; the
    last entry repeats.
    """

    def __init__(self) -> None:
        self.scripts: dict[str, list] = {}
        self.requests: list[httpx.Request] = []

    def respond(self, url: str, *outcomes) -> None:
        self.scripts[url] = list(outcomes)

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        script = self.scripts.get(str(request.url), [200])
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text=f"status {outcome}")


@pytest.fixture
def endpoints() -> SubscriberEndpoints:
    return SubscriberEndpoints()


@pytest.fixture
async def transport(endpoints):
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoints.handler))
    yield HttpTransport(client=client, timeout=1.0)
    await client.aclose()


# ============================================================================
# Runtime and factories
# ============================================================================

@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay=60.0, multiplier=2.0)


@pytest.fixture
def runtime(session_factory, redis_factory, transport, retry_policy):
    rt = build_runtime(session_factory, redis_factory, transport=transport, policy=retry_policy)
    rt.worker.block_timeout = 1
    rt.worker.poll_interval = 0.01
    rt.scheduler.poll_interval = 0.01
    return rt


@pytest.fixture
def webhook_factory(runtime) -> Callable:
    """Create subscriptions through the subscription store"""
    counter = {"n": 0}

    async def _create_webhook(
        event_types: list[str] | None = None,
        url: str | None = None,
        name: str | None = None,
    ) -> Webhook:
        counter["n"] += 1
        return await runtime.subscription_store.create(WebhookCreate(
            name=name or f"Subscriber {counter['n']}",
            url=url or f"https://subscriber-{counter['n']}.example.com/hook",
            event_types=event_types or ["job.created"],
        ))

    return _create_webhook


@pytest.fixture
def event_factory(runtime) -> Callable:
    """Persist events directly, bypassing the queue"""
    counter = {"n": 0}

    async def _create_event(event_type: str = "job.created", payload: dict | None = None):
        counter["n"] += 1
        return await runtime.event_store.create(
            event_type=event_type,
            event_name="Job Created",
            payload=payload if payload is not None else {"job_id": counter["n"]},
            source="jobs-service",
            idempotency_key=f"test-key-{counter['n']}",
        )

    return _create_event
