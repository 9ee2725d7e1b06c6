"""
Tests for DeliveryQueue — FIFO over a Redis list and the wire format
"""
import json

import pytest

from hookrelay.core.exceptions import PersistenceError
from hookrelay.domain.services.delivery_queue import DeliveryQueue, QueueItem


@pytest.fixture
def queue(redis_factory) -> DeliveryQueue:
    return DeliveryQueue(redis_factory, "test:queue")


async def test_fifo_order(queue):
    await queue.push("e1", "job.created", {"n": 1})
    await queue.push("e2", "job.created", {"n": 2})
    await queue.push("e3", "job.closed")

    assert await queue.size() == 3
    assert [(await queue.pop()).event_id for _ in range(3)] == ["e1", "e2", "e3"]
    assert await queue.pop() is None
    assert await queue.size() == 0


async def test_wire_format(queue, fake_redis):
    await queue.push("e1", "job.created", {"n": 1})

    [raw] = fake_redis._lists["test:queue"]
    data = json.loads(raw)
    assert set(data) == {"eventId", "eventType", "payload", "timestamp"}
    assert data["payload"] == {"n": 1}


async def test_pop_blocking(queue):
    assert await queue.pop_blocking(1) is None

    await queue.push("e1", "job.created")
    item = await queue.pop_blocking(1)

    assert isinstance(item, QueueItem)
    assert item.event_id == "e1"
    assert item.event_type == "job.created"
    assert item.enqueued_at.tzinfo is not None


async def test_malformed_item_dropped(queue, fake_redis):
    await fake_redis.lpush("test:queue", "not json")
    await fake_redis.lpush("test:queue", json.dumps({"eventType": "x"}))
    await queue.push("e1", "job.created")

    assert await queue.pop() is None
    assert await queue.pop() is None
    assert (await queue.pop()).event_id == "e1"


async def test_redis_failure_is_persistence_error(queue, fake_redis):
    fake_redis.fail_on.update({"lpush", "rpop"})

    with pytest.raises(PersistenceError):
        await queue.push("e1", "job.created")
    with pytest.raises(PersistenceError):
        await queue.pop()
