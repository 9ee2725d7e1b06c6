"""
Tests for DeliveryExecutor — signed POST, outcome classification, ledger rows
"""
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from hookrelay.core.exceptions import PersistenceError
from hookrelay.db.models.delivery_attempt import DeliveryStatus
from hookrelay.domain.services import signer


class TestRequest:
    async def test_signed_payload(self, runtime, event_factory, webhook_factory, endpoints):
        webhook = await webhook_factory()
        event = await event_factory(payload={"job_id": 7})

        outcome = await runtime.executor.attempt(event, webhook, 1)

        assert outcome.success
        [request] = endpoints.requests_to(webhook.url)
        body = json.loads(request.content)
        assert body == {
            "eventId": event.id,
            "eventType": "job.created",
            "eventName": "Job Created",
            "data": {"job_id": 7},
            "timestamp": event.created_at.isoformat() + "Z",
        }
        assert request.headers["X-Signature"] == signer.sign(request.content, webhook.secret_key)
        assert signer.verify(request.content, request.headers["X-Signature"], webhook.secret_key)
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == "HookRelay/1.0"
        assert request.headers["X-Timestamp"].isdigit()


class TestOutcomes:
    async def test_success_recorded(self, runtime, event_factory, webhook_factory, endpoints):
        webhook = await webhook_factory()
        endpoints.respond(webhook.url, 201)
        event = await event_factory()

        outcome = await runtime.executor.attempt(event, webhook, 1)

        assert outcome.success and not outcome.should_retry
        assert outcome.status_code == 201
        [row] = await runtime.ledger.for_event(event.id)
        assert row.status == DeliveryStatus.SUCCESS
        assert row.response_code == 201
        assert row.delivered_at is not None
        assert row.error_message is None

    async def test_server_error_is_retryable(self, runtime, event_factory, webhook_factory, endpoints):
        webhook = await webhook_factory()
        endpoints.respond(webhook.url, 503)
        event = await event_factory()

        outcome = await runtime.executor.attempt(event, webhook, 1)

        assert not outcome.success
        assert outcome.should_retry
        assert outcome.error == "HTTP 503: Service Unavailable"
        [row] = await runtime.ledger.for_event(event.id)
        assert row.status == DeliveryStatus.RETRYING
        assert row.delivered_at is None

    async def test_server_error_on_last_attempt_is_terminal(
        self, runtime, event_factory, webhook_factory, endpoints
    ):
        webhook = await webhook_factory()
        endpoints.respond(webhook.url, 500)
        event = await event_factory()

        outcome = await runtime.executor.attempt(event, webhook, 3)

        assert not outcome.should_retry
        [row] = await runtime.ledger.for_event(event.id)
        assert row.status == DeliveryStatus.FAILED
        assert row.attempt_number == 3

    async def test_client_error_never_retried(self, runtime, event_factory, webhook_factory, endpoints):
        webhook = await webhook_factory()
        endpoints.respond(webhook.url, 404)
        event = await event_factory()

        outcome = await runtime.executor.attempt(event, webhook, 1)

        assert not outcome.success and not outcome.should_retry
        [row] = await runtime.ledger.for_event(event.id)
        assert row.status == DeliveryStatus.FAILED
        assert row.response_code == 404

    async def test_redirect_is_a_response(self, runtime, event_factory, webhook_factory, endpoints):
        webhook = await webhook_factory()
        endpoints.respond(webhook.url, 302)
        event = await event_factory()

        outcome = await runtime.executor.attempt(event, webhook, 1)

        assert not outcome.success
        assert not outcome.should_retry
        assert len(endpoints.requests) == 1

    @pytest.mark.parametrize("error", [
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("timed out"),
    ])
    async def test_network_error(self, runtime, event_factory, webhook_factory, endpoints, error):
        webhook = await webhook_factory()
        endpoints.respond(webhook.url, error)
        event = await event_factory()

        outcome = await runtime.executor.attempt(event, webhook, 1)

        assert not outcome.success
        assert outcome.should_retry
        assert outcome.status_code is None
        [row] = await runtime.ledger.for_event(event.id)
        assert row.status == DeliveryStatus.RETRYING
        assert row.response_code is None
        assert row.error_message

    async def test_response_body_truncated(self, runtime, event_factory, webhook_factory, endpoints):
        webhook = await webhook_factory()
        event = await event_factory()
        runtime.executor.body_max_chars = 5

        await runtime.executor.attempt(event, webhook, 1)

        [row] = await runtime.ledger.for_event(event.id)
        assert row.response_body == "statu"


async def test_ledger_failure_contained(runtime, event_factory, webhook_factory):
    webhook = await webhook_factory()
    event = await event_factory()
    runtime.executor.ledger_store = AsyncMock()
    runtime.executor.ledger_store.append.side_effect = PersistenceError("ledger.append", "db down")

    outcome = await runtime.executor.attempt(event, webhook, 1)

    assert outcome.success
