"""
Delivery Executor — one signed HTTP attempt per call.

Every attempt ends with exactly one DeliveryAttempt row, whatever the outcome.
Nothing raised by the transport escapes: network failures become a failed
outcome with ``status_code=None``.
"""
from dataclasses import dataclass
from typing import Any

from hookrelay.core.config import settings
from hookrelay.core.exceptions import AppException, TransportError
from hookrelay.core.logging import delivery_context, get_logger
from hookrelay.db.database import utcnow
from hookrelay.db.ledger_store import LedgerStore
from hookrelay.db.models.delivery_attempt import DeliveryAttempt, DeliveryStatus
from hookrelay.db.models.event import Event
from hookrelay.db.models.webhook import Webhook
from hookrelay.domain.services import signer
from hookrelay.domain.services.http_transport import HttpTransport
from hookrelay.domain.services.retry_scheduler import RetryPolicy

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    success: bool
    should_retry: bool
    attempt_number: int
    status_code: int | None = None
    error: str | None = None


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


class DeliveryExecutor:
    def __init__(
        self,
        transport: HttpTransport,
        ledger_store: LedgerStore,
        policy: RetryPolicy,
        timeout: float | None = None,
        body_max_chars: int | None = None,
    ):
        self.transport = transport
        self.ledger_store = ledger_store
        self.policy = policy
        self.timeout = timeout or settings.WEBHOOK_TIMEOUT_SECONDS
        self.body_max_chars = body_max_chars or settings.RESPONSE_BODY_MAX_CHARS

    @staticmethod
    def build_payload(event: Event) -> dict[str, Any]:
        """Outbound body. Subscribers see the event, never internal ids of the attempt."""
        created_at = event.created_at or utcnow()
        return {
            "eventId": event.id,
            "eventType": event.event_type,
            "eventName": event.event_name,
            "data": event.payload,
            "timestamp": created_at.isoformat() + "Z",
        }

    async def attempt(self, event: Event, webhook: Webhook, attempt_number: int) -> DeliveryOutcome:
        """POST the event to one subscriber and record the attempt."""
        with delivery_context(event_id=event.id, webhook_id=webhook.id, attempt=attempt_number):
            return await self._attempt(event, webhook, attempt_number)

    async def _attempt(self, event: Event, webhook: Webhook, attempt_number: int) -> DeliveryOutcome:
        body = signer.canonical_json(self.build_payload(event))
        headers = signer.build_headers(body, webhook.secret_key)

        status_code: int | None = None
        response_body: str | None = None
        error: str | None = None

        try:
            response = await self.transport.post(webhook.url, body, headers, timeout=self.timeout)
            status_code = response.status_code
            response_body = response.body
            if not 200 <= status_code < 300:
                error = f"HTTP {status_code}: {response.reason}" if response.reason else f"HTTP {status_code}"
        except TransportError as e:
            error = e.message

        success = error is None
        should_retry = not success and self.policy.should_retry(attempt_number, status_code)

        if success:
            status = DeliveryStatus.SUCCESS
        elif should_retry:
            status = DeliveryStatus.RETRYING
        else:
            status = DeliveryStatus.FAILED

        await self._record(
            DeliveryAttempt(
                event_id=event.id,
                webhook_id=webhook.id,
                status=status,
                attempt_number=attempt_number,
                response_code=status_code,
                response_body=_truncate(response_body, self.body_max_chars),
                error_message=_truncate(error, 1000),
                delivered_at=utcnow() if success else None,
            )
        )

        log_data = {
            "event_id": event.id,
            "webhook_id": webhook.id,
            "attempt": attempt_number,
            "status_code": status_code,
        }
        if success:
            logger.info("Webhook delivered", extra_data=log_data)
        else:
            logger.warning(
                "Webhook delivery failed",
                extra_data={**log_data, "error": error, "should_retry": should_retry},
            )

        return DeliveryOutcome(
            success=success,
            should_retry=should_retry,
            attempt_number=attempt_number,
            status_code=status_code,
            error=error,
        )

    async def _record(self, attempt: DeliveryAttempt) -> None:
        # a lost ledger row must not turn into a lost delivery decision
        try:
            await self.ledger_store.append(attempt)
        except AppException as e:
            logger.error(
                "Failed to record delivery attempt",
                extra_data={
                    "event_id": attempt.event_id,
                    "webhook_id": attempt.webhook_id,
                    "attempt": attempt.attempt_number,
                    "error": e.message,
                },
                exc_info=True,
            )
