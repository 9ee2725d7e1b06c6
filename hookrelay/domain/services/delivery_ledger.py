"""
Delivery Ledger — read side of the delivery audit trail.

Writes come only from the DeliveryExecutor, through the ledger store.
"""
from datetime import timedelta
from typing import Any

from hookrelay.core.exceptions import ValidationError
from hookrelay.db.ledger_store import LedgerStore
from hookrelay.db.models.delivery_attempt import DeliveryAttempt

MAX_PAGE_SIZE = 500


def _check_page(limit: int, offset: int = 0) -> None:
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")
    if offset < 0:
        raise ValidationError("offset must be non-negative", field="offset")


class DeliveryLedger:
    def __init__(self, ledger_store: LedgerStore):
        self.ledger_store = ledger_store

    async def for_event(self, event_id: str) -> list[DeliveryAttempt]:
        return await self.ledger_store.find_by_event(event_id)

    async def for_webhook(self, webhook_id: str, limit: int = 50, offset: int = 0) -> list[DeliveryAttempt]:
        _check_page(limit, offset)
        return await self.ledger_store.find_by_webhook(webhook_id, limit=limit, offset=offset)

    async def stats(self, webhook_id: str | None = None) -> dict[str, Any]:
        return await self.ledger_store.stats(webhook_id)

    async def recent(self, limit: int = 100) -> list[DeliveryAttempt]:
        _check_page(limit)
        return await self.ledger_store.recent(limit)

    async def purge_older_than(self, age: timedelta) -> int:
        if age <= timedelta(0):
            raise ValidationError("age must be positive", field="age")
        return await self.ledger_store.purge_older_than(age)


def attempt_to_dict(attempt: DeliveryAttempt) -> dict[str, Any]:
    return {
        "id": attempt.id,
        "event_id": attempt.event_id,
        "webhook_id": attempt.webhook_id,
        "status": attempt.status.value if attempt.status else None,
        "attempt_number": attempt.attempt_number,
        "response_code": attempt.response_code,
        "response_body": attempt.response_body,
        "error_message": attempt.error_message,
        "delivered_at": attempt.delivered_at.isoformat() if attempt.delivered_at else None,
        "created_at": attempt.created_at.isoformat() if attempt.created_at else None,
    }
