"""
Delivery Ledger API Routes
"""
from fastapi import APIRouter, Depends, Query

from hookrelay.api.dependencies.runtime import get_runtime
from hookrelay.core.logging import get_logger
from hookrelay.domain.services.delivery_ledger import attempt_to_dict
from hookrelay.workers.runtime import DeliveryRuntime

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/recent",
    summary="Most recent delivery attempts",
    tags=["Deliveries"]
)
async def recent_deliveries(
    limit: int = Query(100),
    runtime: DeliveryRuntime = Depends(get_runtime)
) -> list[dict]:
    attempts = await runtime.ledger.recent(limit)
    return [attempt_to_dict(a) for a in attempts]


@router.get(
    "/stats",
    summary="Delivery statistics",
    description="Totals per status and the average attempt number. Optionally scoped to one webhook.",
    tags=["Deliveries"]
)
async def delivery_stats(
    webhook_id: str | None = None,
    runtime: DeliveryRuntime = Depends(get_runtime)
) -> dict:
    stats = await runtime.ledger.stats(webhook_id)
    stats["pending_retries"] = await runtime.scheduler.pending_count()
    return stats


@router.get(
    "/webhooks/{webhook_id}",
    summary="Delivery history of one webhook",
    description="History stays queryable after the webhook is deactivated.",
    tags=["Deliveries"]
)
async def webhook_deliveries(
    webhook_id: str,
    limit: int = Query(50),
    offset: int = Query(0),
    runtime: DeliveryRuntime = Depends(get_runtime)
) -> list[dict]:
    attempts = await runtime.ledger.for_webhook(webhook_id, limit=limit, offset=offset)
    return [attempt_to_dict(a) for a in attempts]


@router.post(
    "/{event_id}/webhooks/{webhook_id}/retry",
    summary="Redeliver an event to one webhook",
    responses={
        200: {"description": "Attempt made; see success flag"},
        404: {"description": "Event or webhook not found"},
    },
    tags=["Deliveries"]
)
async def retry_delivery(
    event_id: str,
    webhook_id: str,
    runtime: DeliveryRuntime = Depends(get_runtime)
) -> dict:
    logger.info(
        "Manual retry request",
        extra_data={"event_id": event_id, "webhook_id": webhook_id}
    )
    outcome = await runtime.scheduler.retry_now(event_id, webhook_id)
    return {
        "success": outcome.success,
        "attempt_number": outcome.attempt_number,
        "status_code": outcome.status_code,
        "error": outcome.error,
        "retry_scheduled": outcome.should_retry,
    }
