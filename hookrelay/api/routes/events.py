"""
Event API Routes

Internal producers submit events here. Inbound caller authentication is
handled in front of this service.
"""
from datetime import datetime
from typing import Any, List

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from hookrelay.api.dependencies.runtime import get_runtime
from hookrelay.core.logging import get_logger
from hookrelay.domain.services.delivery_ledger import attempt_to_dict
from hookrelay.workers.runtime import DeliveryRuntime

logger = get_logger(__name__)

router = APIRouter()


class EventCreate(BaseModel):
    """Schema for submitting an event. Field checks happen in the ingestor."""
    event_type: str
    event_name: str
    payload: dict[str, Any]
    source: str
    idempotency_key: str | None = None


class EventResponse(BaseModel):
    id: str
    event_type: str
    event_name: str
    payload: dict[str, Any]
    source: str
    idempotency_key: str | None
    created_at: datetime
    processed_at: datetime | None

    model_config = {"from_attributes": True}


class EventStatsResponse(BaseModel):
    total_events: int
    processed_events: int
    pending_events: int
    by_type: dict[str, int] = Field(default_factory=dict)


@router.post(
    "",
    response_model=EventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an event",
    responses={
        201: {"description": "Event accepted and queued for delivery"},
        400: {"description": "Validation error"},
        409: {"description": "Duplicate idempotency key"},
        503: {"description": "Store or queue unavailable"},
    },
    tags=["Events"]
)
async def submit_event(
    data: EventCreate,
    runtime: DeliveryRuntime = Depends(get_runtime)
) -> EventResponse:
    """
    Submit an event for fan-out to subscribers.

    - **event_type**: dotted identifier, e.g. `job.created`
    - **idempotency_key**: optional; derived from type and payload when omitted
    """
    logger.info(
        "Event submission",
        extra_data={"event_type": data.event_type, "source": data.source}
    )
    event = await runtime.ingestor.submit(**data.model_dump())
    return EventResponse.model_validate(event)


@router.get(
    "",
    response_model=List[EventResponse],
    summary="List events",
    tags=["Events"]
)
async def list_events(
    event_type: str | None = None,
    limit: int = Query(50),
    offset: int = Query(0),
    runtime: DeliveryRuntime = Depends(get_runtime)
) -> List[EventResponse]:
    events = await runtime.ingestor.list_events(event_type=event_type, limit=limit, offset=offset)
    return [EventResponse.model_validate(e) for e in events]


@router.get(
    "/stats",
    response_model=EventStatsResponse,
    summary="Event counts",
    tags=["Events"]
)
async def event_stats(
    runtime: DeliveryRuntime = Depends(get_runtime)
) -> EventStatsResponse:
    return EventStatsResponse(**await runtime.ingestor.event_stats())


@router.get(
    "/{event_id}",
    response_model=EventResponse,
    summary="Get event by ID",
    responses={404: {"description": "Event not found"}},
    tags=["Events"]
)
async def get_event(
    event_id: str,
    runtime: DeliveryRuntime = Depends(get_runtime)
) -> EventResponse:
    event = await runtime.ingestor.get_event(event_id)
    return EventResponse.model_validate(event)


@router.get(
    "/{event_id}/deliveries",
    summary="Delivery attempts of one event",
    responses={404: {"description": "Event not found"}},
    tags=["Events"]
)
async def get_event_deliveries(
    event_id: str,
    runtime: DeliveryRuntime = Depends(get_runtime)
) -> list[dict]:
    await runtime.ingestor.get_event(event_id)
    attempts = await runtime.ledger.for_event(event_id)
    return [attempt_to_dict(a) for a in attempts]
