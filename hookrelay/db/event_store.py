"""
Event Store — persistence of ingested events.

The unique index on idempotency_key is what enforces deduplication; a
violation surfaces as DuplicateEventError, any other failure as
PersistenceError.
"""
from typing import Any

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError

from hookrelay.core.exceptions import DuplicateEventError
from hookrelay.core.logging import get_logger
from hookrelay.db.database import SessionFactory, store_errors, utcnow
from hookrelay.db.models.event import Event

logger = get_logger(__name__)


class EventStore:
    """Event persistence on top of an async session factory"""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def create(
        self,
        *,
        event_type: str,
        event_name: str,
        payload: dict[str, Any],
        source: str,
        idempotency_key: str | None,
    ) -> Event:
        async with store_errors("event.create"):
            async with self._session_factory() as db:
                event = Event(
                    event_type=event_type,
                    event_name=event_name,
                    payload=payload,
                    source=source,
                    idempotency_key=idempotency_key,
                )
                db.add(event)
                try:
                    await db.commit()
                except IntegrityError as e:
                    await db.rollback()
                    logger.warning(
                        "Duplicate event rejected by unique index",
                        extra_data={"idempotency_key": idempotency_key},
                    )
                    existing = await self.find_by_idempotency_key(idempotency_key)
                    raise DuplicateEventError(
                        idempotency_key,
                        existing_event_id=existing.id if existing else None,
                    ) from e
                await db.refresh(event)
                return event

    async def find_by_id(self, event_id: str) -> Event | None:
        async with store_errors("event.find_by_id"):
            async with self._session_factory() as db:
                result = await db.execute(select(Event).where(Event.id == event_id))
                return result.scalar_one_or_none()

    async def find_by_idempotency_key(self, idempotency_key: str | None) -> Event | None:
        if not idempotency_key:
            return None
        async with store_errors("event.find_by_idempotency_key"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Event).where(Event.idempotency_key == idempotency_key)
                )
                return result.scalar_one_or_none()

    async def mark_processed(self, event_id: str) -> bool:
        """Set processed_at once. False when the event is missing or already processed."""
        async with store_errors("event.mark_processed"):
            async with self._session_factory() as db:
                result = await db.execute(
                    update(Event)
                    .where(Event.id == event_id, Event.processed_at.is_(None))
                    .values(processed_at=utcnow())
                )
                await db.commit()
                return result.rowcount > 0

    async def delete(self, event_id: str) -> bool:
        """Remove an event that was never handed to the delivery queue."""
        async with store_errors("event.delete"):
            async with self._session_factory() as db:
                result = await db.execute(delete(Event).where(Event.id == event_id))
                await db.commit()
                return result.rowcount > 0

    async def list_events(
        self,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Event]:
        query = select(Event).order_by(Event.created_at.desc()).limit(limit).offset(offset)
        if event_type:
            query = query.where(Event.event_type == event_type)
        async with store_errors("event.list"):
            async with self._session_factory() as db:
                result = await db.execute(query)
                return list(result.scalars().all())

    async def stats(self) -> dict[str, Any]:
        """Totals plus per-type counts (dashboard read side)."""
        async with store_errors("event.stats"):
            async with self._session_factory() as db:
                totals = (await db.execute(
                    select(func.count(Event.id), func.count(Event.processed_at))
                )).one()
                by_type = await db.execute(
                    select(Event.event_type, func.count(Event.id))
                    .group_by(Event.event_type)
                    .order_by(Event.event_type)
                )
                total, processed = totals
                return {
                    "total_events": total,
                    "processed_events": processed,
                    "pending_events": total - processed,
                    "by_type": {event_type: count for event_type, count in by_type.all()},
                }
