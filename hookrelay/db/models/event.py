"""
Event Model - domain events accepted from internal producers
"""
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Column, String, DateTime, JSON, Index

from hookrelay.db.database import Base, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Event(Base):
    """An ingested event. Mutated only to set processed_at, never deleted by the core."""

    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_new_id)
    event_type = Column(String(100), nullable=False, index=True)
    event_name = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=False)
    source = Column(String(100), nullable=False)

    # Unique index is the source of truth for deduplication; the Redis cache is only a fast path
    idempotency_key = Column(String(255), nullable=True, unique=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    # "dispatched", not "settled": retries may still be pending
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_events_created_at", "created_at"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_name": self.event_name,
            "payload": self.payload,
            "source": self.source,
            "idempotency_key": self.idempotency_key,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Rebuild a detached Event from its cached representation."""
        return cls(
            id=data["id"],
            event_type=data["event_type"],
            event_name=data["event_name"],
            payload=data["payload"],
            source=data["source"],
            idempotency_key=data.get("idempotency_key"),
            created_at=_parse_dt(data.get("created_at")),
            processed_at=_parse_dt(data.get("processed_at")),
        )

    def __repr__(self) -> str:
        return f"<Event {self.id} type={self.event_type}>"


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
