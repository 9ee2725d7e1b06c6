"""
Webhook Model - externally registered subscriber endpoints
"""
import secrets
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Column, String, DateTime, JSON, Boolean

from hookrelay.db.database import Base, utcnow


def generate_secret_key() -> str:
    """32 random bytes, hex encoded. Generated once at creation, never re-derivable."""
    return secrets.token_hex(32)


class Webhook(Base):
    """A subscription. The core only reads it; mutations come from the subscription store."""

    __tablename__ = "webhooks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    url = Column(String(2048), nullable=False)
    description = Column(String(500), nullable=True)

    # JSON list so the same model works on PostgreSQL and SQLite
    event_types = Column(JSON, nullable=False, default=lambda: [])

    secret_key = Column(String(128), nullable=False, default=generate_secret_key)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def subscribes_to(self, event_type: str) -> bool:
        return bool(self.is_active) and event_type in (self.event_types or [])

    def to_public_dict(self) -> dict[str, Any]:
        """Representation safe for any response — never contains the secret."""
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "description": self.description,
            "event_types": list(self.event_types or []),
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_cache(self) -> dict[str, Any]:
        """Internal cache representation; includes the secret the executor signs with."""
        return {**self.to_public_dict(), "secret_key": self.secret_key}

    @classmethod
    def from_cache(cls, data: dict[str, Any]) -> "Webhook":
        return cls(
            id=data["id"],
            name=data["name"],
            url=data["url"],
            description=data.get("description"),
            event_types=list(data.get("event_types") or []),
            secret_key=data["secret_key"],
            is_active=data["is_active"],
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )

    def __repr__(self) -> str:
        return f"<Webhook {self.id} name={self.name!r} active={self.is_active}>"


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
