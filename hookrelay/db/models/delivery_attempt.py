"""
Delivery Attempt Model - append-only audit ledger of outbound deliveries
"""
import enum
import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum as SQLEnum, ForeignKey, Index

from hookrelay.db.database import Base, utcnow


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


class DeliveryAttempt(Base):
    """
    One recorded try to deliver an event to one subscriber.

    Immutable once written: a retry appends a new row with a higher
    attempt_number, it never updates an old one. webhook_id carries no
    foreign key so history outlives a deleted subscription.
    """

    __tablename__ = "delivery_attempts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    webhook_id = Column(String(36), nullable=False, index=True)

    status = Column(SQLEnum(DeliveryStatus), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, default=1)

    response_code = Column(Integer, nullable=True)  # None on transport errors
    response_body = Column(Text, nullable=True)  # truncated
    error_message = Column(String(1000), nullable=True)

    delivered_at = Column(DateTime, nullable=True)  # success only
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_delivery_attempts_pair", "event_id", "webhook_id", "attempt_number"),
        Index("ix_delivery_attempts_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeliveryAttempt event={self.event_id} webhook={self.webhook_id} "
            f"#{self.attempt_number} {self.status}>"
        )
