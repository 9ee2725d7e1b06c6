"""
Scheduled Retry Model - durable, time-ordered delayed delivery attempts

Replaces in-process timers: a row survives restarts and is drained by the
retry scheduler loop. Rows are claimed with a token before execution so two
scheduler loops never run the same retry.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Index

from hookrelay.db.database import Base, utcnow


class RetryStatus(str, enum.Enum):
    PENDING = "pending"
    CLAIMED = "claimed"


class ScheduledRetry(Base):
    """A delivery attempt waiting for its backoff delay to elapse"""

    __tablename__ = "scheduled_retries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), nullable=False)
    webhook_id = Column(String(36), nullable=False)
    attempt_number = Column(Integer, nullable=False)  # attempt this row will make

    due_at = Column(DateTime, nullable=False)
    status = Column(SQLEnum(RetryStatus), nullable=False, default=RetryStatus.PENDING)

    claim_token = Column(String(36), nullable=True, index=True)
    claimed_at = Column(DateTime, nullable=True)
    last_error = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_scheduled_retries_status_due", "status", "due_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduledRetry {self.id} event={self.event_id} webhook={self.webhook_id} "
            f"#{self.attempt_number} due={self.due_at}>"
        )
