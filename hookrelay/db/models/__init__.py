"""
Database Models
"""
from hookrelay.db.models.event import Event
from hookrelay.db.models.webhook import Webhook
from hookrelay.db.models.delivery_attempt import DeliveryAttempt, DeliveryStatus
from hookrelay.db.models.scheduled_retry import ScheduledRetry, RetryStatus

__all__ = [
    "Event",
    "Webhook",
    "DeliveryAttempt",
    "DeliveryStatus",
    "ScheduledRetry",
    "RetryStatus",
]
