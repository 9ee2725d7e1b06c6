"""
Domain Services
"""
from hookrelay.domain.services.delivery_executor import DeliveryExecutor, DeliveryOutcome
from hookrelay.domain.services.delivery_ledger import DeliveryLedger
from hookrelay.domain.services.delivery_queue import DeliveryQueue, QueueItem
from hookrelay.domain.services.event_ingestor import EventIngestor
from hookrelay.domain.services.http_transport import HttpTransport, TransportResponse
from hookrelay.domain.services.retry_scheduler import RetryPolicy, RetryScheduler
from hookrelay.domain.services.webhook_registry import WebhookRegistry

__all__ = [
    "DeliveryExecutor",
    "DeliveryOutcome",
    "DeliveryLedger",
    "DeliveryQueue",
    "QueueItem",
    "EventIngestor",
    "HttpTransport",
    "TransportResponse",
    "RetryPolicy",
    "RetryScheduler",
    "WebhookRegistry",
]
