"""
Delivery runtime — wires stores and services into one explicit value.

Nothing here is a module-level singleton: the FastAPI app builds one runtime
at startup, tests build their own against SQLite and a fake Redis.
"""
from dataclasses import dataclass

from hookrelay.core.config import settings
from hookrelay.core.logging import get_logger
from hookrelay.core.redis_client import RedisFactory, get_redis
from hookrelay.db.database import SessionFactory
from hookrelay.db.event_store import EventStore
from hookrelay.db.ledger_store import LedgerStore
from hookrelay.db.retry_store import RetryStore
from hookrelay.db.subscription_store import SubscriptionStore
from hookrelay.domain.services.delivery_executor import DeliveryExecutor
from hookrelay.domain.services.delivery_ledger import DeliveryLedger
from hookrelay.domain.services.delivery_queue import DeliveryQueue
from hookrelay.domain.services.event_ingestor import EventIngestor
from hookrelay.domain.services.http_transport import HttpTransport
from hookrelay.domain.services.retry_scheduler import RetryPolicy, RetryScheduler
from hookrelay.domain.services.webhook_registry import WebhookRegistry
from hookrelay.workers.delivery_worker import DeliveryWorker

logger = get_logger(__name__)


@dataclass
class DeliveryRuntime:
    event_store: EventStore
    subscription_store: SubscriptionStore
    ledger_store: LedgerStore
    retry_store: RetryStore
    queue: DeliveryQueue
    transport: HttpTransport
    ingestor: EventIngestor
    registry: WebhookRegistry
    executor: DeliveryExecutor
    scheduler: RetryScheduler
    worker: DeliveryWorker
    ledger: DeliveryLedger

    async def start(self) -> None:
        await self.scheduler.start()
        await self.worker.start()

    async def stop(self) -> None:
        """Worker first (awaits in-flight dispatches), then the retry loop."""
        await self.worker.stop()
        await self.scheduler.stop()
        await self.transport.aclose()


def build_runtime(
    session_factory: SessionFactory,
    redis_factory: RedisFactory = get_redis,
    transport: HttpTransport | None = None,
    policy: RetryPolicy | None = None,
) -> DeliveryRuntime:
    event_store = EventStore(session_factory)
    subscription_store = SubscriptionStore(session_factory)
    ledger_store = LedgerStore(session_factory)
    retry_store = RetryStore(session_factory)

    transport = transport or HttpTransport()
    policy = policy or RetryPolicy()

    queue = DeliveryQueue(redis_factory, settings.DELIVERY_QUEUE_KEY)
    ingestor = EventIngestor(event_store, queue, redis_factory)
    registry = WebhookRegistry(subscription_store, redis_factory)
    executor = DeliveryExecutor(transport, ledger_store, policy)
    scheduler = RetryScheduler(
        policy,
        retry_store,
        event_store,
        registry,
        executor,
        ledger_store,
    )
    worker = DeliveryWorker(queue, event_store, registry, executor, scheduler)

    return DeliveryRuntime(
        event_store=event_store,
        subscription_store=subscription_store,
        ledger_store=ledger_store,
        retry_store=retry_store,
        queue=queue,
        transport=transport,
        ingestor=ingestor,
        registry=registry,
        executor=executor,
        scheduler=scheduler,
        worker=worker,
        ledger=DeliveryLedger(ledger_store),
    )
