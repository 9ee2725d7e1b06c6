"""
Delivery Worker — drains the delivery queue and fans events out to subscribers.

One cooperative consume loop per worker. For each popped item the worker
re-reads the event, resolves the active subscribers, runs attempt #1 for each
of them concurrently, settles all of them, then marks the event processed.
Retry-eligible failures are handed to the retry scheduler.
"""
import asyncio
import enum

from hookrelay.core.config import settings
from hookrelay.core.exceptions import AppException
from hookrelay.core.logging import delivery_context, get_logger, set_correlation_id
from hookrelay.db.event_store import EventStore
from hookrelay.db.models.event import Event
from hookrelay.db.models.webhook import Webhook
from hookrelay.domain.services.delivery_executor import DeliveryExecutor
from hookrelay.domain.services.delivery_queue import DeliveryQueue, QueueItem
from hookrelay.domain.services.retry_scheduler import RetryScheduler
from hookrelay.domain.services.webhook_registry import WebhookRegistry

logger = get_logger(__name__)


class WorkerState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class DeliveryWorker:
    def __init__(
        self,
        queue: DeliveryQueue,
        event_store: EventStore,
        registry: WebhookRegistry,
        executor: DeliveryExecutor,
        scheduler: RetryScheduler,
        poll_interval: float | None = None,
        block_timeout: int | None = None,
    ):
        self.queue = queue
        self.event_store = event_store
        self.registry = registry
        self.executor = executor
        self.scheduler = scheduler
        self.poll_interval = poll_interval or settings.WORKER_POLL_INTERVAL_SECONDS
        self.block_timeout = block_timeout or settings.QUEUE_BLOCK_TIMEOUT_SECONDS

        self.state = WorkerState.STOPPED
        self._stop_event = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()

    async def start(self) -> None:
        if self.state == WorkerState.RUNNING:
            return
        self._stop_event.clear()
        self.state = WorkerState.RUNNING
        self._loop_task = asyncio.create_task(self._run_loop(), name="delivery-worker")
        logger.info("Delivery worker started", extra_data={"queue": self.queue.key})

    async def stop(self) -> None:
        """Halt the consume loop and wait for in-flight dispatches."""
        if self.state == WorkerState.STOPPED:
            return
        self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        self.state = WorkerState.STOPPED
        logger.info("Delivery worker stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = await self.queue.pop_blocking(self.block_timeout)
            except AppException as e:
                logger.error("Failed to consume from delivery queue", extra_data={"error": e.message})
                await self._sleep(self.poll_interval)
                continue
            except Exception as e:
                logger.error(
                    "Unexpected error in delivery worker loop",
                    extra_data={"error": str(e)},
                    exc_info=True,
                )
                await self._sleep(self.poll_interval)
                continue

            if item is None:
                continue

            # run as a tracked task so stop() can wait for it
            task = asyncio.create_task(self._handle(item))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            await asyncio.gather(task, return_exceptions=True)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def process_next(self) -> bool:
        """Consume and handle at most one item without blocking. True when one was handled."""
        item = await self.queue.pop()
        if item is None:
            return False
        await self._handle(item)
        return True

    async def _handle(self, item: QueueItem) -> None:
        set_correlation_id()
        try:
            event = await self.event_store.find_by_id(item.event_id)
        except AppException as e:
            logger.error(
                "Failed to load queued event",
                extra_data={"event_id": item.event_id, "error": e.message},
            )
            return

        if event is None:
            logger.warning("Queued event not found, dropping", extra_data={"event_id": item.event_id})
            return

        with delivery_context(event_id=event.id, event_type=event.event_type):
            await self._fan_out(event)

    async def _fan_out(self, event: Event) -> None:
        try:
            webhooks = await self.registry.active_subscribers_for(event.event_type)
        except AppException as e:
            logger.error(
                "Failed to resolve subscribers",
                extra_data={"event_id": event.id, "error": e.message},
            )
            return

        if webhooks:
            results = await asyncio.gather(
                *(self._dispatch(event, webhook) for webhook in webhooks),
                return_exceptions=True,
            )
            for webhook, result in zip(webhooks, results):
                if isinstance(result, BaseException):
                    logger.error(
                        "Unexpected error in webhook dispatch",
                        extra_data={"event_id": event.id, "webhook_id": webhook.id, "error": str(result)},
                    )
        else:
            logger.info(
                "No active subscribers for event",
                extra_data={"event_id": event.id, "event_type": event.event_type},
            )

        try:
            await self.event_store.mark_processed(event.id)
        except AppException as e:
            logger.error(
                "Failed to mark event processed",
                extra_data={"event_id": event.id, "error": e.message},
            )
            return

        logger.info("Event dispatched", extra_data={
            "event_id": event.id,
            "event_type": event.event_type,
            "subscribers": len(webhooks),
        })

    async def _dispatch(self, event: Event, webhook: Webhook) -> None:
        outcome = await self.executor.attempt(event, webhook, 1)
        if outcome.should_retry:
            await self.scheduler.schedule(event, webhook, outcome.attempt_number)
