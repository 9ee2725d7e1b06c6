"""
Retry Scheduler — bounded exponential backoff over a durable retry table.

A failed, retry-eligible attempt N is persisted as a ScheduledRetry row for
attempt N+1, due ``delay(N+1)`` seconds later. A background loop claims due
rows, re-invokes the executor with the stored attempt number, schedules the
next retry when still eligible, and deletes the row. Rows survive restarts;
claims left behind by a crashed loop are released after the claim timeout.
"""
import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from hookrelay.core.config import settings
from hookrelay.core.exceptions import (
    AppException,
    EventNotFoundError,
    WebhookNotFoundError,
)
from hookrelay.core.logging import delivery_context, get_logger
from hookrelay.db.database import utcnow
from hookrelay.db.event_store import EventStore
from hookrelay.db.ledger_store import LedgerStore
from hookrelay.db.models.event import Event
from hookrelay.db.models.scheduled_retry import ScheduledRetry
from hookrelay.db.models.webhook import Webhook
from hookrelay.db.retry_store import RetryStore

if TYPE_CHECKING:
    from hookrelay.domain.services.delivery_executor import DeliveryExecutor, DeliveryOutcome
    from hookrelay.domain.services.webhook_registry import WebhookRegistry

logger = get_logger(__name__)


class RetryPolicy:
    """
    Retry decision and backoff.

    Retry iff ``attempt_number < max_retries`` and the failure was a network
    error (no status) or a 5xx. 4xx responses are never retried.
    """

    def __init__(
        self,
        max_retries: int | None = None,
        base_delay: float | None = None,
        multiplier: float | None = None,
    ):
        self.max_retries = max_retries if max_retries is not None else settings.WEBHOOK_MAX_RETRIES
        self.base_delay = base_delay if base_delay is not None else settings.WEBHOOK_RETRY_BASE_SECONDS
        self.multiplier = multiplier if multiplier is not None else settings.WEBHOOK_RETRY_BACKOFF_MULTIPLIER
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.multiplier <= 1:
            raise ValueError("multiplier must be greater than 1")

    def should_retry(self, attempt_number: int, status_code: int | None) -> bool:
        if attempt_number >= self.max_retries:
            return False
        return status_code is None or status_code >= 500

    def delay(self, attempt_number: int) -> float:
        """Seconds to wait before making ``attempt_number`` (the first retry is 2)."""
        return self.base_delay * self.multiplier ** max(attempt_number - 1, 0)


class RetryScheduler:
    def __init__(
        self,
        policy: RetryPolicy,
        retry_store: RetryStore,
        event_store: EventStore,
        registry: "WebhookRegistry",
        executor: "DeliveryExecutor",
        ledger_store: LedgerStore,
        poll_interval: float | None = None,
        batch_size: int | None = None,
        claim_timeout: int | None = None,
    ):
        self.policy = policy
        self.retry_store = retry_store
        self.event_store = event_store
        self.registry = registry
        self.executor = executor
        self.ledger_store = ledger_store
        self.poll_interval = poll_interval or settings.RETRY_POLL_INTERVAL_SECONDS
        self.batch_size = batch_size or settings.RETRY_BATCH_SIZE
        self.claim_timeout = claim_timeout or settings.RETRY_CLAIM_TIMEOUT_SECONDS

        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def schedule(
        self,
        event: Event,
        webhook: Webhook,
        failed_attempt_number: int,
    ) -> ScheduledRetry | None:
        """
        Persist the retry following ``failed_attempt_number``.

        Returns None when scheduling failed. The failure is logged and not
        itself retried; the ledger keeps the last attempt as ``retrying``.
        """
        next_attempt = failed_attempt_number + 1
        delay = self.policy.delay(next_attempt)
        try:
            retry = await self.retry_store.schedule(
                event_id=event.id,
                webhook_id=webhook.id,
                attempt_number=next_attempt,
                due_at=utcnow() + timedelta(seconds=delay),
            )
        except AppException as e:
            logger.error(
                "Failed to schedule retry",
                extra_data={
                    "event_id": event.id,
                    "webhook_id": webhook.id,
                    "attempt": next_attempt,
                    "error": e.message,
                },
                exc_info=True,
            )
            return None

        logger.info("Retry scheduled", extra_data={
            "event_id": event.id,
            "webhook_id": webhook.id,
            "attempt": next_attempt,
            "delay_seconds": delay,
        })
        return retry

    async def run_due(self, now: datetime | None = None) -> int:
        """Claim and execute due retries. Returns how many were claimed."""
        claimed = await self.retry_store.claim_due(now or utcnow(), self.batch_size)
        if not claimed:
            return 0
        results = await asyncio.gather(
            *(self._execute(retry) for retry in claimed),
            return_exceptions=True,
        )
        for retry, result in zip(claimed, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error in retry execution",
                    extra_data={"retry_id": retry.id, "error": str(result)},
                )
        return len(claimed)

    async def _execute(self, retry: ScheduledRetry) -> None:
        with delivery_context(retry_id=retry.id):
            await self._execute_claimed(retry)

    async def _execute_claimed(self, retry: ScheduledRetry) -> None:
        try:
            event = await self.event_store.find_by_id(retry.event_id)
            webhook = await self.registry.get_webhook(retry.webhook_id)
        except AppException as e:
            await self._release(retry, e.message)
            return

        if event is None or webhook is None or not webhook.is_active:
            logger.warning("Dropping retry for missing event or inactive webhook", extra_data={
                "retry_id": retry.id,
                "event_id": retry.event_id,
                "webhook_id": retry.webhook_id,
                "event_found": event is not None,
                "webhook_active": bool(webhook and webhook.is_active),
            })
            await self._complete(retry)
            return

        try:
            last_attempt = await self.ledger_store.last_attempt_number(retry.event_id, retry.webhook_id)
        except AppException as e:
            await self._release(retry, e.message)
            return
        # a manual redelivery already used this number
        if last_attempt >= retry.attempt_number:
            logger.warning("Dropping retry overtaken by a later attempt", extra_data={
                "retry_id": retry.id,
                "event_id": retry.event_id,
                "webhook_id": retry.webhook_id,
                "attempt": retry.attempt_number,
                "last_attempt": last_attempt,
            })
            await self._complete(retry)
            return

        outcome = await self.executor.attempt(event, webhook, retry.attempt_number)
        if outcome.should_retry:
            await self.schedule(event, webhook, outcome.attempt_number)
        await self._complete(retry)

    async def _complete(self, retry: ScheduledRetry) -> None:
        try:
            await self.retry_store.complete(retry.id)
        except AppException as e:
            # the claim goes stale and is released; the attempt may repeat
            logger.error(
                "Failed to complete retry",
                extra_data={"retry_id": retry.id, "error": e.message},
            )

    async def _release(self, retry: ScheduledRetry, error: str) -> None:
        try:
            await self.retry_store.release(retry.id, error)
        except AppException as e:
            logger.error(
                "Failed to release retry",
                extra_data={"retry_id": retry.id, "error": e.message},
            )

    async def recover_stale(self) -> int:
        released = await self.retry_store.release_stale(timedelta(seconds=self.claim_timeout))
        if released:
            logger.warning("Released stale retry claims", extra_data={"count": released})
        return released

    async def retry_now(self, event_id: str, webhook_id: str) -> "DeliveryOutcome":
        """
        Manual redelivery of one event to one subscriber.

        Numbering continues from the pair's last recorded attempt. A pending
        automatic retry for the pair is cancelled first; if this attempt fails
        and is still eligible, a fresh one is scheduled after it. Raises
        EventNotFoundError / WebhookNotFoundError.
        """
        event = await self.event_store.find_by_id(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        webhook = await self.registry.get_webhook(webhook_id)
        if webhook is None:
            raise WebhookNotFoundError(webhook_id)

        cancelled = await self.retry_store.cancel_pending(event_id, webhook_id)
        attempt_number = await self.ledger_store.last_attempt_number(event_id, webhook_id) + 1
        logger.info("Manual retry initiated", extra_data={
            "event_id": event_id,
            "webhook_id": webhook_id,
            "attempt": attempt_number,
            "cancelled_retries": cancelled,
        })
        outcome = await self.executor.attempt(event, webhook, attempt_number)
        if outcome.should_retry:
            await self.schedule(event, webhook, outcome.attempt_number)
        return outcome

    async def pending_count(self) -> int:
        return await self.retry_store.pending_count()

    # ==================== loop ====================

    async def start(self) -> None:
        if self.is_running:
            return
        try:
            await self.recover_stale()
        except AppException as e:
            logger.error("Stale retry recovery failed", extra_data={"error": e.message})
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="retry-scheduler")
        logger.info("Retry scheduler started", extra_data={
            "poll_interval": self.poll_interval,
            "batch_size": self.batch_size,
        })

    async def stop(self) -> None:
        """Stop polling and wait for the batch in progress to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Retry scheduler stopped")

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        last_recovery = loop.time()
        while not self._stop_event.is_set():
            claimed = 0
            try:
                claimed = await self.run_due()
                if loop.time() - last_recovery >= self.claim_timeout:
                    await self.recover_stale()
                    last_recovery = loop.time()
            except AppException as e:
                logger.error("Retry scheduler iteration failed", extra_data={"error": e.message})
            except Exception as e:
                logger.error(
                    "Unexpected error in retry scheduler",
                    extra_data={"error": str(e)},
                    exc_info=True,
                )

            # a full batch means more rows may already be due
            if claimed >= self.batch_size:
                continue
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
