"""
Celery maintenance tasks: ledger retention and stale retry claims.
"""
import asyncio
from contextlib import contextmanager
from datetime import timedelta

from hookrelay.core.config import settings
from hookrelay.core.logging import get_logger, log_async_operation, set_correlation_id
from hookrelay.db.database import get_task_session
from hookrelay.db.ledger_store import LedgerStore
from hookrelay.db.retry_store import RetryStore
from hookrelay.workers.celery_app import celery_app

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@log_async_operation("purge_delivery_attempts")
async def _purge_delivery_attempts(days: int) -> dict:
    async with get_task_session() as session_factory:
        deleted = await LedgerStore(session_factory).purge_older_than(timedelta(days=days))
    logger.info(
        "Purged old delivery attempts",
        extra_data={"deleted": deleted, "retention_days": days},
    )
    return {"deleted": deleted}


@log_async_operation("release_stale_retries")
async def _release_stale_retries(timeout_seconds: int) -> dict:
    async with get_task_session() as session_factory:
        released = await RetryStore(session_factory).release_stale(timedelta(seconds=timeout_seconds))
    if released:
        logger.warning("Released stale retry claims", extra_data={"released": released})
    return {"released": released}


@celery_app.task(name="hookrelay.workers.tasks.purge_delivery_attempts")
def purge_delivery_attempts(days: int | None = None):
    """Delete ledger rows older than the retention window"""
    return run_async(_purge_delivery_attempts(days or settings.LEDGER_RETENTION_DAYS))


@celery_app.task(name="hookrelay.workers.tasks.release_stale_retries")
def release_stale_retries(timeout_seconds: int | None = None):
    return run_async(_release_stale_retries(timeout_seconds or settings.RETRY_CLAIM_TIMEOUT_SECONDS))
