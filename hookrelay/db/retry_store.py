"""
Retry Store — durable delayed-task table for delivery retries.

Claiming is a conditional UPDATE (pending → claimed) tagged with a random
token, so concurrent scheduler loops each get a disjoint batch.
"""
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select, update, delete, func

from hookrelay.db.database import SessionFactory, store_errors, utcnow
from hookrelay.db.models.scheduled_retry import ScheduledRetry, RetryStatus


class RetryStore:
    """Persistence for ScheduledRetry rows"""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def schedule(
        self,
        *,
        event_id: str,
        webhook_id: str,
        attempt_number: int,
        due_at: datetime,
    ) -> ScheduledRetry:
        async with store_errors("retry.schedule"):
            async with self._session_factory() as db:
                retry = ScheduledRetry(
                    event_id=event_id,
                    webhook_id=webhook_id,
                    attempt_number=attempt_number,
                    due_at=due_at,
                    status=RetryStatus.PENDING,
                )
                db.add(retry)
                await db.commit()
                await db.refresh(retry)
                return retry

    async def claim_due(self, now: datetime, limit: int) -> list[ScheduledRetry]:
        """Claim up to ``limit`` due rows, earliest first."""
        token = str(uuid.uuid4())
        async with store_errors("retry.claim_due"):
            async with self._session_factory() as db:
                due_ids = (await db.execute(
                    select(ScheduledRetry.id)
                    .where(
                        ScheduledRetry.status == RetryStatus.PENDING,
                        ScheduledRetry.due_at <= now,
                    )
                    .order_by(ScheduledRetry.due_at, ScheduledRetry.id)
                    .limit(limit)
                )).scalars().all()
                if not due_ids:
                    return []

                await db.execute(
                    update(ScheduledRetry)
                    .where(
                        ScheduledRetry.id.in_(due_ids),
                        ScheduledRetry.status == RetryStatus.PENDING,
                    )
                    .values(status=RetryStatus.CLAIMED, claim_token=token, claimed_at=utcnow())
                )
                await db.commit()

                result = await db.execute(
                    select(ScheduledRetry)
                    .where(ScheduledRetry.claim_token == token)
                    .order_by(ScheduledRetry.due_at, ScheduledRetry.id)
                )
                return list(result.scalars().all())

    async def complete(self, retry_id: int) -> None:
        """Remove a row whose attempt has run (or was dropped)."""
        async with store_errors("retry.complete"):
            async with self._session_factory() as db:
                await db.execute(delete(ScheduledRetry).where(ScheduledRetry.id == retry_id))
                await db.commit()

    async def cancel_pending(self, event_id: str, webhook_id: str) -> int:
        """Delete unclaimed rows for one (event, webhook) pair. Returns how many went."""
        async with store_errors("retry.cancel_pending"):
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(ScheduledRetry).where(
                        ScheduledRetry.event_id == event_id,
                        ScheduledRetry.webhook_id == webhook_id,
                        ScheduledRetry.status == RetryStatus.PENDING,
                    )
                )
                await db.commit()
                return result.rowcount or 0

    async def release(self, retry_id: int, error: str) -> None:
        """Put a claimed row back to pending after an infrastructure failure."""
        async with store_errors("retry.release"):
            async with self._session_factory() as db:
                await db.execute(
                    update(ScheduledRetry)
                    .where(ScheduledRetry.id == retry_id)
                    .values(
                        status=RetryStatus.PENDING,
                        claim_token=None,
                        claimed_at=None,
                        last_error=error[:1000],
                    )
                )
                await db.commit()

    async def release_stale(self, older_than: timedelta) -> int:
        """Return claims abandoned by a crashed scheduler to the pending pool."""
        cutoff = utcnow() - older_than
        async with store_errors("retry.release_stale"):
            async with self._session_factory() as db:
                result = await db.execute(
                    update(ScheduledRetry)
                    .where(
                        ScheduledRetry.status == RetryStatus.CLAIMED,
                        ScheduledRetry.claimed_at < cutoff,
                    )
                    .values(status=RetryStatus.PENDING, claim_token=None, claimed_at=None)
                )
                await db.commit()
                return result.rowcount or 0

    async def pending_count(self) -> int:
        """Rows not yet completed, claimed ones included."""
        async with store_errors("retry.pending_count"):
            async with self._session_factory() as db:
                result = await db.execute(select(func.count(ScheduledRetry.id)))
                return result.scalar_one()

    async def list_all(self) -> list[ScheduledRetry]:
        async with store_errors("retry.list_all"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(ScheduledRetry).order_by(ScheduledRetry.due_at, ScheduledRetry.id)
                )
                return list(result.scalars().all())
