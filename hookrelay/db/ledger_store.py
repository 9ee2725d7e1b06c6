"""
Ledger Store — append-only persistence of delivery attempts.
"""
from datetime import timedelta
from typing import Any

from sqlalchemy import select, delete, func, case

from hookrelay.db.database import SessionFactory, store_errors, utcnow
from hookrelay.db.models.delivery_attempt import DeliveryAttempt, DeliveryStatus


class LedgerStore:
    """Delivery attempt rows are written once and never updated"""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def append(self, attempt: DeliveryAttempt) -> DeliveryAttempt:
        async with store_errors("ledger.append"):
            async with self._session_factory() as db:
                db.add(attempt)
                await db.commit()
                await db.refresh(attempt)
                return attempt

    async def find_by_event(self, event_id: str) -> list[DeliveryAttempt]:
        async with store_errors("ledger.find_by_event"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(DeliveryAttempt)
                    .where(DeliveryAttempt.event_id == event_id)
                    .order_by(
                        DeliveryAttempt.webhook_id,
                        DeliveryAttempt.attempt_number,
                    )
                )
                return list(result.scalars().all())

    async def find_by_webhook(
        self, webhook_id: str, limit: int = 50, offset: int = 0
    ) -> list[DeliveryAttempt]:
        async with store_errors("ledger.find_by_webhook"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(DeliveryAttempt)
                    .where(DeliveryAttempt.webhook_id == webhook_id)
                    .order_by(DeliveryAttempt.created_at.desc(), DeliveryAttempt.attempt_number.desc())
                    .limit(limit)
                    .offset(offset)
                )
                return list(result.scalars().all())

    async def last_attempt_number(self, event_id: str, webhook_id: str) -> int:
        """Highest attempt number recorded for the pair, 0 when none."""
        async with store_errors("ledger.last_attempt_number"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(func.max(DeliveryAttempt.attempt_number)).where(
                        DeliveryAttempt.event_id == event_id,
                        DeliveryAttempt.webhook_id == webhook_id,
                    )
                )
                return result.scalar_one_or_none() or 0

    async def stats(self, webhook_id: str | None = None) -> dict[str, Any]:
        def _count(status: DeliveryStatus):
            return func.coalesce(
                func.sum(case((DeliveryAttempt.status == status, 1), else_=0)), 0
            )

        query = select(
            func.count(DeliveryAttempt.id),
            _count(DeliveryStatus.SUCCESS),
            _count(DeliveryStatus.FAILED),
            _count(DeliveryStatus.RETRYING),
            _count(DeliveryStatus.PENDING),
            func.avg(DeliveryAttempt.attempt_number),
        )
        if webhook_id:
            query = query.where(DeliveryAttempt.webhook_id == webhook_id)

        async with store_errors("ledger.stats"):
            async with self._session_factory() as db:
                total, successful, failed, retrying, pending, avg_attempts = (
                    await db.execute(query)
                ).one()
                return {
                    "total_deliveries": total,
                    "successful": int(successful),
                    "failed": int(failed),
                    "retrying": int(retrying),
                    "pending": int(pending),
                    "avg_attempts": float(avg_attempts) if avg_attempts is not None else 0.0,
                }

    async def recent(self, limit: int = 100) -> list[DeliveryAttempt]:
        async with store_errors("ledger.recent"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(DeliveryAttempt)
                    .order_by(DeliveryAttempt.created_at.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())

    async def purge_older_than(self, age: timedelta) -> int:
        cutoff = utcnow() - age
        async with store_errors("ledger.purge_older_than"):
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(DeliveryAttempt).where(DeliveryAttempt.created_at < cutoff)
                )
                await db.commit()
                return result.rowcount or 0
