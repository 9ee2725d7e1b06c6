"""
Celery Application Configuration

Celery runs periodic maintenance only; event delivery itself happens in the
asyncio delivery worker.
"""
from celery import Celery
from celery.schedules import crontab

from hookrelay.core.config import settings

celery_app = Celery(
    "hookrelay",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["hookrelay.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "purge-delivery-ledger-daily": {
        "task": "hookrelay.workers.tasks.purge_delivery_attempts",
        "schedule": crontab(hour="3", minute="0"),
    },
    # claims abandoned by a crashed scheduler loop go back to pending
    "release-stale-retries-every-5-minutes": {
        "task": "hookrelay.workers.tasks.release_stale_retries",
        "schedule": 300.0,
    },
}
