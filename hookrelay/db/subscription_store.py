"""
Subscription Store — persistence of webhook subscriptions.

The delivery core only reads subscriptions. Mutations exist for the external
administration layer; each one notifies registered listeners (the webhook
registry) so cached subscriber lists are invalidated.
"""
from typing import Awaitable, Callable

from pydantic import BaseModel, field_validator
from sqlalchemy import select

from hookrelay.core.exceptions import WebhookNotFoundError
from hookrelay.core.logging import get_logger
from hookrelay.core.validation import EventValidator, UrlValidator
from hookrelay.db.database import SessionFactory, store_errors, utcnow
from hookrelay.db.models.webhook import Webhook

logger = get_logger(__name__)

ChangeListener = Callable[[str], Awaitable[None]]


def _check_url(v: str) -> str:
    is_valid, error = UrlValidator.validate(v)
    if not is_valid:
        raise ValueError(error)
    return v


def _check_event_types(v: list[str]) -> list[str]:
    if not v:
        raise ValueError("At least one event type is required")
    for event_type in v:
        is_valid, error = EventValidator.validate_type(event_type)
        if not is_valid:
            raise ValueError(error)
    # סדר נשמר, כפילויות מוסרות
    return list(dict.fromkeys(v))


class WebhookCreate(BaseModel):
    """Schema for registering a new subscription"""
    name: str
    url: str
    event_types: list[str]
    description: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not 3 <= len(v) <= 255:
            raise ValueError("Name must be 3-255 characters")
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _check_url(v)

    @field_validator("event_types")
    @classmethod
    def validate_event_types(cls, v: list[str]) -> list[str]:
        return _check_event_types(v)


class WebhookUpdate(BaseModel):
    """
    Partial update of a subscription.

    Only these fields are updatable; fields left as None are untouched.
    The secret key is deliberately absent.
    """
    name: str | None = None
    url: str | None = None
    event_types: list[str] | None = None
    description: str | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if not 3 <= len(v) <= 255:
            raise ValueError("Name must be 3-255 characters")
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        return None if v is None else _check_url(v)

    @field_validator("event_types")
    @classmethod
    def validate_event_types(cls, v: list[str] | None) -> list[str] | None:
        return None if v is None else _check_event_types(v)

    def changed_fields(self) -> dict:
        return self.model_dump(exclude_none=True)


class SubscriptionStore:
    """Webhook persistence with change notification"""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory
        self._listeners: list[ChangeListener] = []

    def on_change(self, listener: ChangeListener) -> None:
        """Register a coroutine called with the webhook id after every mutation."""
        self._listeners.append(listener)

    async def _notify(self, webhook_id: str) -> None:
        for listener in self._listeners:
            try:
                await listener(webhook_id)
            except Exception as e:
                # the mutation is already committed; a stale cache expires with its TTL
                logger.error(
                    "Subscription change listener failed",
                    extra_data={"webhook_id": webhook_id, "error": str(e)},
                    exc_info=True,
                )

    # ==================== reads (used by the delivery core) ====================

    async def find_by_id(self, webhook_id: str) -> Webhook | None:
        async with store_errors("webhook.find_by_id"):
            async with self._session_factory() as db:
                result = await db.execute(select(Webhook).where(Webhook.id == webhook_id))
                return result.scalar_one_or_none()

    async def find_active(self) -> list[Webhook]:
        async with store_errors("webhook.find_active"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Webhook)
                    .where(Webhook.is_active.is_(True))
                    .order_by(Webhook.created_at.desc())
                )
                return list(result.scalars().all())

    async def find_by_event_type(self, event_type: str) -> list[Webhook]:
        """Active subscriptions listing ``event_type``.

        event_types is a JSON column, so membership is checked in Python rather
        than with a dialect-specific array operator.
        """
        return [w for w in await self.find_active() if w.subscribes_to(event_type)]

    # ==================== mutations (external administration) ====================

    async def create(self, data: WebhookCreate) -> Webhook:
        """Create a subscription. The returned object is the only one carrying the secret."""
        async with store_errors("webhook.create"):
            async with self._session_factory() as db:
                webhook = Webhook(
                    name=data.name,
                    url=data.url,
                    event_types=data.event_types,
                    description=data.description,
                    is_active=True,
                )
                db.add(webhook)
                await db.commit()
                await db.refresh(webhook)

        logger.info("Webhook subscription created", extra_data={
            "webhook_id": webhook.id,
            "name": webhook.name,
        })
        await self._notify(webhook.id)
        return webhook

    async def update(self, webhook_id: str, changes: WebhookUpdate) -> Webhook:
        fields = changes.changed_fields()
        async with store_errors("webhook.update"):
            async with self._session_factory() as db:
                result = await db.execute(select(Webhook).where(Webhook.id == webhook_id))
                webhook = result.scalar_one_or_none()
                if webhook is None:
                    raise WebhookNotFoundError(webhook_id)
                if not fields:
                    return webhook
                for field, value in fields.items():
                    setattr(webhook, field, value)
                webhook.updated_at = utcnow()
                await db.commit()
                await db.refresh(webhook)

        logger.info("Webhook updated", extra_data={
            "webhook_id": webhook_id,
            "fields": sorted(fields),
        })
        await self._notify(webhook_id)
        return webhook

    async def set_active(self, webhook_id: str, is_active: bool) -> Webhook:
        return await self.update(webhook_id, WebhookUpdate(is_active=is_active))

    async def delete(self, webhook_id: str) -> None:
        async with store_errors("webhook.delete"):
            async with self._session_factory() as db:
                result = await db.execute(select(Webhook).where(Webhook.id == webhook_id))
                webhook = result.scalar_one_or_none()
                if webhook is None:
                    raise WebhookNotFoundError(webhook_id)
                await db.delete(webhook)
                await db.commit()

        logger.info("Webhook deleted", extra_data={"webhook_id": webhook_id})
        await self._notify(webhook_id)
