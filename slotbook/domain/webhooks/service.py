"""Webhook service - Business logic for webhook management"""

import asyncio
import logging

from sqlalchemy.orm import Session

from ...errors import InvalidInputError, NotFoundError
from ...models import User
from ...models_webhook import Webhook, WebhookDelivery
from ...webhook_security import (
    UnsafeWebhookTargetError,
    assert_safe_webhook_target,
    generate_webhook_secret,
)
from .dispatcher import NotificationDispatcher
from .repository import WebhookRepository
from .schemas import WebhookCreate, WebhookUpdate

logger = logging.getLogger(__name__)


async def ensure_safe_target(url: str) -> None:
    """Registration-time SSRF check. Deliveries check again before every attempt."""
    try:
        await asyncio.to_thread(assert_safe_webhook_target, url)
    except UnsafeWebhookTargetError as e:
        logger.warning(f"🚫 Rejected webhook URL: {e}")
        raise InvalidInputError(f"Webhook URL is not allowed: {e}") from e


class WebhookService:
    """Service layer for webhook business logic"""

    def __init__(self, db: Session, dispatcher: NotificationDispatcher):
        self.db = db
        self.repo = WebhookRepository()
        self.dispatcher = dispatcher

    def get_webhooks(self, user: User) -> list[Webhook]:
        return self.repo.get_webhooks(self.db, user.id)

    def get_webhook(self, webhook_id: int, user: User) -> Webhook:
        webhook = self.repo.get_webhook(self.db, webhook_id, user.id)
        if not webhook:
            raise NotFoundError("Webhook not found")
        return webhook

    async def create_webhook(self, data: WebhookCreate, user: User) -> Webhook:
        await ensure_safe_target(data.url)
        webhook = self.repo.create_webhook(
            self.db,
            {
                "owner_id": user.id,
                "url": data.url,
                "events": sorted({e.value for e in data.events}),
                "secret": generate_webhook_secret(),
                "is_active": True,
            },
        )
        logger.info(f"✅ Webhook {webhook.id} created for user {user.id}: {webhook.events}")
        return webhook

    async def update_webhook(self, webhook_id: int, data: WebhookUpdate, user: User) -> Webhook:
        webhook = self.get_webhook(webhook_id, user)
        update_data = {}
        if data.url is not None:
            await ensure_safe_target(data.url)
            update_data["url"] = data.url
        if data.events is not None:
            update_data["events"] = sorted({e.value for e in data.events})
        if data.isActive is not None:
            update_data["is_active"] = data.isActive
        return self.repo.update_webhook(self.db, webhook, update_data)

    def delete_webhook(self, webhook_id: int, user: User) -> None:
        webhook = self.get_webhook(webhook_id, user)
        self.repo.delete_webhook(self.db, webhook)
        logger.info(f"🗑️ Webhook {webhook_id} deleted")

    def get_deliveries(self, webhook_id: int, user: User, limit: int = 50) -> list[WebhookDelivery]:
        webhook = self.get_webhook(webhook_id, user)
        return self.repo.get_deliveries(self.db, webhook.id, limit)

    async def send_test(self, webhook_id: int, user: User) -> WebhookDelivery:
        webhook = self.get_webhook(webhook_id, user)
        return await self.dispatcher.send_test(webhook)
