"""Webhook repository - Database operations for webhooks and deliveries"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models_webhook import DeliveryStatus, Webhook, WebhookDelivery


class WebhookRepository:
    """Repository for webhook database operations"""

    @staticmethod
    def get_webhook(db: Session, webhook_id: int, owner_id: int) -> Optional[Webhook]:
        return (
            db.query(Webhook).filter(Webhook.id == webhook_id, Webhook.owner_id == owner_id).first()
        )

    @staticmethod
    def get_webhooks(db: Session, owner_id: int) -> list[Webhook]:
        return db.query(Webhook).filter(Webhook.owner_id == owner_id).order_by(Webhook.id).all()

    @staticmethod
    def get_subscribed_webhooks(db: Session, owner_id: int, event: str) -> list[Webhook]:
        """Active webhooks of an owner subscribed to event"""
        # Subscriptions live in a JSON list, filtered here to stay backend-neutral
        webhooks = (
            db.query(Webhook)
            .filter(Webhook.owner_id == owner_id, Webhook.is_active.is_(True))
            .order_by(Webhook.id)
            .all()
        )
        return [w for w in webhooks if event in (w.events or [])]

    @staticmethod
    def create_webhook(db: Session, webhook_data: dict) -> Webhook:
        webhook = Webhook(**webhook_data)
        db.add(webhook)
        db.commit()
        db.refresh(webhook)
        return webhook

    @staticmethod
    def update_webhook(db: Session, webhook: Webhook, update_data: dict) -> Webhook:
        for key, value in update_data.items():
            setattr(webhook, key, value)
        db.commit()
        db.refresh(webhook)
        return webhook

    @staticmethod
    def delete_webhook(db: Session, webhook: Webhook) -> None:
        """Delete a webhook. Its deliveries stay, detached, for the audit trail."""
        db.delete(webhook)
        db.commit()

    @staticmethod
    def create_delivery(db: Session, webhook_id: int, event: str, payload: dict, next_attempt_at: datetime) -> WebhookDelivery:
        delivery = WebhookDelivery(
            webhook_id=webhook_id,
            event=event,
            payload=payload,
            status=DeliveryStatus.PENDING.value,
            attempts=0,
            next_attempt_at=next_attempt_at,
        )
        db.add(delivery)
        return delivery

    @staticmethod
    def get_delivery(db: Session, delivery_id: int) -> Optional[WebhookDelivery]:
        return db.query(WebhookDelivery).filter(WebhookDelivery.id == delivery_id).first()

    @staticmethod
    def get_deliveries(db: Session, webhook_id: int, limit: int = 50) -> list[WebhookDelivery]:
        return (
            db.query(WebhookDelivery)
            .filter(WebhookDelivery.webhook_id == webhook_id)
            .order_by(WebhookDelivery.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_overdue_deliveries(db: Session, now: datetime, limit: int = 100) -> list[WebhookDelivery]:
        """PENDING deliveries whose next attempt should already have run (naive UTC)"""
        return (
            db.query(WebhookDelivery)
            .filter(
                WebhookDelivery.status == DeliveryStatus.PENDING.value,
                WebhookDelivery.next_attempt_at.isnot(None),
                WebhookDelivery.next_attempt_at <= now,
            )
            .order_by(WebhookDelivery.next_attempt_at)
            .limit(limit)
            .all()
        )
