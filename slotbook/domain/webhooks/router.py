"""Webhook router - FastAPI endpoints for webhook management"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...models_webhook import DeliveryStatus, Webhook, WebhookDelivery
from .dispatcher import DeliveryScheduler, NotificationDispatcher
from .schemas import (
    DeliveryResponse,
    WebhookCreate,
    WebhookCreatedResponse,
    WebhookResponse,
    WebhookUpdate,
)
from .service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_delivery_scheduler(request: Request) -> DeliveryScheduler:
    """The scheduler created at startup"""
    return request.app.state.delivery_scheduler


def get_dispatcher(
    db: Session = Depends(get_db),
    scheduler: DeliveryScheduler = Depends(get_delivery_scheduler),
) -> NotificationDispatcher:
    """Dependency injection for NotificationDispatcher"""
    return NotificationDispatcher(db, scheduler=scheduler)


def get_webhook_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> WebhookService:
    """Dependency injection for WebhookService"""
    return WebhookService(db, dispatcher)


def _webhook_response(webhook: Webhook) -> WebhookResponse:
    return WebhookResponse(
        id=webhook.id,
        url=webhook.url,
        events=webhook.events or [],
        isActive=webhook.is_active,
        created_at=webhook.created_at,
    )


def _delivery_response(delivery: WebhookDelivery) -> DeliveryResponse:
    return DeliveryResponse(
        id=delivery.id,
        webhookId=delivery.webhook_id,
        event=delivery.event,
        payload=delivery.payload,
        status=DeliveryStatus(delivery.status),
        responseCode=delivery.response_code,
        responseBody=delivery.response_body,
        attempts=delivery.attempts,
        lastError=delivery.last_error,
        nextAttemptAt=delivery.next_attempt_at,
        created_at=delivery.created_at,
    )


@router.get("", response_model=list[WebhookResponse])
async def get_webhooks(
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service),
):
    return [_webhook_response(w) for w in service.get_webhooks(current_user)]


@router.post("", response_model=WebhookCreatedResponse)
async def create_webhook(
    data: WebhookCreate,
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service),
):
    """Register a webhook. The signing secret is only shown in this response."""
    webhook = await service.create_webhook(data, current_user)
    return WebhookCreatedResponse(**_webhook_response(webhook).model_dump(), secret=webhook.secret)


@router.patch("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: int,
    data: WebhookUpdate,
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service),
):
    return _webhook_response(await service.update_webhook(webhook_id, data, current_user))


@router.delete("/{webhook_id}")
async def delete_webhook(
    webhook_id: int,
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service),
):
    service.delete_webhook(webhook_id, current_user)
    return {"message": "Webhook deleted"}


@router.get("/{webhook_id}/deliveries", response_model=list[DeliveryResponse])
async def get_deliveries(
    webhook_id: int,
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service),
):
    """Most recent deliveries first"""
    return [_delivery_response(d) for d in service.get_deliveries(webhook_id, current_user, limit)]


@router.post("/{webhook_id}/test", response_model=DeliveryResponse)
async def send_test_webhook(
    webhook_id: int,
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service),
):
    """Send a sample event right away and report the outcome"""
    return _delivery_response(await service.send_test(webhook_id, current_user))
