"""Webhook domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from ...models_webhook import DeliveryStatus, WebhookEvent


def _validate_url(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError("Webhook URL must be an absolute http(s) URL")
    return v


class WebhookCreate(BaseModel):
    url: str = Field(max_length=2048)
    events: list[WebhookEvent] = Field(min_length=1)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        return _validate_url(v)


class WebhookUpdate(BaseModel):
    url: Optional[str] = Field(default=None, max_length=2048)
    events: Optional[list[WebhookEvent]] = Field(default=None, min_length=1)
    isActive: Optional[bool] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        return _validate_url(v)


class WebhookResponse(BaseModel):
    id: int
    url: str
    events: list[str]
    isActive: bool
    created_at: Optional[datetime] = None


class WebhookCreatedResponse(WebhookResponse):
    """Only returned once, at creation: the signing secret"""

    secret: str


class DeliveryResponse(BaseModel):
    id: int
    webhookId: Optional[int] = None
    event: str
    payload: dict[str, Any]
    status: DeliveryStatus
    responseCode: Optional[int] = None
    responseBody: Optional[str] = None
    attempts: int
    lastError: Optional[str] = None
    nextAttemptAt: Optional[datetime] = None
    created_at: Optional[datetime] = None
