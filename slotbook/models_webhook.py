"""
Outbound Webhook Models
"""
import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class WebhookEvent(str, enum.Enum):
    BOOKING_CREATED = "booking.created"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_RESCHEDULED = "booking.rescheduled"


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Webhook(Base):
    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(2048), nullable=False)
    events = Column(JSON, default=list, nullable=False)  # list of WebhookEvent values
    secret = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    deliveries = relationship("WebhookDelivery", back_populates="webhook")


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    # Kept as an audit trail after its webhook is deleted
    webhook_id = Column(Integer, ForeignKey("webhooks.id", ondelete="SET NULL"), nullable=True, index=True)
    event = Column(String(50), nullable=False)
    # Full {event, timestamp, data} envelope; every attempt sends the same bytes
    payload = Column(JSON, nullable=False)
    status = Column(String(20), default=DeliveryStatus.PENDING.value, nullable=False, index=True)
    response_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)  # Truncated to 1000 chars
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)  # naive UTC, None once terminal
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    webhook = relationship("Webhook", back_populates="deliveries")
