"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...models import BookingStatus
from ...shared.validators import validate_email, validate_timezone


class GuestIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str
    timezone: str = "UTC"

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return validate_email(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        return validate_timezone(v)


class RecurrenceIn(BaseModel):
    """A series of count occurrences, intervalDays apart (weekly by default)"""

    count: int = Field(ge=2, le=52)
    intervalDays: int = Field(default=7, ge=1, le=365)


class BookingCreate(BaseModel):
    """Schema for creating a booking. start is an ISO-8601 instant with an offset."""

    eventTypeId: int
    start: str
    guest: GuestIn
    recurrence: Optional[RecurrenceIn] = None


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)
    cancelSeries: bool = False


class BookingReschedule(BaseModel):
    start: str
    reason: Optional[str] = Field(default=None, max_length=2000)


class BookingResponse(BaseModel):
    """Schema for booking response. status is COMPLETED once a confirmed booking has ended."""

    id: int
    uid: str
    eventTypeId: int
    hostId: int
    guestName: str
    guestEmail: str
    guestTimezone: str
    startTime: datetime
    endTime: datetime
    status: BookingStatus
    recurrenceParentId: Optional[int] = None
    rescheduledFromId: Optional[int] = None
    cancellationReason: Optional[str] = None
    cancelledAt: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BookingCreatedResponse(BookingResponse):
    """The first booking, plus every occurrence for a recurring series"""

    occurrences: list[BookingResponse] = []
