"""Event type domain schemas - Pydantic models for validation"""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...models import SchedulingType

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def _validate_slug(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().lower()
    if not SLUG_PATTERN.match(v):
        raise ValueError("Slug may only contain lowercase letters, digits and hyphens")
    return v


class EventTypeCreate(BaseModel):
    """Schema for creating an event type. Set teamId for a team event type."""

    slug: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = None
    duration: int = Field(gt=0, le=1440)
    bufferBefore: int = Field(default=0, ge=0, le=720)
    bufferAfter: int = Field(default=0, ge=0, le=720)
    minNotice: int = Field(default=0, ge=0)
    maxDaysAhead: int = Field(default=60, ge=0, le=3650)
    schedulingType: SchedulingType = SchedulingType.INDIVIDUAL
    requiresConfirmation: bool = False
    teamId: Optional[int] = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v):
        return _validate_slug(v)


class EventTypeUpdate(BaseModel):
    """Schema for updating an event type. Ownership and scheduling type are fixed."""

    slug: Optional[str] = Field(default=None, min_length=1, max_length=100)
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0, le=1440)
    bufferBefore: Optional[int] = Field(default=None, ge=0, le=720)
    bufferAfter: Optional[int] = Field(default=None, ge=0, le=720)
    minNotice: Optional[int] = Field(default=None, ge=0)
    maxDaysAhead: Optional[int] = Field(default=None, ge=0, le=3650)
    requiresConfirmation: Optional[bool] = None
    isActive: Optional[bool] = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v):
        return _validate_slug(v)


class EventTypeResponse(BaseModel):
    """Schema for event type response"""

    id: int
    ownerId: Optional[int] = None
    teamId: Optional[int] = None
    slug: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    duration: int
    bufferBefore: int
    bufferAfter: int
    minNotice: int
    maxDaysAhead: int
    schedulingType: SchedulingType
    requiresConfirmation: bool
    isActive: bool
    created_at: Optional[datetime] = None
