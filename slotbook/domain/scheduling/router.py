"""Scheduling router - Public slot listing"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...database import get_db
from ...services.google_calendar_service import CalendarProvider, GoogleCalendarProvider
from .slot_service import SlotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/event-types", tags=["Scheduling"])


class SlotListResponse(BaseModel):
    eventTypeId: int
    date: date
    timezone: str
    slots: list[str]  # ISO-8601 in the guest timezone


def get_calendar_provider(db: Session = Depends(get_db)) -> CalendarProvider:
    """Dependency injection for the external calendar collaborator"""
    return GoogleCalendarProvider(db)


def get_slot_service(
    db: Session = Depends(get_db),
    calendar: CalendarProvider = Depends(get_calendar_provider),
) -> SlotService:
    """Dependency injection for SlotService"""
    return SlotService(db, calendar)


@router.get("/{event_type_id}/slots", response_model=SlotListResponse)
async def list_slots(
    event_type_id: int,
    day: date = Query(..., alias="date"),
    timezone: Optional[str] = Query("UTC"),
    service: SlotService = Depends(get_slot_service),
):
    """List bookable start times on a date in the guest's timezone (public)"""
    slots = await service.list_slots(event_type_id, day, timezone)
    return SlotListResponse(
        eventTypeId=event_type_id,
        date=day,
        timezone=timezone or "UTC",
        slots=[slot.isoformat() for slot in slots],
    )


class MonthAvailabilityResponse(BaseModel):
    eventTypeId: int
    month: str  # YYYY-MM
    timezone: str
    availableDates: list[date]


@router.get("/{event_type_id}/slots/month", response_model=MonthAvailabilityResponse)
async def list_available_dates(
    event_type_id: int,
    month: str = Query(..., pattern=r"^(19|20)\d{2}-(0[1-9]|1[0-2])$"),
    timezone: Optional[str] = Query("UTC"),
    service: SlotService = Depends(get_slot_service),
):
    """Dates in a month that have at least one bookable slot (public)"""
    year, month_number = (int(part) for part in month.split("-"))
    dates = await service.available_dates(event_type_id, year, month_number, timezone)
    return MonthAvailabilityResponse(
        eventTypeId=event_type_id,
        month=month,
        timezone=timezone or "UTC",
        availableDates=dates,
    )
