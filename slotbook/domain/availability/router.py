"""Availability router - FastAPI endpoints for weekly rules, overrides and holidays"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import AvailabilityRule, DateOverride, User
from ...shared.time_utils import utcnow
from .schemas import (
    AvailabilityRuleResponse,
    DateOverrideIn,
    DateOverrideResponse,
    HolidayBlockRequest,
    HolidayListResponse,
    TimeWindowResponse,
    WeeklyScheduleUpdate,
    WorkDaysResponse,
)
from .service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/availability", tags=["Availability"])


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


def _rule_response(rule: AvailabilityRule) -> AvailabilityRuleResponse:
    return AvailabilityRuleResponse(
        id=rule.id, dayOfWeek=rule.day_of_week, startTime=rule.start_time, endTime=rule.end_time
    )


def _override_response(override: DateOverride) -> DateOverrideResponse:
    return DateOverrideResponse(
        id=override.id,
        date=override.date,
        isAvailable=override.is_available,
        startTime=override.start_time,
        endTime=override.end_time,
        reason=override.reason,
    )


# ============================================================================
# WEEKLY RULES
# ============================================================================


@router.get("/rules", response_model=list[AvailabilityRuleResponse])
async def get_rules(
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Get the current user's weekly schedule"""
    return [_rule_response(r) for r in service.get_rules(current_user)]


@router.put("/rules", response_model=list[AvailabilityRuleResponse])
async def replace_rules(
    data: WeeklyScheduleUpdate,
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Replace the whole weekly schedule"""
    return [_rule_response(r) for r in service.replace_rules(data, current_user)]


# ============================================================================
# DATE OVERRIDES & HOLIDAYS
# ============================================================================


@router.get("/overrides", response_model=list[DateOverrideResponse])
async def list_overrides(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
):
    """List date overrides, optionally within a date range"""
    return [_override_response(o) for o in service.list_overrides(current_user, start_date, end_date)]


@router.put("/overrides/{day}", response_model=DateOverrideResponse)
async def upsert_override(
    day: date,
    data: DateOverrideIn,
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Create or replace the override for a date"""
    return _override_response(service.upsert_override(day, data, current_user))


@router.delete("/overrides/{day}")
async def delete_override(
    day: date,
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Remove an override so the weekly rules apply again"""
    service.delete_override(day, current_user)
    return {"message": "Override deleted"}


@router.get("/holidays", response_model=HolidayListResponse)
async def list_holidays(
    year: Optional[int] = Query(None, ge=1970, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Public holidays for the current user's country (from holiday_country or timezone)"""
    year = year or utcnow().year
    return HolidayListResponse(
        country=service.holiday_country(current_user),
        year=year,
        holidays=service.public_holidays(current_user, year, month),
    )


@router.post("/holidays", response_model=list[DateOverrideResponse])
async def block_holidays(
    data: HolidayBlockRequest,
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Block the listed holiday dates, or the user's public holidays for a year"""
    overrides = service.block_holidays(data.holidays, current_user, data.year)
    return [_override_response(o) for o in overrides]


@router.get("/defaults", response_model=WorkDaysResponse)
async def get_defaults(
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Suggested work days for a new weekly schedule"""
    return WorkDaysResponse(
        workDays=service.default_work_days(current_user),
        country=service.holiday_country(current_user),
        timezone=current_user.timezone,
    )


@router.get("/windows", response_model=list[TimeWindowResponse])
async def get_windows(
    day: date = Query(..., alias="date"),
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Preview the resolved open windows for a date"""
    return [TimeWindowResponse(start=w.start, end=w.end) for w in service.resolve(day, current_user)]
