"""Availability service - Business logic for weekly rules, overrides and holidays"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import InvalidInputError, NotFoundError
from ...models import AvailabilityRule, DateOverride, User
from ...shared.time_utils import utcnow
from .holidays import country_from_timezone, default_work_days, public_holidays
from .repository import AvailabilityRepository
from .resolver import AvailabilityResolver, TimeWindow
from .schemas import DateOverrideIn, Holiday, WeeklyScheduleUpdate

logger = logging.getLogger(__name__)


class AvailabilityService:
    """Service layer for availability management"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AvailabilityRepository()

    def get_rules(self, user: User) -> list[AvailabilityRule]:
        return self.repo.get_rules(self.db, user.id)

    def replace_rules(self, data: WeeklyScheduleUpdate, user: User) -> list[AvailabilityRule]:
        """Replace the weekly schedule. Existing bookings are left untouched."""
        logger.info(f"📅 Replacing weekly schedule for user {user.id} ({len(data.rules)} rules)")
        rules = [
            {"day_of_week": r.dayOfWeek, "start_time": r.startTime, "end_time": r.endTime}
            for r in data.rules
        ]
        return self.repo.replace_rules(self.db, user.id, rules)

    def list_overrides(
        self, user: User, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> list[DateOverride]:
        if start_date and end_date and start_date > end_date:
            raise InvalidInputError("start_date must not be after end_date")
        return self.repo.list_overrides(self.db, user.id, start_date, end_date)

    def upsert_override(self, day: date, data: DateOverrideIn, user: User) -> DateOverride:
        override = self.repo.upsert_override(
            self.db,
            user.id,
            day,
            is_available=data.isAvailable,
            start_time=data.startTime,
            end_time=data.endTime,
            reason=data.reason,
        )
        logger.info(
            f"✅ Override for user {user.id} on {day}: "
            f"{'custom hours' if override.is_available else 'blocked'}"
        )
        return override

    def delete_override(self, day: date, user: User) -> None:
        override = self.repo.get_override(self.db, user.id, day)
        if not override:
            raise NotFoundError(f"No override for {day.isoformat()}")
        self.repo.delete_override(self.db, override)
        logger.info(f"🗑️ Removed override for user {user.id} on {day}")

    def holiday_country(self, user: User) -> Optional[str]:
        return user.holiday_country or country_from_timezone(user.timezone)

    def public_holidays(self, user: User, year: int, month: Optional[int] = None) -> list[Holiday]:
        """Public holidays of the owner's country"""
        country = self.holiday_country(user)
        if not country:
            return []
        return public_holidays(country, year, month)

    def default_work_days(self, user: User) -> list[int]:
        return default_work_days(self.holiday_country(user))

    def block_holidays(
        self, holidays: Optional[list[Holiday]], user: User, year: Optional[int] = None
    ) -> list[DateOverride]:
        """
        Block each holiday date for the owner. Without an explicit list the
        owner's public holidays for year (default: the current year) are used.

        Holidays are stored as ordinary blocking overrides named after the
        holiday, so they replace any earlier override on the same date and
        can be lifted again with delete_override.
        """
        if holidays is None:
            holidays = self.public_holidays(user, year or utcnow().year)

        # Last entry wins when a date is listed twice
        by_date = {holiday.date: holiday for holiday in holidays}
        overrides = [
            self.repo.upsert_override(
                self.db, user.id, day, commit=False, is_available=False, reason=holiday.name
            )
            for day, holiday in sorted(by_date.items())
        ]
        self.db.commit()
        for override in overrides:
            self.db.refresh(override)
        logger.info(f"🎌 Blocked {len(overrides)} holiday date(s) for user {user.id}")
        return overrides

    def resolve(self, day: date, user: User) -> list[TimeWindow]:
        return AvailabilityResolver(self.db).resolve(user.id, day)
