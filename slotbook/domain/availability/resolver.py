"""
Availability resolution - weekly rules, date overrides and holiday blocking

A date override always wins over the weekly rules for its date:
  * is_available=False blocks the whole date (holidays are stored this way)
  * is_available=True with custom hours replaces that date's rules with one window
With no override, every weekly rule for the weekday yields one window. Windows
are not merged. A date with neither rules nor an override is unavailable.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from ...models import AvailabilityRule, DateOverride
from ...shared.time_utils import Interval, js_weekday, wall_clock_to_utc
from ...shared.validators import time_to_minutes
from .repository import AvailabilityRepository


@dataclass(frozen=True)
class TimeWindow:
    """Wall-clock window ("HH:MM", "HH:MM") on a single calendar date"""

    start: str
    end: str


def resolve_windows(
    day: date, rules: Iterable[AvailabilityRule], override: Optional[DateOverride]
) -> list[TimeWindow]:
    """Pure resolution step, kept free of database access for reuse in team scheduling"""
    if override is not None:
        if not override.is_available:
            return []
        if override.start_time and override.end_time:
            return [TimeWindow(override.start_time, override.end_time)]
        # An "available" override without custom hours leaves the weekly rules in force

    weekday = js_weekday(day)
    windows = [
        TimeWindow(rule.start_time, rule.end_time)
        for rule in rules
        if rule.day_of_week == weekday
    ]
    return sorted(windows, key=lambda w: (time_to_minutes(w.start), time_to_minutes(w.end)))


class AvailabilityResolver:
    """Resolves an owner's open windows for a date from current storage"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AvailabilityRepository()

    def resolve(self, owner_id: int, day: date) -> list[TimeWindow]:
        override = self.repo.get_override(self.db, owner_id, day)
        rules = self.repo.get_rules_for_weekday(self.db, owner_id, js_weekday(day))
        return resolve_windows(day, rules, override)

    def resolve_between(
        self, owner_id: int, tz: ZoneInfo, range_start: datetime, range_end: datetime
    ) -> list[Interval]:
        """
        Open windows as UTC intervals for every owner-local date touching
        [range_start, range_end). Windows are returned whole, not clipped to
        the range, so the slot grid stays anchored at each window start.
        """
        first_day = range_start.astimezone(tz).date()
        last_day = (range_end - timedelta(microseconds=1)).astimezone(tz).date()
        intervals = []
        day = first_day
        while day <= last_day:
            for window in self.resolve(owner_id, day):
                start = wall_clock_to_utc(day, window.start, tz)
                end = wall_clock_to_utc(day, window.end, tz)
                # A window swallowed by a DST transition can collapse
                if start < end:
                    intervals.append(Interval(start, end))
            day += timedelta(days=1)
        return intervals
