"""Instant/wall-clock conversions shared by the scheduling code"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from .validators import time_to_minutes


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def to_utc_naive(value: datetime) -> datetime:
    """Aware datetime -> naive UTC for storage"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_utc_naive(value: datetime) -> datetime:
    """Stored naive UTC -> aware UTC"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc)
    return value.replace(tzinfo=timezone.utc)


def js_weekday(day: date) -> int:
    """Day of week with 0=Sunday ... 6=Saturday"""
    return (day.weekday() + 1) % 7


def wall_clock_to_utc(day: date, hhmm: str, tz: ZoneInfo) -> datetime:
    """Combine a calendar date and "HH:MM" in tz into an aware UTC instant"""
    # "24:00" rolls over to midnight of the next day
    day_offset, minute_of_day = divmod(time_to_minutes(hhmm), 1440)
    local = datetime.combine(
        day + timedelta(days=day_offset),
        time(minute_of_day // 60, minute_of_day % 60),
        tzinfo=tz,
    )
    return local.astimezone(timezone.utc)


def local_day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC instants for [start of day, start of next day) in tz"""
    start = datetime.combine(day, time(0, 0), tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz).astimezone(timezone.utc)
    return start, end


@dataclass(frozen=True)
class Interval:
    """Half-open [start, end) between two aware UTC instants"""

    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and self.end > other.start

    def inflate(self, before_minutes: int = 0, after_minutes: int = 0) -> "Interval":
        return Interval(
            self.start - timedelta(minutes=before_minutes),
            self.end + timedelta(minutes=after_minutes),
        )


def isoformat_z(value: datetime) -> str:
    """UTC ISO-8601 with milliseconds and a trailing Z, e.g. 2025-01-06T09:00:00.000Z"""
    return from_utc_naive(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")
