"""
Slot generation

Walks each open window in fixed steps and keeps the start times that fit the
window, respect minimum notice and the booking horizon, and whose
buffer-inflated interval is clear of every occupied interval.

The step is min(duration, SLOT_STEP_MAX_MINUTES) and the grid is anchored at
each window start. Both the listing and the commit-time re-validation go
through generate_slots, so the two always agree for the same inputs.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo

from ...config import SLOT_STEP_MAX_MINUTES
from ...models import EventType
from ...shared.time_utils import Interval


@dataclass(frozen=True)
class SlotRules:
    """The event type settings that shape a slot grid"""

    duration: int
    buffer_before: int = 0
    buffer_after: int = 0
    min_notice: int = 0
    max_days_ahead: int = 60

    @classmethod
    def from_event_type(cls, event_type: EventType) -> "SlotRules":
        return cls(
            duration=event_type.duration,
            buffer_before=event_type.buffer_before or 0,
            buffer_after=event_type.buffer_after or 0,
            min_notice=event_type.min_notice or 0,
            max_days_ahead=event_type.max_days_ahead,
        )

    @property
    def step(self) -> timedelta:
        return timedelta(minutes=min(self.duration, SLOT_STEP_MAX_MINUTES))

    def booking_interval(self, start: datetime) -> Interval:
        return Interval(start, start + timedelta(minutes=self.duration))

    def blocked_interval(self, start: datetime) -> Interval:
        """The interval a booking at start occupies, buffers included"""
        return self.booking_interval(start).inflate(self.buffer_before, self.buffer_after)


def generate_slots(
    windows: Iterable[Interval],
    rules: SlotRules,
    now: datetime,
    occupied: Iterable[Interval],
    tz: ZoneInfo,
) -> list[datetime]:
    """
    Bookable start times, ascending and de-duplicated.

    Args:
        windows: open windows as UTC intervals
        rules: duration, buffers, min notice and horizon
        now: aware current instant
        occupied: busy intervals, already inflated by their own buffers
        tz: timezone whose calendar date the horizon is measured in

    Returns:
        Aware UTC start times. An empty list means nothing is bookable.
    """
    duration = timedelta(minutes=rules.duration)
    earliest = now + timedelta(minutes=rules.min_notice)
    last_bookable_date = (now.astimezone(tz) + timedelta(days=rules.max_days_ahead)).date()
    busy = sorted(occupied, key=lambda i: i.start)

    slots = set()
    for window in windows:
        candidate = window.start
        while candidate + duration <= window.end:
            if (
                candidate >= earliest
                and candidate.astimezone(tz).date() <= last_bookable_date
                and not any(rules.blocked_interval(candidate).overlaps(b) for b in busy)
            ):
                slots.add(candidate)
            candidate += rules.step
    return sorted(slots)


def intersect_windows(windows_by_member: list[list[Interval]]) -> list[Interval]:
    """Intervals during which every member has an open window"""
    if not windows_by_member:
        return []
    common = sorted(windows_by_member[0], key=lambda i: i.start)
    for windows in windows_by_member[1:]:
        others = sorted(windows, key=lambda i: i.start)
        common = [
            Interval(max(a.start, b.start), min(a.end, b.end))
            for a in common
            for b in others
            if a.overlaps(b)
        ]
    return sorted(set(common), key=lambda i: (i.start, i.end))
