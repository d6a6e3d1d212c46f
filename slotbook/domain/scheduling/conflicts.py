"""
Conflict checking against internal bookings and external calendar busy time

A host is occupied by its live (PENDING/CONFIRMED) bookings, each inflated
by the buffers it was booked with, and by whatever its external calendar
reports. Overlap is half-open, so back-to-back intervals do not conflict.

When the calendar collaborator errors or times out, the configured policy
decides the outcome for the whole requested range:
  * fail_closed - the host is treated as busy for the range
  * fail_open   - the host is treated as having no external busy time
The same checker backs slot listing and commit-time re-validation, so both
paths always apply the same policy.
"""

import asyncio
import enum
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...config import CALENDAR_FAILURE_POLICY, CALENDAR_TIMEOUT_SECONDS
from ...services.google_calendar_service import CalendarProvider, NullCalendarProvider
from ...shared.time_utils import Interval, from_utc_naive, to_utc_naive
from ..bookings.repository import BookingRepository

logger = logging.getLogger(__name__)


class CalendarFailurePolicy(str, enum.Enum):
    FAIL_CLOSED = "fail_closed"
    FAIL_OPEN = "fail_open"


class ConflictChecker:
    """Per-request view of host occupancy. External lookups are memoized per host and range."""

    def __init__(
        self,
        db: Session,
        calendar: Optional[CalendarProvider] = None,
        policy: Optional[CalendarFailurePolicy] = None,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.repo = BookingRepository()
        self.calendar = calendar or NullCalendarProvider()
        self.policy = CalendarFailurePolicy(policy or CALENDAR_FAILURE_POLICY)
        self.timeout = CALENDAR_TIMEOUT_SECONDS if timeout is None else timeout
        self._external_cache: dict[tuple[int, datetime, datetime], list[Interval]] = {}

    def internal_busy(
        self, host_id: int, span: Interval, exclude_booking_ids: Iterable[int] = ()
    ) -> list[Interval]:
        """Live bookings occupying the host, inflated by their own buffers"""
        bookings = self.repo.get_blocking_bookings(
            self.db, host_id, to_utc_naive(span.start), to_utc_naive(span.end), exclude_booking_ids
        )
        busy = [
            Interval(from_utc_naive(b.start_time), from_utc_naive(b.end_time)).inflate(
                b.buffer_before or 0, b.buffer_after or 0
            )
            for b in bookings
        ]
        return [interval for interval in busy if interval.overlaps(span)]

    async def external_busy(self, host_id: int, span: Interval) -> list[Interval]:
        """Calendar busy time, with the failure policy applied on error or timeout"""
        key = (host_id, span.start, span.end)
        if key in self._external_cache:
            return self._external_cache[key]

        try:
            busy = await asyncio.wait_for(
                self.calendar.get_busy_intervals(host_id, span.start, span.end), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"⚠️ Calendar lookup for host {host_id} timed out after {self.timeout}s, applying {self.policy.value}"
            )
            busy = self._fallback(span)
        except Exception as e:
            logger.warning(f"⚠️ Calendar lookup for host {host_id} failed ({e}), applying {self.policy.value}")
            busy = self._fallback(span)

        self._external_cache[key] = busy
        return busy

    def _fallback(self, span: Interval) -> list[Interval]:
        if self.policy == CalendarFailurePolicy.FAIL_CLOSED:
            return [span]
        return []

    async def occupied(
        self, host_id: int, span: Interval, exclude_booking_ids: Iterable[int] = ()
    ) -> list[Interval]:
        """Everything that blocks the host within span"""
        internal = self.internal_busy(host_id, span, exclude_booking_ids)
        external = await self.external_busy(host_id, span)
        return internal + external

    async def has_conflict(
        self, host_id: int, candidate: Interval, exclude_booking_ids: Iterable[int] = ()
    ) -> bool:
        """Whether a buffer-inflated candidate overlaps anything occupying the host"""
        occupied = await self.occupied(host_id, candidate, exclude_booking_ids)
        return any(candidate.overlaps(interval) for interval in occupied)

    async def conflicts_by_host(
        self, host_ids: Iterable[int], candidate: Interval, exclude_booking_ids: Iterable[int] = ()
    ) -> dict[int, bool]:
        """Per-host conflict map for a team"""
        exclude = list(exclude_booking_ids)
        return {
            host_id: await self.has_conflict(host_id, candidate, exclude) for host_id in host_ids
        }
