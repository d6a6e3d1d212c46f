"""Slot service - ListSlots and the commit-time host resolution that shares its logic"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from ...errors import InvalidInputError, NotFoundError, SlotUnavailableError
from ...models import EventType, SchedulingType
from ...services.google_calendar_service import CalendarProvider
from ...shared.time_utils import Interval, local_day_bounds, utcnow
from ...shared.validators import validate_timezone
from ..availability.resolver import AvailabilityResolver
from ..event_types.service import EventTypeService
from .conflicts import CalendarFailurePolicy, ConflictChecker
from .slot_generator import SlotRules, generate_slots
from .team_arbitrator import TeamArbitrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Assignment:
    """Who a booking at a given start goes to"""

    host_id: int
    # Hosts whose time the booking occupies; every member for collective events
    occupied_host_ids: tuple[int, ...]


class SlotService:
    """Service layer for slot listing and validation"""

    def __init__(
        self,
        db: Session,
        calendar: Optional[CalendarProvider] = None,
        policy: Optional[CalendarFailurePolicy] = None,
    ):
        self.db = db
        self.event_types = EventTypeService(db)
        self.resolver = AvailabilityResolver(db)
        self.checker = ConflictChecker(db, calendar, policy)
        self.arbitrator = TeamArbitrator(db, self.resolver, self.checker)

    @staticmethod
    def schedule_timezone(event_type: EventType) -> ZoneInfo:
        """Zone the event type's calendar days are counted in: the team's, else the owner's"""
        if event_type.team is not None:
            return ZoneInfo(event_type.team.timezone or "UTC")
        if event_type.owner is not None:
            return ZoneInfo(event_type.owner.timezone or "UTC")
        return ZoneInfo("UTC")

    async def list_slots(
        self, event_type_id: int, day: date, guest_timezone: Optional[str] = None, now: Optional[datetime] = None
    ) -> list[datetime]:
        """
        Bookable start times on a calendar date in the guest's timezone.

        The host's neighbouring dates are evaluated too, so a guest far from
        the host sees every slot that falls on their own date.

        Returns:
            Aware datetimes in the guest timezone, ascending

        Raises:
            NotFoundError: Unknown or inactive event type
            InvalidInputError: Unknown timezone
        """
        try:
            guest_tz = ZoneInfo(validate_timezone(guest_timezone))
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

        event_type = self.event_types.get_bookable_event_type(event_type_id)
        range_start, range_end = local_day_bounds(day, guest_tz)
        slots = await self.slots_between(event_type, range_start, range_end, now or utcnow())
        logger.info(f"🔍 {len(slots)} slot(s) for event type {event_type_id} on {day} ({guest_tz.key})")
        return [slot.astimezone(guest_tz) for slot in slots]

    async def available_dates(
        self,
        event_type_id: int,
        year: int,
        month: int,
        guest_timezone: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[date]:
        """
        Dates of a month (in the guest's timezone) with at least one slot.

        The range is clamped to today and to the event type's booking
        horizon before slots are generated.
        """
        try:
            guest_tz = ZoneInfo(validate_timezone(guest_timezone))
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        if not 1 <= month <= 12:
            raise InvalidInputError(f"Invalid month {month}")

        event_type = self.event_types.get_bookable_event_type(event_type_id)
        now = now or utcnow()
        first_day = date(year, month, 1)
        next_month = date(year + month // 12, month % 12 + 1, 1)
        range_start = max(
            local_day_bounds(first_day, guest_tz)[0],
            local_day_bounds(now.astimezone(guest_tz).date(), guest_tz)[0],
        )
        range_end = min(
            local_day_bounds(next_month, guest_tz)[0],
            now + timedelta(days=event_type.max_days_ahead + 1),
        )
        if range_start >= range_end:
            return []

        slots = await self.slots_between(event_type, range_start, range_end, now)
        dates = sorted({slot.astimezone(guest_tz).date() for slot in slots})
        logger.info(f"🗓️ {len(dates)} available date(s) for event type {event_type_id} in {year}-{month:02d}")
        return dates

    async def slots_between(
        self,
        event_type: EventType,
        range_start: datetime,
        range_end: datetime,
        now: datetime,
        exclude_booking_ids: Iterable[int] = (),
    ) -> list[datetime]:
        """Slots starting in [range_start, range_end), aware UTC"""
        scheduling_type = SchedulingType(event_type.scheduling_type)
        if scheduling_type == SchedulingType.INDIVIDUAL:
            slots = await self._individual_slots(event_type, range_start, range_end, now, exclude_booking_ids)
        elif scheduling_type == SchedulingType.ROUND_ROBIN:
            slots = await self.arbitrator.round_robin_slots(
                event_type, range_start, range_end, now, exclude_booking_ids
            )
        elif scheduling_type == SchedulingType.COLLECTIVE:
            slots = await self.arbitrator.collective_slots(
                event_type, range_start, range_end, now, exclude_booking_ids
            )
        else:
            raise InvalidInputError(f"Unsupported scheduling type {scheduling_type}")
        return [slot for slot in slots if range_start <= slot < range_end]

    async def _individual_slots(
        self,
        event_type: EventType,
        range_start: datetime,
        range_end: datetime,
        now: datetime,
        exclude_booking_ids: Iterable[int],
    ) -> list[datetime]:
        host = event_type.owner
        if host is None:
            raise NotFoundError("Host not found")
        host_tz = ZoneInfo(host.timezone or "UTC")
        rules = SlotRules.from_event_type(event_type)

        windows = self.resolver.resolve_between(host.id, host_tz, range_start, range_end)
        if not windows:
            return []
        span = Interval(min(w.start for w in windows), max(w.end for w in windows)).inflate(
            rules.buffer_before, rules.buffer_after
        )
        occupied = await self.checker.occupied(host.id, span, exclude_booking_ids)
        return generate_slots(windows, rules, now, occupied, host_tz)

    async def is_bookable(
        self, event_type: EventType, start: datetime, now: datetime, exclude_booking_ids: Iterable[int] = ()
    ) -> bool:
        """Whether start is one of the slots the listing would offer right now"""
        slots = await self.slots_between(
            event_type, start, start + timedelta(minutes=1), now, exclude_booking_ids
        )
        return start in slots

    async def resolve_assignment(
        self, event_type: EventType, start: datetime, now: datetime, exclude_booking_ids: Iterable[int] = ()
    ) -> Assignment:
        """
        Re-validate start and pick the host, exactly as the listing would.

        Raises:
            SlotUnavailableError: start is not currently offered
        """
        exclude = list(exclude_booking_ids)
        scheduling_type = SchedulingType(event_type.scheduling_type)

        if scheduling_type == SchedulingType.ROUND_ROBIN:
            member = await self.arbitrator.assign_round_robin(event_type, start, now, exclude)
            return Assignment(member.user_id, (member.user_id,))

        if not await self.is_bookable(event_type, start, now, exclude):
            raise SlotUnavailableError()

        if scheduling_type == SchedulingType.COLLECTIVE:
            team = event_type.team
            member_ids = tuple(m.user_id for m in self.arbitrator.members(team))
            organizer_id = self.arbitrator.organizer_id(team)
            return Assignment(organizer_id, tuple(sorted(set(member_ids) | {organizer_id})))

        return Assignment(event_type.owner_id, (event_type.owner_id,))
