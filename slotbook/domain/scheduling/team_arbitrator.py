"""
Team scheduling arbitration

Round robin: a slot is offered when at least one member can take it on their
own (own windows, own bookings, own calendar). At commit time the conflict-free
members are ranked by how many live bookings of this event type they hold in
the trailing ROUND_ROBIN_LOAD_WINDOW_DAYS, then by priority (lower first),
then by join order, and the first one is assigned.

Collective: a slot is offered only inside the intersection of every member's
windows and only when no member has any conflict. The booking is recorded
against the team organizer; every current member is an implied attendee.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from ...config import ROUND_ROBIN_LOAD_WINDOW_DAYS
from ...errors import NotFoundError, SlotUnavailableError
from ...models import EventType, Team, TeamMember
from ...shared.time_utils import Interval, to_utc_naive
from ..availability.resolver import AvailabilityResolver
from ..bookings.repository import BookingRepository
from .conflicts import ConflictChecker
from .slot_generator import SlotRules, generate_slots, intersect_windows

logger = logging.getLogger(__name__)


def member_timezone(member: TeamMember) -> ZoneInfo:
    return ZoneInfo(member.user.timezone or "UTC")


class TeamArbitrator:
    """Selects which member(s) fulfil a team booking"""

    def __init__(self, db: Session, resolver: AvailabilityResolver, checker: ConflictChecker):
        self.db = db
        self.resolver = resolver
        self.checker = checker
        self.repo = BookingRepository()

    @staticmethod
    def members(team: Team) -> list[TeamMember]:
        """Members in join order"""
        members = sorted(team.members, key=lambda m: (m.joined_at, m.id))
        if not members:
            raise NotFoundError(f"Team {team.id} has no members")
        return members

    @staticmethod
    def organizer_id(team: Team) -> int:
        if team.organizer_id is not None:
            return team.organizer_id
        return TeamArbitrator.members(team)[0].user_id

    async def member_slots(
        self,
        member: TeamMember,
        rules: SlotRules,
        range_start: datetime,
        range_end: datetime,
        now: datetime,
        horizon_tz: ZoneInfo,
        exclude_booking_ids: Iterable[int] = (),
    ) -> list[datetime]:
        """Slots one member could take alone"""
        windows = self.resolver.resolve_between(member.user_id, member_timezone(member), range_start, range_end)
        if not windows:
            return []
        span = _span(windows).inflate(rules.buffer_before, rules.buffer_after)
        occupied = await self.checker.occupied(member.user_id, span, exclude_booking_ids)
        return generate_slots(windows, rules, now, occupied, horizon_tz)

    async def round_robin_slots(
        self,
        event_type: EventType,
        range_start: datetime,
        range_end: datetime,
        now: datetime,
        exclude_booking_ids: Iterable[int] = (),
    ) -> list[datetime]:
        """Union of every member's own slots"""
        team = event_type.team
        rules = SlotRules.from_event_type(event_type)
        horizon_tz = ZoneInfo(team.timezone or "UTC")
        exclude = list(exclude_booking_ids)
        offered = set()
        for member in self.members(team):
            offered.update(
                await self.member_slots(member, rules, range_start, range_end, now, horizon_tz, exclude)
            )
        return sorted(offered)

    async def eligible_members(
        self,
        event_type: EventType,
        start: datetime,
        now: datetime,
        exclude_booking_ids: Iterable[int] = (),
    ) -> list[TeamMember]:
        """Conflict-free members whose own slot set contains start"""
        team = event_type.team
        rules = SlotRules.from_event_type(event_type)
        horizon_tz = ZoneInfo(team.timezone or "UTC")
        exclude = list(exclude_booking_ids)
        members = self.members(team)
        conflicts = await self.checker.conflicts_by_host(
            [m.user_id for m in members], rules.blocked_interval(start), exclude
        )
        range_end = start + timedelta(minutes=1)
        eligible = []
        for member in members:
            if conflicts[member.user_id]:
                continue
            slots = await self.member_slots(member, rules, start, range_end, now, horizon_tz, exclude)
            if start in slots:
                eligible.append(member)
        return eligible

    def pick_least_loaded(
        self, event_type: EventType, candidates: list[TeamMember], now: datetime
    ) -> TeamMember:
        """Fewest recent bookings, then lowest priority value, then earliest join"""
        if not candidates:
            raise SlotUnavailableError()
        since = to_utc_naive(now - timedelta(days=ROUND_ROBIN_LOAD_WINDOW_DAYS))
        loads = self.repo.count_recent_assignments(
            self.db, event_type.id, [m.user_id for m in candidates], since
        )
        chosen = min(candidates, key=lambda m: (loads[m.user_id], m.priority, m.joined_at, m.id))
        logger.info(
            f"🎯 Round robin for event type {event_type.id}: assigned user {chosen.user_id} "
            f"(load {loads[chosen.user_id]}, {len(candidates)} eligible)"
        )
        return chosen

    async def assign_round_robin(
        self,
        event_type: EventType,
        start: datetime,
        now: datetime,
        exclude_booking_ids: Iterable[int] = (),
    ) -> TeamMember:
        eligible = await self.eligible_members(event_type, start, now, exclude_booking_ids)
        return self.pick_least_loaded(event_type, eligible, now)

    async def collective_slots(
        self,
        event_type: EventType,
        range_start: datetime,
        range_end: datetime,
        now: datetime,
        exclude_booking_ids: Iterable[int] = (),
    ) -> list[datetime]:
        """Slots where every member is open and free at once"""
        team = event_type.team
        rules = SlotRules.from_event_type(event_type)
        members = self.members(team)
        windows = intersect_windows(
            [
                self.resolver.resolve_between(m.user_id, member_timezone(m), range_start, range_end)
                for m in members
            ]
        )
        if not windows:
            return []

        span = _span(windows).inflate(rules.buffer_before, rules.buffer_after)
        exclude = list(exclude_booking_ids)
        occupied = []
        for member in members:
            occupied.extend(await self.checker.occupied(member.user_id, span, exclude))
        return generate_slots(windows, rules, now, occupied, ZoneInfo(team.timezone or "UTC"))


def _span(windows: list[Interval]) -> Interval:
    return Interval(min(w.start for w in windows), max(w.end for w in windows))
