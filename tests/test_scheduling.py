"""Tests for slot listing, conflict checking and team arbitration."""

from datetime import date, timedelta

import pytest

from slotbook.domain.availability.schemas import DateOverrideIn
from slotbook.domain.availability.service import AvailabilityService
from slotbook.domain.scheduling.conflicts import CalendarFailurePolicy, ConflictChecker
from slotbook.domain.scheduling.slot_service import SlotService
from slotbook.errors import InvalidInputError, NotFoundError, SlotUnavailableError
from slotbook.models import BookingStatus, SchedulingType
from slotbook.shared.time_utils import Interval

from tests.helpers import (
    MONDAY,
    NOW,
    FailingCalendar,
    SlowCalendar,
    StaticCalendar,
    add_booking,
    add_rule,
    at,
    make_event_type,
    make_team,
    make_user,
)


def hhmm(slots):
    return [s.strftime("%H:%M") for s in slots]


@pytest.fixture
def host(db):
    host = make_user(db, "host@example.com")
    add_rule(db, host, start="09:00", end="10:00")
    return host


class TestListSlots:
    async def test_lists_slots_for_host_date(self, db, host):
        event_type = make_event_type(db, owner=host)
        slots = await SlotService(db).list_slots(event_type.id, MONDAY, "UTC", now=NOW)
        assert hhmm(slots) == ["09:00", "09:30"]

    async def test_slots_are_rendered_in_guest_timezone(self, db, host):
        event_type = make_event_type(db, owner=host)
        slots = await SlotService(db).list_slots(event_type.id, MONDAY, "America/New_York", now=NOW)
        assert [s.isoformat() for s in slots] == ["2025-01-06T04:00:00-05:00", "2025-01-06T04:30:00-05:00"]

    async def test_guest_date_spanning_two_host_dates(self, db):
        host = make_user(db, "late@example.com")
        add_rule(db, host, start="23:00", end="24:00")
        event_type = make_event_type(db, owner=host)

        # Monday 23:00 UTC is Tuesday 08:00 in Tokyo
        slots = await SlotService(db).list_slots(event_type.id, MONDAY + timedelta(days=1), "Asia/Tokyo", now=NOW)

        assert [s.isoformat() for s in slots] == ["2025-01-07T08:00:00+09:00", "2025-01-07T08:30:00+09:00"]

    async def test_unknown_event_type(self, db):
        with pytest.raises(NotFoundError):
            await SlotService(db).list_slots(999, MONDAY, "UTC", now=NOW)

    async def test_inactive_event_type_is_not_found(self, db, host):
        event_type = make_event_type(db, owner=host, is_active=False)
        with pytest.raises(NotFoundError):
            await SlotService(db).list_slots(event_type.id, MONDAY, "UTC", now=NOW)

    async def test_unknown_timezone(self, db, host):
        event_type = make_event_type(db, owner=host)
        with pytest.raises(InvalidInputError):
            await SlotService(db).list_slots(event_type.id, MONDAY, "Mars/Olympus", now=NOW)

    async def test_date_without_availability_is_empty(self, db, host):
        event_type = make_event_type(db, owner=host)
        assert await SlotService(db).list_slots(event_type.id, MONDAY + timedelta(days=2), "UTC", now=NOW) == []

    async def test_existing_booking_buffers_block_neighbours(self, db, host):
        add_rule(db, host, start="10:00", end="11:00")
        event_type = make_event_type(db, owner=host, buffer_after=15)
        add_booking(db, event_type, host, at(9), buffer_after=15)

        slots = await SlotService(db).list_slots(event_type.id, MONDAY, "UTC", now=NOW)

        assert hhmm(slots) == ["10:00", "10:30"]

    async def test_cancelled_booking_frees_the_slot(self, db, host):
        event_type = make_event_type(db, owner=host)
        add_booking(db, event_type, host, at(9), status=BookingStatus.CANCELLED.value)
        slots = await SlotService(db).list_slots(event_type.id, MONDAY, "UTC", now=NOW)
        assert hhmm(slots) == ["09:00", "09:30"]

    async def test_external_busy_time_blocks_slots(self, db, host):
        event_type = make_event_type(db, owner=host)
        calendar = StaticCalendar({host.id: [Interval(at(9, 15), at(9, 45))]})
        assert await SlotService(db, calendar).list_slots(event_type.id, MONDAY, "UTC", now=NOW) == []


class TestMonthView:
    async def test_dates_with_slots(self, db, host):
        event_type = make_event_type(db, owner=host)
        dates = await SlotService(db).available_dates(event_type.id, 2025, 1, "UTC", now=NOW)
        assert [d.day for d in dates] == [6, 13, 20, 27]

    async def test_booking_horizon_cuts_the_month(self, db, host):
        event_type = make_event_type(db, owner=host, max_days_ahead=14)
        dates = await SlotService(db).available_dates(event_type.id, 2025, 1, "UTC", now=NOW)
        assert [d.day for d in dates] == [6, 13]

    async def test_past_month_is_empty(self, db, host):
        event_type = make_event_type(db, owner=host)
        assert await SlotService(db).available_dates(event_type.id, 2024, 12, "UTC", now=NOW) == []

    async def test_blocked_date_and_fully_booked_date_drop_out(self, db, host):
        event_type = make_event_type(db, owner=host, duration=60)
        AvailabilityService(db).upsert_override(date(2025, 1, 13), DateOverrideIn(isAvailable=False), host)
        add_booking(db, event_type, host, at(9, day=date(2025, 1, 20)), minutes=60)

        dates = await SlotService(db).available_dates(event_type.id, 2025, 1, "UTC", now=NOW)

        assert [d.day for d in dates] == [6, 27]

    async def test_dates_are_counted_in_guest_timezone(self, db):
        host = make_user(db, "late@example.com")
        add_rule(db, host, start="23:00", end="23:30")
        event_type = make_event_type(db, owner=host)

        dates = await SlotService(db).available_dates(event_type.id, 2025, 1, "Asia/Tokyo", now=NOW)

        # Monday 23:00 UTC is Tuesday 08:00 in Tokyo
        assert [d.day for d in dates] == [7, 14, 21, 28]

    async def test_invalid_month(self, db, host):
        event_type = make_event_type(db, owner=host)
        with pytest.raises(InvalidInputError):
            await SlotService(db).available_dates(event_type.id, 2025, 13, "UTC", now=NOW)


class TestCalendarFailurePolicy:
    async def test_fail_closed_offers_nothing(self, db, host):
        event_type = make_event_type(db, owner=host)
        service = SlotService(db, FailingCalendar(), CalendarFailurePolicy.FAIL_CLOSED)
        assert await service.list_slots(event_type.id, MONDAY, "UTC", now=NOW) == []

    async def test_fail_open_ignores_the_calendar(self, db, host):
        event_type = make_event_type(db, owner=host)
        service = SlotService(db, FailingCalendar(), CalendarFailurePolicy.FAIL_OPEN)
        assert hhmm(await service.list_slots(event_type.id, MONDAY, "UTC", now=NOW)) == ["09:00", "09:30"]

    async def test_timeout_applies_policy(self, db, host):
        span = Interval(at(9), at(10))
        closed = ConflictChecker(db, SlowCalendar(), CalendarFailurePolicy.FAIL_CLOSED, timeout=0.01)
        opened = ConflictChecker(db, SlowCalendar(), CalendarFailurePolicy.FAIL_OPEN, timeout=0.01)

        assert await closed.external_busy(host.id, span) == [span]
        assert await opened.external_busy(host.id, span) == []

    async def test_commit_path_uses_same_policy(self, db, host):
        event_type = make_event_type(db, owner=host)
        service = SlotService(db, FailingCalendar(), CalendarFailurePolicy.FAIL_CLOSED)
        with pytest.raises(SlotUnavailableError):
            await service.resolve_assignment(event_type, at(9), NOW)

    async def test_lookups_are_memoized_per_request(self, db, host):
        calendar = StaticCalendar()
        checker = ConflictChecker(db, calendar)
        span = Interval(at(9), at(10))

        await checker.has_conflict(host.id, span)
        await checker.has_conflict(host.id, span)

        assert len(calendar.calls) == 1


class TestConflictChecker:
    async def test_conflicts_by_host(self, db):
        free = make_user(db, "free@example.com")
        busy = make_user(db, "busy@example.com")
        event_type = make_event_type(db, owner=busy)
        add_booking(db, event_type, busy, at(9))

        result = await ConflictChecker(db).conflicts_by_host([free.id, busy.id], Interval(at(9, 15), at(9, 45)))

        assert result == {free.id: False, busy.id: True}

    async def test_excluded_booking_is_ignored(self, db, host):
        event_type = make_event_type(db, owner=host)
        booking = add_booking(db, event_type, host, at(9))
        checker = ConflictChecker(db)

        assert await checker.has_conflict(host.id, Interval(at(9), at(9, 30)))
        assert not await checker.has_conflict(host.id, Interval(at(9), at(9, 30)), [booking.id])

    async def test_booking_buffers_are_applied(self, db, host):
        event_type = make_event_type(db, owner=host)
        add_booking(db, event_type, host, at(9), buffer_before=30)
        assert await ConflictChecker(db).has_conflict(host.id, Interval(at(8, 15), at(8, 45)))


@pytest.fixture
def members(db):
    users = [make_user(db, f"member{i}@example.com") for i in range(3)]
    for user in users:
        add_rule(db, user, start="09:00", end="10:00")
    return users


class TestRoundRobin:
    async def test_only_conflict_free_member_is_assigned(self, db, members):
        team = make_team(db, members)
        event_type = make_event_type(db, team=team, scheduling_type=SchedulingType.ROUND_ROBIN.value)
        calendar = StaticCalendar(
            {members[0].id: [Interval(at(9), at(10))], members[1].id: [Interval(at(9), at(10))]}
        )

        for _ in range(3):
            assignment = await SlotService(db, calendar).resolve_assignment(event_type, at(9), NOW)
            assert assignment.host_id == members[2].id
            assert assignment.occupied_host_ids == (members[2].id,)

    async def test_slot_offered_while_any_member_is_free(self, db, members):
        team = make_team(db, members)
        event_type = make_event_type(db, team=team, scheduling_type=SchedulingType.ROUND_ROBIN.value)
        calendar = StaticCalendar({m.id: [Interval(at(9), at(9, 30))] for m in members[:2]})

        slots = await SlotService(db, calendar).list_slots(event_type.id, MONDAY, "UTC", now=NOW)

        assert hhmm(slots) == ["09:00", "09:30"]

    async def test_slot_hidden_when_every_member_is_busy(self, db, members):
        team = make_team(db, members)
        event_type = make_event_type(db, team=team, scheduling_type=SchedulingType.ROUND_ROBIN.value)
        calendar = StaticCalendar({m.id: [Interval(at(9), at(9, 30))] for m in members})

        service = SlotService(db, calendar)
        assert hhmm(await service.list_slots(event_type.id, MONDAY, "UTC", now=NOW)) == ["09:30"]
        with pytest.raises(SlotUnavailableError):
            await service.resolve_assignment(event_type, at(9), NOW)

    async def test_least_loaded_member_wins_then_join_order(self, db, members):
        team = make_team(db, members)
        event_type = make_event_type(db, team=team, scheduling_type=SchedulingType.ROUND_ROBIN.value)
        add_booking(db, event_type, members[0], at(9, day=MONDAY + timedelta(days=7)))

        assignment = await SlotService(db).resolve_assignment(event_type, at(9), NOW)

        # members[1] and members[2] are tied on load; members[1] joined first
        assert assignment.host_id == members[1].id

    async def test_priority_breaks_load_ties(self, db, members):
        team = make_team(db, members)
        team.members[2].priority = -1
        db.commit()
        event_type = make_event_type(db, team=team, scheduling_type=SchedulingType.ROUND_ROBIN.value)

        assignment = await SlotService(db).resolve_assignment(event_type, at(9), NOW)

        assert assignment.host_id == members[2].id


class TestCollective:
    async def test_slot_requires_every_member(self, db, members):
        team = make_team(db, members[:2])
        event_type = make_event_type(db, team=team, scheduling_type=SchedulingType.COLLECTIVE.value)
        service = SlotService(db)
        assert hhmm(await service.list_slots(event_type.id, MONDAY, "UTC", now=NOW)) == ["09:00", "09:30"]

        personal = make_event_type(db, owner=members[1], slug="personal")
        add_booking(db, personal, members[1], at(9))

        assert hhmm(await SlotService(db).list_slots(event_type.id, MONDAY, "UTC", now=NOW)) == ["09:30"]

    async def test_windows_are_intersected(self, db, members):
        add_rule(db, members[0], start="10:00", end="11:00")
        add_rule(db, members[1], start="10:00", end="10:30")
        team = make_team(db, members[:2])
        event_type = make_event_type(db, team=team, scheduling_type=SchedulingType.COLLECTIVE.value)

        slots = await SlotService(db).list_slots(event_type.id, MONDAY, "UTC", now=NOW)

        assert hhmm(slots) == ["09:00", "09:30", "10:00"]

    async def test_booking_goes_to_organizer_and_occupies_everyone(self, db, members):
        team = make_team(db, members, organizer=members[2])
        event_type = make_event_type(db, team=team, scheduling_type=SchedulingType.COLLECTIVE.value)

        assignment = await SlotService(db).resolve_assignment(event_type, at(9), NOW)

        assert assignment.host_id == members[2].id
        assert set(assignment.occupied_host_ids) == {m.id for m in members}

    async def test_team_without_members(self, db):
        team = make_team(db, [])
        event_type = make_event_type(db, team=team, scheduling_type=SchedulingType.COLLECTIVE.value)
        with pytest.raises(NotFoundError):
            await SlotService(db).list_slots(event_type.id, MONDAY, "UTC", now=NOW)
