"""Seed helpers and collaborator fakes shared by the tests."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from slotbook.auth import generate_api_key
from slotbook.domain.bookings.committer import BookingCommitter
from slotbook.domain.bookings.schemas import BookingCreate, GuestIn, RecurrenceIn
from slotbook.domain.scheduling.slot_service import SlotService
from slotbook.domain.webhooks.dispatcher import DeliveryScheduler, NotificationDispatcher
from slotbook.errors import UpstreamUnavailableError
from slotbook.models import (
    AvailabilityRule,
    Booking,
    BookingStatus,
    EventType,
    SchedulingType,
    Team,
    TeamMember,
    User,
)
from slotbook.models_webhook import Webhook
from slotbook.services.google_calendar_service import CalendarProvider
from slotbook.shared.time_utils import Interval

NOW = datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc)
MONDAY = date(2025, 1, 6)
MONDAY_DOW = 1  # 0=Sunday


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    """Aware UTC instant on day"""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class RecordingScheduler(DeliveryScheduler):
    """Remembers what would have been scheduled"""

    def __init__(self):
        self.calls = []

    async def schedule(self, delivery_id, delay_seconds, attempt):
        self.calls.append((delivery_id, delay_seconds, attempt))


class StaticCalendar(CalendarProvider):
    def __init__(self, busy: Optional[dict] = None):
        self.busy = busy or {}
        self.calls = []

    async def get_busy_intervals(self, host_id, range_start, range_end):
        self.calls.append((host_id, range_start, range_end))
        return list(self.busy.get(host_id, []))


class FailingCalendar(CalendarProvider):
    async def get_busy_intervals(self, host_id, range_start, range_end):
        raise UpstreamUnavailableError("Calendar API returned 500")


class SlowCalendar(CalendarProvider):
    async def get_busy_intervals(self, host_id, range_start, range_end):
        await asyncio.sleep(5)
        return []


class RecordingCalendar(CalendarProvider):
    """No busy time; remembers the events written for bookings"""

    def __init__(self, fail_writes: bool = False):
        self.fail_writes = fail_writes
        self.created = []
        self.deleted = []

    async def get_busy_intervals(self, host_id, range_start, range_end):
        return []

    async def create_event(self, booking):
        if self.fail_writes:
            raise UpstreamUnavailableError("Calendar API returned 500")
        self.created.append(booking.id)
        return f"evt-{booking.id}"

    async def delete_event(self, host_id, event_id):
        self.deleted.append((host_id, event_id))


def make_user(db, email: str, tz: str = "UTC", with_api_key: bool = False):
    """Returns the user, plus the plain API key when with_api_key is set"""
    user = User(email=email, full_name=email.split("@")[0].title(), timezone=tz)
    api_key = None
    if with_api_key:
        api_key, user.api_key_hash = generate_api_key()
    db.add(user)
    db.commit()
    db.refresh(user)
    return (user, api_key) if with_api_key else user


def add_rule(db, owner: User, day_of_week: int = MONDAY_DOW, start: str = "09:00", end: str = "10:00"):
    rule = AvailabilityRule(owner_id=owner.id, day_of_week=day_of_week, start_time=start, end_time=end)
    db.add(rule)
    db.commit()
    return rule


def make_event_type(db, owner: Optional[User] = None, team: Optional[Team] = None, **fields) -> EventType:
    values = {
        "slug": fields.pop("slug", f"meeting-{owner.id if owner else 't' + str(team.id)}"),
        "title": "Intro call",
        "duration": 30,
        "buffer_before": 0,
        "buffer_after": 0,
        "min_notice": 0,
        "max_days_ahead": 60,
        "scheduling_type": SchedulingType.INDIVIDUAL.value,
    }
    values.update(fields)
    event_type = EventType(owner_id=owner.id if owner else None, team_id=team.id if team else None, **values)
    db.add(event_type)
    db.commit()
    db.refresh(event_type)
    return event_type


def make_team(db, members: list[User], organizer: Optional[User] = None, tz: str = "UTC") -> Team:
    team = Team(name="Support", timezone=tz, organizer_id=organizer.id if organizer else None)
    db.add(team)
    db.flush()
    for i, user in enumerate(members):
        db.add(
            TeamMember(
                team_id=team.id,
                user_id=user.id,
                priority=0,
                joined_at=datetime(2024, 1, 1) + timedelta(days=i),
            )
        )
    db.commit()
    db.refresh(team)
    return team


def add_booking(db, event_type: EventType, host: User, start: datetime, minutes: int = 30, **fields) -> Booking:
    """Insert a booking row directly, bypassing the committer"""
    booking = Booking(
        event_type_id=event_type.id,
        host_id=host.id,
        guest_name="Existing Guest",
        guest_email="existing@example.com",
        start_time=start.replace(tzinfo=None),
        end_time=(start + timedelta(minutes=minutes)).replace(tzinfo=None),
        status=fields.pop("status", BookingStatus.CONFIRMED.value),
        **fields,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


def add_webhook(db, owner: User, events: list[str], url: str = "https://hooks.example.com/booking") -> Webhook:
    webhook = Webhook(owner_id=owner.id, url=url, events=events, secret="whsec_testsecret", is_active=True)
    db.add(webhook)
    db.commit()
    db.refresh(webhook)
    return webhook


def booking_request(event_type: EventType, start: datetime, count: Optional[int] = None) -> BookingCreate:
    return BookingCreate(
        eventTypeId=event_type.id,
        start=iso(start),
        guest=GuestIn(name="Ada Lovelace", email="ada@example.com", timezone="Europe/London"),
        recurrence=RecurrenceIn(count=count) if count else None,
    )


def make_committer(db, now: datetime = NOW, calendar=None, policy=None, scheduler=None, client=None):
    slot_service = SlotService(db, calendar, policy)
    dispatcher = NotificationDispatcher(db, scheduler=scheduler, client=client, clock=lambda: now)
    return BookingCommitter(db, slot_service, dispatcher, clock=lambda: now)
