"""
Booking committer - the commit boundary for creating, cancelling and rescheduling

Every write re-runs the same slot validation the listing uses, with a fresh
"now", and never substitutes a different time. The exclusion guarantee comes
from the booking_claims table: each live booking owns one row per host per
minute of its buffer-inflated interval, under UNIQUE(host_id, minute). Of two
concurrent commits for overlapping intervals, the second one to flush hits
the constraint and is turned into SlotUnavailableError. Host rows are also
locked FOR UPDATE, in id order, where the backend supports it.

Webhooks and the host's external calendar event are handled only after the
transaction commits, and a failure there is logged, never raised: the
booking stands regardless.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import CALENDAR_TIMEOUT_SECONDS
from ...errors import (
    AlreadyCancelledError,
    InvalidInputError,
    NotFoundError,
    SlotUnavailableError,
)
from ...models import Booking, BookingStatus, EventType, SchedulingType, User
from ...models_webhook import WebhookEvent
from ...services.google_calendar_service import CalendarProvider
from ...shared.time_utils import from_utc_naive, isoformat_z, to_utc_naive, utcnow, wall_clock_to_utc
from ...shared.validators import parse_instant
from ..event_types.service import EventTypeService
from ..scheduling.slot_generator import SlotRules
from ..scheduling.slot_service import Assignment, SlotService
from ..webhooks.dispatcher import NotificationDispatcher
from .repository import BookingRepository
from .schemas import BookingCreate, BookingResponse, GuestIn, RecurrenceIn

logger = logging.getLogger(__name__)


def effective_status(booking: Booking, now: datetime) -> BookingStatus:
    """Stored status, except a confirmed booking that has ended reads as COMPLETED"""
    status = BookingStatus(booking.status)
    if status == BookingStatus.CONFIRMED and from_utc_naive(booking.end_time) <= now:
        return BookingStatus.COMPLETED
    return status


def to_response(booking: Booking, now: Optional[datetime] = None) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        uid=booking.uid,
        eventTypeId=booking.event_type_id,
        hostId=booking.host_id,
        guestName=booking.guest_name,
        guestEmail=booking.guest_email,
        guestTimezone=booking.guest_timezone,
        startTime=from_utc_naive(booking.start_time),
        endTime=from_utc_naive(booking.end_time),
        status=effective_status(booking, now or utcnow()),
        recurrenceParentId=booking.recurrence_parent_id,
        rescheduledFromId=booking.rescheduled_from_id,
        cancellationReason=booking.cancellation_reason,
        cancelledAt=from_utc_naive(booking.cancelled_at) if booking.cancelled_at else None,
        created_at=booking.created_at,
    )


def booking_payload(booking: Booking) -> dict:
    """Webhook data for a booking, camelCase like the rest of the API"""
    event_type = booking.event_type
    host = booking.host
    return {
        "booking": {
            "id": booking.uid,
            "eventType": {
                "id": event_type.id,
                "title": event_type.title,
                "duration": event_type.duration,
            },
            "guestName": booking.guest_name,
            "guestEmail": booking.guest_email,
            "guestTimezone": booking.guest_timezone,
            "startTime": isoformat_z(booking.start_time),
            "endTime": isoformat_z(booking.end_time),
            "status": booking.status,
        },
        "host": {"id": host.id, "name": host.full_name, "email": host.email},
    }


class BookingCommitter:
    """Re-validates and persists booking writes"""

    def __init__(
        self,
        db: Session,
        slot_service: SlotService,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
        calendar: Optional[CalendarProvider] = None,
    ):
        self.db = db
        self.repo = BookingRepository()
        self.event_types = EventTypeService(db)
        self.slot_service = slot_service
        self.dispatcher = dispatcher
        self.clock = clock
        self.calendar = calendar or slot_service.checker.calendar

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: int, user: User) -> Booking:
        """A booking the user hosts or whose event type the user manages"""
        booking = self.repo.get_booking(self.db, booking_id)
        if not booking or not (
            booking.host_id == user.id or self.event_types.can_manage(booking.event_type, user)
        ):
            raise NotFoundError("Booking not found")
        return booking

    def get_booking_by_uid(self, uid: str) -> Booking:
        booking = self.repo.get_booking_by_uid(self.db, uid)
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def get_bookings(
        self,
        user: User,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        """Bookings hosted by the user, filtered by effective status"""
        now = self.clock()
        bookings = self.repo.get_bookings_for_host(
            self.db,
            user.id,
            to_utc_naive(start) if start else None,
            to_utc_naive(end) if end else None,
        )
        if status:
            bookings = [b for b in bookings if effective_status(b, now) == status]
        return bookings

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @staticmethod
    def parse_start(value: str) -> datetime:
        """ISO-8601 instant -> aware UTC, minute aligned"""
        try:
            start = parse_instant(value)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        if start.second or start.microsecond:
            raise InvalidInputError("Start time must fall on a whole minute")
        return from_utc_naive(start)

    @staticmethod
    def occurrence_starts(
        start: datetime, recurrence: Optional[RecurrenceIn], tz: ZoneInfo = ZoneInfo("UTC")
    ) -> list[datetime]:
        """Series starts at the same wall-clock time in tz, intervalDays calendar days apart"""
        if recurrence is None:
            return [start]
        local = start.astimezone(tz)
        hhmm = local.strftime("%H:%M")
        return [start] + [
            wall_clock_to_utc(local.date() + timedelta(days=recurrence.intervalDays * i), hhmm, tz)
            for i in range(1, recurrence.count)
        ]

    async def create_booking(self, data: BookingCreate) -> list[Booking]:
        """
        Book a slot, or every occurrence of a series (all or nothing).

        Returns:
            The committed bookings, first occurrence first

        Raises:
            NotFoundError: Unknown or inactive event type
            InvalidInputError: Malformed start
            SlotUnavailableError: Any occurrence is not bookable right now
        """
        event_type = self.event_types.get_bookable_event_type(data.eventTypeId)
        starts = self.occurrence_starts(
            self.parse_start(data.start), data.recurrence, self.slot_service.schedule_timezone(event_type)
        )

        bookings = await self._plan_and_commit(event_type, starts, data.guest)
        logger.info(
            f"✅ Booked event type {event_type.id} for {data.guest.email}: "
            f"{len(bookings)} booking(s) starting {isoformat_z(starts[0])}, host {bookings[0].host_id}"
        )

        for booking in bookings:
            await self._add_to_calendar(booking)
            await self._notify(booking, WebhookEvent.BOOKING_CREATED)
        return bookings

    async def _plan(
        self, event_type: EventType, starts: list[datetime], exclude_booking_ids: list[int]
    ) -> list[tuple[datetime, Assignment]]:
        now = self.clock()
        planned = []
        for start in starts:
            assignment = await self.slot_service.resolve_assignment(event_type, start, now, exclude_booking_ids)
            planned.append((start, assignment))
        return planned

    async def _plan_and_commit(
        self,
        event_type: EventType,
        starts: list[datetime],
        guest: GuestIn,
        replaces: Optional[Booking] = None,
        reason: Optional[str] = None,
    ) -> list[Booking]:
        """
        Resolve hosts and commit. A round-robin commit that loses the race for
        its member is planned once more: the rival's booking now makes that
        member busy, so arbitration moves on to the next eligible one.
        """
        exclude = [replaces.id] if replaces is not None else []
        planned = await self._plan(event_type, starts, exclude)
        try:
            return self._commit(event_type, planned, guest, replaces, reason)
        except SlotUnavailableError:
            if event_type.scheduling_type != SchedulingType.ROUND_ROBIN.value:
                raise
            logger.info(f"🔁 Round-robin member taken for event type {event_type.id}, re-running assignment")

        planned = await self._plan(event_type, starts, exclude)
        return self._commit(event_type, planned, guest, replaces, reason)

    def _new_booking(
        self, event_type: EventType, start: datetime, assignment: Assignment, guest: GuestIn
    ) -> Booking:
        rules = SlotRules.from_event_type(event_type)
        interval = rules.booking_interval(start)
        status = BookingStatus.PENDING if event_type.requires_confirmation else BookingStatus.CONFIRMED
        return Booking(
            event_type_id=event_type.id,
            host_id=assignment.host_id,
            guest_name=guest.name,
            guest_email=guest.email,
            guest_timezone=guest.timezone,
            start_time=to_utc_naive(interval.start),
            end_time=to_utc_naive(interval.end),
            status=status.value,
            buffer_before=rules.buffer_before,
            buffer_after=rules.buffer_after,
        )

    def _commit(
        self,
        event_type: EventType,
        planned: list[tuple[datetime, Assignment]],
        guest: GuestIn,
        replaces: Optional[Booking] = None,
        reason: Optional[str] = None,
    ) -> list[Booking]:
        """Persist bookings and their claims in one transaction"""
        rules = SlotRules.from_event_type(event_type)
        host_ids = {h for _, assignment in planned for h in assignment.occupied_host_ids}
        if replaces is not None:
            host_ids.add(replaces.host_id)

        try:
            self.repo.lock_hosts(self.db, host_ids)
            if replaces is not None:
                self.db.refresh(replaces)
                if replaces.status == BookingStatus.CANCELLED.value:
                    raise AlreadyCancelledError()
                self._mark_cancelled(replaces, reason)

            bookings = []
            for start, assignment in planned:
                booking = self._new_booking(event_type, start, assignment, guest)
                if replaces is not None:
                    booking.rescheduled_from_id = replaces.id
                    booking.recurrence_parent_id = replaces.recurrence_parent_id
                elif bookings:
                    booking.recurrence_parent_id = bookings[0].id
                self.db.add(booking)
                self.db.flush()

                blocked = rules.blocked_interval(start)
                self.repo.add_claims(
                    self.db,
                    booking,
                    assignment.occupied_host_ids,
                    to_utc_naive(blocked.start),
                    to_utc_naive(blocked.end),
                )
                self.db.flush()
                bookings.append(booking)

            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Lost booking race for event type {event_type.id}: slot already claimed")
            raise SlotUnavailableError() from e
        except Exception:
            self.db.rollback()
            raise

        for booking in bookings:
            self.db.refresh(booking)
        return bookings

    # ------------------------------------------------------------------
    # Cancel / reschedule / confirm
    # ------------------------------------------------------------------

    def _mark_cancelled(self, booking: Booking, reason: Optional[str]) -> None:
        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = to_utc_naive(self.clock())
        booking.cancellation_reason = reason
        self.repo.release_claims(self.db, booking)

    async def cancel_booking(
        self, booking: Booking, reason: Optional[str] = None, cancel_series: bool = False
    ) -> list[Booking]:
        """
        Cancel a booking, or its whole series.

        A series cancel covers the root and every linked occurrence that is
        still live, and emits one booking.cancelled per occurrence.

        Raises:
            AlreadyCancelledError: Nothing left to cancel
        """
        if cancel_series:
            root_id = booking.recurrence_parent_id or booking.id
            targets = [
                b for b in self.repo.get_series(self.db, root_id) if b.status != BookingStatus.CANCELLED.value
            ]
        else:
            targets = [booking] if booking.status != BookingStatus.CANCELLED.value else []
        if not targets:
            raise AlreadyCancelledError()

        cancelled = []
        try:
            self.repo.lock_hosts(self.db, {b.host_id for b in targets})
            for target in targets:
                # Re-read under the lock so a concurrent cancel is seen
                self.db.refresh(target)
                if target.status == BookingStatus.CANCELLED.value:
                    continue
                self._mark_cancelled(target, reason)
                cancelled.append(target)
            if not cancelled:
                raise AlreadyCancelledError()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"🗑️ Cancelled {len(cancelled)} booking(s) starting with {booking.id}")
        for target in cancelled:
            await self._remove_from_calendar(target)
            await self._notify(target, WebhookEvent.BOOKING_CANCELLED, {"cancellationReason": reason})
        return cancelled

    async def reschedule_booking(self, booking: Booking, new_start: str, reason: Optional[str] = None) -> Booking:
        """
        Move a booking: the old one is cancelled and a new one committed in the
        same transaction, linked through rescheduled_from_id. The old booking
        does not count as a conflict for its own replacement.
        """
        if booking.status == BookingStatus.CANCELLED.value:
            raise AlreadyCancelledError()

        event_type = self.event_types.get_bookable_event_type(booking.event_type_id)
        start = self.parse_start(new_start)

        previous = {"startTime": isoformat_z(booking.start_time), "endTime": isoformat_z(booking.end_time)}
        guest = GuestIn(name=booking.guest_name, email=booking.guest_email, timezone=booking.guest_timezone)
        (new_booking,) = await self._plan_and_commit(
            event_type, [start], guest, replaces=booking, reason=reason or "Rescheduled"
        )
        logger.info(f"🔄 Rescheduled booking {booking.id} -> {new_booking.id} at {isoformat_z(start)}")

        await self._remove_from_calendar(booking)
        await self._add_to_calendar(new_booking)
        await self._notify(
            new_booking,
            WebhookEvent.BOOKING_RESCHEDULED,
            {"previousBookingId": booking.uid, "previousSchedule": previous},
        )
        return new_booking

    def confirm_booking(self, booking: Booking) -> Booking:
        """Host approval: PENDING -> CONFIRMED"""
        if booking.status == BookingStatus.CANCELLED.value:
            raise AlreadyCancelledError()
        if booking.status != BookingStatus.PENDING.value:
            raise InvalidInputError("Only pending bookings can be confirmed")
        booking.status = BookingStatus.CONFIRMED.value
        self.db.commit()
        self.db.refresh(booking)
        logger.info(f"✅ Booking {booking.id} confirmed")
        return booking

    async def _notify(self, booking: Booking, event: WebhookEvent, extra: Optional[dict] = None) -> None:
        data = booking_payload(booking)
        if extra:
            data.update(extra)
        try:
            await self.dispatcher.trigger(booking.host_id, event, data)
        except Exception as e:
            logger.error(f"❌ Webhook trigger for booking {booking.id} ({event.value}) failed: {str(e)}")
            self.db.rollback()

    async def _add_to_calendar(self, booking: Booking) -> None:
        """Mirror a committed booking into the host's external calendar, best effort"""
        try:
            event_id = await asyncio.wait_for(self.calendar.create_event(booking), timeout=CALENDAR_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error(f"❌ Calendar event for booking {booking.id} not created: {str(e)}")
            self.db.rollback()
            return
        if event_id:
            booking.google_event_id = event_id
            self.db.commit()

    async def _remove_from_calendar(self, booking: Booking) -> None:
        if not booking.google_event_id:
            return
        try:
            await asyncio.wait_for(
                self.calendar.delete_event(booking.host_id, booking.google_event_id),
                timeout=CALENDAR_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.error(f"❌ Calendar event {booking.google_event_id} for booking {booking.id} not removed: {str(e)}")
            self.db.rollback()
