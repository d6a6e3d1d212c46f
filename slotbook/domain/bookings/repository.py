"""Booking repository - Database operations for bookings and their claims"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from ...models import (
    BLOCKING_STATUSES,
    Booking,
    BookingClaim,
    EventType,
    SchedulingType,
    TeamMember,
    User,
)

# Upper bound on any booking's buffer, used to widen range queries before
# the exact buffer-aware filtering done in Python
MAX_BUFFER_MINUTES = 720


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_booking(db: Session, booking_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_booking_by_uid(db: Session, uid: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.uid == uid).first()

    @staticmethod
    def get_bookings_for_host(
        db: Session,
        host_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[str] = None,
    ) -> list[Booking]:
        query = db.query(Booking).filter(Booking.host_id == host_id)
        if start:
            query = query.filter(Booking.end_time > start)
        if end:
            query = query.filter(Booking.start_time < end)
        if status:
            query = query.filter(Booking.status == status)
        return query.order_by(Booking.start_time).all()

    @staticmethod
    def get_series(db: Session, root_id: int) -> list[Booking]:
        """The root booking of a series and every occurrence linked to it"""
        return (
            db.query(Booking)
            .filter(or_(Booking.id == root_id, Booking.recurrence_parent_id == root_id))
            .order_by(Booking.start_time)
            .all()
        )

    @staticmethod
    def get_blocking_bookings(
        db: Session,
        host_id: int,
        range_start: datetime,
        range_end: datetime,
        exclude_ids: Iterable[int] = (),
    ) -> list[Booking]:
        """
        Live bookings that occupy the host around [range_start, range_end).

        Covers bookings the host was assigned, plus collective bookings of any
        team the host currently belongs to. Times are naive UTC. The range is
        widened by MAX_BUFFER_MINUTES; callers apply each booking's own buffers.
        """
        team_ids = select(TeamMember.team_id).where(TeamMember.user_id == host_id)
        collective_event_type_ids = select(EventType.id).where(
            EventType.scheduling_type == SchedulingType.COLLECTIVE.value,
            EventType.team_id.in_(team_ids),
        )
        margin = timedelta(minutes=MAX_BUFFER_MINUTES)
        query = db.query(Booking).filter(
            Booking.status.in_(BLOCKING_STATUSES),
            or_(Booking.host_id == host_id, Booking.event_type_id.in_(collective_event_type_ids)),
            Booking.start_time < range_end + margin,
            Booking.end_time > range_start - margin,
        )
        exclude_ids = list(exclude_ids)
        if exclude_ids:
            query = query.filter(Booking.id.notin_(exclude_ids))
        return query.order_by(Booking.start_time, Booking.id).all()

    @staticmethod
    def count_recent_assignments(
        db: Session, event_type_id: int, host_ids: list[int], since: datetime
    ) -> dict[int, int]:
        """Live bookings per host for one event type starting at or after since"""
        rows = (
            db.query(Booking.host_id, func.count(Booking.id))
            .filter(
                and_(
                    Booking.event_type_id == event_type_id,
                    Booking.host_id.in_(host_ids),
                    Booking.status.in_(BLOCKING_STATUSES),
                    Booking.start_time >= since,
                )
            )
            .group_by(Booking.host_id)
            .all()
        )
        counts = {host_id: 0 for host_id in host_ids}
        counts.update({host_id: count for host_id, count in rows})
        return counts

    @staticmethod
    def lock_hosts(db: Session, host_ids: Iterable[int]) -> None:
        """
        Row-lock the host users in id order so overlapping commits queue up.
        No-op on backends without SELECT ... FOR UPDATE (SQLite).
        """
        db.query(User.id).filter(User.id.in_(sorted(set(host_ids)))).order_by(User.id).with_for_update().all()

    @staticmethod
    def add_claims(db: Session, booking: Booking, host_ids: Iterable[int], start: datetime, end: datetime) -> None:
        """One claim per host per minute of [start, end), naive UTC"""
        minutes = int((end - start).total_seconds() // 60)
        for host_id in sorted(set(host_ids)):
            booking.claims.extend(
                BookingClaim(host_id=host_id, minute=start + timedelta(minutes=i)) for i in range(minutes)
            )

    @staticmethod
    def release_claims(db: Session, booking: Booking) -> None:
        db.query(BookingClaim).filter(BookingClaim.booking_id == booking.id).delete(synchronize_session=False)
        db.expire(booking, ["claims"])
