import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class SchedulingType(str, enum.Enum):
    INDIVIDUAL = "INDIVIDUAL"
    ROUND_ROBIN = "ROUND_ROBIN"
    COLLECTIVE = "COLLECTIVE"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


# Statuses that occupy a host's time
BLOCKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    timezone = Column(String(64), default="UTC", nullable=False)  # IANA name, e.g. Europe/Berlin
    holiday_country = Column(String(2), nullable=True)  # ISO 3166; None derives it from timezone
    api_key_hash = Column(String(64), unique=True, index=True, nullable=True)  # sha256 hex
    created_at = Column(DateTime, server_default=func.now())

    availability_rules = relationship(
        "AvailabilityRule", back_populates="owner", cascade="all, delete-orphan"
    )
    date_overrides = relationship(
        "DateOverride", back_populates="owner", cascade="all, delete-orphan"
    )
    memberships = relationship("TeamMember", back_populates="user")


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    timezone = Column(String(64), default="UTC", nullable=False)
    # Designated organizer for collective bookings; first member by join order when unset
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    members = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="[TeamMember.joined_at, TeamMember.id]",
    )


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_member"),)

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    priority = Column(Integer, default=0, nullable=False)  # Lower value wins ties
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    team = relationship("Team", back_populates="members")
    user = relationship("User", back_populates="memberships")


class AvailabilityRule(Base):
    __tablename__ = "availability_rules"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0=Sunday ... 6=Saturday
    start_time = Column(String(5), nullable=False)  # "HH:MM" wall clock
    end_time = Column(String(5), nullable=False)

    owner = relationship("User", back_populates="availability_rules")


class DateOverride(Base):
    __tablename__ = "date_overrides"
    __table_args__ = (UniqueConstraint("owner_id", "date", name="uq_override_owner_date"),)

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    is_available = Column(Boolean, default=False, nullable=False)
    start_time = Column(String(5), nullable=True)  # Custom hours replace the weekly rules
    end_time = Column(String(5), nullable=True)
    reason = Column(String(255), nullable=True)  # e.g. holiday name
    created_at = Column(DateTime, server_default=func.now())

    owner = relationship("User", back_populates="date_overrides")


class EventType(Base):
    __tablename__ = "event_types"

    id = Column(Integer, primary_key=True, index=True)
    # Exactly one of owner_id / team_id is set
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True, index=True)
    slug = Column(String(100), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(500), nullable=True)
    duration = Column(Integer, nullable=False)  # minutes
    buffer_before = Column(Integer, default=0, nullable=False)
    buffer_after = Column(Integer, default=0, nullable=False)
    min_notice = Column(Integer, default=0, nullable=False)  # minutes
    max_days_ahead = Column(Integer, default=60, nullable=False)
    scheduling_type = Column(String(20), default=SchedulingType.INDIVIDUAL.value, nullable=False)
    requires_confirmation = Column(Boolean, default=False, nullable=False)  # Bookings start PENDING
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    owner = relationship("User")
    team = relationship("Team")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (Index("ix_bookings_host_start", "host_id", "start_time"),)

    id = Column(Integer, primary_key=True, index=True)
    uid = Column(String(36), unique=True, index=True, default=generate_public_id)
    event_type_id = Column(Integer, ForeignKey("event_types.id"), nullable=False, index=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    guest_name = Column(String(255), nullable=False)
    guest_email = Column(String(255), nullable=False)
    guest_timezone = Column(String(64), default="UTC", nullable=False)
    start_time = Column(DateTime, nullable=False)  # naive UTC
    end_time = Column(DateTime, nullable=False)
    status = Column(String(20), default=BookingStatus.CONFIRMED.value, nullable=False)
    # Buffers as they were when the booking was made
    buffer_before = Column(Integer, default=0, nullable=False)
    buffer_after = Column(Integer, default=0, nullable=False)
    recurrence_parent_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    rescheduled_from_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    # Event mirrored into the host's Google Calendar, if one is connected
    google_event_id = Column(String(1024), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    event_type = relationship("EventType")
    host = relationship("User")
    claims = relationship("BookingClaim", back_populates="booking", cascade="all, delete-orphan")


class BookingClaim(Base):
    """One row per (host, minute) occupied by a live booking, buffers included.

    The unique constraint is what stops two concurrent commits for overlapping
    intervals from both succeeding.
    """

    __tablename__ = "booking_claims"
    __table_args__ = (UniqueConstraint("host_id", "minute", name="uq_claim_host_minute"),)

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    minute = Column(DateTime, nullable=False)  # naive UTC, truncated to the minute

    booking = relationship("Booking", back_populates="claims")
