"""Booking router - FastAPI endpoints for creating and managing bookings"""

import hashlib
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...config import BOOKING_RATE_LIMIT, BOOKING_RATE_WINDOW_SECONDS, IDEMPOTENCY_TTL_SECONDS
from ...database import get_db
from ...kv_store import KeyValueStore, get_kv_store
from ...models import Booking, BookingStatus, User
from ...rate_limiter import create_rate_limiter
from ..scheduling.router import get_slot_service
from ..scheduling.slot_service import SlotService
from ..webhooks.dispatcher import NotificationDispatcher
from ..webhooks.router import get_dispatcher
from .committer import BookingCommitter, to_response
from .repository import BookingRepository
from .schemas import (
    BookingCancel,
    BookingCreate,
    BookingCreatedResponse,
    BookingReschedule,
    BookingResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])

booking_rate_limit = create_rate_limiter(
    limit=BOOKING_RATE_LIMIT, window_seconds=BOOKING_RATE_WINDOW_SECONDS, key_prefix="bookings"
)

IDEMPOTENCY_PENDING = "pending"


def get_booking_committer(
    db: Session = Depends(get_db),
    slot_service: SlotService = Depends(get_slot_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> BookingCommitter:
    """Dependency injection for BookingCommitter"""
    return BookingCommitter(db, slot_service, dispatcher)


def _idempotency_store_key(key: str, data: BookingCreate) -> str:
    """Scope the client's key to the event type so keys never collide across pages"""
    digest = hashlib.sha256(f"{data.eventTypeId}:{key}".encode()).hexdigest()
    return f"idempotency:bookings:{digest}"


def _created_response(bookings: list[Booking]) -> BookingCreatedResponse:
    first = to_response(bookings[0])
    occurrences = [to_response(b) for b in bookings] if len(bookings) > 1 else []
    return BookingCreatedResponse(**first.model_dump(), occurrences=occurrences)


def _replay(db: Session, booking_uid: str) -> BookingCreatedResponse:
    """The response of an already completed request with the same key"""
    repo = BookingRepository()
    first = repo.get_booking_by_uid(db, booking_uid)
    if first is None:
        raise HTTPException(status_code=409, detail="Idempotency-Key refers to an unknown booking")
    return _created_response(repo.get_series(db, first.id))


@router.post("", response_model=BookingCreatedResponse, dependencies=[Depends(booking_rate_limit)])
async def create_booking(
    data: BookingCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=255),
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_kv_store),
    committer: BookingCommitter = Depends(get_booking_committer),
):
    """
    Book a slot (public).

    A retried request carrying the same Idempotency-Key returns the booking
    created by the first one instead of booking twice.
    """
    if not idempotency_key:
        return _created_response(await committer.create_booking(data))

    store_key = _idempotency_store_key(idempotency_key, data)
    if not store.set_if_absent(store_key, IDEMPOTENCY_PENDING, IDEMPOTENCY_TTL_SECONDS):
        existing = store.get(store_key)
        if existing and existing != IDEMPOTENCY_PENDING:
            logger.info(f"♻️ Replaying idempotent booking request for {existing}")
            return _replay(db, existing)
        raise HTTPException(status_code=409, detail="A request with this Idempotency-Key is already in progress")

    try:
        bookings = await committer.create_booking(data)
    except Exception:
        store.delete(store_key)
        raise
    store.set(store_key, bookings[0].uid, IDEMPOTENCY_TTL_SECONDS)
    return _created_response(bookings)


@router.get("", response_model=list[BookingResponse])
async def get_bookings(
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    status: Optional[BookingStatus] = Query(None),
    current_user: User = Depends(get_current_user),
    committer: BookingCommitter = Depends(get_booking_committer),
):
    """Bookings hosted by the current user"""
    return [to_response(b) for b in committer.get_bookings(current_user, start, end, status)]


@router.get("/uid/{uid}", response_model=BookingResponse)
async def get_booking_by_uid(uid: str, committer: BookingCommitter = Depends(get_booking_committer)):
    """Guest view of a booking (public, the uid is the capability)"""
    return to_response(committer.get_booking_by_uid(uid))


@router.post("/uid/{uid}/cancel", response_model=list[BookingResponse])
async def cancel_booking_by_uid(
    uid: str,
    data: BookingCancel,
    committer: BookingCommitter = Depends(get_booking_committer),
):
    booking = committer.get_booking_by_uid(uid)
    cancelled = await committer.cancel_booking(booking, data.reason, data.cancelSeries)
    return [to_response(b) for b in cancelled]


@router.post("/uid/{uid}/reschedule", response_model=BookingResponse)
async def reschedule_booking_by_uid(
    uid: str,
    data: BookingReschedule,
    committer: BookingCommitter = Depends(get_booking_committer),
):
    booking = committer.get_booking_by_uid(uid)
    return to_response(await committer.reschedule_booking(booking, data.start, data.reason))


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    committer: BookingCommitter = Depends(get_booking_committer),
):
    return to_response(committer.get_booking(booking_id, current_user))


@router.post("/{booking_id}/cancel", response_model=list[BookingResponse])
async def cancel_booking(
    booking_id: int,
    data: BookingCancel,
    current_user: User = Depends(get_current_user),
    committer: BookingCommitter = Depends(get_booking_committer),
):
    """Cancel a booking, or with cancelSeries every live occurrence of its series"""
    booking = committer.get_booking(booking_id, current_user)
    cancelled = await committer.cancel_booking(booking, data.reason, data.cancelSeries)
    return [to_response(b) for b in cancelled]


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: int,
    data: BookingReschedule,
    current_user: User = Depends(get_current_user),
    committer: BookingCommitter = Depends(get_booking_committer),
):
    booking = committer.get_booking(booking_id, current_user)
    return to_response(await committer.reschedule_booking(booking, data.start, data.reason))


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    committer: BookingCommitter = Depends(get_booking_committer),
):
    """Approve a booking made on an event type that requires confirmation"""
    booking = committer.get_booking(booking_id, current_user)
    return to_response(committer.confirm_booking(booking))
