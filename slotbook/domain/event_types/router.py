"""Event type router - FastAPI endpoints for event type operations"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .schemas import EventTypeCreate, EventTypeResponse, EventTypeUpdate
from .service import EventTypeService, to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/event-types", tags=["Event Types"])


def get_event_type_service(db: Session = Depends(get_db)) -> EventTypeService:
    """Dependency injection for EventTypeService"""
    return EventTypeService(db)


@router.get("", response_model=list[EventTypeResponse])
async def get_event_types(
    current_user: User = Depends(get_current_user),
    service: EventTypeService = Depends(get_event_type_service),
):
    """Get all event types the current user owns or shares through a team"""
    return [to_response(e) for e in service.get_event_types(current_user)]


@router.get("/{event_type_id}", response_model=EventTypeResponse)
async def get_event_type(
    event_type_id: int,
    current_user: User = Depends(get_current_user),
    service: EventTypeService = Depends(get_event_type_service),
):
    return to_response(service.get_event_type(event_type_id, current_user))


@router.post("", response_model=EventTypeResponse)
async def create_event_type(
    data: EventTypeCreate,
    current_user: User = Depends(get_current_user),
    service: EventTypeService = Depends(get_event_type_service),
):
    """Create a new event type"""
    return to_response(service.create_event_type(data, current_user))


@router.patch("/{event_type_id}", response_model=EventTypeResponse)
async def update_event_type(
    event_type_id: int,
    data: EventTypeUpdate,
    current_user: User = Depends(get_current_user),
    service: EventTypeService = Depends(get_event_type_service),
):
    """Update an event type"""
    return to_response(service.update_event_type(event_type_id, data, current_user))


@router.delete("/{event_type_id}", response_model=EventTypeResponse)
async def deactivate_event_type(
    event_type_id: int,
    current_user: User = Depends(get_current_user),
    service: EventTypeService = Depends(get_event_type_service),
):
    """Deactivate an event type (soft delete)"""
    return to_response(service.deactivate_event_type(event_type_id, current_user))
