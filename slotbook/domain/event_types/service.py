"""Event type service - Business logic for event type operations"""

import logging

from sqlalchemy.orm import Session

from ...errors import InvalidInputError, NotFoundError
from ...models import EventType, SchedulingType, User
from .repository import EventTypeRepository
from .schemas import EventTypeCreate, EventTypeResponse, EventTypeUpdate

logger = logging.getLogger(__name__)

# Schema field -> column
FIELD_MAP = {
    "slug": "slug",
    "title": "title",
    "description": "description",
    "location": "location",
    "duration": "duration",
    "bufferBefore": "buffer_before",
    "bufferAfter": "buffer_after",
    "minNotice": "min_notice",
    "maxDaysAhead": "max_days_ahead",
    "requiresConfirmation": "requires_confirmation",
    "isActive": "is_active",
}


def to_response(event_type: EventType) -> EventTypeResponse:
    return EventTypeResponse(
        id=event_type.id,
        ownerId=event_type.owner_id,
        teamId=event_type.team_id,
        slug=event_type.slug,
        title=event_type.title,
        description=event_type.description,
        location=event_type.location,
        duration=event_type.duration,
        bufferBefore=event_type.buffer_before,
        bufferAfter=event_type.buffer_after,
        minNotice=event_type.min_notice,
        maxDaysAhead=event_type.max_days_ahead,
        schedulingType=SchedulingType(event_type.scheduling_type),
        requiresConfirmation=event_type.requires_confirmation,
        isActive=event_type.is_active,
        created_at=event_type.created_at,
    )


class EventTypeService:
    """Service layer for event type business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = EventTypeRepository()

    def get_bookable_event_type(self, event_type_id: int) -> EventType:
        """Active event type for the public slot/booking paths"""
        event_type = self.repo.get_event_type(self.db, event_type_id)
        if not event_type or not event_type.is_active:
            raise NotFoundError("Event type not found")
        return event_type

    def can_manage(self, event_type: EventType, user: User) -> bool:
        if event_type.owner_id == user.id:
            return True
        if event_type.team_id is not None:
            return event_type.team_id in self.repo.get_team_ids_for_user(self.db, user.id)
        return False

    def get_event_type(self, event_type_id: int, user: User) -> EventType:
        event_type = self.repo.get_event_type(self.db, event_type_id)
        if not event_type or not self.can_manage(event_type, user):
            raise NotFoundError("Event type not found")
        return event_type

    def get_event_types(self, user: User) -> list[EventType]:
        return self.repo.get_event_types_for_user(self.db, user.id)

    def create_event_type(self, data: EventTypeCreate, user: User) -> EventType:
        """Create an event type owned by the user, or by one of the user's teams"""
        logger.info(f"📥 Creating event type '{data.slug}' for user_id: {user.id}")

        if data.teamId is not None:
            team = self.repo.get_team(self.db, data.teamId)
            if not team or data.teamId not in self.repo.get_team_ids_for_user(self.db, user.id):
                raise NotFoundError("Team not found")
            if data.schedulingType == SchedulingType.INDIVIDUAL:
                raise InvalidInputError("Team event types must be ROUND_ROBIN or COLLECTIVE")
            owner_id, team_id = None, team.id
        else:
            if data.schedulingType != SchedulingType.INDIVIDUAL:
                raise InvalidInputError(f"{data.schedulingType.value} event types require a teamId")
            owner_id, team_id = user.id, None

        if self.repo.slug_exists(self.db, data.slug, owner_id, team_id):
            raise InvalidInputError(f"Slug '{data.slug}' is already in use")

        event_type = self.repo.create_event_type(
            self.db,
            {
                "owner_id": owner_id,
                "team_id": team_id,
                "slug": data.slug,
                "title": data.title,
                "description": data.description,
                "location": data.location,
                "duration": data.duration,
                "buffer_before": data.bufferBefore,
                "buffer_after": data.bufferAfter,
                "min_notice": data.minNotice,
                "max_days_ahead": data.maxDaysAhead,
                "scheduling_type": data.schedulingType.value,
                "requires_confirmation": data.requiresConfirmation,
            },
        )
        logger.info(f"✅ Event type created: {event_type.id}")
        return event_type

    def update_event_type(self, event_type_id: int, data: EventTypeUpdate, user: User) -> EventType:
        """Partial update. Existing bookings keep the buffers they were made with."""
        event_type = self.get_event_type(event_type_id, user)
        update_data = {
            FIELD_MAP[field]: value for field, value in data.model_dump(exclude_unset=True).items()
        }
        slug = update_data.get("slug")
        if slug and self.repo.slug_exists(
            self.db, slug, event_type.owner_id, event_type.team_id, exclude_id=event_type.id
        ):
            raise InvalidInputError(f"Slug '{slug}' is already in use")
        return self.repo.update_event_type(self.db, event_type, update_data)

    def deactivate_event_type(self, event_type_id: int, user: User) -> EventType:
        """Hide an event type from guests. Bookings are kept for the audit trail."""
        event_type = self.get_event_type(event_type_id, user)
        logger.info(f"🗑️ Deactivating event type {event_type_id}")
        return self.repo.update_event_type(self.db, event_type, {"is_active": False})
