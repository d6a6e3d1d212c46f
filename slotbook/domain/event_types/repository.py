"""Event type repository - Database operations for event types and teams"""

from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import EventType, Team, TeamMember


class EventTypeRepository:
    """Repository for event type database operations"""

    @staticmethod
    def get_event_type(db: Session, event_type_id: int) -> Optional[EventType]:
        return db.query(EventType).filter(EventType.id == event_type_id).first()

    @staticmethod
    def get_team_ids_for_user(db: Session, user_id: int) -> list[int]:
        rows = db.query(TeamMember.team_id).filter(TeamMember.user_id == user_id).all()
        return [row[0] for row in rows]

    @staticmethod
    def get_event_types_for_user(db: Session, user_id: int) -> list[EventType]:
        """Event types the user owns directly or through a team membership"""
        team_ids = EventTypeRepository.get_team_ids_for_user(db, user_id)
        query = db.query(EventType)
        if team_ids:
            query = query.filter(or_(EventType.owner_id == user_id, EventType.team_id.in_(team_ids)))
        else:
            query = query.filter(EventType.owner_id == user_id)
        return query.order_by(EventType.created_at.desc(), EventType.id.desc()).all()

    @staticmethod
    def slug_exists(
        db: Session,
        slug: str,
        owner_id: Optional[int],
        team_id: Optional[int],
        exclude_id: Optional[int] = None,
    ) -> bool:
        query = db.query(EventType.id).filter(EventType.slug == slug)
        if team_id is not None:
            query = query.filter(EventType.team_id == team_id)
        else:
            query = query.filter(EventType.owner_id == owner_id)
        if exclude_id is not None:
            query = query.filter(EventType.id != exclude_id)
        return query.first() is not None

    @staticmethod
    def get_team(db: Session, team_id: int) -> Optional[Team]:
        return db.query(Team).filter(Team.id == team_id).first()

    @staticmethod
    def create_event_type(db: Session, event_type_data: dict) -> EventType:
        event_type = EventType(**event_type_data)
        db.add(event_type)
        db.commit()
        db.refresh(event_type)
        return event_type

    @staticmethod
    def update_event_type(db: Session, event_type: EventType, update_data: dict) -> EventType:
        for key, value in update_data.items():
            setattr(event_type, key, value)
        db.commit()
        db.refresh(event_type)
        return event_type
