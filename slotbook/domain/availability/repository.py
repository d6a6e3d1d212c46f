"""Availability repository - Database operations for weekly rules and date overrides"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...models import AvailabilityRule, DateOverride


class AvailabilityRepository:
    """Repository for availability database operations"""

    @staticmethod
    def get_rules(db: Session, owner_id: int) -> list[AvailabilityRule]:
        """Get all weekly rules for an owner"""
        return (
            db.query(AvailabilityRule)
            .filter(AvailabilityRule.owner_id == owner_id)
            .order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time)
            .all()
        )

    @staticmethod
    def get_rules_for_weekday(db: Session, owner_id: int, day_of_week: int) -> list[AvailabilityRule]:
        return (
            db.query(AvailabilityRule)
            .filter(
                AvailabilityRule.owner_id == owner_id,
                AvailabilityRule.day_of_week == day_of_week,
            )
            .all()
        )

    @staticmethod
    def replace_rules(db: Session, owner_id: int, rules: list[dict]) -> list[AvailabilityRule]:
        """Replace the owner's whole weekly schedule in one transaction"""
        db.query(AvailabilityRule).filter(AvailabilityRule.owner_id == owner_id).delete(
            synchronize_session=False
        )
        created = [AvailabilityRule(owner_id=owner_id, **rule) for rule in rules]
        db.add_all(created)
        db.commit()
        for rule in created:
            db.refresh(rule)
        return created

    @staticmethod
    def get_override(db: Session, owner_id: int, day: date) -> Optional[DateOverride]:
        return (
            db.query(DateOverride)
            .filter(DateOverride.owner_id == owner_id, DateOverride.date == day)
            .first()
        )

    @staticmethod
    def list_overrides(
        db: Session,
        owner_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[DateOverride]:
        query = db.query(DateOverride).filter(DateOverride.owner_id == owner_id)
        if start_date:
            query = query.filter(DateOverride.date >= start_date)
        if end_date:
            query = query.filter(DateOverride.date <= end_date)
        return query.order_by(DateOverride.date).all()

    @staticmethod
    def upsert_override(db: Session, owner_id: int, day: date, commit: bool = True, **fields) -> DateOverride:
        """Create or replace the single override for (owner, date)"""
        override = AvailabilityRepository.get_override(db, owner_id, day)
        if override is None:
            override = DateOverride(owner_id=owner_id, date=day)
            db.add(override)
        override.is_available = fields.get("is_available", False)
        override.start_time = fields.get("start_time")
        override.end_time = fields.get("end_time")
        override.reason = fields.get("reason")
        if commit:
            db.commit()
            db.refresh(override)
        return override

    @staticmethod
    def delete_override(db: Session, override: DateOverride) -> None:
        db.delete(override)
        db.commit()
