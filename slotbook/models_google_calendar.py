"""
Google Calendar connection per host, read for external busy time
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class GoogleCalendarIntegration(Base):
    __tablename__ = "google_calendar_integrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    # Fernet-encrypted, see services.google_calendar_service
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expires_at = Column(DateTime, nullable=False)  # naive UTC

    account_email = Column(String(255), nullable=True)
    calendar_id = Column(String(500), nullable=True)  # None reads the primary calendar

    # Off: the calendar is connected but never blocks slots
    check_conflicts = Column(Boolean, default=True, nullable=False)

    connected_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User")
