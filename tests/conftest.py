"""Pytest fixtures for the booking engine tests."""

import logging
import os

# Settings must be in place before slotbook.config is imported
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("KV_BACKEND", "memory")
os.environ.setdefault("WEBHOOK_DELIVERY_MODE", "inline")
os.environ.setdefault("BOOKING_RATE_LIMIT", "5")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

import pytest
from sqlalchemy.orm import sessionmaker

from slotbook import models, models_google_calendar, models_webhook  # noqa: F401
from slotbook.database import Base, build_engine

from tests.helpers import NOW, RecordingScheduler

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@pytest.fixture
def engine(tmp_path):
    """A file-backed SQLite database per test, so several sessions can share it."""
    engine = build_engine(f"sqlite:///{tmp_path / 'slotbook-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now():
    """Sunday 2025-01-05 12:00 UTC; the next day is a Monday."""
    return NOW


@pytest.fixture
def scheduler():
    return RecordingScheduler()
