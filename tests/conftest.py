"""Pytest configuration and fixtures."""

import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from data.database import Base  # noqa: E402
from data.repositories import NotificationLogRepository  # noqa: E402
from services.feed import build_event  # noqa: E402


def complaint_row(**overrides):
    """Raw complaint row as the portal stores it."""
    row = {
        "id": "c-1",
        "complaint_code": "GRV-0001",
        "title": "Broken projector",
        "status": "Pending",
        "admin_remarks": None,
        "marked_urgent": False,
        "priority": "medium",
        "category": "Infrastructure",
        "student_id": "student-1",
        "student_name": "Asha",
        "student_email": "asha@example.com",
        "student_phone": "+15551234567",
    }
    row.update(overrides)
    return row


def announcement_row(**overrides):
    row = {
        "id": "a-1",
        "title": "Exam schedule",
        "message": "Finals start on Monday.",
        "is_active": True,
    }
    row.update(overrides)
    return row


def complaint_update(before=None, after=None, occurred_at=None):
    """Complaint update event from two partial rows."""
    return build_event(
        "complaint",
        "update",
        before=complaint_row(**(before or {})),
        after=complaint_row(**(after or {})),
        occurred_at=occurred_at or datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc),
    )


@pytest.fixture
def db_path():
    """Temporary SQLite file for one test."""
    db_fd, path = tempfile.mkstemp(suffix=".db")
    try:
        yield path
    finally:
        os.close(db_fd)
        os.unlink(path)


@pytest.fixture
def session_factory(db_path):
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )
    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture
def log_store(session_factory):
    """Notification log repository on a temporary database."""
    return NotificationLogRepository(session_factory, retry_attempts=1)
