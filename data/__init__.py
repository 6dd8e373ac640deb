"""Data layer for the notification log."""

from data.database import Base, SessionLocal, engine
from data.models import NotificationLog
from data.repositories import NotificationLogRepository

__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "NotificationLog",
    "NotificationLogRepository",
]
