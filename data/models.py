"""SQLAlchemy ORM models for the notification log."""

from datetime import datetime, timezone
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)

from data.database import Base


class NotificationLog(Base):
    """One delivery attempt on one channel."""

    __tablename__ = "notification_log"

    id = Column(Integer, primary_key=True, index=True)
    channel = Column(String(20), nullable=False, index=True)  # 'push', 'email', 'sms', 'call'
    recipient = Column(String(255), nullable=False, index=True)
    subject = Column(String(500), nullable=True)
    body = Column(Text, nullable=False)
    status = Column(
        String(20),
        default="pending",
        nullable=False,
        index=True,
    )  # 'pending', 'sent', 'failed'
    error_message = Column(Text, nullable=True)
    priority = Column(String(20), default="normal", nullable=False)
    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(String(100), nullable=True, index=True)
    resend_of_id = Column(
        Integer,
        ForeignKey("notification_log.id"),
        nullable=True,
        index=True,
    )
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationLog(id={self.id}, channel={self.channel}, "
            f"recipient={self.recipient}, status={self.status})>"
        )
