"""Repository layer for SQLAlchemy ORM data persistence."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.errors import retry_with_logging
from data.database import SessionLocal
from data.models import NotificationLog
from exceptions import InvalidStatusTransition, LogStoreError
from models import (
    AttemptStatus,
    DeliveryAttemptDTO,
    DeliveryDecision,
    LogQuery,
    LogStats,
)
from services.notifications.log_store import NotificationLogStore
from settings import settings

logger = logging.getLogger(__name__)


def _contains(text: str) -> str:
    """Case-insensitive LIKE pattern matching ``text`` literally."""
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _to_dto(row: NotificationLog) -> DeliveryAttemptDTO:
    return DeliveryAttemptDTO(
        id=row.id,
        channel=row.channel,
        recipient=row.recipient,
        subject=row.subject,
        body=row.body,
        status=row.status,
        error_message=row.error_message,
        related_entity_id=row.related_entity_id,
        related_entity_type=row.related_entity_type,
        priority=row.priority,
        created_at=row.created_at,
        updated_at=row.updated_at,
        metadata=dict(row.details or {}),
    )


class NotificationLogRepository(NotificationLogStore):
    """Repository for delivery attempts with SQLAlchemy.

    Every attempt is its own row and each call uses its own session, so
    concurrent writers never contend on a shared record.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        retry_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self._retrying = retry_with_logging(
            max_attempts=retry_attempts or settings.log_store_retry_attempts,
            min_delay=settings.log_store_retry_delay_min,
            max_delay=settings.log_store_retry_delay_max,
            exception_types=(OperationalError,),
            error_class=LogStoreError,
            service_name="notification_log",
        )

    def _run(self, operation, *args, **kwargs):
        try:
            return self._retrying(operation)(*args, **kwargs)
        except LogStoreError:
            raise
        except SQLAlchemyError as e:
            logger.exception("Notification log operation %s failed", operation.__name__)
            raise LogStoreError(
                message=str(e),
                service_name="notification_log",
                original_error=e,
            ) from e

    def append(
        self,
        decision: DeliveryDecision,
        resend_of: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Persist a pending attempt and return its id."""
        return self._run(self._append, decision, resend_of, metadata)

    def _append(
        self,
        decision: DeliveryDecision,
        resend_of: Optional[int],
        metadata: Optional[Dict[str, Any]],
    ) -> int:
        details = {**decision.metadata, **(metadata or {})}
        if resend_of is not None:
            details["resend_of"] = resend_of

        session = self.session_factory()
        try:
            row = NotificationLog(
                channel=decision.channel.value,
                recipient=decision.recipient,
                subject=decision.subject,
                body=decision.body,
                status=AttemptStatus.PENDING.value,
                priority=decision.priority.value,
                related_entity_id=decision.related_entity_id,
                related_entity_type=(
                    decision.related_entity_type.value
                    if decision.related_entity_type
                    else None
                ),
                resend_of_id=resend_of,
                details=details,
            )
            session.add(row)
            session.commit()
            logger.debug(
                "Logged pending %s attempt %s for %s",
                row.channel,
                row.id,
                row.recipient,
            )
            return row.id
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def update_status(
        self,
        attempt_id: int,
        status: AttemptStatus,
        error_message: Optional[str] = None,
        provider_reference: Optional[str] = None,
    ) -> DeliveryAttemptDTO:
        """Move a pending attempt to sent or failed."""
        return self._run(
            self._update_status, attempt_id, status, error_message, provider_reference
        )

    def _update_status(
        self,
        attempt_id: int,
        status: AttemptStatus,
        error_message: Optional[str],
        provider_reference: Optional[str],
    ) -> DeliveryAttemptDTO:
        status = AttemptStatus(status)
        session = self.session_factory()
        try:
            row = session.execute(
                select(NotificationLog).where(NotificationLog.id == attempt_id)
            ).scalar_one_or_none()

            if row is None:
                raise LogStoreError(
                    message=f"attempt {attempt_id} not found",
                    service_name="notification_log",
                )

            if row.status != AttemptStatus.PENDING.value or status == AttemptStatus.PENDING:
                raise InvalidStatusTransition(attempt_id, row.status, status.value)

            row.status = status.value
            row.error_message = error_message
            if provider_reference:
                row.details = {**(row.details or {}), "provider_reference": provider_reference}
            row.updated_at = datetime.now(timezone.utc)
            session.commit()
            return _to_dto(row)
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, attempt_id: int) -> Optional[DeliveryAttemptDTO]:
        """Return attempt by primary key or None if not found."""
        return self._run(self._get, attempt_id)

    def _get(self, attempt_id: int) -> Optional[DeliveryAttemptDTO]:
        session = self.session_factory()
        try:
            row = session.execute(
                select(NotificationLog).where(NotificationLog.id == attempt_id)
            ).scalar_one_or_none()
            return _to_dto(row) if row is not None else None
        finally:
            session.close()

    def query(self, filters: Optional[LogQuery] = None) -> List[DeliveryAttemptDTO]:
        """Return attempts matching filters, newest first."""
        return self._run(self._query, filters or LogQuery())

    def _query(self, filters: LogQuery) -> List[DeliveryAttemptDTO]:
        statement = select(NotificationLog)

        if filters.channel is not None:
            statement = statement.where(NotificationLog.channel == filters.channel.value)
        if filters.status is not None:
            statement = statement.where(NotificationLog.status == filters.status.value)
        if filters.related_entity_id is not None:
            statement = statement.where(
                NotificationLog.related_entity_id == filters.related_entity_id
            )
        if filters.recipient_contains:
            statement = statement.where(
                func.lower(NotificationLog.recipient).like(
                    _contains(filters.recipient_contains), escape="\\"
                )
            )
        if filters.search:
            needle = _contains(filters.search)
            statement = statement.where(
                or_(
                    func.lower(NotificationLog.recipient).like(needle, escape="\\"),
                    func.lower(NotificationLog.subject).like(needle, escape="\\"),
                )
            )

        statement = (
            statement.order_by(NotificationLog.created_at.desc(), NotificationLog.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )

        session = self.session_factory()
        try:
            rows = session.execute(statement).scalars().all()
            return [_to_dto(row) for row in rows]
        finally:
            session.close()

    def stats(self) -> LogStats:
        """Return counters by status and channel."""
        return self._run(self._stats)

    def _stats(self) -> LogStats:
        session = self.session_factory()
        try:
            by_status = dict(
                session.execute(
                    select(NotificationLog.status, func.count()).group_by(NotificationLog.status)
                ).all()
            )
            by_channel = dict(
                session.execute(
                    select(NotificationLog.channel, func.count()).group_by(NotificationLog.channel)
                ).all()
            )
        finally:
            session.close()

        return LogStats(
            total=sum(by_status.values()),
            sent=by_status.get(AttemptStatus.SENT.value, 0),
            failed=by_status.get(AttemptStatus.FAILED.value, 0),
            pending=by_status.get(AttemptStatus.PENDING.value, 0),
            by_channel=by_channel,
        )
