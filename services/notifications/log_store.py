"""Notification log store contract consumed by the dispatcher."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from models import (
    AttemptStatus,
    DeliveryAttemptDTO,
    DeliveryDecision,
    LogQuery,
    LogStats,
)


class NotificationLogStore(ABC):
    """Append-mostly store of delivery attempts.

    Implementations raise ``LogStoreError`` when the backing store is
    unavailable and ``InvalidStatusTransition`` when asked to move an attempt
    out of a terminal status.
    """

    @abstractmethod
    def append(
        self,
        decision: DeliveryDecision,
        resend_of: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Persist a pending attempt for ``decision`` and return its id."""

    @abstractmethod
    def update_status(
        self,
        attempt_id: int,
        status: AttemptStatus,
        error_message: Optional[str] = None,
        provider_reference: Optional[str] = None,
    ) -> DeliveryAttemptDTO:
        """Record the single outcome transition of a pending attempt."""

    @abstractmethod
    def get(self, attempt_id: int) -> Optional[DeliveryAttemptDTO]:
        """Return one attempt or None."""

    @abstractmethod
    def query(self, filters: Optional[LogQuery] = None) -> List[DeliveryAttemptDTO]:
        """Return attempts matching ``filters``, newest first."""

    @abstractmethod
    def stats(self) -> LogStats:
        """Return delivery counters."""
