"""Wiring between the change feed, the policy engine and the dispatcher."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Iterable, List, Optional

from exceptions import EscalationRejected
from models import (
    ChangeEvent,
    ComplaintSnapshot,
    DeliveryOutcome,
    EntityType,
    Operation,
)
from services.feed import ChangeFeed, FeedSubscription
from services.notifications.dispatcher import Dispatcher
from services.notifications.policy import Audience, PolicyEngine
from settings import settings

logger = logging.getLogger(__name__)


class RecipientDirectory(ABC):
    """Source of the announcement email audience."""

    @abstractmethod
    def announcement_recipients(self) -> List[str]:
        """Email addresses that receive announcement emails."""


class StaticRecipientDirectory(RecipientDirectory):
    """Fixed audience, typically read from settings."""

    def __init__(self, addresses: Optional[Iterable[str]] = None):
        self.addresses = [a for a in (addresses or []) if a]

    def announcement_recipients(self) -> List[str]:
        return list(self.addresses)


class NotificationPipeline:
    """Feeds policy decisions to the dispatcher and exposes operator actions."""

    WATCHED = (EntityType.COMPLAINT, EntityType.ANNOUNCEMENT)

    def __init__(
        self,
        feed: ChangeFeed,
        policy: PolicyEngine,
        dispatcher: Dispatcher,
        directory: Optional[RecipientDirectory] = None,
        cache_size: Optional[int] = None,
    ):
        """Initialize pipeline.

        Args:
            feed: Change feed to consume
            policy: Engine turning events into decisions
            dispatcher: Executes decisions
            directory: Announcement audience source (empty when omitted)
            cache_size: Most complaint snapshots kept for escalation
        """
        self.feed = feed
        self.policy = policy
        self.dispatcher = dispatcher
        self.directory = directory or StaticRecipientDirectory()
        self._subscriptions: List[FeedSubscription] = []
        self._consumers: List[asyncio.Task] = []
        self.cache_size = cache_size or settings.complaint_cache_size
        self._complaints: "OrderedDict[str, ComplaintSnapshot]" = OrderedDict()

    @property
    def running(self) -> bool:
        return bool(self._consumers)

    async def start(self) -> None:
        """Attach the policy consumer to the watched feeds."""
        if self.running:
            return
        for entity_type in self.WATCHED:
            subscription = self.feed.subscribe(entity_type, consumer="policy")
            self._subscriptions.append(subscription)
            self._consumers.append(asyncio.create_task(self._consume(subscription)))
        logger.info("Notification pipeline started")

    async def stop(self) -> None:
        """Detach from the feed, finish queued events and drain deliveries."""
        for subscription in self._subscriptions:
            self.feed.unsubscribe(subscription)
        if self._consumers:
            await asyncio.gather(*self._consumers, return_exceptions=True)
        self._subscriptions.clear()
        self._consumers.clear()
        await self.dispatcher.drain()
        logger.info("Notification pipeline stopped")

    async def handle(self, event: ChangeEvent) -> int:
        """Evaluate one event and submit its deliveries.

        Returns:
            Number of decisions submitted
        """
        self._remember(event)

        audience = None
        if event.entity_type == EntityType.ANNOUNCEMENT and event.operation == Operation.CREATE:
            audience = Audience(tuple(self.directory.announcement_recipients()))

        decisions = self.policy.decide(event, audience)
        if decisions:
            logger.info(
                "%s %s produced %s deliveries",
                event.entity_type.value,
                event.operation.value,
                len(decisions),
                extra={"event_key": event.event_key},
            )
            self.dispatcher.submit(decisions)
        return len(decisions)

    async def resend_failed(self, attempt_id: int) -> DeliveryOutcome:
        """Operator action: re-deliver a failed attempt.

        Raises:
            AttemptNotFound: unknown attempt id
            ResendNotAllowed: attempt is not failed
        """
        return await self.dispatcher.resend(attempt_id)

    async def escalate_to_emergency_call(
        self,
        complaint_id: str,
        complaint: Optional[ComplaintSnapshot] = None,
    ) -> DeliveryOutcome:
        """Operator action: place an emergency call for an urgent complaint.

        Uses ``complaint`` when given, otherwise the latest snapshot seen on
        the feed.

        Raises:
            EscalationRejected: complaint unknown, not urgent or has no phone
        """
        complaint = complaint or self._complaints.get(complaint_id)
        if complaint is None:
            raise EscalationRejected(
                f"Complaint {complaint_id} is unknown", complaint_id=complaint_id
            )

        decision = self.policy.escalate(complaint)
        logger.warning(
            "Escalating complaint %s to an emergency call",
            complaint_id,
            extra={"channel": decision.channel.value, "recipient": decision.recipient},
        )
        outcomes = await self.dispatcher.dispatch([decision])
        return outcomes[0]

    def latest_complaint(self, complaint_id: str) -> Optional[ComplaintSnapshot]:
        return self._complaints.get(complaint_id)

    def _remember(self, event: ChangeEvent) -> None:
        if event.entity_type != EntityType.COMPLAINT:
            return
        if event.operation == Operation.DELETE:
            self._complaints.pop(event.entity_id, None)
        else:
            self._complaints[event.entity_id] = event.after
            self._complaints.move_to_end(event.entity_id)
            while len(self._complaints) > self.cache_size:
                self._complaints.popitem(last=False)

    async def _consume(self, subscription: FeedSubscription) -> None:
        async for event in subscription:
            try:
                await self.handle(event)
            except Exception:
                # One bad event must not stop the consumer
                logger.exception(
                    "Failed to evaluate %s",
                    event.event_key,
                    extra={"event_key": event.event_key},
                )
