"""Subscription registry for live client notifications."""

import asyncio
import logging
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Tuple, Union

from models import (
    ChangeEvent,
    ClientNotification,
    EntityType,
    Operation,
    Role,
)
from services.feed import ChangeFeed, FeedFilter, FeedSubscription
from services.notifications.policy import ADMIN_AUDIENCE, BROADCAST, complaint_changes
from services.notifications.templates import (
    AdminAlertTemplate,
    AnnouncementNotificationTemplate,
    ComplaintNotificationTemplate,
    add_urgent_tag,
    truncate,
)
from settings import settings

logger = logging.getLogger(__name__)

_complaints = ComplaintNotificationTemplate()
_announcements = AnnouncementNotificationTemplate()
_admin_alerts = AdminAlertTemplate()


class SubscriptionState(str, Enum):
    """Lifecycle of a subscription."""

    CONNECTED = "connected"
    RELEASING = "releasing"
    RELEASED = "released"


def compute_display(event: ChangeEvent, role: Union[Role, str]) -> Optional[ClientNotification]:
    """Decide what, if anything, a connected client shows for ``event``.

    Visibility is enforced by the feed filters; this only decides whether the
    change is worth showing. Nothing computed here is persisted.
    """
    role = Role(role)
    common = {
        "entity_type": event.entity_type,
        "entity_id": event.entity_id,
        "event_key": event.event_key,
    }

    if event.entity_type == EntityType.COMPLAINT:
        complaint = event.after
        if event.operation == Operation.UPDATE and role == Role.STUDENT:
            changes = complaint_changes(event.before, complaint)
            if changes.status_changed:
                title = _complaints.status_updated_title(complaint.title, complaint.status)
                return ClientNotification(
                    kind="status_changed",
                    level="success",
                    title=add_urgent_tag(title) if complaint.is_urgent else title,
                    description=_complaints.status_description(complaint.admin_remarks),
                    **common,
                )
            if changes.admin_replied:
                return ClientNotification(
                    kind="admin_replied",
                    title=_complaints.admin_replied_title(complaint.title),
                    description=truncate(complaint.admin_remarks),
                    **common,
                )
        elif event.operation == Operation.CREATE and role == Role.ADMIN:
            return ClientNotification(
                kind="new_complaint",
                title=_admin_alerts.new_complaint_title(complaint.title),
                description=_admin_alerts.new_complaint_body(
                    complaint.student_name, complaint.category
                ),
                **common,
            )

    elif event.entity_type == EntityType.ANNOUNCEMENT:
        announcement = event.after
        if event.operation == Operation.CREATE and announcement.is_active:
            return ClientNotification(
                kind="announcement",
                title=_announcements.title(announcement.title),
                description=announcement.message,
                **common,
            )

    elif event.entity_type == EntityType.ACTIVITY_LOG:
        if event.operation == Operation.CREATE and role == Role.STUDENT:
            return ClientNotification(
                kind="activity",
                title=_complaints.activity_title(),
                description=event.after.message,
                **common,
            )

    return None


def visibility_filters(actor_id: str, role: Union[Role, str]) -> List[Tuple[EntityType, FeedFilter]]:
    """Feed streams an actor may watch."""
    if Role(role) == Role.ADMIN:
        return [
            (EntityType.COMPLAINT, FeedFilter()),
            (EntityType.ANNOUNCEMENT, FeedFilter(active_only=True)),
        ]
    return [
        (EntityType.COMPLAINT, FeedFilter(owner_id=actor_id)),
        (EntityType.ACTIVITY_LOG, FeedFilter(owner_id=actor_id)),
        (EntityType.ANNOUNCEMENT, FeedFilter(active_only=True)),
    ]


class LiveChannel:
    """Outbox a connected client drains, with de-duplication."""

    def __init__(self, dedupe_window: int):
        self.dedupe_window = dedupe_window
        self.closed = False
        self._seen: "OrderedDict[tuple, None]" = OrderedDict()
        self._queue: asyncio.Queue = asyncio.Queue()

    def offer(self, notification: ClientNotification) -> bool:
        """Queue a notification.

        Returns:
            True when the client has it (queued now or shown before)
        """
        if self.closed:
            return False

        key = notification.dedupe_key
        if key is not None:
            if key in self._seen:
                return True
            self._seen[key] = None
            while len(self._seen) > self.dedupe_window:
                self._seen.popitem(last=False)

        self._queue.put_nowait(notification)
        return True

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def get_nowait(self) -> Optional[ClientNotification]:
        """Next queued notification, or None if nothing is waiting."""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is None:
            self._queue.put_nowait(None)
        return item

    async def get(self) -> Optional[ClientNotification]:
        """Next notification, or None once the channel is closed."""
        item = await self._queue.get()
        if item is None:
            self._queue.put_nowait(None)
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ClientNotification:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


class Subscription:
    """One actor session watching its visible entities."""

    def __init__(
        self,
        actor_id: str,
        role: Role,
        session_id: str,
        entity_filter: List[Tuple[EntityType, FeedFilter]],
        live_channel: LiveChannel,
    ):
        self.id = uuid.uuid4().hex
        self.actor_id = actor_id
        self.role = role
        self.session_id = session_id
        self.entity_filter = entity_filter
        self.live_channel = live_channel
        self.state = SubscriptionState.CONNECTED
        self._feeds: List[FeedSubscription] = []
        self._readers: List[asyncio.Task] = []

    @property
    def key(self) -> Tuple[str, str]:
        return (self.actor_id, self.session_id)

    @property
    def connected(self) -> bool:
        return self.state == SubscriptionState.CONNECTED

    def deliver(self, notification: ClientNotification) -> bool:
        # State is checked without yielding, so nothing lands after release starts
        if self.state != SubscriptionState.CONNECTED:
            return False
        return self.live_channel.offer(notification)

    def accepts(self, recipient: str) -> bool:
        if recipient == BROADCAST:
            return True
        if recipient == ADMIN_AUDIENCE:
            return self.role == Role.ADMIN
        return recipient == self.actor_id

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, actor_id={self.actor_id}, "
            f"role={self.role.value}, state={self.state.value})>"
        )


class SubscriptionRegistry:
    """Tracks live subscriptions and fans change events out to them."""

    def __init__(self, feed: ChangeFeed, dedupe_window: Optional[int] = None):
        """Initialize registry.

        Args:
            feed: Change feed the registry listens to
            dedupe_window: Notifications remembered per client for de-duplication
        """
        self.feed = feed
        self.dedupe_window = dedupe_window or settings.display_dedupe_window
        self._subscriptions: Dict[Tuple[str, str], Subscription] = {}
        self._lock = asyncio.Lock()

    async def connect(
        self,
        actor_id: str,
        role: Union[Role, str],
        session_id: str,
    ) -> Subscription:
        """Attach an actor session to the feed.

        A second connect for the same actor and session replaces the first.
        """
        role = Role(role)
        async with self._lock:
            previous = self._subscriptions.pop((actor_id, session_id), None)
            if previous is not None:
                logger.info("Replacing subscription %s on reconnect", previous.id)
                self._release(previous)

            subscription = Subscription(
                actor_id,
                role,
                session_id,
                visibility_filters(actor_id, role),
                LiveChannel(self.dedupe_window),
            )
            for entity_type, feed_filter in subscription.entity_filter:
                feed_subscription = self.feed.subscribe(
                    entity_type, feed_filter, consumer=f"live:{subscription.id}"
                )
                subscription._feeds.append(feed_subscription)
                subscription._readers.append(
                    asyncio.create_task(self._read(subscription, feed_subscription))
                )

            self._subscriptions[subscription.key] = subscription

        logger.info(
            "Connected %s %s (session %s)",
            role.value,
            actor_id,
            session_id,
            extra={"subscription_id": subscription.id},
        )
        return subscription

    async def disconnect(self, subscription: Subscription) -> bool:
        """Release a subscription.

        Returns:
            True the first time, False for an already released subscription
        """
        async with self._lock:
            if self._subscriptions.get(subscription.key) is subscription:
                del self._subscriptions[subscription.key]
            released = self._release(subscription)

        if released:
            logger.info(
                "Disconnected %s (session %s)",
                subscription.actor_id,
                subscription.session_id,
                extra={"subscription_id": subscription.id},
            )
        return released

    async def close_session(self, session_id: str) -> int:
        """Release every subscription opened by a session."""
        async with self._lock:
            doomed = [s for key, s in self._subscriptions.items() if key[1] == session_id]
            for subscription in doomed:
                del self._subscriptions[subscription.key]
                self._release(subscription)
        return len(doomed)

    async def close(self) -> None:
        """Release all subscriptions."""
        async with self._lock:
            doomed = list(self._subscriptions.values())
            self._subscriptions.clear()
            for subscription in doomed:
                self._release(subscription)
        logger.info("Registry closed, released %s subscriptions", len(doomed))

    @asynccontextmanager
    async def session(
        self,
        actor_id: str,
        role: Union[Role, str],
        session_id: str,
    ) -> AsyncIterator[Subscription]:
        """Connect for the duration of a block; released however the block exits."""
        subscription = await self.connect(actor_id, role, session_id)
        try:
            yield subscription
        finally:
            await self.disconnect(subscription)

    def push(self, recipient: str, notification: ClientNotification) -> int:
        """Hand a push notification to every matching live subscription.

        Returns:
            Number of subscriptions that accepted it
        """
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.accepts(recipient) and subscription.deliver(notification):
                delivered += 1
        return delivered

    def subscriptions_for(self, actor_id: str) -> List[Subscription]:
        return [s for s in self._subscriptions.values() if s.actor_id == actor_id]

    def __len__(self) -> int:
        return len(self._subscriptions)

    def _release(self, subscription: Subscription) -> bool:
        if subscription.state != SubscriptionState.CONNECTED:
            return False

        subscription.state = SubscriptionState.RELEASING
        subscription.live_channel.close()
        for reader in subscription._readers:
            reader.cancel()
        for feed_subscription in subscription._feeds:
            self.feed.unsubscribe(feed_subscription)
        subscription._readers.clear()
        subscription._feeds.clear()
        subscription.state = SubscriptionState.RELEASED
        return True

    async def _read(self, subscription: Subscription, feed_subscription: FeedSubscription) -> None:
        async for event in feed_subscription:
            if not subscription.connected:
                break
            try:
                notification = compute_display(event, subscription.role)
            except Exception:
                logger.exception(
                    "Could not build display notification for %s",
                    event.event_key,
                    extra={"subscription_id": subscription.id, "event_key": event.event_key},
                )
                continue
            if notification is not None:
                subscription.deliver(notification)
