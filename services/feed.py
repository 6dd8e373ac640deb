"""In-process entity change feed.

Each subscription owns its own queue, so every consumer reads events in the
order they were published and a slow consumer never holds up another one.
"""

import asyncio
import itertools
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from exceptions import SnapshotValidationError
from models import SNAPSHOT_TYPES, ChangeEvent, EntityType, Operation
from settings import settings

logger = logging.getLogger(__name__)

_CLOSED = object()

OwnerLookup = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class FeedFilter:
    """Server-side filter applied before an event is queued."""

    owner_id: Optional[str] = None
    active_only: bool = False

    def matches(self, event: ChangeEvent) -> bool:
        snapshot = event.current
        if self.owner_id is not None and snapshot.owner_id != self.owner_id:
            return False
        if self.active_only and not snapshot.active:
            return False
        return True


class FeedSubscription:
    """Handle returned by ``ChangeFeed.subscribe``; async-iterable."""

    def __init__(
        self,
        handle_id: int,
        entity_type: EntityType,
        feed_filter: FeedFilter,
        consumer: Optional[str] = None,
    ):
        self.id = handle_id
        self.entity_type = entity_type
        self.filter = feed_filter
        self.consumer = consumer
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def _offer(self, event: ChangeEvent) -> bool:
        if self.closed or not self.filter.matches(event):
            return False
        self._queue.put_nowait(event)
        return True

    def _close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> Optional[ChangeEvent]:
        """Next event, or None once the subscription is closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep later readers from blocking forever
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __repr__(self) -> str:
        return (
            f"<FeedSubscription(id={self.id}, entity_type={self.entity_type.value}, "
            f"consumer={self.consumer})>"
        )


class ChangeFeed:
    """Publishes validated change events to per-consumer queues.

    Activity rows do not carry the student who owns the complaint, so the
    feed attaches it before filtering. Owners come from complaint events seen
    on this feed, falling back to ``owner_lookup`` (typically a query against
    the complaints table) for complaints it has not seen.
    """

    def __init__(
        self,
        owner_lookup: Optional[OwnerLookup] = None,
        owner_cache_size: Optional[int] = None,
    ):
        self._subscriptions: Dict[int, FeedSubscription] = {}
        self._ids = itertools.count(1)
        self.owner_lookup = owner_lookup
        self.owner_cache_size = owner_cache_size or settings.complaint_cache_size
        self._owners: "OrderedDict[str, str]" = OrderedDict()

    def subscribe(
        self,
        entity_type: Union[EntityType, str],
        feed_filter: Optional[FeedFilter] = None,
        consumer: Optional[str] = None,
    ) -> FeedSubscription:
        """Open a filtered stream of events for one entity type."""
        subscription = FeedSubscription(
            next(self._ids),
            EntityType(entity_type),
            feed_filter or FeedFilter(),
            consumer,
        )
        self._subscriptions[subscription.id] = subscription
        logger.debug("Feed subscription opened: %r", subscription)
        return subscription

    def unsubscribe(self, subscription: FeedSubscription) -> bool:
        """Close a stream; returns False when it was already closed."""
        removed = self._subscriptions.pop(subscription.id, None)
        subscription._close()
        if removed is not None:
            logger.debug("Feed subscription closed: %r", subscription)
        return removed is not None

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> int:
        """Queue ``event`` for every matching subscription.

        Returns:
            Number of subscriptions the event was queued for
        """
        event = self._attach_owner(event)
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.entity_type == event.entity_type and subscription._offer(event):
                delivered += 1
        return delivered

    def publish_change(
        self,
        entity_type: Union[EntityType, str],
        operation: Union[Operation, str],
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> ChangeEvent:
        """Validate raw rows into a typed event and publish it.

        Raises:
            SnapshotValidationError: a row does not fit the entity's snapshot type
        """
        event = self._attach_owner(
            build_event(entity_type, operation, before, after, occurred_at)
        )
        self.publish(event)
        return event

    def owner_of(self, complaint_id: str) -> Optional[str]:
        """Student who owns ``complaint_id``, or None when unknown."""
        owner = self._owners.get(complaint_id)
        if owner is not None:
            self._owners.move_to_end(complaint_id)
            return owner
        if self.owner_lookup is None:
            return None

        try:
            owner = self.owner_lookup(complaint_id)
        except Exception:
            logger.exception("Owner lookup failed for complaint %s", complaint_id)
            return None
        if owner:
            self._remember_owner(complaint_id, owner)
        return owner

    def _remember_owner(self, complaint_id: str, owner: str) -> None:
        self._owners[complaint_id] = owner
        self._owners.move_to_end(complaint_id)
        while len(self._owners) > self.owner_cache_size:
            self._owners.popitem(last=False)

    def _attach_owner(self, event: ChangeEvent) -> ChangeEvent:
        if event.entity_type == EntityType.COMPLAINT:
            if event.operation == Operation.DELETE:
                self._owners.pop(event.entity_id, None)
            elif event.current.student_id:
                self._remember_owner(event.entity_id, event.current.student_id)
            return event

        if event.entity_type != EntityType.ACTIVITY_LOG or event.current.student_id:
            return event

        owner = self.owner_of(event.current.complaint_id)
        if owner is None:
            logger.debug(
                "No owner known for complaint %s", event.current.complaint_id,
                extra={"event_key": event.event_key},
            )
            return event

        return event.model_copy(
            update={
                "before": _with_owner(event.before, owner),
                "after": _with_owner(event.after, owner),
            }
        )


def _with_owner(snapshot, owner: str):
    if snapshot is None:
        return None
    return snapshot.model_copy(update={"student_id": owner})


def build_event(
    entity_type: Union[EntityType, str],
    operation: Union[Operation, str],
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
) -> ChangeEvent:
    """Turn loosely typed rows into a ``ChangeEvent``.

    Raises:
        SnapshotValidationError: unknown entity type, bad row or bad event shape
    """
    try:
        entity_type = EntityType(entity_type)
    except ValueError as e:
        raise SnapshotValidationError(str(e)) from e

    snapshot_type = SNAPSHOT_TYPES[entity_type]
    snapshots: List[Any] = []
    for row in (before, after):
        if row is None:
            snapshots.append(None)
            continue
        try:
            snapshots.append(
                snapshot_type.model_validate({**row, "entity_type": entity_type.value})
            )
        except ValidationError as e:
            raise SnapshotValidationError(str(e), entity_type=entity_type.value) from e

    current = snapshots[1] if snapshots[1] is not None else snapshots[0]
    fields: Dict[str, Any] = {
        "entity_type": entity_type,
        "entity_id": current.id if current is not None else "",
        "operation": operation,
        "before": snapshots[0],
        "after": snapshots[1],
    }
    if occurred_at is not None:
        fields["occurred_at"] = occurred_at

    try:
        return ChangeEvent(**fields)
    except ValidationError as e:
        raise SnapshotValidationError(str(e), entity_type=entity_type.value) from e
