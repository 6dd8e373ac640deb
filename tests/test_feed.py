"""Tests for the in-process change feed."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from conftest import announcement_row, complaint_row
from exceptions import SnapshotValidationError
from models import ComplaintSnapshot, EntityType, Operation
from services.feed import ChangeFeed, FeedFilter, build_event


class TestBuildEvent:
    """Tests for turning raw rows into change events."""

    def test_extra_columns_are_ignored(self):
        event = build_event(
            "complaint", "create", after=complaint_row(created_at="2026-01-01", votes=3)
        )

        assert isinstance(event.after, ComplaintSnapshot)
        assert event.entity_id == "c-1"
        assert event.operation == Operation.CREATE

    def test_null_urgent_flag_is_false(self):
        event = build_event("complaint", "create", after=complaint_row(marked_urgent=None))

        assert event.after.marked_urgent is False
        assert event.after.is_urgent is False

    def test_missing_required_field_is_rejected(self):
        row = complaint_row()
        del row["student_id"]

        with pytest.raises(SnapshotValidationError) as exc_info:
            build_event("complaint", "create", after=row)

        assert exc_info.value.entity_type == "complaint"

    def test_update_needs_both_snapshots(self):
        with pytest.raises(SnapshotValidationError):
            build_event("complaint", "update", after=complaint_row())

    def test_unknown_entity_type_is_rejected(self):
        with pytest.raises(SnapshotValidationError):
            build_event("profile", "create", after={"id": "p-1"})

    def test_event_key_includes_timestamp(self):
        occurred_at = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
        event = build_event(
            "announcement", "create", after=announcement_row(), occurred_at=occurred_at
        )

        assert event.event_key == f"announcement:a-1:{occurred_at.isoformat()}"


class TestChangeFeed:
    """Tests for subscription, filtering and ordering."""

    @pytest.mark.asyncio
    async def test_events_arrive_in_order(self):
        feed = ChangeFeed()
        subscription = feed.subscribe(EntityType.COMPLAINT)

        for status in ("Pending", "In Review", "Resolved"):
            feed.publish_change("complaint", "create", after=complaint_row(status=status))

        statuses = [(await subscription.get()).after.status for _ in range(3)]

        assert statuses == ["Pending", "In Review", "Resolved"]

    @pytest.mark.asyncio
    async def test_entity_type_routing(self):
        feed = ChangeFeed()
        complaints = feed.subscribe("complaint")
        announcements = feed.subscribe("announcement")

        feed.publish_change("announcement", "create", after=announcement_row())

        assert complaints.pending == 0
        assert announcements.pending == 1

    @pytest.mark.asyncio
    async def test_owner_filter(self):
        feed = ChangeFeed()
        mine = feed.subscribe("complaint", FeedFilter(owner_id="student-1"))

        event = feed.publish_change(
            "complaint", "create", after=complaint_row(student_id="student-2")
        )

        assert mine.pending == 0
        assert feed.publish(event) == 0

    @pytest.mark.asyncio
    async def test_active_only_filter(self):
        feed = ChangeFeed()
        active = feed.subscribe("announcement", FeedFilter(active_only=True))

        feed.publish_change("announcement", "create", after=announcement_row(is_active=False))
        feed.publish_change("announcement", "create", after=announcement_row(id="a-2"))

        event = await active.get()
        assert event.entity_id == "a-2"
        assert active.pending == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_ends_iteration(self):
        feed = ChangeFeed()
        subscription = feed.subscribe("complaint")
        feed.publish_change("complaint", "create", after=complaint_row())

        assert feed.unsubscribe(subscription) is True
        assert feed.unsubscribe(subscription) is False

        received = [event async for event in subscription]
        assert len(received) == 1
        assert feed.subscription_count == 0

    @pytest.mark.asyncio
    async def test_no_events_after_unsubscribe(self):
        feed = ChangeFeed()
        subscription = feed.subscribe("complaint")
        feed.unsubscribe(subscription)

        feed.publish_change("complaint", "create", after=complaint_row())

        assert await asyncio.wait_for(subscription.get(), timeout=1) is None

    @pytest.mark.asyncio
    async def test_slow_consumer_does_not_block_others(self):
        feed = ChangeFeed()
        slow = feed.subscribe("complaint", consumer="slow")
        fast = feed.subscribe("complaint", consumer="fast")

        for n in range(5):
            feed.publish_change("complaint", "create", after=complaint_row(id=f"c-{n}"))

        first = await asyncio.wait_for(fast.get(), timeout=1)
        assert first.entity_id == "c-0"
        assert slow.pending == 5


def activity_row(**overrides):
    row = {
        "id": "l-1",
        "complaint_id": "c-1",
        "action_by": "admin-1",
        "action_type": "status_change",
        "message": "Assigned to IT",
    }
    row.update(overrides)
    return row


class TestActivityOwners:
    """Tests for attaching the complaint owner to activity rows."""

    @pytest.mark.asyncio
    async def test_owner_comes_from_seen_complaint(self):
        feed = ChangeFeed()
        mine = feed.subscribe("activity_log", FeedFilter(owner_id="student-1"))
        other = feed.subscribe("activity_log", FeedFilter(owner_id="student-2"))
        feed.publish_change("complaint", "create", after=complaint_row())

        event = feed.publish_change("activity_log", "create", after=activity_row())

        assert event.after.student_id == "student-1"
        assert mine.pending == 1
        assert other.pending == 0

    @pytest.mark.asyncio
    async def test_owner_lookup_for_unseen_complaint(self):
        lookup = MagicMock(return_value="student-1")
        feed = ChangeFeed(owner_lookup=lookup)
        mine = feed.subscribe("activity_log", FeedFilter(owner_id="student-1"))

        feed.publish_change("activity_log", "create", after=activity_row())
        feed.publish_change("activity_log", "create", after=activity_row(id="l-2"))

        assert mine.pending == 2
        lookup.assert_called_once_with("c-1")

    @pytest.mark.asyncio
    async def test_unknown_owner_is_not_delivered_to_students(self):
        feed = ChangeFeed(owner_lookup=MagicMock(side_effect=OSError("db down")))
        mine = feed.subscribe("activity_log", FeedFilter(owner_id="student-1"))

        event = feed.publish_change("activity_log", "create", after=activity_row())

        assert event.after.student_id is None
        assert mine.pending == 0

    @pytest.mark.asyncio
    async def test_deleted_complaint_forgets_owner(self):
        feed = ChangeFeed()
        feed.publish_change("complaint", "create", after=complaint_row())

        feed.publish_change("complaint", "delete", before=complaint_row())

        assert feed.owner_of("c-1") is None

    @pytest.mark.asyncio
    async def test_owner_cache_is_bounded(self):
        feed = ChangeFeed(owner_cache_size=2)

        for n in range(3):
            feed.publish_change(
                "complaint", "create", after=complaint_row(id=f"c-{n}", student_id=f"student-{n}")
            )

        assert feed.owner_of("c-0") is None
        assert feed.owner_of("c-2") == "student-2"
