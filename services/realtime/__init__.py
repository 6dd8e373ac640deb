"""Live fan-out of change events to connected clients."""

from services.realtime.registry import (
    LiveChannel,
    Subscription,
    SubscriptionRegistry,
    SubscriptionState,
    compute_display,
    visibility_filters,
)

__all__ = [
    "LiveChannel",
    "Subscription",
    "SubscriptionRegistry",
    "SubscriptionState",
    "compute_display",
    "visibility_filters",
]
