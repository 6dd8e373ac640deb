"""Multi-channel delivery: policy, senders, dispatcher and templates."""

from services.notifications.dispatcher import Dispatcher
from services.notifications.log_store import NotificationLogStore
from services.notifications.policy import (
    ADMIN_AUDIENCE,
    BROADCAST,
    Audience,
    ComplaintChanges,
    PolicyEngine,
    complaint_changes,
)
from services.notifications.senders import (
    CallSender,
    ChannelSender,
    EmailSender,
    PushSender,
    SmsSender,
    build_senders,
)
from services.notifications.templates import (
    AdminAlertTemplate,
    AnnouncementNotificationTemplate,
    ComplaintNotificationTemplate,
    NotificationTemplate,
    add_urgent_tag,
)

__all__ = [
    "Dispatcher",
    "NotificationLogStore",
    "ADMIN_AUDIENCE",
    "BROADCAST",
    "Audience",
    "ComplaintChanges",
    "PolicyEngine",
    "complaint_changes",
    "CallSender",
    "ChannelSender",
    "EmailSender",
    "PushSender",
    "SmsSender",
    "build_senders",
    "AdminAlertTemplate",
    "AnnouncementNotificationTemplate",
    "ComplaintNotificationTemplate",
    "NotificationTemplate",
    "add_urgent_tag",
]
