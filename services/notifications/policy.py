"""Policy engine mapping change events to delivery decisions."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from exceptions import EscalationRejected
from models import (
    AnnouncementSnapshot,
    ChangeEvent,
    Channel,
    ComplaintSnapshot,
    DeliveryDecision,
    EntityType,
    Operation,
    Priority,
)
from services.notifications.templates import (
    AdminAlertTemplate,
    AnnouncementNotificationTemplate,
    ComplaintNotificationTemplate,
    add_urgent_tag,
)

logger = logging.getLogger(__name__)

# Push recipients that address more than one actor
BROADCAST = "*"
ADMIN_AUDIENCE = "role:admin"


@dataclass(frozen=True)
class Audience:
    """Recipients known when an event is evaluated."""

    email_addresses: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ComplaintChanges:
    """What changed between two complaint snapshots."""

    status_changed: bool
    admin_replied: bool


def complaint_changes(
    before: Optional[ComplaintSnapshot],
    after: Optional[ComplaintSnapshot],
) -> ComplaintChanges:
    """Diff two complaint snapshots.

    ``admin_replied`` is only reported when the status did not change, so a
    single update yields at most one student-facing notice.
    """
    if before is None or after is None:
        return ComplaintChanges(status_changed=False, admin_replied=False)

    status_changed = before.status != after.status
    remarks_changed = (before.admin_remarks or "") != (after.admin_remarks or "")
    admin_replied = (
        not status_changed and remarks_changed and bool(after.admin_remarks)
    )
    return ComplaintChanges(status_changed=status_changed, admin_replied=admin_replied)


class PolicyEngine:
    """Pure mapping from a change event to the deliveries it requires."""

    def __init__(self):
        self.complaints = ComplaintNotificationTemplate()
        self.announcements = AnnouncementNotificationTemplate()
        self.admin_alerts = AdminAlertTemplate()

    def decide(
        self,
        event: ChangeEvent,
        audience: Optional[Audience] = None,
    ) -> List[DeliveryDecision]:
        """Return the deliveries ``event`` requires.

        Args:
            event: Change event from the feed
            audience: Known recipients for broadcast email

        Returns:
            Independent, unordered decisions (possibly empty)
        """
        audience = audience or Audience()

        if event.entity_type == EntityType.COMPLAINT:
            if event.operation == Operation.UPDATE:
                return self._complaint_updated(event)
            if event.operation == Operation.CREATE:
                return self._complaint_created(event)
        elif event.entity_type == EntityType.ANNOUNCEMENT:
            if event.operation == Operation.CREATE:
                return self._announcement_created(event, audience)

        return []

    def escalate(self, complaint: ComplaintSnapshot) -> DeliveryDecision:
        """Build the emergency call decision for an operator escalation.

        Raises:
            EscalationRejected: complaint is not urgent or has no contact number
        """
        if not complaint.is_urgent:
            raise EscalationRejected(
                f"Complaint {complaint.id} is not urgent", complaint_id=complaint.id
            )
        if not complaint.student_phone:
            raise EscalationRejected(
                f"Complaint {complaint.id} has no contact number", complaint_id=complaint.id
            )

        return DeliveryDecision(
            channel=Channel.CALL,
            recipient=complaint.student_phone,
            subject=self.complaints.emergency_call_subject(),
            body=self.complaints.emergency_call(
                complaint.complaint_code or complaint.id, complaint.title
            ),
            related_entity_id=complaint.id,
            related_entity_type=EntityType.COMPLAINT,
            priority=Priority.URGENT,
            metadata={"kind": "emergency_call"},
        )

    def _complaint_updated(self, event: ChangeEvent) -> List[DeliveryDecision]:
        before, after = event.before, event.after
        changes = complaint_changes(before, after)
        priority = Priority.URGENT if after.is_urgent else Priority.NORMAL
        decisions = []

        if changes.status_changed:
            title = self.complaints.status_updated_title(after.title, after.status)
            decisions.append(self._decision(
                event,
                Channel.PUSH,
                after.student_id,
                add_urgent_tag(title) if after.is_urgent else title,
                self.complaints.status_updated_body(after.title, after.status),
                priority,
                kind="status_changed",
            ))

            if after.student_email:
                decisions.append(self._decision(
                    event,
                    Channel.EMAIL,
                    after.student_email,
                    self.complaints.status_email_subject(after.title),
                    self.complaints.status_email_html(
                        after.student_name, after.title, after.status, after.admin_remarks
                    ),
                    priority,
                    kind="status_changed",
                ))
            else:
                logger.info(
                    "Skipping status email for complaint %s: no email address",
                    event.entity_id,
                )

            if after.is_urgent:
                if after.student_phone:
                    decisions.append(self._decision(
                        event,
                        Channel.SMS,
                        after.student_phone,
                        self.complaints.status_updated_title(after.title, after.status),
                        self.complaints.status_sms(
                            after.student_name, after.title, after.status
                        ),
                        Priority.URGENT,
                        kind="status_changed",
                    ))
                else:
                    logger.info(
                        "Skipping SMS for urgent complaint %s: no contact number",
                        event.entity_id,
                    )

        elif changes.admin_replied:
            decisions.append(self._decision(
                event,
                Channel.PUSH,
                after.student_id,
                self.complaints.admin_replied_title(after.title),
                after.admin_remarks,
                priority,
                kind="admin_replied",
            ))

        return decisions

    def _complaint_created(self, event: ChangeEvent) -> List[DeliveryDecision]:
        complaint = event.after
        return [self._decision(
            event,
            Channel.PUSH,
            ADMIN_AUDIENCE,
            self.admin_alerts.new_complaint_title(complaint.title),
            self.admin_alerts.new_complaint_body(complaint.student_name, complaint.category),
            Priority.URGENT if complaint.is_urgent else Priority.NORMAL,
            kind="new_complaint",
        )]

    def _announcement_created(
        self,
        event: ChangeEvent,
        audience: Audience,
    ) -> List[DeliveryDecision]:
        announcement: AnnouncementSnapshot = event.after
        if not announcement.is_active:
            return []

        title = self.announcements.title(announcement.title)
        decisions = [self._decision(
            event,
            Channel.PUSH,
            BROADCAST,
            title,
            announcement.message,
            Priority.NORMAL,
            kind="announcement",
        )]

        html = self.announcements.email_html(announcement.title, announcement.message)
        for address in dict.fromkeys(audience.email_addresses):
            decisions.append(self._decision(
                event,
                Channel.EMAIL,
                address,
                title,
                html,
                Priority.NORMAL,
                kind="announcement",
            ))

        return decisions

    @staticmethod
    def _decision(
        event: ChangeEvent,
        channel: Channel,
        recipient: str,
        subject: str,
        body: str,
        priority: Priority,
        kind: str,
    ) -> DeliveryDecision:
        return DeliveryDecision(
            channel=channel,
            recipient=recipient,
            subject=subject,
            body=body,
            related_entity_id=event.entity_id,
            related_entity_type=event.entity_type,
            priority=priority,
            metadata={"kind": kind, "event_key": event.event_key},
        )
