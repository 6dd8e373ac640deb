"""Domain records and DTOs for the notification pipeline."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EntityType(str, Enum):
    """Tracked entity types."""

    COMPLAINT = "complaint"
    ANNOUNCEMENT = "announcement"
    ACTIVITY_LOG = "activity_log"


class Operation(str, Enum):
    """Mutation kinds carried by a change event."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Channel(str, Enum):
    """Notification transports."""

    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"
    CALL = "call"


class Priority(str, Enum):
    """Delivery priority."""

    NORMAL = "normal"
    URGENT = "urgent"


class AttemptStatus(str, Enum):
    """Delivery attempt lifecycle."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Role(str, Enum):
    """Actor roles."""

    STUDENT = "student"
    ADMIN = "admin"


class ComplaintSnapshot(BaseModel):
    """Complaint row as seen by the pipeline."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    entity_type: Literal["complaint"] = "complaint"
    id: str
    complaint_code: Optional[str] = None
    title: str
    status: str = "Pending"  # Pending, In Review, Resolved
    admin_remarks: Optional[str] = None
    marked_urgent: bool = False
    priority: Optional[str] = None
    category: Optional[str] = None
    student_id: str
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    student_phone: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _null_flags(cls, data: Any) -> Any:
        # Rows carry NULL for marked_urgent on older complaints
        if isinstance(data, dict) and data.get("marked_urgent") is None:
            data = {**data, "marked_urgent": False}
        return data

    @property
    def is_urgent(self) -> bool:
        """Urgency flag and urgent priority are the same escalation signal."""
        return bool(self.marked_urgent) or (self.priority or "").strip().lower() == "urgent"

    @property
    def owner_id(self) -> Optional[str]:
        return self.student_id

    @property
    def active(self) -> bool:
        return True


class AnnouncementSnapshot(BaseModel):
    """Announcement row."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    entity_type: Literal["announcement"] = "announcement"
    id: str
    title: str
    message: str = ""
    is_active: bool = True

    @property
    def owner_id(self) -> Optional[str]:
        return None

    @property
    def active(self) -> bool:
        return self.is_active


class ActivityLogSnapshot(BaseModel):
    """Admin activity entry attached to a complaint."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    entity_type: Literal["activity_log"] = "activity_log"
    id: str
    complaint_id: str
    action_by: Optional[str] = None
    # Not a column of activity rows; filled in from the owning complaint
    student_id: Optional[str] = None
    action_type: Optional[str] = None
    message: str = ""

    @property
    def owner_id(self) -> Optional[str]:
        return self.student_id

    @property
    def active(self) -> bool:
        return True


Snapshot = Annotated[
    Union[ComplaintSnapshot, AnnouncementSnapshot, ActivityLogSnapshot],
    Field(discriminator="entity_type"),
]

SNAPSHOT_TYPES = {
    EntityType.COMPLAINT: ComplaintSnapshot,
    EntityType.ANNOUNCEMENT: AnnouncementSnapshot,
    EntityType.ACTIVITY_LOG: ActivityLogSnapshot,
}


class ChangeEvent(BaseModel):
    """A single before/after mutation record for a tracked entity."""

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    entity_id: str
    operation: Operation
    before: Optional[Snapshot] = None
    after: Optional[Snapshot] = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_shape(self) -> "ChangeEvent":
        if self.operation == Operation.CREATE and self.after is None:
            raise ValueError("create events need an after snapshot")
        if self.operation == Operation.DELETE and self.before is None:
            raise ValueError("delete events need a before snapshot")
        if self.operation == Operation.UPDATE and (self.before is None or self.after is None):
            raise ValueError("update events need before and after snapshots")
        for snapshot in (self.before, self.after):
            if snapshot is not None and snapshot.entity_type != self.entity_type.value:
                raise ValueError(
                    f"{snapshot.entity_type} snapshot on a {self.entity_type.value} event"
                )
        return self

    @property
    def current(self):
        """Latest known state of the entity."""
        return self.after if self.after is not None else self.before

    @property
    def event_key(self) -> str:
        return f"{self.entity_type.value}:{self.entity_id}:{self.occurred_at.isoformat()}"


class DeliveryDecision(BaseModel):
    """Policy-computed instruction to send one notification on one channel."""

    model_config = ConfigDict(frozen=True)

    channel: Channel
    recipient: str
    subject: str
    body: str
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[EntityType] = None
    priority: Priority = Priority.NORMAL
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DeliveryAttemptDTO(BaseModel):
    """Persisted record of one attempted send and its outcome."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    channel: Channel
    recipient: str
    subject: Optional[str] = None
    body: str
    status: AttemptStatus = AttemptStatus.PENDING
    error_message: Optional[str] = None
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[EntityType] = None
    priority: Priority = Priority.NORMAL
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SendResult(BaseModel):
    """Normalized outcome of one provider call."""

    success: bool
    provider_reference: Optional[str] = None
    error_message: Optional[str] = None


class DeliveryOutcome(BaseModel):
    """What happened to one decision inside the dispatcher."""

    attempt_id: Optional[int] = None
    channel: Channel
    recipient: str
    status: AttemptStatus
    provider_reference: Optional[str] = None
    error_message: Optional[str] = None
    log_error: Optional[str] = None


class LogQuery(BaseModel):
    """Filters for notification log queries."""

    channel: Optional[Channel] = None
    status: Optional[AttemptStatus] = None
    recipient_contains: Optional[str] = None
    search: Optional[str] = None  # recipient or subject
    related_entity_id: Optional[str] = None
    limit: int = 100
    offset: int = 0


class LogStats(BaseModel):
    """Delivery counters shown on the notification log screen."""

    total: int = 0
    sent: int = 0
    failed: int = 0
    pending: int = 0
    by_channel: Dict[str, int] = Field(default_factory=dict)


class ClientNotification(BaseModel):
    """Ephemeral notification rendered by a connected client."""

    model_config = ConfigDict(frozen=True)

    kind: str  # status_changed, admin_replied, announcement, new_complaint, activity
    level: str = "info"  # success, info
    title: str
    description: Optional[str] = None
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    event_key: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dedupe_key(self) -> Optional[tuple]:
        if self.event_key is None:
            return None
        return (self.event_key, self.kind)
