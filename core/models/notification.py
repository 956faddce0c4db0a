"""Notification outbox models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class NotificationKind(str, Enum):
    """Billing emails the portal sends."""

    PAYMENT_INSTRUCTIONS = "payment_instructions"
    PROJECT_WELCOME = "project_welcome"
    PAYMENT_CONFIRMATION = "payment_confirmation"


class NotificationStatus(str, Enum):
    """Outbox delivery status."""

    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class NotificationCreate(BaseModel):
    """A rendered email to queue. dedupe_key makes enqueueing idempotent."""

    dedupe_key: str = Field(..., min_length=1)
    kind: NotificationKind
    to_address: EmailStr
    subject: str
    html_body: str
    from_name: str
    invoice_id: UUID | None = None
    reference: str | None = None


class Notification(BaseModel):
    """Full outbox row as stored."""

    id: UUID
    dedupe_key: str
    kind: NotificationKind
    to_address: str
    subject: str
    html_body: str
    from_name: str
    invoice_id: UUID | None
    reference: str | None
    status: NotificationStatus
    attempts: int
    last_error: str | None
    sent_at: datetime | None
    created_at: datetime
    claimed_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_deliverable(self) -> bool:
        """Pending, failed and possibly stale sending rows are retried; claiming decides."""
        return self.status != NotificationStatus.SENT
