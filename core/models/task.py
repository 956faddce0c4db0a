"""Task domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BillingType(str, Enum):
    """How a billable task is priced."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Task(BaseModel):
    """Full task entity as stored."""

    id: UUID
    project_id: UUID
    title: str
    description: str | None
    status: TaskStatus
    due_date: datetime | None
    is_billable: bool
    billing_type: BillingType = BillingType.PERCENTAGE
    billing_percentage: Decimal | None
    milestone_id: UUID | None
    completed_at: datetime | None
    actual_hours: Decimal | None
    notes: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def is_promoted(self) -> bool:
        """Whether the task has been converted into a billable milestone."""
        return self.milestone_id is not None
