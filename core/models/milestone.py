"""Milestone domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class MilestoneStatus(str, Enum):
    """Milestone lifecycle. 'Billed' is derived from invoice_id, not a status."""

    PENDING = "pending"
    COMPLETED = "completed"


class MilestoneCreate(BaseModel):
    """Data required to create a milestone."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    planned_date: datetime
    is_billable: bool = False
    billing_percentage: Decimal | None = Field(None, ge=0, le=100)
    category: str | None = None
    order_index: int | None = Field(None, ge=0)
    task_id: UUID | None = None


class Milestone(BaseModel):
    """Full milestone entity as stored."""

    id: UUID
    project_id: UUID
    title: str
    description: str | None
    planned_date: datetime
    actual_date: datetime | None
    status: MilestoneStatus
    is_billable: bool
    billing_percentage: Decimal | None
    invoice_id: UUID | None
    billed_at: datetime | None
    completed_at: datetime | None
    completed_by_id: UUID | None
    task_id: UUID | None
    category: str | None
    order_index: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_billed(self) -> bool:
        """Whether an invoice has been drafted for this milestone."""
        return self.invoice_id is not None

    @property
    def is_deletable(self) -> bool:
        return self.status == MilestoneStatus.PENDING and not self.is_billed
