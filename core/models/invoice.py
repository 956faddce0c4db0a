"""Invoice domain models.

Amounts are Decimal with two places. The amount is fixed when the invoice is
created and never recomputed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status. OVERDUE and CANCELED are not reached by billing."""

    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELED = "canceled"


class InvoiceType(str, Enum):
    """Which phase of the payment schedule an invoice bills."""

    DOWN_PAYMENT = "down_payment"
    MILESTONE = "milestone"
    FINAL = "final"
    CHANGE_ORDER = "change_order"
    REGULAR = "regular"


class InvoiceCreate(BaseModel):
    """Data required to create a draft invoice."""

    project_id: UUID
    quote_id: UUID | None = None
    milestone_id: UUID | None = None
    invoice_number: str
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: str
    invoice_type: InvoiceType
    issue_date: datetime
    due_date: datetime
    customer_name: str | None = None
    customer_email: str | None = None


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    project_id: UUID
    quote_id: UUID | None
    milestone_id: UUID | None
    invoice_number: str
    amount: Decimal
    description: str | None
    invoice_type: InvoiceType
    status: InvoiceStatus
    issue_date: datetime
    due_date: datetime
    payment_link: str | None
    gateway_transaction_id: str | None
    customer_name: str | None
    customer_email: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    @property
    def is_draft(self) -> bool:
        return self.status == InvoiceStatus.DRAFT
