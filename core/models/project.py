"""Project and quote models: the billing core's read-only inputs."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class QuoteStatus(str, Enum):
    """Quote workflow status. Billing only ever writes ACCEPTED."""

    DRAFT = "draft"
    SENT = "sent"
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class Quote(BaseModel):
    """A quote supplying the contracted total and the payment split."""

    id: UUID
    quote_number: str
    title: str
    total: Decimal | None = None
    down_payment_percentage: Decimal | None = None
    milestone_payment_percentage: Decimal | None = None
    final_payment_percentage: Decimal | None = None
    milestone_description: str | None = None
    status: QuoteStatus = QuoteStatus.DRAFT
    accepted_at: datetime | None = None

    model_config = {"from_attributes": True}


class Project(BaseModel):
    """A customer project. total_budget is the fallback contracted total."""

    id: UUID
    name: str
    customer_name: str | None = None
    customer_email: str | None = None
    total_budget: Decimal | None = None
    origin_quote_id: UUID | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
