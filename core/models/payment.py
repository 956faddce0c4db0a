"""Payment records. Immutable once written; one per successful charge."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    """A successful charge to record against an invoice."""

    invoice_id: UUID
    amount: Decimal = Field(..., ge=0)
    payment_date: datetime
    payment_method: str = "stripe"
    gateway_transaction_id: str = Field(..., min_length=1)
    gateway_charge_id: str | None = None
    status: str = "succeeded"


class Payment(BaseModel):
    """Full payment entity as stored. gateway_transaction_id is unique."""

    id: UUID
    invoice_id: UUID
    amount: Decimal
    payment_date: datetime
    payment_method: str
    gateway_transaction_id: str
    gateway_charge_id: str | None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True, "frozen": True}
