"""
Billing transition commands.

Every change the billing core makes goes through one of these. Each command
names its target and the inputs the transition needs; preconditions are
validated by the service that executes it (see core.billing).
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from core.models import InvoiceType


@dataclass(frozen=True)
class CompleteMilestone:
    milestone_id: UUID
    actor_id: UUID | None = None


@dataclass(frozen=True)
class BillMilestone:
    milestone_id: UUID
    actor_id: UUID | None = None


@dataclass(frozen=True)
class DeleteMilestone:
    milestone_id: UUID


@dataclass(frozen=True)
class PromoteTask:
    task_id: UUID
    billing_percentage: Decimal | None = None


@dataclass(frozen=True)
class CompleteTask:
    task_id: UUID
    actor_id: UUID | None = None
    actual_hours: Decimal | None = None


@dataclass(frozen=True)
class DraftInvoiceForMilestone:
    milestone_id: UUID


@dataclass(frozen=True)
class DraftScheduleInvoice:
    project_id: UUID
    invoice_type: InvoiceType


@dataclass(frozen=True)
class SendInvoice:
    invoice_id: UUID


@dataclass(frozen=True)
class RecordPayment:
    """Reconcile a gateway charge. Carries only the charge id; the charge itself is re-fetched."""
    charge_id: str


BillingCommand = (
    CompleteMilestone
    | BillMilestone
    | DeleteMilestone
    | PromoteTask
    | CompleteTask
    | DraftInvoiceForMilestone
    | DraftScheduleInvoice
    | SendInvoice
    | RecordPayment
)
