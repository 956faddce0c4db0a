"""
Billing state machine.

Single entry point for billing transitions. Takes a command from
core.commands and routes it to the service owning that transition. All
collaborators are injected; nothing here holds state between calls.
"""

import logging
from typing import Any, Callable

from core.commands import (
    BillingCommand,
    BillMilestone,
    CompleteMilestone,
    CompleteTask,
    DeleteMilestone,
    DraftInvoiceForMilestone,
    DraftScheduleInvoice,
    PromoteTask,
    RecordPayment,
    SendInvoice,
)
from core.services.invoice_service import InvoiceService
from core.services.milestone_service import MilestoneService
from core.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


class BillingStateMachine:
    """
    Dispatches billing commands.

    Usage:
        billing = BillingStateMachine(milestones, invoices, reconciliation)
        result = billing.execute(CompleteMilestone(milestone_id, actor_id=user_id))
    """

    def __init__(
        self,
        milestones: MilestoneService,
        invoices: InvoiceService,
        reconciliation: ReconciliationService,
    ):
        self.milestones = milestones
        self.invoices = invoices
        self.reconciliation = reconciliation

        self._handlers: dict[type, Callable[[Any], Any]] = {
            CompleteMilestone: lambda c: self.milestones.complete(c.milestone_id, c.actor_id),
            BillMilestone: lambda c: self.milestones.bill(c.milestone_id, c.actor_id),
            DeleteMilestone: lambda c: self.milestones.delete(c.milestone_id),
            PromoteTask: lambda c: self.milestones.promote_task(c.task_id, c.billing_percentage),
            CompleteTask: lambda c: self.milestones.complete_task(c.task_id, c.actor_id, c.actual_hours),
            DraftInvoiceForMilestone: lambda c: self.invoices.draft_for_milestone(c.milestone_id),
            DraftScheduleInvoice: lambda c: self.invoices.draft_schedule_invoice(c.project_id, c.invoice_type),
            SendInvoice: lambda c: self.invoices.send(c.invoice_id),
            RecordPayment: lambda c: self.reconciliation.reconcile(c.charge_id),
        }

    def execute(self, command: BillingCommand) -> Any:
        """
        Run one transition.

        Raises:
            TypeError: Not a billing command
            BillingError: Whatever the transition raises
        """
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unknown billing command: {type(command).__name__}")

        logger.debug("Executing %s", command)
        return handler(command)
