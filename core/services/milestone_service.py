"""
Milestone lifecycle and task promotion.

Milestones move pending -> completed; a billable milestone is billed by
drafting exactly one invoice, whose id is linked onto the milestone with a
compare-and-swap on invoice_id IS NULL. A billable task can be promoted
into a milestone, and completing that task completes (and bills) the
milestone with it.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from core.audit import AuditAction, AuditLogger
from core.billing_validation import calculate_billing_totals, ensure_within_cap
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import MilestoneCompleted
from core.exceptions import InvalidInput, InvalidState, NotFound
from core.ledger import LedgerStore
from core.models import (
    Invoice,
    Milestone,
    MilestoneCreate,
    MilestoneStatus,
    Task,
)
from core.services.invoice_service import InvoiceService
from utils.money import to_decimal
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

TASK_CONVERSION_CATEGORY = "task_conversion"


@dataclass(frozen=True)
class MilestoneCompletion:
    """A completed milestone and the draft invoice it produced, if billable."""
    milestone: Milestone
    invoice: Invoice | None = None


@dataclass(frozen=True)
class TaskCompletion:
    """A completed task and, if it was promoted, its milestone and invoice."""
    task: Task
    milestone: Milestone | None = None
    invoice: Invoice | None = None


class MilestoneService:
    """Service for milestone and task billing transitions."""

    def __init__(
        self,
        store: LedgerStore,
        invoices: InvoiceService,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig,
    ):
        self.store = store
        self.invoices = invoices
        self.audit = audit
        self.event_bus = event_bus
        self.config = config

    def get(self, milestone_id: UUID) -> Milestone:
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None:
            raise NotFound("milestone", milestone_id)
        return milestone

    def get_task(self, task_id: UUID) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFound("task", task_id)
        return task

    def _check_percentage_cap(
        self,
        project_id: UUID,
        billing_percentage: Decimal | None,
        exclude_task_id: UUID | None = None,
    ) -> None:
        if not self.config.enforce_percentage_cap:
            return
        totals = calculate_billing_totals(
            self.store.list_milestones_for_project(project_id),
            self.store.list_tasks_for_project(project_id),
            exclude_task_id=exclude_task_id,
        )
        ensure_within_cap(totals, billing_percentage)

    # =========================================================================
    # MILESTONES
    # =========================================================================

    def create(self, project_id: UUID, data: MilestoneCreate) -> Milestone:
        """
        Create a pending milestone.

        Raises:
            NotFound: Project does not exist
            InvalidInput: Billable without a positive percentage, or over the project cap
        """
        if self.store.get_project(project_id) is None:
            raise NotFound("project", project_id)

        if data.is_billable:
            if to_decimal(data.billing_percentage) <= 0:
                raise InvalidInput("Billable milestones need a billing percentage above 0")
            self._check_percentage_cap(project_id, data.billing_percentage)

        milestone = self.store.create_milestone(project_id, data)

        self.audit.log_change(
            entity_type="milestone",
            entity_id=milestone.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude_none=True)}
        )

        return milestone

    def complete(self, milestone_id: UUID, actor_id: UUID | None = None) -> MilestoneCompletion:
        """
        Complete a pending milestone; draft its invoice if billable.

        Draft preconditions are checked before the milestone changes, so a
        billable milestone that cannot be invoiced stays pending.

        Raises:
            NotFound: Milestone does not exist
            InvalidState: Milestone is not pending
            InvalidInput: Billable but cannot be invoiced
        """
        current = self.get(milestone_id)
        if current.status != MilestoneStatus.PENDING:
            raise InvalidState(f"Milestone {milestone_id} is already {current.status.value}")

        if current.is_billable and not current.is_billed:
            self.invoices.prepare_milestone_invoice(current)

        completed = self.store.complete_milestone(milestone_id, actor_id, now_utc())
        if completed is None:
            raise InvalidState(f"Milestone {milestone_id} was completed concurrently")

        self.audit.log_change(
            entity_type="milestone",
            entity_id=milestone_id,
            action=AuditAction.UPDATE,
            changes={
                "status": {"old": current.status.value, "new": completed.status.value},
                "completed_at": {"old": None, "new": completed.completed_at.isoformat()},
            },
            user_id=actor_id,
        )
        self.event_bus.publish(MilestoneCompleted.create(milestone=completed))

        invoice = None
        if completed.is_billable:
            invoice = self.invoices.draft_for_milestone(milestone_id)
            if invoice is not None:
                completed = self.get(milestone_id)

        return MilestoneCompletion(milestone=completed, invoice=invoice)

    def bill(self, milestone_id: UUID, actor_id: UUID | None = None) -> MilestoneCompletion:
        """
        Manually draft the invoice for a milestone completed out of band.

        Raises:
            NotFound: Milestone does not exist
            InvalidState: Not billable, not completed, or already invoiced
            InvalidInput: Milestone cannot be invoiced
        """
        current = self.get(milestone_id)
        if not current.is_billable:
            raise InvalidState(f"Milestone {milestone_id} is not billable")
        if current.status != MilestoneStatus.COMPLETED:
            raise InvalidState(f"Milestone {milestone_id} must be completed before billing")
        if current.is_billed:
            raise InvalidState(f"Milestone {milestone_id} is already billed")

        invoice = self.invoices.draft_for_milestone(milestone_id)
        if invoice is None:
            raise InvalidState(f"Milestone {milestone_id} is already billed")

        billed = self.get(milestone_id)
        self.audit.log_change(
            entity_type="milestone",
            entity_id=milestone_id,
            action=AuditAction.UPDATE,
            changes={"invoice_id": {"old": None, "new": str(invoice.id)}},
            user_id=actor_id,
        )
        return MilestoneCompletion(milestone=billed, invoice=invoice)

    def delete(self, milestone_id: UUID) -> None:
        """
        Delete a pending, unbilled milestone.

        Raises:
            NotFound: Milestone does not exist
            InvalidState: Milestone is completed or billed
        """
        current = self.get(milestone_id)
        if not current.is_deletable:
            raise InvalidState(
                f"Milestone {milestone_id} is {'billed' if current.is_billed else current.status.value} "
                "and cannot be deleted"
            )

        if not self.store.delete_milestone(milestone_id):
            raise InvalidState(f"Milestone {milestone_id} changed and cannot be deleted")

        self.audit.log_change(
            entity_type="milestone",
            entity_id=milestone_id,
            action=AuditAction.DELETE,
            changes={"deleted": current.model_dump(mode="json")}
        )

    # =========================================================================
    # TASKS
    # =========================================================================

    def promote_task(self, task_id: UUID, billing_percentage: Decimal | None = None) -> Milestone:
        """
        Convert a billable task into a billable milestone.

        Percentage: the caller's value, else the task's own, else the
        configured default.

        Raises:
            NotFound: Task does not exist
            InvalidState: Task is not billable, is completed, or is already promoted
            InvalidInput: Percentage outside (0, 100] or over the project cap
        """
        task = self.get_task(task_id)
        if not task.is_billable:
            raise InvalidState(f"Task {task_id} is not billable")
        if task.is_completed:
            raise InvalidState(f"Task {task_id} is already completed")
        if task.is_promoted:
            raise InvalidState(f"Task {task_id} is already linked to milestone {task.milestone_id}")

        if billing_percentage is not None:
            percentage = to_decimal(billing_percentage)
        elif to_decimal(task.billing_percentage) > 0:
            percentage = to_decimal(task.billing_percentage)
        else:
            percentage = self.config.default_promotion_percentage

        if percentage <= 0 or percentage > 100:
            raise InvalidInput(f"Billing percentage {percentage} must be above 0 and at most 100")

        self._check_percentage_cap(task.project_id, percentage, exclude_task_id=task_id)

        data = MilestoneCreate(
            title=f"Task Milestone: {task.title}"[:200],
            description=task.description or f"Milestone created from task: {task.title}",
            planned_date=task.due_date or now_utc(),
            is_billable=True,
            billing_percentage=percentage,
            category=TASK_CONVERSION_CATEGORY,
            task_id=task_id,
        )
        note = f"Converted to billable milestone ({percentage.normalize():f}%) on {now_utc():%Y-%m-%d}"

        milestone = self.store.promote_task(task_id, data, note)
        if milestone is None:
            raise InvalidState(f"Task {task_id} was promoted or completed concurrently")

        self.audit.log_change(
            entity_type="task",
            entity_id=task_id,
            action=AuditAction.UPDATE,
            changes={"milestone_id": {"old": None, "new": str(milestone.id)}}
        )
        logger.info("Promoted task %s to milestone %s", task_id, milestone.id)

        return milestone

    def complete_task(
        self,
        task_id: UUID,
        actor_id: UUID | None = None,
        actual_hours: Decimal | None = None,
    ) -> TaskCompletion:
        """
        Complete a task; if it was promoted, complete and bill its milestone.

        Raises:
            NotFound: Task does not exist
            InvalidState: Task is already completed
            InvalidInput: Linked billable milestone cannot be invoiced
        """
        task = self.get_task(task_id)
        if task.is_completed:
            raise InvalidState(f"Task {task_id} is already completed")

        milestone = self.store.get_milestone(task.milestone_id) if task.milestone_id else None
        cascade = milestone is not None and milestone.status == MilestoneStatus.PENDING
        if cascade and milestone.is_billable and not milestone.is_billed:
            self.invoices.prepare_milestone_invoice(milestone)

        completed = self.store.complete_task(task_id, now_utc(), actual_hours)
        if completed is None:
            raise InvalidState(f"Task {task_id} was completed concurrently")

        self.audit.log_change(
            entity_type="task",
            entity_id=task_id,
            action=AuditAction.UPDATE,
            changes={"status": {"old": task.status.value, "new": completed.status.value}},
            user_id=actor_id,
        )

        if not cascade:
            return TaskCompletion(task=completed, milestone=milestone)

        result = self.complete(milestone.id, actor_id)
        return TaskCompletion(task=completed, milestone=result.milestone, invoice=result.invoice)
