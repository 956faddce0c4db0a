"""Tests for MilestoneService: completion, billing, deletion and task promotion."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from core.audit import AuditAction
from core.exceptions import InvalidInput, InvalidState, NotFound
from core.models import InvoiceStatus, InvoiceType, MilestoneCreate, MilestoneStatus, TaskStatus
from utils.timezone import now_utc


# =============================================================================
# CREATE
# =============================================================================


class TestCreate:

    def test_creates_pending_milestone(self, milestone_service, project, audit):
        milestone = milestone_service.create(project.id, MilestoneCreate(
            title="Drywall", planned_date=now_utc(), is_billable=True, billing_percentage=Decimal("20"),
        ))

        assert milestone.status == MilestoneStatus.PENDING
        assert milestone.invoice_id is None
        assert milestone.order_index == 0
        assert audit.log_change.call_args.kwargs["action"] == AuditAction.CREATE

    def test_unknown_project_raises_not_found(self, milestone_service):
        with pytest.raises(NotFound):
            milestone_service.create(uuid4(), MilestoneCreate(title="X", planned_date=now_utc()))

    def test_billable_without_percentage_is_rejected(self, milestone_service, project):
        with pytest.raises(InvalidInput):
            milestone_service.create(project.id, MilestoneCreate(
                title="X", planned_date=now_utc(), is_billable=True,
            ))

    def test_percentage_cap_is_enforced(self, milestone_service, project, store):
        store.add_milestone(project.id, billing_percentage=Decimal("90"))

        with pytest.raises(InvalidInput, match="exceed 100%"):
            milestone_service.create(project.id, MilestoneCreate(
                title="X", planned_date=now_utc(), is_billable=True, billing_percentage=Decimal("20"),
            ))

    def test_percentage_cap_can_be_disabled(self, milestone_service, project, store, config):
        config.enforce_percentage_cap = False
        store.add_milestone(project.id, billing_percentage=Decimal("90"))

        milestone = milestone_service.create(project.id, MilestoneCreate(
            title="X", planned_date=now_utc(), is_billable=True, billing_percentage=Decimal("20"),
        ))

        assert milestone.billing_percentage == Decimal("20")


# =============================================================================
# COMPLETE
# =============================================================================


class TestComplete:

    def test_billable_milestone_drafts_invoice(self, milestone_service, project, store, test_user_id):
        milestone = store.add_milestone(project.id, billing_percentage=Decimal("15"))

        result = milestone_service.complete(milestone.id, test_user_id)

        assert result.milestone.status == MilestoneStatus.COMPLETED
        assert result.milestone.completed_by_id == test_user_id
        assert result.milestone.completed_at is not None
        assert result.invoice is not None
        assert result.invoice.status == InvoiceStatus.DRAFT
        assert result.invoice.invoice_type == InvoiceType.MILESTONE
        assert result.invoice.amount == Decimal("3000.00")
        assert result.milestone.invoice_id == result.invoice.id

    def test_non_billable_milestone_gets_no_invoice(self, milestone_service, project, store):
        milestone = store.add_milestone(project.id, is_billable=False, billing_percentage=None)

        result = milestone_service.complete(milestone.id)

        assert result.invoice is None
        assert store.get_milestone(milestone.id).invoice_id is None
        assert store.invoices == {}

    def test_completing_twice_raises_and_creates_no_second_invoice(self, milestone_service, project, store):
        milestone = store.add_milestone(project.id)
        milestone_service.complete(milestone.id)

        with pytest.raises(InvalidState):
            milestone_service.complete(milestone.id)

        assert len(store.invoices) == 1

    def test_unknown_milestone_raises_not_found(self, milestone_service):
        with pytest.raises(NotFound):
            milestone_service.complete(uuid4())

    def test_uninvoiceable_billable_milestone_stays_pending(self, milestone_service, store):
        project = store.add_project(total_budget=Decimal("0"))
        milestone = store.add_milestone(project.id)

        with pytest.raises(InvalidInput):
            milestone_service.complete(milestone.id)

        assert store.get_milestone(milestone.id).status == MilestoneStatus.PENDING

    def test_falls_back_to_project_budget_without_quote(self, milestone_service, store):
        project = store.add_project(total_budget=Decimal("18000"))
        milestone = store.add_milestone(project.id, billing_percentage=Decimal("10"))

        result = milestone_service.complete(milestone.id)

        assert result.invoice.amount == Decimal("1800.00")

    def test_invoice_is_due_in_configured_days(self, milestone_service, project, store):
        milestone = store.add_milestone(project.id)

        invoice = milestone_service.complete(milestone.id).invoice

        assert invoice.due_date - invoice.issue_date == timedelta(days=14)

    def test_no_gateway_or_email_on_draft(self, milestone_service, project, store, gateway, email):
        milestone = store.add_milestone(project.id)

        milestone_service.complete(milestone.id)

        gateway.create_charge_intent.assert_not_called()
        email.send.assert_not_called()


# =============================================================================
# BILL
# =============================================================================


class TestBill:

    def test_pending_milestone_raises(self, milestone_service, project, store):
        milestone = store.add_milestone(project.id, status=MilestoneStatus.PENDING)

        with pytest.raises(InvalidState, match="must be completed"):
            milestone_service.bill(milestone.id)

        assert store.get_milestone(milestone.id).status == MilestoneStatus.PENDING
        assert store.invoices == {}

    def test_completed_out_of_band_milestone_is_drafted(self, milestone_service, project, store, audit, test_user_id):
        milestone = store.add_milestone(project.id, status=MilestoneStatus.COMPLETED, completed_at=now_utc())

        result = milestone_service.bill(milestone.id, test_user_id)

        assert result.invoice.status == InvoiceStatus.DRAFT
        assert result.milestone.invoice_id == result.invoice.id
        assert audit.log_change.call_args.kwargs["user_id"] == test_user_id

    def test_non_billable_milestone_raises(self, milestone_service, project, store):
        milestone = store.add_milestone(project.id, is_billable=False, status=MilestoneStatus.COMPLETED)

        with pytest.raises(InvalidState, match="not billable"):
            milestone_service.bill(milestone.id)

        assert store.get_milestone(milestone.id).invoice_id is None

    def test_already_billed_milestone_raises(self, milestone_service, project, store):
        milestone = store.add_milestone(project.id)
        milestone_service.complete(milestone.id)

        with pytest.raises(InvalidState, match="already billed"):
            milestone_service.bill(milestone.id)

        assert len(store.invoices) == 1


# =============================================================================
# DELETE
# =============================================================================


class TestDelete:

    def test_pending_unbilled_milestone_is_deleted(self, milestone_service, project, store, audit):
        milestone = store.add_milestone(project.id)

        milestone_service.delete(milestone.id)

        assert store.get_milestone(milestone.id) is None
        assert audit.log_change.call_args.kwargs["action"] == AuditAction.DELETE

    def test_completed_milestone_cannot_be_deleted(self, milestone_service, project, store):
        milestone = store.add_milestone(project.id, status=MilestoneStatus.COMPLETED)

        with pytest.raises(InvalidState):
            milestone_service.delete(milestone.id)

        assert store.get_milestone(milestone.id) == milestone

    def test_billed_milestone_cannot_be_deleted(self, milestone_service, project, store):
        milestone = store.add_milestone(project.id, invoice_id=uuid4())

        with pytest.raises(InvalidState, match="billed"):
            milestone_service.delete(milestone.id)


# =============================================================================
# TASK PROMOTION
# =============================================================================


class TestPromoteTask:

    def test_creates_linked_billable_milestone(self, milestone_service, project, store):
        due = now_utc() + timedelta(days=30)
        task = store.add_task(project.id, title="Tile backsplash", due_date=due)

        milestone = milestone_service.promote_task(task.id, Decimal("12"))

        assert milestone.title == "Task Milestone: Tile backsplash"
        assert milestone.is_billable is True
        assert milestone.billing_percentage == Decimal("12")
        assert milestone.planned_date == due
        assert milestone.category == "task_conversion"
        assert milestone.task_id == task.id
        promoted = store.get_task(task.id)
        assert promoted.milestone_id == milestone.id
        assert "Converted to billable milestone" in promoted.notes

    def test_uses_task_percentage_when_caller_gives_none(self, milestone_service, project, store):
        task = store.add_task(project.id, billing_percentage=Decimal("25"))

        assert milestone_service.promote_task(task.id).billing_percentage == Decimal("25")

    def test_defaults_to_ten_percent(self, milestone_service, project, store):
        task = store.add_task(project.id)

        assert milestone_service.promote_task(task.id).billing_percentage == Decimal("10")

    def test_task_is_not_deleted(self, milestone_service, project, store):
        task = store.add_task(project.id)

        milestone_service.promote_task(task.id)

        assert store.get_task(task.id) is not None

    @pytest.mark.parametrize("fields", [
        {"is_billable": False},
        {"status": TaskStatus.COMPLETED},
    ])
    def test_ineligible_tasks_are_rejected(self, milestone_service, project, store, fields):
        task = store.add_task(project.id, **fields)

        with pytest.raises(InvalidState):
            milestone_service.promote_task(task.id)

        assert store.milestones == {}

    def test_promotion_is_one_way(self, milestone_service, project, store):
        task = store.add_task(project.id)
        milestone_service.promote_task(task.id)

        with pytest.raises(InvalidState, match="already linked"):
            milestone_service.promote_task(task.id)

        assert len(store.milestones) == 1

    def test_rejects_percentage_above_hundred(self, milestone_service, project, store):
        task = store.add_task(project.id)

        with pytest.raises(InvalidInput):
            milestone_service.promote_task(task.id, Decimal("150"))

    def test_own_percentage_is_not_double_counted_against_cap(self, milestone_service, project, store):
        store.add_milestone(project.id, billing_percentage=Decimal("80"))
        task = store.add_task(project.id, billing_percentage=Decimal("20"))

        milestone = milestone_service.promote_task(task.id)

        assert milestone.billing_percentage == Decimal("20")


# =============================================================================
# TASK COMPLETION
# =============================================================================


class TestCompleteTask:

    def test_plain_task_is_completed(self, milestone_service, project, store):
        task = store.add_task(project.id)

        result = milestone_service.complete_task(task.id, actual_hours=Decimal("6.5"))

        assert result.task.status == TaskStatus.COMPLETED
        assert result.task.actual_hours == Decimal("6.5")
        assert result.milestone is None
        assert result.invoice is None

    def test_promoted_task_completes_and_bills_its_milestone(self, milestone_service, project, store):
        task = store.add_task(project.id)
        milestone = milestone_service.promote_task(task.id, Decimal("15"))

        result = milestone_service.complete_task(task.id)

        assert result.milestone.id == milestone.id
        assert result.milestone.status == MilestoneStatus.COMPLETED
        assert result.invoice.amount == Decimal("3000.00")
        assert store.get_milestone(milestone.id).invoice_id == result.invoice.id

    def test_already_completed_task_raises(self, milestone_service, project, store):
        task = store.add_task(project.id, status=TaskStatus.COMPLETED)

        with pytest.raises(InvalidState):
            milestone_service.complete_task(task.id)

    def test_already_completed_milestone_is_left_alone(self, milestone_service, project, store):
        milestone = store.add_milestone(project.id, status=MilestoneStatus.COMPLETED)
        task = store.add_task(project.id, milestone_id=milestone.id)

        result = milestone_service.complete_task(task.id)

        assert result.task.status == TaskStatus.COMPLETED
        assert result.invoice is None
        assert store.invoices == {}
