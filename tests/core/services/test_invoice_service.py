"""Tests for InvoiceService."""

import re
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from clients.stripe_client import PaymentGatewayError
from core.events import InvoiceDrafted, InvoiceSent
from core.exceptions import GatewayError, InvalidInput, InvalidState, NotFound
from core.models import InvoiceStatus, InvoiceType
from core.services.invoice_service import generate_invoice_number


def test_invoice_number_format():
    assert re.fullmatch(r"INV-\d{6}-[A-Z0-9]{6}", generate_invoice_number())


class TestContractedTotal:

    def test_prefers_quote_total(self, invoice_service, project):
        assert invoice_service.contracted_total(project) == Decimal("20000")

    def test_falls_back_to_budget_when_quote_has_no_total(self, invoice_service, store):
        quote = store.add_quote(total=None)
        project = store.add_project(origin_quote_id=quote.id, total_budget=Decimal("5000"))

        assert invoice_service.contracted_total(project) == Decimal("5000")

    def test_raises_without_total_or_budget(self, invoice_service, store):
        project = store.add_project(total_budget=None)

        with pytest.raises(InvalidInput):
            invoice_service.contracted_total(project)


# =============================================================================
# MILESTONE DRAFTS
# =============================================================================


class TestDraftForMilestone:

    def test_drafts_percentage_of_contracted_total(self, invoice_service, project, store):
        milestone = store.add_milestone(project.id, title="Rough-in", billing_percentage=Decimal("15"))

        invoice = invoice_service.draft_for_milestone(milestone.id)

        assert invoice.amount == Decimal("3000.00")
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.milestone_id == milestone.id
        assert invoice.quote_id == project.origin_quote_id
        assert invoice.description == "Milestone billing (15%): Rough-in"
        assert invoice.customer_email == "dana@example.com"
        assert store.get_milestone(milestone.id).invoice_id == invoice.id

    def test_rounds_half_up_to_cents(self, invoice_service, store):
        project = store.add_project(total_budget=Decimal("1000.05"))
        milestone = store.add_milestone(project.id, billing_percentage=Decimal("10"))

        assert invoice_service.draft_for_milestone(milestone.id).amount == Decimal("100.01")

    def test_already_billed_returns_none(self, invoice_service, project, store):
        milestone = store.add_milestone(project.id)
        invoice_service.draft_for_milestone(milestone.id)

        assert invoice_service.draft_for_milestone(milestone.id) is None
        assert len(store.invoices) == 1

    def test_lost_race_returns_none(self, invoice_service, project, store, monkeypatch):
        milestone = store.add_milestone(project.id)
        monkeypatch.setattr(store, "create_milestone_invoice", lambda *a: None)

        assert invoice_service.draft_for_milestone(milestone.id) is None

    def test_non_billable_raises(self, invoice_service, project, store):
        milestone = store.add_milestone(project.id, is_billable=False)

        with pytest.raises(InvalidInput):
            invoice_service.draft_for_milestone(milestone.id)

    @pytest.mark.parametrize("percentage", [None, Decimal("0")])
    def test_missing_percentage_raises(self, invoice_service, project, store, percentage):
        milestone = store.add_milestone(project.id, billing_percentage=percentage)

        with pytest.raises(InvalidInput):
            invoice_service.draft_for_milestone(milestone.id)

        assert store.invoices == {}

    def test_unknown_milestone_raises(self, invoice_service):
        with pytest.raises(NotFound):
            invoice_service.draft_for_milestone(uuid4())

    def test_publishes_drafted_event(self, invoice_service, project, store, event_bus):
        received = []
        event_bus.subscribe(InvoiceDrafted, received.append)
        milestone = store.add_milestone(project.id)

        invoice = invoice_service.draft_for_milestone(milestone.id)

        assert [e.invoice.id for e in received] == [invoice.id]


# =============================================================================
# SCHEDULE DRAFTS
# =============================================================================


class TestDraftScheduleInvoice:

    @pytest.mark.parametrize("invoice_type, amount, due_days", [
        (InvoiceType.DOWN_PAYMENT, Decimal("6000.00"), 0),
        (InvoiceType.MILESTONE, Decimal("8000.00"), 14),
        (InvoiceType.FINAL, Decimal("6000.00"), 7),
    ])
    def test_drafts_each_phase(self, invoice_service, project, invoice_type, amount, due_days):
        invoice = invoice_service.draft_schedule_invoice(project.id, invoice_type)

        assert invoice.invoice_type == invoice_type
        assert invoice.amount == amount
        assert invoice.milestone_id is None
        assert invoice.due_date - invoice.issue_date == timedelta(days=due_days)

    def test_down_payment_description(self, invoice_service, project):
        invoice = invoice_service.draft_schedule_invoice(project.id, InvoiceType.DOWN_PAYMENT)

        assert invoice.description == "Down payment (30%) for Kitchen Remodel"

    def test_second_draft_for_same_phase_is_rejected(self, invoice_service, project, store):
        invoice_service.draft_schedule_invoice(project.id, InvoiceType.DOWN_PAYMENT)

        with pytest.raises(InvalidState):
            invoice_service.draft_schedule_invoice(project.id, InvoiceType.DOWN_PAYMENT)

        assert len(store.invoices) == 1

    def test_canceled_phase_can_be_redrafted(self, invoice_service, project, store):
        store.add_invoice(project.id, invoice_type="final", status=InvoiceStatus.CANCELED)

        invoice = invoice_service.draft_schedule_invoice(project.id, InvoiceType.FINAL)

        assert invoice.status == InvoiceStatus.DRAFT

    def test_non_schedule_type_is_rejected(self, invoice_service, project):
        with pytest.raises(InvalidInput):
            invoice_service.draft_schedule_invoice(project.id, InvoiceType.CHANGE_ORDER)

    def test_project_without_quote_raises(self, invoice_service, store):
        project = store.add_project()

        with pytest.raises(NotFound):
            invoice_service.draft_schedule_invoice(project.id, InvoiceType.DOWN_PAYMENT)

    def test_strict_mode_rejects_bad_percentages(self, invoice_service, store, config):
        config.strict_schedule_percentages = True
        quote = store.add_quote(
            down_payment_percentage=Decimal("30"),
            milestone_payment_percentage=Decimal("40"),
            final_payment_percentage=Decimal("40"),
        )
        project = store.add_project(origin_quote_id=quote.id)

        with pytest.raises(InvalidInput, match="sum to 110"):
            invoice_service.draft_schedule_invoice(project.id, InvoiceType.DOWN_PAYMENT)

    def test_lenient_mode_bills_overcommitted_schedule(self, invoice_service, store):
        quote = store.add_quote(
            down_payment_percentage=Decimal("30"),
            milestone_payment_percentage=Decimal("40"),
            final_payment_percentage=Decimal("40"),
        )
        project = store.add_project(origin_quote_id=quote.id)

        invoice = invoice_service.draft_schedule_invoice(project.id, InvoiceType.FINAL)

        assert invoice.amount == Decimal("4000.00")


# =============================================================================
# SENDING
# =============================================================================


class TestSend:

    def test_sends_draft(self, invoice_service, project, store, gateway):
        draft = store.add_invoice(project.id, amount=Decimal("3000.00"), quote_id=project.origin_quote_id)

        sent = invoice_service.send(draft.id)

        assert sent.status == InvoiceStatus.PENDING
        assert sent.gateway_transaction_id == "pi_test_123"
        assert sent.payment_link == "https://portal.test/payment/pi_test_123_secret_abc"
        amount_minor, _, metadata = gateway.create_charge_intent.call_args.args
        assert amount_minor == 300000
        assert metadata["invoice_id"] == str(draft.id)
        assert metadata["project_id"] == str(project.id)
        assert metadata["payment_type"] == "milestone"
        assert metadata["quote_id"] == str(project.origin_quote_id)
        assert "milestone_id" not in metadata

    def test_gateway_failure_leaves_draft_untouched(self, invoice_service, project, store, gateway):
        draft = store.add_invoice(project.id)
        gateway.create_charge_intent.side_effect = PaymentGatewayError("card network down")

        with pytest.raises(GatewayError):
            invoice_service.send(draft.id)

        assert store.get_invoice(draft.id) == draft
        assert store.payments == {}

    @pytest.mark.parametrize("status", [InvoiceStatus.PENDING, InvoiceStatus.PAID])
    def test_only_drafts_can_be_sent(self, invoice_service, project, store, gateway, status):
        invoice = store.add_invoice(project.id, status=status)

        with pytest.raises(InvalidState):
            invoice_service.send(invoice.id)

        gateway.create_charge_intent.assert_not_called()

    def test_lost_race_raises(self, invoice_service, project, store, monkeypatch):
        draft = store.add_invoice(project.id)
        monkeypatch.setattr(store, "mark_invoice_sent", lambda *a, **kw: None)

        with pytest.raises(InvalidState):
            invoice_service.send(draft.id)

    def test_unknown_invoice_raises(self, invoice_service):
        with pytest.raises(NotFound):
            invoice_service.send(uuid4())

    def test_publishes_sent_event(self, invoice_service, project, store, event_bus):
        received = []
        event_bus.subscribe(InvoiceSent, received.append)
        draft = store.add_invoice(project.id)

        invoice_service.send(draft.id)

        assert len(received) == 1
        assert received[0].invoice.status == InvoiceStatus.PENDING


class TestQueries:

    def test_list_for_project(self, invoice_service, project, store):
        store.add_invoice(project.id)
        store.add_invoice(store.add_project().id)

        assert len(invoice_service.list_for_project(project.id)) == 1

    def test_list_for_unknown_project(self, invoice_service):
        with pytest.raises(NotFound):
            invoice_service.list_for_project(uuid4())

    def test_quote_schedule(self, invoice_service, project):
        schedule = invoice_service.quote_schedule(project.origin_quote_id)

        assert schedule.total_amount == Decimal("20000.00")
