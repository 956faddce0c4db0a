"""
Invoice draft/send lifecycle.

Invoices move draft -> pending -> paid. A draft fixes its amount once, from a
milestone's billing percentage or a quote's schedule phase. Sending requests
a charge intent from the payment gateway and only then flips the invoice to
pending; if the gateway fails nothing is written.
"""

import logging
import secrets
import string
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from clients.stripe_client import PaymentGatewayError, StripeGatewayClient
from core.audit import AuditAction, AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceDrafted, InvoiceSent
from core.exceptions import GatewayError, InvalidInput, InvalidState, NotFound
from core.ledger import LedgerStore
from core.models import (
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    InvoiceType,
    Milestone,
    Project,
    Quote,
)
from core.schedule import (
    PaymentSchedule,
    amount_for_percentage,
    schedule_for_quote,
    validate_schedule_percentages,
)
from utils.money import to_decimal, to_minor_units
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

SCHEDULE_INVOICE_TYPES = (InvoiceType.DOWN_PAYMENT, InvoiceType.MILESTONE, InvoiceType.FINAL)

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_invoice_number() -> str:
    """INV-YYYYMM-XXXXXX with a random uppercase alphanumeric suffix."""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"INV-{now_utc():%Y%m}-{suffix}"


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        store: LedgerStore,
        gateway: StripeGatewayClient,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig,
    ):
        self.store = store
        self.gateway = gateway
        self.audit = audit
        self.event_bus = event_bus
        self.config = config

    def get(self, invoice_id: UUID) -> Invoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFound("invoice", invoice_id)
        return invoice

    def _get_project(self, project_id: UUID) -> Project:
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFound("project", project_id)
        return project

    def _origin_quote(self, project: Project) -> Quote | None:
        if project.origin_quote_id is None:
            return None
        return self.store.get_quote(project.origin_quote_id)

    def contracted_total(self, project: Project) -> Decimal:
        """
        The originating quote's total, falling back to the project budget.

        Raises:
            InvalidInput: If neither is positive
        """
        quote = self._origin_quote(project)
        total = to_decimal(quote.total) if quote else Decimal("0")
        if total <= 0:
            total = to_decimal(project.total_budget)
        if total <= 0:
            raise InvalidInput(f"Project {project.id} has no contracted total or budget")
        return total

    # =========================================================================
    # DRAFTING
    # =========================================================================

    def prepare_milestone_invoice(self, milestone: Milestone) -> InvoiceCreate:
        """
        Validate a milestone for drafting and compute its invoice.

        Writes nothing, so callers can check before any state changes.

        Raises:
            InvalidInput: Not billable, no positive percentage, or no contracted total
            NotFound: The milestone's project is gone
        """
        if not milestone.is_billable:
            raise InvalidInput(f"Milestone {milestone.id} is not billable")

        percentage = to_decimal(milestone.billing_percentage)
        if percentage <= 0:
            raise InvalidInput(f"Milestone {milestone.id} has no billing percentage")

        project = self._get_project(milestone.project_id)
        total = self.contracted_total(project)
        amount = amount_for_percentage(total, percentage)
        if amount <= 0:
            raise InvalidInput(f"Milestone {milestone.id} bills a zero amount")

        now = now_utc()
        return InvoiceCreate(
            project_id=project.id,
            quote_id=project.origin_quote_id,
            milestone_id=milestone.id,
            invoice_number=generate_invoice_number(),
            amount=amount,
            description=f"Milestone billing ({percentage.normalize():f}%): {milestone.title}",
            invoice_type=InvoiceType.MILESTONE,
            issue_date=now,
            due_date=now + timedelta(days=self.config.milestone_due_days),
            customer_name=project.customer_name,
            customer_email=project.customer_email,
        )

    def draft_for_milestone(self, milestone_id: UUID) -> Invoice | None:
        """
        Create the draft invoice for a billable milestone.

        Returns None, without error, when the milestone already has an
        invoice (including when a concurrent caller linked one first).

        Raises:
            NotFound: Milestone does not exist
            InvalidInput: See prepare_milestone_invoice
        """
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None:
            raise NotFound("milestone", milestone_id)

        if milestone.is_billed:
            logger.info("Milestone %s already has invoice %s", milestone_id, milestone.invoice_id)
            return None

        data = self.prepare_milestone_invoice(milestone)
        invoice = self.store.create_milestone_invoice(milestone_id, data)
        if invoice is None:
            return None

        self._record_draft(invoice)
        return invoice

    def draft_schedule_invoice(self, project_id: UUID, invoice_type: InvoiceType) -> Invoice:
        """
        Draft a down payment, milestone or final invoice from the project's quote schedule.

        Raises:
            NotFound: Project or its quote does not exist
            InvalidInput: Unsupported type, zero amount, or (strict mode) percentages not summing to 100
            InvalidState: A live invoice for that phase already exists
        """
        if invoice_type not in SCHEDULE_INVOICE_TYPES:
            raise InvalidInput(f"Invoice type '{invoice_type.value}' is not a schedule phase")

        project = self._get_project(project_id)
        quote = self._origin_quote(project)
        if quote is None:
            raise NotFound("quote", project.origin_quote_id)

        if self.config.strict_schedule_percentages:
            validate_schedule_percentages(
                quote.down_payment_percentage,
                quote.milestone_payment_percentage,
                quote.final_payment_percentage,
            )

        existing = self.store.find_schedule_invoice(project_id, invoice_type.value)
        if existing is not None:
            raise InvalidState(
                f"Project {project_id} already has {invoice_type.value} invoice {existing.invoice_number}"
            )

        phase = schedule_for_quote(quote).phase(invoice_type.value)
        if phase.amount <= 0:
            raise InvalidInput(f"Quote {quote.id} has no total to bill")

        due_days = {
            InvoiceType.DOWN_PAYMENT: self.config.down_payment_due_days,
            InvoiceType.MILESTONE: self.config.milestone_due_days,
            InvoiceType.FINAL: self.config.final_due_days,
        }[invoice_type]

        descriptions = {
            InvoiceType.DOWN_PAYMENT: f"Down payment ({phase.percentage.normalize():f}%) for {quote.title}",
            InvoiceType.MILESTONE: phase.description or f"Milestone payment for {quote.title}",
            InvoiceType.FINAL: f"Final payment ({phase.percentage.normalize():f}%) for {quote.title}",
        }

        now = now_utc()
        invoice = self.store.create_invoice(InvoiceCreate(
            project_id=project.id,
            quote_id=quote.id,
            invoice_number=generate_invoice_number(),
            amount=phase.amount,
            description=descriptions[invoice_type],
            invoice_type=invoice_type,
            issue_date=now,
            due_date=now + timedelta(days=due_days),
            customer_name=project.customer_name,
            customer_email=project.customer_email,
        ))

        self._record_draft(invoice)
        return invoice

    def _record_draft(self, invoice: Invoice) -> None:
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={
                "created": {
                    "invoice_number": invoice.invoice_number,
                    "invoice_type": invoice.invoice_type.value,
                    "amount": str(invoice.amount),
                    "milestone_id": str(invoice.milestone_id) if invoice.milestone_id else None,
                }
            }
        )
        logger.info(
            "Drafted %s invoice %s for %s",
            invoice.invoice_type.value, invoice.invoice_number, invoice.amount,
        )
        self.event_bus.publish(InvoiceDrafted.create(invoice=invoice))

    # =========================================================================
    # SENDING
    # =========================================================================

    def send(self, invoice_id: UUID) -> Invoice:
        """
        Issue a draft invoice: charge intent, payment link, status pending.

        Raises:
            NotFound: Invoice does not exist
            InvalidState: Invoice is not a draft
            InvalidInput: Invoice amount is not positive
            GatewayError: Charge intent request failed; the invoice is unchanged
        """
        current = self.get(invoice_id)
        if current.status != InvoiceStatus.DRAFT:
            raise InvalidState(
                f"Invoice {current.invoice_number} is {current.status.value}, only drafts can be sent"
            )

        amount_minor = to_minor_units(current.amount)
        if amount_minor <= 0:
            raise InvalidInput(f"Invoice {current.invoice_number} has no amount to charge")

        metadata = {
            "invoice_id": str(current.id),
            "project_id": str(current.project_id),
            "payment_type": current.invoice_type.value,
        }
        if current.milestone_id:
            metadata["milestone_id"] = str(current.milestone_id)
        if current.quote_id:
            metadata["quote_id"] = str(current.quote_id)

        try:
            intent = self.gateway.create_charge_intent(
                amount_minor,
                f"{current.invoice_number}: {current.description or 'Invoice'}",
                metadata,
            )
        except PaymentGatewayError as exc:
            logger.warning("Charge intent for invoice %s failed: %s", current.invoice_number, exc)
            raise GatewayError(f"Payment gateway rejected invoice {current.invoice_number}: {exc}") from exc

        now = now_utc()
        updated = self.store.mark_invoice_sent(
            invoice_id,
            gateway_transaction_id=intent.id,
            payment_link=self.config.payment_link(intent.client_secret),
            issue_date=now,
        )
        if updated is None:
            logger.warning(
                "Invoice %s was sent concurrently; charge intent %s is orphaned",
                current.invoice_number, intent.id,
            )
            raise InvalidState(f"Invoice {current.invoice_number} is no longer a draft")

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.UPDATE,
            changes={
                "status": {"old": current.status.value, "new": updated.status.value},
                "gateway_transaction_id": {"old": None, "new": intent.id},
                "issue_date": {"old": current.issue_date.isoformat(), "new": now.isoformat()},
            }
        )

        self.event_bus.publish(InvoiceSent.create(invoice=updated))

        return updated

    def list_for_project(self, project_id: UUID) -> list[Invoice]:
        self._get_project(project_id)
        return self.store.list_invoices_for_project(project_id)

    def quote_schedule(self, quote_id: UUID) -> PaymentSchedule:
        """Payment schedule for a quote. Raises NotFound if it does not exist."""
        quote = self.store.get_quote(quote_id)
        if quote is None:
            raise NotFound("quote", quote_id)
        return schedule_for_quote(quote)
