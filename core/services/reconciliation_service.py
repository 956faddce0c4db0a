"""
Payment-event reconciliation.

Brings the ledger into agreement with the payment gateway after a charge
event. Webhooks arrive at least once and in any order, so every step is
idempotent:

1. Re-fetch the charge from the gateway; the event payload is never trusted.
2. Ignore anything that has not succeeded.
3. Drop (log, acknowledge) charges without a usable invoice_id.
4. Re-fetch the invoice. Already paid means a duplicate delivery.
5. Mark paid and record the payment in one transaction, guarded by a
   compare-and-swap on status <> 'paid'.
6. Down payments accept the originating quote and queue the welcome email;
   everything else queues a payment confirmation.

Emails go through the outbox. A delivery failure propagates so the transport
retries; on retry step 4 sees the invoice paid, re-runs the idempotent step 6
and delivers whatever is still pending.
"""

import logging
from enum import Enum
from uuid import UUID

from clients.stripe_client import Charge, PaymentGatewayError, StripeGatewayClient, WebhookEvent
from core.audit import AuditAction, AuditLogger
from core.event_bus import EventBus
from core.events import InvoicePaid
from core.exceptions import GatewayError, MalformedEvent
from core.ledger import LedgerStore
from core.models import Invoice, InvoiceType, NotificationKind, PaymentCreate
from core.services.notification_service import NotificationService
from utils.money import from_minor_units
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

CHARGE_SUCCEEDED = "payment_intent.succeeded"
CHARGE_FAILED = "payment_intent.payment_failed"

PAYMENT_RECEIVED_KINDS = {NotificationKind.PROJECT_WELCOME, NotificationKind.PAYMENT_CONFIRMATION}


class ReconcileOutcome(Enum):
    """What a reconciliation pass did. All outcomes are acknowledged to the gateway."""

    RECONCILED = "reconciled"
    IGNORED = "ignored"
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    ALREADY_PAID = "already_paid"


def invoice_id_from_metadata(metadata: dict) -> UUID:
    """
    Extract the invoice id a charge was created for.

    Raises:
        MalformedEvent: Missing or not a UUID
    """
    raw = (metadata or {}).get("invoice_id")
    if not raw:
        raise MalformedEvent("Charge metadata has no invoice_id")
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise MalformedEvent(f"Charge metadata invoice_id {raw!r} is not a valid id") from exc


class ReconciliationService:
    """Applies gateway charge events to the ledger."""

    def __init__(
        self,
        store: LedgerStore,
        gateway: StripeGatewayClient,
        notifications: NotificationService,
        audit: AuditLogger,
        event_bus: EventBus,
    ):
        self.store = store
        self.gateway = gateway
        self.notifications = notifications
        self.audit = audit
        self.event_bus = event_bus

    def handle_event(self, event: WebhookEvent) -> ReconcileOutcome | None:
        """Dispatch a verified webhook event. Returns None for event types not reconciled."""
        if event.type == CHARGE_SUCCEEDED:
            charge_id = event.object_id
            if not charge_id:
                logger.error("Event %s has no charge id, dropped", event.id)
                return ReconcileOutcome.MALFORMED
            return self.reconcile(charge_id)

        if event.type == CHARGE_FAILED:
            logger.warning("Charge %s failed (event %s)", event.object_id, event.id)
            return None

        logger.debug("Unhandled webhook event type %s", event.type)
        return None

    def reconcile(self, charge_id: str) -> ReconcileOutcome:
        """
        Reconcile one charge against its invoice.

        Raises:
            GatewayError: The charge could not be fetched (transport retries)
            EmailGatewayError: A notification could not be delivered (transport retries)
        """
        try:
            charge = self.gateway.get_charge(charge_id)
        except PaymentGatewayError as exc:
            raise GatewayError(f"Could not fetch charge {charge_id}: {exc}") from exc

        if not charge.succeeded:
            logger.info("Charge %s is %s, nothing to reconcile", charge_id, charge.status)
            return ReconcileOutcome.IGNORED

        try:
            invoice_id = invoice_id_from_metadata(charge.metadata)
        except MalformedEvent as exc:
            logger.error("Charge %s dropped: %s", charge_id, exc)
            return ReconcileOutcome.MALFORMED

        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            logger.warning("Charge %s references unknown invoice %s", charge_id, invoice_id)
            return ReconcileOutcome.NOT_FOUND

        if invoice.is_paid:
            logger.info("Invoice %s already paid, skipping charge %s", invoice.invoice_number, charge_id)
            self._follow_up(invoice, charge)
            return ReconcileOutcome.ALREADY_PAID

        amount = from_minor_units(charge.amount_minor)
        result = self.store.mark_invoice_paid(PaymentCreate(
            invoice_id=invoice.id,
            amount=amount,
            payment_date=now_utc(),
            payment_method="stripe",
            gateway_transaction_id=charge.id,
            gateway_charge_id=charge.latest_charge_id,
            status="succeeded",
        ))
        if result is None:
            logger.info("Invoice %s was paid concurrently, skipping charge %s", invoice.invoice_number, charge_id)
            self._follow_up(invoice, charge)
            return ReconcileOutcome.ALREADY_PAID

        paid, payment = result
        if amount != paid.amount:
            logger.warning(
                "Charge %s amount %s differs from invoice %s amount %s",
                charge_id, amount, paid.invoice_number, paid.amount,
            )

        self.audit.log_change(
            entity_type="invoice",
            entity_id=paid.id,
            action=AuditAction.UPDATE,
            changes={
                "status": {"old": invoice.status.value, "new": paid.status.value},
                "payment_id": {"old": None, "new": str(payment.id)},
            }
        )
        logger.info("Payment of %s recorded for invoice %s", amount, paid.invoice_number)
        self.event_bus.publish(InvoicePaid.create(invoice=paid, payment=payment))

        self._follow_up(paid, charge)
        return ReconcileOutcome.RECONCILED

    def _payment_type(self, invoice: Invoice, charge: Charge) -> str:
        return (charge.metadata or {}).get("payment_type") or invoice.invoice_type.value

    def _follow_up(self, invoice: Invoice, charge: Charge) -> None:
        """Quote acceptance and customer emails. Safe to run any number of times."""
        if self._payment_type(invoice, charge) == InvoiceType.DOWN_PAYMENT.value:
            project = self.store.get_project(invoice.project_id)
            quote_id = invoice.quote_id or (project.origin_quote_id if project else None)
            if quote_id and self.store.mark_quote_accepted(quote_id, now_utc()):
                logger.info("Quote %s accepted after down payment", quote_id)
            if project is not None:
                self.notifications.queue_project_welcome(project, invoice)
            else:
                logger.error("Project %s missing for invoice %s", invoice.project_id, invoice.id)
        else:
            self.notifications.queue_payment_confirmation(invoice, from_minor_units(charge.amount_minor))

        self.notifications.flush_pending(
            invoice_id=invoice.id,
            kinds=PAYMENT_RECEIVED_KINDS,
            raise_on_failure=True,
        )
