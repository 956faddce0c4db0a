"""
Billing notifications through a durable outbox.

Emails are rendered, written to the notifications table under a dedupe key,
then delivered. A row stays pending/failed until the email gateway accepts
it, so a crash or gateway failure after a ledger commit is recovered by
flush_pending() rather than lost. A row is claimed (status sending)
before its email goes out, so two deliverers never send the same row.
The dedupe key is independent of invoice status: a retried webhook
re-queues the same key and only delivers what has not gone out yet.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from html import escape
from uuid import UUID

from pydantic import ValidationError

from clients.email_client import EmailGatewayClient, EmailGatewayError
from core.config import BillingConfig
from core.ledger import LedgerStore
from core.models import (
    Invoice,
    InvoiceType,
    Notification,
    NotificationCreate,
    NotificationKind,
    Project,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

CLAIM_LEASE = timedelta(minutes=10)

PAYMENT_TYPE_LABELS = {
    InvoiceType.DOWN_PAYMENT: "Down Payment",
    InvoiceType.MILESTONE: "Milestone Payment",
    InvoiceType.FINAL: "Final Payment",
}


def payment_type_label(invoice_type: InvoiceType) -> str:
    return PAYMENT_TYPE_LABELS.get(invoice_type, "Payment")


# =============================================================================
# TEMPLATES
# =============================================================================


def render_payment_instructions(invoice: Invoice, project_name: str) -> tuple[str, str]:
    """Subject and HTML body asking the customer to pay a sent invoice."""
    label = payment_type_label(invoice.invoice_type)
    subject = f"{label} Required - {project_name}"
    body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #3d4552;">Payment Request - {escape(project_name)}</h2>
  <p>Dear {escape(invoice.customer_name or "Customer")},</p>
  <p>Your {label.lower()} is now due for your project: <strong>{escape(project_name)}</strong></p>
  <div style="background: #f9f9f9; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3 style="margin: 0 0 10px 0; color: #3d4552;">Payment Details</h3>
    <p><strong>Invoice Number:</strong> {escape(invoice.invoice_number)}</p>
    <p><strong>Amount:</strong> ${invoice.amount:,.2f}</p>
    <p><strong>Due Date:</strong> {invoice.due_date:%B %d, %Y}</p>
    <p><strong>Payment Type:</strong> {label}</p>
  </div>
  <div style="text-align: center; margin: 30px 0;">
    <a href="{escape(invoice.payment_link or "")}"
       style="background: #db973c; color: white; padding: 15px 30px; text-decoration: none; border-radius: 5px; font-weight: bold; display: inline-block;">
      Pay Now
    </a>
  </div>
  <p>This secure payment link lets you pay by credit card, debit card or bank transfer.</p>
  <p>Thank you for your business!</p>
  <hr style="margin: 30px 0; border: none; border-top: 1px solid #eee;">
  <p style="color: #666; font-size: 12px;">This is an automated message. Please do not reply directly to this email.</p>
</div>
"""
    return subject, body


def render_project_welcome(project: Project) -> tuple[str, str]:
    """Subject and HTML body sent once the down payment clears."""
    subject = f"Welcome to Your Project - {project.name}"
    budget = project.total_budget or Decimal("0")
    body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #3d4552;">Welcome to Your Project!</h2>
  <p>Dear {escape(project.customer_name or "Customer")},</p>
  <p>Thank you for your payment! Your project <strong>{escape(project.name)}</strong> is now officially underway.</p>
  <div style="background: #f0f9ff; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #3b82f6;">
    <h3 style="margin: 0 0 10px 0; color: #1e40af;">Payment Confirmed</h3>
    <p><strong>Project Name:</strong> {escape(project.name)}</p>
    <p><strong>Down Payment:</strong> Received Successfully</p>
    <p><strong>Total Budget:</strong> ${budget:,.2f}</p>
  </div>
  <div style="background: #ecfdf5; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #10b981;">
    <h3 style="margin: 0 0 10px 0; color: #047857;">Next Steps</h3>
    <ul style="margin: 0; padding-left: 20px;">
      <li>Project planning and scheduling will begin within 2 business days</li>
      <li>Your project manager will contact you to schedule the kick-off meeting</li>
      <li>Milestone payments will be requested as work progresses</li>
    </ul>
  </div>
  <p>Best regards,<br>The Kolmo Construction Team</p>
</div>
"""
    return subject, body


def render_payment_confirmation(invoice: Invoice, amount_paid: Decimal) -> tuple[str, str]:
    """Subject and HTML body confirming a milestone or final payment."""
    label = payment_type_label(invoice.invoice_type)
    subject = f"Payment Confirmation - {label} Received"

    progress = ""
    if invoice.invoice_type == InvoiceType.MILESTONE:
        progress = (
            '<p>Your project is progressing well! This milestone payment allows us '
            'to continue with the next phase of work.</p>'
        )
    elif invoice.invoice_type == InvoiceType.FINAL:
        progress = (
            '<p>Congratulations! This final payment completes your project. '
            'Our team will be in touch regarding project handover.</p>'
        )

    body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #3d4552;">Payment Confirmation</h2>
  <p>Dear {escape(invoice.customer_name or "Customer")},</p>
  <p>Thank you! We've successfully received your {label.lower()}.</p>
  <div style="background: #f0f9ff; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #3b82f6;">
    <h3 style="margin: 0 0 10px 0; color: #1e40af;">Payment Details</h3>
    <p><strong>Invoice Number:</strong> {escape(invoice.invoice_number)}</p>
    <p><strong>Amount Paid:</strong> ${amount_paid:,.2f}</p>
    <p><strong>Payment Type:</strong> {label}</p>
  </div>
  <p><strong>Description:</strong> {escape(invoice.description or "")}</p>
  {progress}
  <p>Best regards,<br>The Kolmo Construction Team</p>
  <hr style="margin: 30px 0; border: none; border-top: 1px solid #eee;">
  <p style="color: #666; font-size: 12px;">This is an automated payment confirmation. Please keep this email for your records.</p>
</div>
"""
    return subject, body


# =============================================================================
# SERVICE
# =============================================================================


class NotificationService:
    """Queues and delivers billing emails."""

    def __init__(self, store: LedgerStore, email: EmailGatewayClient, config: BillingConfig):
        self.store = store
        self.email = email
        self.config = config

    def queue_payment_instructions(self, invoice: Invoice, project_name: str) -> Notification | None:
        if not invoice.customer_email:
            logger.warning("Invoice %s has no customer email, payment instructions skipped", invoice.id)
            return None

        subject, body = render_payment_instructions(invoice, project_name)
        return self._enqueue(
            # Keyed on the transaction id so a re-sent invoice gets a fresh email
            dedupe_key=f"{NotificationKind.PAYMENT_INSTRUCTIONS.value}:{invoice.id}:{invoice.gateway_transaction_id}",
            kind=NotificationKind.PAYMENT_INSTRUCTIONS,
            to_address=invoice.customer_email,
            subject=subject,
            html_body=body,
            invoice_id=invoice.id,
            reference=invoice.gateway_transaction_id,
        )

    def queue_project_welcome(self, project: Project, invoice: Invoice) -> Notification | None:
        if not project.customer_email:
            logger.warning("Project %s has no customer email, welcome email skipped", project.id)
            return None

        subject, body = render_project_welcome(project)
        return self._enqueue(
            dedupe_key=f"{NotificationKind.PROJECT_WELCOME.value}:{invoice.id}",
            kind=NotificationKind.PROJECT_WELCOME,
            to_address=project.customer_email,
            subject=subject,
            html_body=body,
            invoice_id=invoice.id,
            reference=invoice.gateway_transaction_id,
        )

    def queue_payment_confirmation(self, invoice: Invoice, amount_paid: Decimal) -> Notification | None:
        if not invoice.customer_email:
            logger.warning("Invoice %s has no customer email, payment confirmation skipped", invoice.id)
            return None

        subject, body = render_payment_confirmation(invoice, amount_paid)
        return self._enqueue(
            dedupe_key=f"{NotificationKind.PAYMENT_CONFIRMATION.value}:{invoice.id}",
            kind=NotificationKind.PAYMENT_CONFIRMATION,
            to_address=invoice.customer_email,
            subject=subject,
            html_body=body,
            invoice_id=invoice.id,
            reference=invoice.gateway_transaction_id,
        )

    def _enqueue(self, **fields) -> Notification | None:
        # Malformed addresses are skipped like missing ones
        try:
            data = NotificationCreate(from_name=self.config.from_name, **fields)
        except ValidationError as exc:
            logger.warning(
                "Undeliverable %s notification for invoice %s to %r skipped: %s",
                fields["kind"].value, fields.get("invoice_id"), fields["to_address"],
                exc.errors()[0]["msg"],
            )
            return None
        return self.store.enqueue_notification(data)

    def deliver(self, notification: Notification, raise_on_failure: bool = False) -> bool:
        """
        Send one outbox row.

        The row is claimed before the email goes out, so concurrent deliverers
        of the same row send it once. A claim left by a crashed deliverer
        expires after CLAIM_LEASE and the row becomes deliverable again.

        Returns True if it was sent now or had already been sent, False if
        the send failed or another deliverer holds the row. On gateway
        failure the row is marked failed; the error is re-raised only when
        raise_on_failure is set.
        """
        if not notification.is_deliverable:
            return True

        claimed_at = now_utc()
        if not self.store.claim_notification(notification.id, claimed_at, claimed_at - CLAIM_LEASE):
            logger.info(
                "%s notification %s is sent or being sent elsewhere",
                notification.kind.value, notification.id,
            )
            return False

        try:
            self.email.send(
                notification.to_address,
                notification.subject,
                notification.html_body,
                notification.from_name,
            )
        except EmailGatewayError as exc:
            logger.warning(
                "Delivery of %s notification %s failed: %s",
                notification.kind.value, notification.id, exc,
            )
            self.store.mark_notification_failed(notification.id, str(exc))
            if raise_on_failure:
                raise
            return False

        self.store.mark_notification_sent(notification.id, now_utc())
        logger.info("Sent %s email to %s", notification.kind.value, notification.to_address)
        return True

    def flush_pending(
        self,
        invoice_id: UUID | None = None,
        kinds: set[NotificationKind] | None = None,
        raise_on_failure: bool = False,
    ) -> int:
        """
        Deliver every undelivered outbox row, optionally for one invoice
        and only of the given kinds.

        Returns the number delivered. With raise_on_failure the first gateway
        error propagates after the rows before it have been sent.
        """
        delivered = 0
        for notification in self.store.list_pending_notifications(invoice_id=invoice_id):
            if kinds is not None and notification.kind not in kinds:
                continue
            if self.deliver(notification, raise_on_failure=raise_on_failure):
                delivered += 1
        return delivered
