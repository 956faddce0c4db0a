"""
Handler for InvoiceSent events.

Queues the "payment instructions" email carrying the invoice's payment link
and delivers it straight away. Delivery failures are logged and left in the
outbox; they never undo the send.
"""

import logging
from typing import Callable

from core.events import InvoiceSent

logger = logging.getLogger(__name__)


def handle_invoice_sent(notification_service, store) -> Callable:
    """
    Factory that returns an InvoiceSent handler.

    Args:
        notification_service: NotificationService instance
        store: LedgerStore, for the project name

    Returns:
        Handler callable that sends payment instructions
    """

    def handler(event: InvoiceSent):
        invoice = event.invoice
        project = store.get_project(invoice.project_id)
        project_name = project.name if project else "your project"

        notification = notification_service.queue_payment_instructions(invoice, project_name)
        if notification is None:
            return

        if notification_service.deliver(notification):
            logger.info("Payment instructions for %s sent", invoice.invoice_number)

    return handler
