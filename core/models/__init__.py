"""Core domain models."""

from core.models.project import Project, Quote, QuoteStatus
from core.models.milestone import Milestone, MilestoneCreate, MilestoneStatus
from core.models.task import Task, TaskStatus, BillingType
from core.models.invoice import Invoice, InvoiceCreate, InvoiceStatus, InvoiceType
from core.models.payment import Payment, PaymentCreate
from core.models.notification import (
    Notification, NotificationCreate, NotificationKind, NotificationStatus,
)

__all__ = [
    # Project
    "Project", "Quote", "QuoteStatus",
    # Milestone
    "Milestone", "MilestoneCreate", "MilestoneStatus",
    # Task
    "Task", "TaskStatus", "BillingType",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceStatus", "InvoiceType",
    # Payment
    "Payment", "PaymentCreate",
    # Notification
    "Notification", "NotificationCreate", "NotificationKind", "NotificationStatus",
]
