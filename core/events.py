"""
Domain events for the billing core.

Immutable event objects describing billing state changes. A service publishes
what happened; handlers (notification dispatch, logging) react without the
publisher knowing who is listening.

Events carry the full domain object so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class PortalEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# MILESTONE EVENTS
# =============================================================================


@dataclass(frozen=True)
class MilestoneEvent(PortalEvent):
    """Events related to milestone lifecycle."""
    pass


@dataclass(frozen=True)
class MilestoneCompleted(MilestoneEvent):
    """A milestone moved from pending to completed."""
    milestone: Any = None  # Milestone

    @classmethod
    def create(cls, milestone: Any) -> "MilestoneCompleted":
        return cls(milestone=milestone)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(PortalEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice


@dataclass(frozen=True)
class InvoiceDrafted(InvoiceEvent):
    """A draft invoice was created with its amount fixed."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceDrafted":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """A draft invoice was issued: charge intent created, status pending."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceSent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Reconciliation marked an invoice paid and recorded the payment."""
    payment: Any = None  # Payment

    @classmethod
    def create(cls, invoice: Any, payment: Any) -> "InvoicePaid":
        return cls(invoice=invoice, payment=payment)
