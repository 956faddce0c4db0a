"""
Payment schedule calculator.

Splits a contracted total into down payment, milestone payment and final
payment amounts. Pure functions, no store access.

Percentages are deliberately not required to sum to 100 here; a schedule of
30/40/40 bills 110% of the total. validate_schedule_percentages() is the
explicit check for callers that want it.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from core.exceptions import InvalidInput
from utils.money import round_currency, to_decimal

DEFAULT_DOWN_PAYMENT_PERCENTAGE = Decimal("30")
DEFAULT_MILESTONE_PERCENTAGE = Decimal("40")
DEFAULT_FINAL_PERCENTAGE = Decimal("30")

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PaymentPhase:
    amount: Decimal
    percentage: Decimal
    description: str | None = None


@dataclass(frozen=True)
class PaymentSchedule:
    down_payment: PaymentPhase
    milestone_payment: PaymentPhase
    final_payment: PaymentPhase

    @property
    def total_percentage(self) -> Decimal:
        return (
            self.down_payment.percentage
            + self.milestone_payment.percentage
            + self.final_payment.percentage
        )

    @property
    def total_amount(self) -> Decimal:
        return (
            self.down_payment.amount
            + self.milestone_payment.amount
            + self.final_payment.amount
        )

    def phase(self, invoice_type: str) -> PaymentPhase:
        """Phase for an invoice type ('down_payment', 'milestone' or 'final')."""
        phases = {
            "down_payment": self.down_payment,
            "milestone": self.milestone_payment,
            "final": self.final_payment,
        }
        if invoice_type not in phases:
            raise InvalidInput(f"No schedule phase for invoice type '{invoice_type}'")
        return phases[invoice_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "down_payment": {
                "amount": str(self.down_payment.amount),
                "percentage": str(self.down_payment.percentage),
            },
            "milestone_payment": {
                "amount": str(self.milestone_payment.amount),
                "percentage": str(self.milestone_payment.percentage),
                "description": self.milestone_payment.description,
            },
            "final_payment": {
                "amount": str(self.final_payment.amount),
                "percentage": str(self.final_payment.percentage),
            },
        }


def amount_for_percentage(total: Any, percentage: Any) -> Decimal:
    """round(total * percentage / 100, 2). Non-numeric input counts as 0."""
    return round_currency(to_decimal(total) * to_decimal(percentage) / HUNDRED)


def _percentage_or_default(value: Any, default: Decimal) -> Decimal:
    pct = to_decimal(value)
    return pct if pct else default


def calculate_payment_schedule(
    total: Any,
    down_payment_percentage: Any = None,
    milestone_payment_percentage: Any = None,
    final_payment_percentage: Any = None,
    milestone_description: str | None = None,
) -> PaymentSchedule:
    """
    Compute the three schedule amounts for a contracted total.

    Unset, zero or non-numeric percentages fall back to 30/40/30. A
    non-numeric total yields zero amounts.
    """
    down_pct = _percentage_or_default(down_payment_percentage, DEFAULT_DOWN_PAYMENT_PERCENTAGE)
    milestone_pct = _percentage_or_default(milestone_payment_percentage, DEFAULT_MILESTONE_PERCENTAGE)
    final_pct = _percentage_or_default(final_payment_percentage, DEFAULT_FINAL_PERCENTAGE)

    return PaymentSchedule(
        down_payment=PaymentPhase(amount_for_percentage(total, down_pct), down_pct),
        milestone_payment=PaymentPhase(
            amount_for_percentage(total, milestone_pct),
            milestone_pct,
            milestone_description or "Project milestone completion",
        ),
        final_payment=PaymentPhase(amount_for_percentage(total, final_pct), final_pct),
    )


def schedule_for_quote(quote) -> PaymentSchedule:
    """Schedule for a Quote's total and percentages."""
    return calculate_payment_schedule(
        quote.total,
        quote.down_payment_percentage,
        quote.milestone_payment_percentage,
        quote.final_payment_percentage,
        quote.milestone_description,
    )


def validate_schedule_percentages(
    down_payment_percentage: Any,
    milestone_payment_percentage: Any,
    final_payment_percentage: Any,
) -> None:
    """
    Raise InvalidInput unless the three percentages are each within 0..100
    and sum to exactly 100. Unset values take the 30/40/30 defaults.
    """
    values = [
        _percentage_or_default(down_payment_percentage, DEFAULT_DOWN_PAYMENT_PERCENTAGE),
        _percentage_or_default(milestone_payment_percentage, DEFAULT_MILESTONE_PERCENTAGE),
        _percentage_or_default(final_payment_percentage, DEFAULT_FINAL_PERCENTAGE),
    ]
    for value in values:
        if value < 0 or value > HUNDRED:
            raise InvalidInput(f"Payment percentage {value} must be between 0 and 100")

    total = sum(values, Decimal("0"))
    if total != HUNDRED:
        raise InvalidInput(f"Payment percentages sum to {total}, expected 100")
