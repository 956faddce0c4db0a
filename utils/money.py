"""
Currency arithmetic.

Amounts are Decimal with two places (the currency's minor unit). The payment
gateway speaks integer minor units (cents); conversion happens only at that seam.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a number or numeric string to Decimal.

    Non-numeric input (None, "", "abc", NaN) yields Decimal("0").
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not result.is_finite():
        return Decimal("0")
    return result


def round_currency(amount: Decimal) -> Decimal:
    """Round to the minor unit, half away from zero."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Dollars to integer cents. Decimal("30.00") -> 3000."""
    return int(round_currency(amount) * 100)


def from_minor_units(minor: int) -> Decimal:
    """Integer cents to dollars. 3000 -> Decimal("30.00")."""
    return round_currency(Decimal(minor) / 100)
