"""Currency amount helpers.

Amounts are held as decimal currency units and become integer cents only
at the Stripe boundary.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Amount = Union[Decimal, int, float, str]

_CENT = Decimal("0.01")


def to_decimal(amount: Amount) -> Decimal:
    """Coerce an amount to Decimal without float artifacts."""
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, float):
        return Decimal(str(amount))
    return Decimal(amount)


def to_cents(amount: Amount) -> int:
    """Convert a currency amount to integer cents, rounding half up.

    Args:
        amount: Amount in currency units (e.g. 10.005)

    Returns:
        Amount in cents (e.g. 1001)
    """
    cents = (to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents to a currency amount."""
    return (Decimal(cents) / 100).quantize(_CENT)


def is_whole_cents(amount: Amount) -> bool:
    """True when the amount has no fraction of a cent."""
    value = to_decimal(amount)
    return value == value.quantize(_CENT)


def quantize_cents(amount: Amount) -> Decimal:
    """Round an amount to whole cents, half up."""
    return to_decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)
