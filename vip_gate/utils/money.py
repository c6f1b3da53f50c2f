"""Exact money handling: Decimal in the domain, integer minor units at rest."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


class InvalidAmountError(ValueError):
    """Raised when a value cannot be read as a currency amount."""

    pass


def parse_amount(value: Any) -> Decimal:
    """Read a provider supplied amount as an exact Decimal, without rounding.

    Floats go through ``str`` so ``30.1`` stays ``30.1`` and does not become
    its binary approximation. Sub-cent digits are kept: ``29.995`` is not
    ``30.00``.

    Raises:
        InvalidAmountError: If the value is not a finite, non-negative number
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip().replace(",", "."))
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"Invalid amount: {value!r}")

    if not amount.is_finite() or amount < 0:
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    return amount


def parse_price(value: Any) -> Decimal:
    """Read a price typed by an admin, rounded half-up to cents."""
    return parse_amount(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to integer cents."""
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


def format_amount(amount: Decimal) -> str:
    return f"{amount.quantize(CENT):.2f}"
