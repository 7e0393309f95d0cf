"""Number formatting for operator-facing output."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Round a value to cents."""
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value) -> str:
    """Return the amount with two decimals and spaces as thousands separators."""
    return f"{to_money(value):,.2f}".replace(",", " ")


__all__ = ["CENT", "format_amount", "to_money"]
