"""
Money primitives — Decimal amounts rounded half-up to cents.

Note: Every stored or compared amount passes through round_money().
Rounding always starts from the original base price, never from an
already-rounded intermediate.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

# ═══════════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════════

type Money = Decimal
"""A monetary amount. Two decimal places once rounded."""

type Amount = Decimal | int | float | str
"""Anything to_money() accepts."""

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# ═══════════════════════════════════════════════════════════════════════════════
# Conversion
# ═══════════════════════════════════════════════════════════════════════════════


def to_decimal(value: Amount | None) -> Decimal | None:
    """
    Convert to Decimal. Returns None for missing or non-finite input.

        to_decimal("12.5")       # Decimal("12.5")
        to_decimal(float("nan")) # None
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def is_finite(value: Amount | None) -> bool:
    return to_decimal(value) is not None


def round_money(value: Decimal) -> Money:
    """Round half-up to 2 decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Amount | None) -> Money:
    """
    Convert and round. Missing or non-finite input becomes ZERO.

        to_money(10.005)  # Decimal("10.01")
    """
    result = to_decimal(value)
    if result is None:
        return ZERO
    return round_money(result)


def clamp_zero(value: Decimal) -> Decimal:
    return value if value > 0 else Decimal(0)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Money",
    "Amount",
    "ZERO",
    "CENT",
    "HUNDRED",
    "to_decimal",
    "is_finite",
    "round_money",
    "to_money",
    "clamp_zero",
)
