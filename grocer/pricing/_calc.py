"""
Price calculation — effective price and drift detection.

All functions are pure and never raise. Bad input degrades to
"no discount" rather than an exception.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from grocer.pricing._money import (
    Money,
    Amount,
    CENT,
    HUNDRED,
    to_decimal,
    round_money,
    to_money,
    clamp_zero,
)
from grocer.pricing._rules import Percentage, Fixed, DiscountRule, ProductDiscount

# ═══════════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════════

PRICE_EPSILON = CENT
"""Two stored prices closer than this are the same price."""

# ═══════════════════════════════════════════════════════════════════════════════
# Rule Application
# ═══════════════════════════════════════════════════════════════════════════════


def apply_rule(base: Decimal, rule: DiscountRule) -> Decimal:
    """
    Apply a rule to an unrounded base. Invalid magnitudes leave base unchanged.

    Note: Result is floored at 0 but NOT rounded.
    """
    magnitude = to_decimal(rule.magnitude)
    if magnitude is None or magnitude < 0:
        return base
    match rule:
        case Percentage():
            reduced = base * (1 - magnitude / HUNDRED)
        case Fixed():
            reduced = base - magnitude
    return clamp_zero(reduced)


def active_discount(
    discount: ProductDiscount | None,
    now: datetime,
) -> ProductDiscount | None:
    """Return discount if it applies at now, else None."""
    if discount is None or not discount.is_active(now):
        return None
    if to_decimal(discount.rule.magnitude) is None:
        return None
    return discount


# ═══════════════════════════════════════════════════════════════════════════════
# effective_price() — Live Discounted Price
# ═══════════════════════════════════════════════════════════════════════════════


def effective_price(
    base_price: Amount,
    discount: ProductDiscount | None,
    now: datetime,
) -> Money:
    """
    Live price of a product at a given instant.

    Rules:
        - no rule or expired rule → base price
        - percentage → base × (1 − magnitude/100)
        - fixed → base − magnitude
        - floored at 0, rounded half-up to 2 places

    Example:
        effective_price(Decimal("200"), ProductDiscount(Percentage(Decimal("10"))), now)
        # Decimal("180.00")
    """
    base = to_decimal(base_price)
    if base is None:
        return to_money(None)
    applied = active_discount(discount, now)
    if applied is None:
        return round_money(clamp_zero(base))
    return round_money(apply_rule(clamp_zero(base), applied.rule))


# ═══════════════════════════════════════════════════════════════════════════════
# Drift
# ═══════════════════════════════════════════════════════════════════════════════


def price_drifted(
    live: Amount,
    stored: Amount,
    epsilon: Decimal = PRICE_EPSILON,
) -> bool:
    """
    True when live and stored prices differ by at least epsilon.

    Both sides are compared at cent precision, so any one-cent change counts.
    """
    return abs(to_money(live) - to_money(stored)) >= epsilon


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "PRICE_EPSILON",
    "apply_rule",
    "active_discount",
    "effective_price",
    "price_drifted",
)
