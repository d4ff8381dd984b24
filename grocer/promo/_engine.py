"""
Promotion engine — eligibility filtering and discount computation.

Pure functions. The same checks run twice: once when listing codes a
user may apply, and again at order commit time.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Decimal

from kungfu import Result, Ok, Error

from grocer._errors import GrocerError, Errors
from grocer.domain import Cart, Product, ProductId, Promotion, UserId
from grocer.pricing import (
    Money,
    ZERO,
    HUNDRED,
    Percentage,
    Fixed,
    to_decimal,
    round_money,
    clamp_zero,
)

# ═══════════════════════════════════════════════════════════════════════════════
# Eligible Total
# ═══════════════════════════════════════════════════════════════════════════════


def promo_eligible_total(cart: Cart, products: Mapping[ProductId, Product]) -> Money:
    """
    Σ current_price × quantity over lines whose product is promotion-eligible.

    Orphaned lines contribute nothing.
    """
    total = Decimal(0)
    for line in cart.lines:
        product = products.get(line.product_id)
        if product is not None and product.is_promotion_eligible:
            total += line.current_price * line.quantity
    return round_money(total)


# ═══════════════════════════════════════════════════════════════════════════════
# Eligibility
# ═══════════════════════════════════════════════════════════════════════════════


def is_applicable(
    promotion: Promotion,
    user_id: UserId,
    eligible_total: Money,
    now: datetime,
) -> bool:
    """
    All filters at once:
        active and inside the validity window,
        min_order_value <= eligible_total,
        global cap not reached,
        per-user usage rule satisfied.
    """
    return (
        promotion.is_live(now)
        and promotion.min_order_value <= eligible_total
        and promotion.redeemable_by(user_id)
    )


def eligible_promotions(
    promotions: Iterable[Promotion],
    user_id: UserId,
    eligible_total: Money,
    now: datetime,
) -> list[Promotion]:
    return [p for p in promotions if is_applicable(p, user_id, eligible_total, now)]


def check_redeemable(
    promotion: Promotion | None,
    code: str,
    user_id: UserId,
    eligible_total: Money,
    now: datetime,
) -> Result[Promotion, GrocerError]:
    """
    Commit-time re-validation with a reason for each failure.

    Errors: PROMOTION_INVALID (missing, inactive, outside window, below
    minimum), PROMOTION_EXHAUSTED (global or per-user cap reached).
    """
    if promotion is None:
        return Error(Errors.promotion_invalid(code, "unknown code"))
    if not promotion.is_live(now):
        return Error(Errors.promotion_invalid(code, "not active"))
    if promotion.min_order_value > eligible_total:
        return Error(
            Errors.promotion_invalid(
                code, f"minimum order value is {promotion.min_order_value}"
            )
        )
    if not promotion.redeemable_by(user_id):
        return Error(Errors.promotion_exhausted(code))
    return Ok(promotion)


# ═══════════════════════════════════════════════════════════════════════════════
# Discount
# ═══════════════════════════════════════════════════════════════════════════════


def discount_amount(promotion: Promotion, eligible_total: Money) -> Money:
    """
    Percentage: eligible_total × magnitude / 100, capped by max_discount_amount.
    Fixed: the flat magnitude. The cap does not apply.

    Non-finite magnitudes yield ZERO.
    """
    magnitude = to_decimal(promotion.rule.magnitude)
    if magnitude is None or magnitude < 0:
        return ZERO
    match promotion.rule:
        case Percentage():
            amount = eligible_total * magnitude / HUNDRED
            cap = to_decimal(promotion.max_discount_amount)
            if cap is not None and amount > cap:
                amount = cap
        case Fixed():
            amount = magnitude
    return round_money(clamp_zero(amount))


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "promo_eligible_total",
    "is_applicable",
    "eligible_promotions",
    "check_redeemable",
    "discount_amount",
)
