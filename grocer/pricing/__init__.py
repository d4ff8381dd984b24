"""
Pricing — money rounding and discount calculation.

    from grocer import pricing as P

    price = P.effective_price(product.base_price, product.discount, now)
    drifted = P.price_drifted(price, line.current_price)
"""

from __future__ import annotations

from grocer.pricing._money import (
    Money,
    Amount,
    ZERO,
    CENT,
    HUNDRED,
    to_decimal,
    is_finite,
    round_money,
    to_money,
    clamp_zero,
)
from grocer.pricing._rules import (
    DiscountKind,
    Percentage,
    Fixed,
    DiscountRule,
    rule_of,
    ProductDiscount,
)
from grocer.pricing._calc import (
    PRICE_EPSILON,
    apply_rule,
    active_discount,
    effective_price,
    price_drifted,
)

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
    "DiscountKind",
    "Percentage",
    "Fixed",
    "DiscountRule",
    "rule_of",
    "ProductDiscount",
    "PRICE_EPSILON",
    "apply_rule",
    "active_discount",
    "effective_price",
    "price_drifted",
)
