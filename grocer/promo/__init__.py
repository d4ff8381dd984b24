"""
Promo — promotion eligibility, discount computation and administration.

    from grocer import promo as PR

    total = PR.promo_eligible_total(cart, products)
    codes = PR.eligible_promotions(promotions, user_id, total, now)
    off = PR.discount_amount(codes[0], total)
"""

from __future__ import annotations

from grocer.promo._engine import (
    promo_eligible_total,
    is_applicable,
    eligible_promotions,
    check_redeemable,
    discount_amount,
)
from grocer.promo._service import PromotionDraft, build_promotion, PromotionService

__all__ = (
    "promo_eligible_total",
    "is_applicable",
    "eligible_promotions",
    "check_redeemable",
    "discount_amount",
    "PromotionDraft",
    "build_promotion",
    "PromotionService",
)
