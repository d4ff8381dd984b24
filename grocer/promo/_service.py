"""
Promotion service — listing eligible codes and promotion administration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from kungfu import Result, Ok, Error

from grocer._errors import GrocerError, Errors
from grocer._types import Clock, IdFactory, utc_now, random_id
from grocer.domain import Promotion, PromotionId, UsageType, UserId, normalize_code
from grocer.pricing import (
    DiscountKind,
    Percentage,
    Fixed,
    DiscountRule,
    to_decimal,
    to_money,
)
from grocer.promo._engine import promo_eligible_total, eligible_promotions
from grocer.store import Stores, from_store

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Draft — admin input
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PromotionDraft:
    """
    Unvalidated promotion input.

    Defaults: min_order_value 0, usage_type general, active.
    """

    code: str
    name: str
    discount_type: str
    discount_value: object
    description: str = ""
    min_order_value: object = 0
    max_discount_amount: object | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    usage_type: str = UsageType.GENERAL
    max_total_uses: int | None = None
    max_uses_per_user: int | None = None
    is_active: bool = True


def _rule(kind: str, value: object) -> Result[DiscountRule, GrocerError]:
    magnitude = to_decimal(value)  # type: ignore[arg-type]
    if magnitude is None or magnitude < 0:
        return Error(
            Errors.invalid_promotion("discount value must be a non-negative number")
        )
    match kind.strip().lower():
        case DiscountKind.PERCENTAGE:
            if magnitude > 100:
                return Error(Errors.invalid_promotion("percentage cannot exceed 100"))
            return Ok(Percentage(magnitude))
        case DiscountKind.FIXED:
            return Ok(Fixed(magnitude))
        case _:
            return Error(Errors.invalid_promotion(f"unknown discount type: {kind}"))


def build_promotion(
    draft: PromotionDraft, promotion_id: PromotionId
) -> Result[Promotion, GrocerError]:
    """
    Validate a draft into a Promotion.

    Errors: INVALID_PROMOTION (missing code/name, bad discount, bad window,
    bad usage type, negative limits).
    """
    code = normalize_code(draft.code)
    if not code or not draft.name.strip():
        return Error(Errors.invalid_promotion("code and name are required"))
    match _rule(draft.discount_type, draft.discount_value):
        case Ok(rule):
            pass
        case Error(e):
            return Error(e)
    try:
        usage_type = UsageType(draft.usage_type)
    except ValueError:
        return Error(Errors.invalid_promotion(f"unknown usage type: {draft.usage_type}"))
    if draft.valid_from and draft.valid_to and draft.valid_from > draft.valid_to:
        return Error(Errors.invalid_promotion("valid_from is after valid_to"))
    for limit in (draft.max_total_uses, draft.max_uses_per_user):
        if limit is not None and limit < 0:
            return Error(Errors.invalid_promotion("usage limits cannot be negative"))
    cap = to_decimal(draft.max_discount_amount)  # type: ignore[arg-type]
    return Ok(
        Promotion(
            id=promotion_id,
            code=code,
            name=draft.name.strip(),
            description=draft.description,
            rule=rule,
            min_order_value=to_money(draft.min_order_value),  # type: ignore[arg-type]
            max_discount_amount=to_money(cap) if cap is not None else None,
            valid_from=draft.valid_from,
            valid_to=draft.valid_to,
            usage_type=usage_type,
            max_total_uses=draft.max_total_uses,
            max_uses_per_user=draft.max_uses_per_user,
            is_active=draft.is_active,
        )
    )


# ═══════════════════════════════════════════════════════════════════════════════
# PromotionService
# ═══════════════════════════════════════════════════════════════════════════════


class PromotionService:
    def __init__(
        self,
        stores: Stores,
        clock: Clock = utc_now,
        new_id: IdFactory = random_id,
    ) -> None:
        self._stores = stores
        self._clock = clock
        self._new_id = new_id

    async def eligible_total(self, user_id: UserId) -> Result[Decimal, GrocerError]:
        """Promotion-eligible total of the user's stored cart."""
        match from_store(await self._stores.carts.get(user_id)):
            case Ok(None):
                return Ok(to_money(0))
            case Ok(cart):
                pass
            case Error(e):
                return Error(e)
        match from_store(await self._stores.products.get_many(cart.product_ids)):
            case Ok(products):
                return Ok(promo_eligible_total(cart, products))
            case Error(e):
                return Error(e)

    async def list_eligible(self, user_id: UserId) -> Result[list[Promotion], GrocerError]:
        """Promotions the user could apply to their current cart right now."""
        match await self.eligible_total(user_id):
            case Ok(total):
                pass
            case Error(e):
                return Error(e)
        match from_store(await self._stores.promotions.list_all()):
            case Ok(promotions):
                return Ok(eligible_promotions(promotions, user_id, total, self._clock()))
            case Error(e):
                return Error(e)

    async def get_by_code(self, code: str) -> Result[Promotion, GrocerError]:
        normalized = normalize_code(code)
        match from_store(await self._stores.promotions.get_by_code(normalized)):
            case Ok(None):
                return Error(Errors.promotion_not_found(normalized))
            case Ok(promotion):
                return Ok(promotion)
            case Error(e):
                return Error(e)

    async def list_all(self) -> Result[list[Promotion], GrocerError]:
        return from_store(await self._stores.promotions.list_all())

    async def create(self, draft: PromotionDraft) -> Result[Promotion, GrocerError]:
        """Errors: INVALID_PROMOTION, DUPLICATE_CODE."""
        match build_promotion(draft, self._new_id()):
            case Ok(promotion):
                pass
            case Error(e):
                return Error(e)
        match from_store(await self._stores.promotions.insert(promotion)):
            case Ok(True):
                logger.info("promotion %s created", promotion.code)
                return Ok(promotion)
            case Ok(False):
                return Error(Errors.duplicate_code(promotion.code))
            case Error(e):
                return Error(e)

    async def update(
        self, promotion_id: PromotionId, draft: PromotionDraft
    ) -> Result[Promotion, GrocerError]:
        """
        Replace a promotion's definition. Redemption counts are kept.

        Errors: PROMOTION_NOT_FOUND, INVALID_PROMOTION, DUPLICATE_CODE.
        """
        match from_store(await self._stores.promotions.get(promotion_id)):
            case Ok(None):
                return Error(Errors.promotion_not_found(promotion_id))
            case Ok(current):
                pass
            case Error(e):
                return Error(e)
        match build_promotion(draft, promotion_id):
            case Ok(promotion):
                pass
            case Error(e):
                return Error(e)
        match from_store(await self._stores.promotions.update(promotion)):
            case Ok(True):
                logger.info("promotion %s updated", promotion.code)
                return Ok(
                    replace(promotion, used_count=current.used_count, usage=current.usage)
                )
            case Ok(False):
                return Error(Errors.duplicate_code(promotion.code))
            case Error(e):
                return Error(e)

    async def set_active(
        self, promotion_id: PromotionId, active: bool
    ) -> Result[Promotion, GrocerError]:
        match from_store(await self._stores.promotions.set_active(promotion_id, active)):
            case Ok(True):
                pass
            case Ok(False):
                return Error(Errors.promotion_not_found(promotion_id))
            case Error(e):
                return Error(e)
        match from_store(await self._stores.promotions.get(promotion_id)):
            case Ok(None):
                return Error(Errors.promotion_not_found(promotion_id))
            case Ok(promotion):
                return Ok(promotion)
            case Error(e):
                return Error(e)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("PromotionDraft", "build_promotion", "PromotionService")
