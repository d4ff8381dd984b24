from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from grocer import ErrorCode, Storefront, UsageType
from grocer.cart import add_line
from grocer.domain import Cart, Promotion, PromotionUsage
from grocer.pricing import Fixed, Percentage, rule_of
from grocer.promo import (
    PromotionDraft,
    check_redeemable,
    discount_amount,
    eligible_promotions,
    is_applicable,
    promo_eligible_total,
)
from grocer.store import memory_stores
from tests.conftest import NOW, err, make_catalog, make_promotions, ok


def promo(**overrides) -> Promotion:
    base = Promotion(id="p", code="CODE", name="Code", rule=Percentage(Decimal("10")))
    return replace(base, **overrides)


class TestDiscountAmount:
    def test_percentage_capped(self):
        save10 = promo(max_discount_amount=Decimal("50"))
        assert discount_amount(save10, Decimal("1000")) == Decimal("50.00")

    def test_percentage_under_cap(self):
        save10 = promo(max_discount_amount=Decimal("50"))
        assert discount_amount(save10, Decimal("333")) == Decimal("33.30")

    def test_fixed_ignores_cap(self):
        flat = promo(rule=Fixed(Decimal("75")), max_discount_amount=Decimal("50"))
        assert discount_amount(flat, Decimal("1000")) == Decimal("75.00")

    def test_invalid_magnitude_is_zero(self):
        broken = promo(rule=rule_of("percentage", "n/a"))
        assert discount_amount(broken, Decimal("1000")) == Decimal("0.00")


class TestEligibleTotal:
    def test_skips_ineligible_and_orphaned_products(self):
        products = {p.id: p for p in make_catalog()}
        cart = Cart.empty("u1")
        cart = ok(add_line(cart, products["milk"], "milk", 2, NOW, "l1"))
        cart = ok(add_line(cart, products["bread"], "bread", 3, NOW, "l2"))
        cart = ok(add_line(cart, products["rice"], "rice", 1, NOW, "l3"))
        del products["rice"]

        assert promo_eligible_total(cart, products) == Decimal("120.00")


class TestApplicability:
    def test_inactive(self):
        assert not is_applicable(promo(is_active=False), "u1", Decimal("100"), NOW)

    def test_outside_window(self):
        early = promo(valid_from=NOW + timedelta(days=1))
        late = promo(valid_to=NOW - timedelta(seconds=1))
        assert not is_applicable(early, "u1", Decimal("100"), NOW)
        assert not is_applicable(late, "u1", Decimal("100"), NOW)

    def test_window_bounds_inclusive(self):
        exact = promo(valid_from=NOW, valid_to=NOW)
        assert is_applicable(exact, "u1", Decimal("100"), NOW)

    def test_minimum_order_value(self):
        minimum = promo(min_order_value=Decimal("500"))
        assert not is_applicable(minimum, "u1", Decimal("499.99"), NOW)
        assert is_applicable(minimum, "u1", Decimal("500"), NOW)

    def test_single_use_already_used(self):
        used = promo(
            usage_type=UsageType.SINGLE_USE,
            usage={"u1": PromotionUsage(1, NOW)},
            used_count=1,
        )
        assert eligible_promotions([used], "u1", Decimal("100"), NOW) == []
        assert eligible_promotions([used], "u2", Decimal("100"), NOW) == [used]

    def test_multi_use_limit(self):
        twice = promo(
            usage_type=UsageType.MULTI_USE,
            max_uses_per_user=2,
            usage={"u1": PromotionUsage(2, NOW), "u2": PromotionUsage(1, NOW)},
        )
        assert not is_applicable(twice, "u1", Decimal("100"), NOW)
        assert is_applicable(twice, "u2", Decimal("100"), NOW)

    def test_multi_use_without_limit_is_unlimited(self):
        many = promo(usage_type=UsageType.MULTI_USE, usage={"u1": PromotionUsage(40)})
        assert is_applicable(many, "u1", Decimal("100"), NOW)

    def test_global_cap_applies_to_general(self):
        capped = promo(max_total_uses=3, used_count=3)
        assert not is_applicable(capped, "u1", Decimal("100"), NOW)


class TestCheckRedeemable:
    def test_unknown_code(self):
        e = err(check_redeemable(None, "NOPE", "u1", Decimal("100"), NOW))
        assert e.code == ErrorCode.PROMOTION_INVALID

    def test_below_minimum(self):
        minimum = promo(min_order_value=Decimal("500"))
        e = err(check_redeemable(minimum, "CODE", "u1", Decimal("10"), NOW))
        assert e.code == ErrorCode.PROMOTION_INVALID

    def test_cap_reached(self):
        capped = promo(max_total_uses=1, used_count=1)
        e = err(check_redeemable(capped, "CODE", "u1", Decimal("10"), NOW))
        assert e.code == ErrorCode.PROMOTION_EXHAUSTED

    def test_redeemable(self):
        assert ok(check_redeemable(promo(), "CODE", "u1", Decimal("10"), NOW)).id == "p"


class TestListEligible:
    async def test_filters_by_cart(self, shop):
        ok(await shop.add_cart_line("u1", "milk", 5))

        codes = [p.code for p in ok(await shop.list_eligible_promotions("u1"))]

        assert codes == ["SAVE10"]

    async def test_large_cart_unlocks_minimum(self, shop):
        ok(await shop.add_cart_line("u1", "milk", 9))

        codes = {p.code for p in ok(await shop.list_eligible_promotions("u1"))}

        assert codes == {"SAVE10", "FLAT100"}

    async def test_ineligible_products_do_not_count(self, shop):
        ok(await shop.add_cart_line("u1", "milk", 7))
        ok(await shop.add_cart_line("u1", "bread", 5))

        codes = {p.code for p in ok(await shop.list_eligible_promotions("u1"))}

        assert codes == {"SAVE10"}

    async def test_used_single_use_excluded(self, clock):
        once = promo(
            id="once",
            code="WELCOME",
            usage_type=UsageType.SINGLE_USE,
            usage={"u1": PromotionUsage(1, clock())},
            used_count=1,
        )
        stores = memory_stores(products=make_catalog(), promotions=[once])
        shop = Storefront(stores, clock=clock)
        ok(await shop.add_cart_line("u1", "milk", 1))
        ok(await shop.add_cart_line("u2", "milk", 1))

        assert ok(await shop.list_eligible_promotions("u1")) == []
        assert [p.code for p in ok(await shop.list_eligible_promotions("u2"))] == ["WELCOME"]


class TestAdmin:
    async def test_create_normalises_code(self, shop):
        draft = PromotionDraft(
            code="  summer20 ",
            name="Summer",
            discount_type="Percentage",
            discount_value="20",
            max_discount_amount="150",
        )

        created = ok(await shop.create_promotion(draft))

        assert created.code == "SUMMER20"
        assert created.rule == Percentage(Decimal("20"))
        assert created.max_discount_amount == Decimal("150.00")
        assert ok(await shop.promotions.get_by_code("summer20")).id == created.id

    async def test_duplicate_code(self, shop):
        draft = PromotionDraft(
            code="save10", name="Again", discount_type="fixed", discount_value=5
        )
        e = err(await shop.create_promotion(draft))
        assert e.code == ErrorCode.DUPLICATE_CODE

    @pytest.mark.parametrize(
        "overrides",
        [
            {"discount_type": "bogo"},
            {"discount_value": "-5"},
            {"discount_value": "abc"},
            {"discount_type": "percentage", "discount_value": 120},
            {"code": "   "},
            {"usage_type": "weekly"},
            {"max_total_uses": -1},
            {"valid_from": NOW, "valid_to": NOW - timedelta(days=1)},
        ],
    )
    async def test_invalid_drafts(self, shop, overrides):
        fields = {"code": "NEW", "name": "New", "discount_type": "fixed", "discount_value": 10}
        e = err(await shop.create_promotion(PromotionDraft(**{**fields, **overrides})))
        assert e.code == ErrorCode.INVALID_PROMOTION

    async def test_set_active(self, shop):
        paused = ok(await shop.set_promotion_active("promo-save10", False))
        assert not paused.is_active
        ok(await shop.add_cart_line("u1", "milk", 5))
        assert ok(await shop.list_eligible_promotions("u1")) == []

    async def test_set_active_unknown(self, shop):
        e = err(await shop.set_promotion_active("nope", True))
        assert e.code == ErrorCode.PROMOTION_NOT_FOUND

    async def test_get_by_code_unknown(self, shop):
        e = err(await shop.promotions.get_by_code("missing"))
        assert e.code == ErrorCode.PROMOTION_NOT_FOUND

    async def test_list_all(self, shop):
        codes = {p.code for p in ok(await shop.promotions.list_all())}
        assert codes == {p.code for p in make_promotions()}

    async def test_update_keeps_redemptions(self, shop, stores):
        ok(await stores.promotions.record_usage("promo-save10", "u1", NOW))
        draft = PromotionDraft(
            code="save12", name="12% off", discount_type="percentage", discount_value=12
        )

        updated = ok(await shop.update_promotion("promo-save10", draft))

        assert updated.code == "SAVE12"
        assert updated.rule == Percentage(Decimal("12"))
        assert updated.max_discount_amount is None
        assert updated.used_count == 1
        assert ok(await stores.promotions.get("promo-save10")) == updated
        assert ok(await shop.promotions.get_by_code("save12")).id == "promo-save10"

    async def test_update_errors(self, shop):
        valid = PromotionDraft(
            code="FLAT100", name="Clash", discount_type="fixed", discount_value=5
        )
        assert err(await shop.update_promotion("promo-save10", valid)).code == (
            ErrorCode.DUPLICATE_CODE
        )
        assert err(await shop.update_promotion("nope", valid)).code == (
            ErrorCode.PROMOTION_NOT_FOUND
        )
        bad = replace(valid, code="NEW", discount_type="bogo")
        assert err(await shop.update_promotion("promo-save10", bad)).code == (
            ErrorCode.INVALID_PROMOTION
        )
