import asyncio
import re
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest
from kungfu import Ok, Error, LazyCoroResult

from grocer import ErrorCode, OnPending, OrderStatus, PaymentStatus, Storefront, UsageType
from grocer._errors import Errors
from grocer.checkout import CompensationError, Step, new_order_id, run_saga
from grocer.domain import Address, Promotion
from grocer.pricing import Percentage
from grocer.store import (
    MemoryCartStore,
    MemoryOrderStore,
    MemoryPromotionStore,
    StoreError,
    memory_stores,
)
from tests.conftest import (
    ADDRESS,
    err,
    make_catalog,
    make_order,
    make_promotions,
    ok,
    race_for_last_bread,
    sequence,
)


class BrokenOrderStore(MemoryOrderStore):
    async def insert(self, order):
        return Error(StoreError("disk full"))


class RacedPromotionStore(MemoryPromotionStore):
    """Another checkout took the last redemption between quote and commit."""

    async def record_usage(self, promotion_id, user_id, now):
        return Ok(False)


class RacedCartStore(MemoryCartStore):
    """The cart changed between quote and commit."""

    async def save(self, cart):
        if cart.is_empty:
            return Ok(None)
        return await super().save(cart)


async def fill(shop, user_id="u1", **quantities):
    for product_id, quantity in quantities.items():
        ok(await shop.add_cart_line(user_id, product_id, quantity))


async def stock(stores, product_id):
    return ok(await stores.products.get(product_id)).stock


def storefront(stores, clock, settings=None):
    return Storefront(
        stores,
        settings,
        clock,
        new_line_id=sequence("line"),
        new_order_id=sequence("ORD"),
    )


class TestPlaceOrder:
    async def test_places_order(self, shop, stores):
        await fill(shop, milk=2, rice=3)

        order = ok(await shop.place_order("u1", ADDRESS, "cod"))

        assert order.status == OrderStatus.PLACED
        assert order.subtotal == Decimal("360.00")
        assert order.product_discounts == Decimal("0.00")
        assert order.delivery_fee == Decimal("50.00")
        assert order.total == Decimal("410.00")
        assert order.payment.status == PaymentStatus.PENDING
        assert [(ln.name, ln.quantity, ln.price_at_purchase) for ln in order.lines] == [
            ("Milk", 2, Decimal("60.00")),
            ("Basmati Rice", 3, Decimal("80.00")),
        ]
        assert order.lines[1].discount_applied is not None

        assert await stock(stores, "milk") == 18
        assert await stock(stores, "rice") == 7
        assert ok(await stores.carts.get("u1")).is_empty
        assert ok(await shop.get_order("u1", order.id)) == order

    async def test_free_delivery_at_threshold(self, shop):
        await fill(shop, rice=5, milk=2)

        order = ok(await shop.place_order("u1", ADDRESS, "card"))

        assert order.subtotal == Decimal("520.00")
        assert order.delivery_fee == Decimal("0.00")
        assert order.total == Decimal("520.00")
        assert order.payment.status == PaymentStatus.COMPLETED

    async def test_percentage_promotion(self, shop, stores):
        await fill(shop, milk=2, rice=3)

        order = ok(await shop.place_order("u1", ADDRESS, "upi", promo_code=" save10 "))

        [applied] = order.applied_promotions
        assert applied.code == "SAVE10"
        assert applied.discount_amount == Decimal("36.00")
        assert order.total == Decimal("374.00")
        promotion = ok(await stores.promotions.get("promo-save10"))
        assert promotion.used_count == 1
        assert promotion.usage_for("u1").count == 1

    async def test_fixed_promotion_with_free_delivery(self, shop):
        await fill(shop, rice=5, milk=2)

        order = ok(await shop.place_order("u1", ADDRESS, "cod", promo_code="FLAT100"))

        assert order.promotion_discount == Decimal("100.00")
        assert order.total == Decimal("420.00")

    async def test_accepted_price_drift_is_charged(self, shop, stores):
        await fill(shop, milk=2)
        milk = ok(await stores.products.get("milk"))
        ok(await stores.products.save(replace(milk, base_price=Decimal("65"))))
        view = ok(await shop.reconcile_cart("u1"))
        ok(await shop.accept_price("u1", view.cart.lines[0].id))

        order = ok(await shop.place_order("u1", ADDRESS, "cod"))

        assert order.lines[0].price_at_purchase == Decimal("65.00")
        assert order.total == Decimal("180.00")

    def test_order_id_format(self):
        assert re.fullmatch(r"ORD-[0-9A-F]{16}", new_order_id())


class TestPreconditions:
    @pytest.mark.parametrize(
        "address, method, missing",
        [
            (None, "cod", ["delivery_address"]),
            (ADDRESS, None, ["payment_method"]),
            (ADDRESS, "cheque", ["payment_method"]),
            (Address("", "Pune", "MH", "411001"), "", ["delivery_address", "payment_method"]),
        ],
    )
    async def test_missing_fields(self, shop, address, method, missing):
        await fill(shop, milk=1)

        e = err(await shop.place_order("u1", address, method))

        assert e.code == ErrorCode.MISSING_CHECKOUT_FIELDS
        assert e.details["fields"] == missing

    async def test_no_cart(self, shop):
        e = err(await shop.place_order("u1", ADDRESS, "cod"))
        assert e.code == ErrorCode.EMPTY_CART

    async def test_empty_cart(self, shop):
        ok(await shop.create_cart("u1"))
        e = err(await shop.place_order("u1", ADDRESS, "cod"))
        assert e.code == ErrorCode.EMPTY_CART

    async def test_insufficient_stock(self, shop, stores):
        await fill(shop, milk=5, rice=1)
        milk = ok(await stores.products.get("milk"))
        ok(await stores.products.save(replace(milk, stock=2)))

        e = err(await shop.place_order("u1", ADDRESS, "cod"))

        assert e.code == ErrorCode.INSUFFICIENT_STOCK
        assert e.details == {"product": "Milk", "available": 2, "requested": 5}
        assert await stock(stores, "rice") == 10
        assert ok(await shop.list_orders("u1")) == []

    async def test_unresolved_drift(self, shop, stores):
        await fill(shop, rice=1)
        rice = ok(await stores.products.get("rice"))
        ok(await stores.products.save(replace(rice, discount=None)))

        e = err(await shop.place_order("u1", ADDRESS, "cod"))

        assert e.code == ErrorCode.DRIFT_UNRESOLVED
        assert await stock(stores, "rice") == 10

    async def test_orphaned_line(self, shop, stores):
        await fill(shop, milk=1, bread=1)
        ok(await stores.products.delete("bread"))

        e = err(await shop.place_order("u1", ADDRESS, "cod"))

        assert e.code == ErrorCode.ORPHANED_LINE
        assert e.details["product_id"] == "bread"

    @pytest.mark.parametrize("code", ["NOPE", "FLAT100"])
    async def test_invalid_promotion(self, shop, stores, code):
        await fill(shop, milk=2)

        e = err(await shop.place_order("u1", ADDRESS, "cod", promo_code=code))

        assert e.code == ErrorCode.PROMOTION_INVALID
        assert await stock(stores, "milk") == 20
        assert not ok(await stores.carts.get("u1")).is_empty

    async def test_single_use_promotion_only_once(self, clock):
        welcome = Promotion(
            id="welcome",
            code="WELCOME",
            name="Welcome",
            rule=Percentage(Decimal("5")),
            usage_type=UsageType.SINGLE_USE,
        )
        stores = memory_stores(products=make_catalog(), promotions=[welcome])
        shop = storefront(stores, clock)
        await fill(shop, milk=1)
        ok(await shop.place_order("u1", ADDRESS, "cod", promo_code="WELCOME"))
        await fill(shop, milk=1)

        e = err(await shop.place_order("u1", ADDRESS, "cod", promo_code="WELCOME"))

        assert e.code == ErrorCode.PROMOTION_EXHAUSTED


class TestQuote:
    async def test_quote_has_no_side_effects(self, shop, stores):
        await fill(shop, milk=2, rice=3)

        quote = ok(await shop.quote_checkout("u1", "SAVE10"))

        assert quote.subtotal == Decimal("360.00")
        assert quote.promotion_discount == Decimal("36.00")
        assert quote.delivery_fee == Decimal("50.00")
        assert quote.total == Decimal("374.00")
        assert ok(await stores.promotions.get("promo-save10")).used_count == 0
        assert await stock(stores, "milk") == 20

    async def test_quote_without_code(self, shop):
        await fill(shop, milk=1)
        quote = ok(await shop.quote_checkout("u1"))
        assert quote.promo is None
        assert quote.total == Decimal("110.00")


class TestRollback:
    async def test_failed_insert_restores_stock_and_usage(self, stores, clock):
        broken = replace(stores, orders=BrokenOrderStore())
        shop = storefront(broken, clock)
        await fill(shop, milk=2, rice=3)

        e = err(await shop.place_order("u1", ADDRESS, "cod", promo_code="SAVE10"))

        assert e.code == ErrorCode.STORE_ERROR
        assert await stock(stores, "milk") == 20
        assert await stock(stores, "rice") == 10
        promotion = ok(await stores.promotions.get("promo-save10"))
        assert promotion.used_count == 0
        assert promotion.usage_for("u1") is None
        assert len(ok(await stores.carts.get("u1")).lines) == 2

    async def test_promotion_race_restores_stock(self, stores, clock):
        raced = replace(stores, promotions=RacedPromotionStore(make_promotions()))
        shop = storefront(raced, clock)
        await fill(shop, milk=2)

        e = err(await shop.place_order("u1", ADDRESS, "cod", promo_code="SAVE10"))

        assert e.code == ErrorCode.PROMOTION_EXHAUSTED
        assert await stock(stores, "milk") == 20

    async def test_cart_race_removes_order(self, stores, clock):
        raced = replace(stores, carts=RacedCartStore())
        shop = storefront(raced, clock)
        await fill(shop, milk=2)

        e = err(await shop.place_order("u1", ADDRESS, "cod", promo_code="SAVE10"))

        assert e.code == ErrorCode.CART_CONFLICT
        assert ok(await stores.orders.list_all()) == []
        assert await stock(stores, "milk") == 20
        assert ok(await stores.promotions.get("promo-save10")).used_count == 0

    async def test_colliding_order_id_keeps_existing_order(self, stores, clock):
        shop = Storefront(
            stores, None, clock, new_line_id=sequence("line"), new_order_id=lambda: "ORD-1"
        )
        await fill(shop, "u1", milk=2)
        await fill(shop, "u2", rice=1)
        first = ok(await shop.place_order("u1", ADDRESS, "cod"))

        e = err(await shop.place_order("u2", ADDRESS, "cod"))

        assert e.code == ErrorCode.STORE_ERROR
        assert ok(await stores.orders.get("ORD-1")) == first
        assert await stock(stores, "rice") == 10
        assert len(ok(await stores.carts.get("u2")).lines) == 1


class TestStockRace:
    async def test_last_units_go_to_one_buyer(self, shop, stores):
        await race_for_last_bread(shop, stores)


class TestSaga:
    async def test_compensations_run_newest_first(self):
        undone = []

        def step(name, fail=False):
            async def action():
                return Error(Errors.store("down")) if fail else Ok(name)

            async def compensate(value):
                undone.append(value)

            return Step(name, LazyCoroResult(action), compensate)

        failure = err(await run_saga([step("a"), step("b"), step("c", fail=True)]))

        assert undone == ["b", "a"]
        assert failure.step_failed == "c"
        assert failure.compensators_run == 2
        assert failure.rollback_complete

    async def test_failed_compensation_is_counted(self):

        async def reserve():
            return Ok("reserved")

        async def refuse():
            return Error(Errors.store("down"))

        async def release(value):
            raise CompensationError("still locked")

        failure = err(
            await run_saga(
                [
                    Step("reserve", LazyCoroResult(reserve), release),
                    Step("pay", LazyCoroResult(refuse)),
                ]
            )
        )

        assert failure.compensators_failed == 1
        assert not failure.rollback_complete

    async def test_success_report(self):

        async def action():
            return Ok(1)

        report = ok(await run_saga([Step("one", LazyCoroResult(action))]))

        assert report.steps_executed == 1
        assert report.compensators_recorded == 0


class TestDuplicateSubmission:
    async def test_same_request_key_places_one_order(self, shop, stores):
        await fill(shop, milk=2)

        first = ok(await shop.place_order("u1", ADDRESS, "cod", request_key="click-1"))
        second = ok(await shop.place_order("u1", ADDRESS, "cod", request_key="click-1"))

        assert first == second
        assert len(ok(await shop.list_orders("u1"))) == 1
        assert await stock(stores, "milk") == 18

    async def test_concurrent_double_click(self, shop, stores):
        await fill(shop, milk=2)

        results = await asyncio.gather(
            shop.place_order("u1", ADDRESS, "cod"),
            shop.place_order("u1", ADDRESS, "cod"),
        )

        placed = set()
        for result in results:
            match result:
                case Ok(order):
                    placed.add(order.id)
                case Error(e):
                    assert e.code in {ErrorCode.EMPTY_CART, ErrorCode.CHECKOUT_IN_PROGRESS}
        assert len(placed) == 1
        assert len(ok(await shop.list_orders("u1"))) == 1
        assert await stock(stores, "milk") == 18

    async def test_pending_attempt_fails_fast(self, shop, stores, clock):
        await fill(shop, milk=2)
        ok(await stores.attempts.begin("checkout:u1:k1", clock(), None))

        e = err(await shop.place_order("u1", ADDRESS, "cod", request_key="k1"))

        assert e.code == ErrorCode.CHECKOUT_IN_PROGRESS
        assert await stock(stores, "milk") == 20

    async def test_pending_attempt_waited_for(self, stores, clock, settings):
        waiting = settings.with_checkout(OnPending.WAIT, wait_timeout=timedelta(seconds=2))
        shop = storefront(stores, clock, waiting)
        await fill(shop, milk=2)
        key = "checkout:u1:k1"
        ok(await stores.attempts.begin(key, clock(), None))
        ok(await stores.orders.insert(make_order("ORD-EARLIER")))

        async def finish_other():
            await asyncio.sleep(0.1)
            ok(await stores.attempts.complete(key, "ORD-EARLIER", clock(), None))

        finisher = asyncio.create_task(finish_other())
        order = ok(await shop.place_order("u1", ADDRESS, "cod", request_key="k1"))
        await finisher

        assert order.id == "ORD-EARLIER"
        assert await stock(stores, "milk") == 20

    async def test_wait_times_out(self, stores, clock, settings):
        waiting = settings.with_checkout(
            OnPending.WAIT, wait_timeout=timedelta(milliseconds=150)
        )
        shop = storefront(stores, clock, waiting)
        await fill(shop, milk=2)
        ok(await stores.attempts.begin("checkout:u1:k1", clock(), None))

        e = err(await shop.place_order("u1", ADDRESS, "cod", request_key="k1"))

        assert e.code == ErrorCode.CHECKOUT_IN_PROGRESS

    async def test_failed_attempt_can_be_retried(self, shop, stores):
        await fill(shop, milk=2)
        milk = ok(await stores.products.get("milk"))
        ok(await stores.products.save(replace(milk, base_price=Decimal("62"))))

        e = err(await shop.place_order("u1", ADDRESS, "cod", request_key="k1"))
        assert e.code == ErrorCode.DRIFT_UNRESOLVED

        cart = ok(await stores.carts.get("u1"))
        ok(await shop.accept_price("u1", cart.lines[0].id))
        order = ok(await shop.place_order("u1", ADDRESS, "cod", request_key="k1"))

        assert order.total == Decimal("174.00")

    async def test_expired_attempt_is_ignored(self, shop, stores, clock):
        await fill(shop, milk=2)
        ok(await stores.attempts.begin("checkout:u1:k1", clock(), timedelta(minutes=1)))
        clock.advance(minutes=2)

        ok(await shop.place_order("u1", ADDRESS, "cod", request_key="k1"))


class TestPromotionCap:
    async def test_global_cap_holds_across_users(self, clock):
        last_one = Promotion(
            id="last",
            code="LASTONE",
            name="Last one",
            rule=Percentage(Decimal("50")),
            max_total_uses=1,
        )
        stores = memory_stores(products=make_catalog(), promotions=[last_one])
        shop = storefront(stores, clock)
        users = ["u1", "u2", "u3"]
        for user_id in users:
            await fill(shop, user_id, milk=1)

        results = await asyncio.gather(
            *(shop.place_order(u, ADDRESS, "cod", promo_code="LASTONE") for u in users)
        )

        assert sum(isinstance(r, Ok) for r in results) == 1
        assert ok(await stores.promotions.get("last")).used_count == 1
        for result in results:
            match result:
                case Error(e):
                    assert e.code == ErrorCode.PROMOTION_EXHAUSTED
                case Ok(_):
                    pass
