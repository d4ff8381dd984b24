"""
Shared fixtures: a fixed clock, a seeded catalog and in-memory stores.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from datetime import datetime, timedelta, UTC
from decimal import Decimal

import pytest
from kungfu import Ok, Error

from grocer import ErrorCode, Storefront
from grocer.domain import (
    Address,
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    Product,
    Promotion,
)
from grocer.pricing import Fixed, Percentage, ProductDiscount
from grocer.settings import Settings
from grocer.store import Stores, memory_stores

NOW = datetime(2025, 3, 14, 10, 30, tzinfo=UTC)


# ═══════════════════════════════════════════════════════════════════════════════
# Clock and ids
# ═══════════════════════════════════════════════════════════════════════════════


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def sequence(prefix: str) -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


# ═══════════════════════════════════════════════════════════════════════════════
# Result helpers
# ═══════════════════════════════════════════════════════════════════════════════


def ok(result):
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise AssertionError(f"expected Ok, got {e}")


def err(result):
    match result:
        case Error(e):
            return e
        case Ok(value):
            raise AssertionError(f"expected Error, got {value!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


def make_catalog() -> list[Product]:
    return [
        Product("milk", "Milk", Decimal("60"), stock=20, category="dairy", unit="1 l"),
        Product(
            "rice",
            "Basmati Rice",
            Decimal("100"),
            stock=10,
            discount=ProductDiscount(Percentage(Decimal("20"))),
            category="staples",
            unit="1 kg",
        ),
        Product(
            "bread",
            "Bread",
            Decimal("40"),
            stock=5,
            is_promotion_eligible=False,
            category="bakery",
        ),
        Product(
            "oil",
            "Sunflower Oil",
            Decimal("180"),
            stock=8,
            discount=ProductDiscount(
                Fixed(Decimal("30")), expires_at=NOW + timedelta(days=2)
            ),
        ),
        Product("chips", "Chips", Decimal("20"), stock=50, is_available=False),
    ]


def make_promotions() -> list[Promotion]:
    return [
        Promotion(
            id="promo-save10",
            code="SAVE10",
            name="10% off",
            rule=Percentage(Decimal("10")),
            max_discount_amount=Decimal("50"),
        ),
        Promotion(
            id="promo-flat100",
            code="FLAT100",
            name="100 off above 500",
            rule=Fixed(Decimal("100")),
            min_order_value=Decimal("500"),
        ),
    ]


ADDRESS = Address(
    street="12 Park Street",
    city="Kolkata",
    state="West Bengal",
    postal_code="700016",
)


def make_order(
    order_id: str,
    user_id: str = "u1",
    placed_at: datetime = NOW,
    status: OrderStatus = OrderStatus.PLACED,
) -> Order:
    return Order(
        id=order_id,
        user_id=user_id,
        lines=(),
        subtotal=Decimal("100.00"),
        product_discounts=Decimal("0.00"),
        applied_promotions=(),
        delivery_fee=Decimal("50.00"),
        total=Decimal("150.00"),
        payment=Payment.for_method(PaymentMethod.COD),
        delivery_address=ADDRESS,
        status=status,
        placed_at=placed_at,
        updated_at=placed_at,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def stores() -> Stores:
    return memory_stores(products=make_catalog(), promotions=make_promotions())


@pytest.fixture
def shop(stores: Stores, settings: Settings, clock: FixedClock) -> Storefront:
    return Storefront(
        stores,
        settings,
        clock,
        new_line_id=sequence("line"),
        new_order_id=sequence("ORD"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Races
# ═══════════════════════════════════════════════════════════════════════════════


async def race_for_last_bread(shop: Storefront, stores: Stores) -> None:
    """Two buyers want 3 of the 5 loaves left; exactly one gets them."""
    buyers = ("u1", "u2")
    for user_id in buyers:
        ok(await shop.add_cart_line(user_id, "bread", 3))
        ok(await shop.add_cart_line(user_id, "milk", 1))

    results = await asyncio.gather(
        *(shop.place_order(u, ADDRESS, "cod", promo_code="SAVE10") for u in buyers)
    )

    winners: list[Order] = []
    losers = []
    for result in results:
        match result:
            case Ok(order):
                winners.append(order)
            case Error(e):
                losers.append(e)
    assert len(winners) == 1
    assert [e.code for e in losers] == [ErrorCode.INSUFFICIENT_STOCK]
    assert losers[0].details == {"product": "Bread", "available": 2, "requested": 3}

    winner = winners[0].user_id
    loser = next(u for u in buyers if u != winner)
    assert ok(await stores.products.get("bread")).stock == 2
    assert ok(await stores.products.get("milk")).stock == 19
    assert [o.id for o in ok(await stores.orders.list_all())] == [winners[0].id]
    promotion = ok(await stores.promotions.get("promo-save10"))
    assert promotion.used_count == 1
    assert promotion.usage_for(loser) is None
    assert len(ok(await stores.carts.get(loser)).lines) == 2
