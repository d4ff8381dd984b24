"""Shared infrastructure for examples."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from decimal import Decimal

from kungfu import Result, Ok, Error

from grocer import Address, Product, Promotion, Storefront
from grocer.pricing import Fixed, Percentage, ProductDiscount
from grocer.store import memory_stores


# Catalog
def catalog() -> list[Product]:
    return [
        Product("milk", "Toned Milk", Decimal("60"), stock=40, category="dairy", unit="1 l"),
        Product(
            "rice",
            "Basmati Rice",
            Decimal("120"),
            stock=15,
            discount=ProductDiscount(Percentage(Decimal("15"))),
            category="staples",
            unit="1 kg",
        ),
        Product("eggs", "Eggs", Decimal("84"), stock=3, category="dairy", unit="12 pcs"),
        Product(
            "atta",
            "Whole Wheat Atta",
            Decimal("310"),
            stock=10,
            discount=ProductDiscount(Fixed(Decimal("25"))),
            category="staples",
            unit="5 kg",
        ),
    ]


def promotions() -> list[Promotion]:
    return [
        Promotion(
            id="promo-fresh15",
            code="FRESH15",
            name="15% off groceries",
            rule=Percentage(Decimal("15")),
            max_discount_amount=Decimal("75"),
        ),
    ]


HOME = Address(
    street="4 Residency Road",
    city="Bengaluru",
    state="Karnataka",
    postal_code="560025",
    label="home",
)


def storefront() -> Storefront:
    return Storefront(memory_stores(products=catalog(), promotions=promotions()))


# Helpers
def must[T, E](result: Result[T, E]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise RuntimeError(str(e))


def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


def run(main: Callable[[], Coroutine[object, object, None]]) -> None:
    logging.basicConfig(level=logging.INFO, format="  %(name)s: %(message)s")
    asyncio.run(main())
