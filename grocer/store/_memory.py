"""
In-memory stores — for tests and single-process deployments.

Each store guards its dict with one asyncio.Lock, so every conditional
write (check + update) is atomic with respect to other coroutines.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timedelta

from kungfu import Result, Ok, Error

from grocer.domain import (
    Product,
    ProductId,
    Promotion,
    PromotionId,
    PromotionUsage,
    Cart,
    UserId,
    Order,
    OrderId,
    OrderStatus,
)
from grocer.store._protocols import (
    StoreError,
    Attempt,
    AttemptState,
    Stores,
)

# ═══════════════════════════════════════════════════════════════════════════════
# Products
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryProductStore:
    """
    Example:
        products = MemoryProductStore([Product("p1", "Milk", Decimal("60"), stock=10)])
        await products.decrement_stock("p1", 3)  # Ok(True)
    """

    def __init__(self, products: Sequence[Product] = ()) -> None:
        self._data: dict[ProductId, Product] = {p.id: p for p in products}
        self._lock = asyncio.Lock()

    async def get(self, product_id: ProductId) -> Result[Product | None, StoreError]:
        async with self._lock:
            return Ok(self._data.get(product_id))

    async def get_many(
        self, product_ids: Sequence[ProductId]
    ) -> Result[dict[ProductId, Product], StoreError]:
        async with self._lock:
            return Ok({pid: self._data[pid] for pid in product_ids if pid in self._data})

    async def save(self, product: Product) -> Result[None, StoreError]:
        async with self._lock:
            self._data[product.id] = product
            return Ok(None)

    async def delete(self, product_id: ProductId) -> Result[bool, StoreError]:
        async with self._lock:
            return Ok(self._data.pop(product_id, None) is not None)

    async def decrement_stock(
        self, product_id: ProductId, quantity: int
    ) -> Result[bool, StoreError]:
        async with self._lock:
            product = self._data.get(product_id)
            if product is None or product.stock < quantity:
                return Ok(False)
            self._data[product_id] = replace(product, stock=product.stock - quantity)
            return Ok(True)

    async def restock(
        self, product_id: ProductId, quantity: int
    ) -> Result[None, StoreError]:
        async with self._lock:
            product = self._data.get(product_id)
            if product is not None:
                self._data[product_id] = replace(product, stock=product.stock + quantity)
            return Ok(None)


# ═══════════════════════════════════════════════════════════════════════════════
# Promotions
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryPromotionStore:
    def __init__(self, promotions: Sequence[Promotion] = ()) -> None:
        self._data: dict[PromotionId, Promotion] = {p.id: p for p in promotions}
        self._lock = asyncio.Lock()

    async def get(
        self, promotion_id: PromotionId
    ) -> Result[Promotion | None, StoreError]:
        async with self._lock:
            return Ok(self._data.get(promotion_id))

    async def get_by_code(self, code: str) -> Result[Promotion | None, StoreError]:
        async with self._lock:
            return Ok(next((p for p in self._data.values() if p.code == code), None))

    async def list_all(self) -> Result[list[Promotion], StoreError]:
        async with self._lock:
            return Ok(list(self._data.values()))

    async def insert(self, promotion: Promotion) -> Result[bool, StoreError]:
        async with self._lock:
            if any(p.code == promotion.code for p in self._data.values()):
                return Ok(False)
            self._data[promotion.id] = promotion
            return Ok(True)

    async def update(self, promotion: Promotion) -> Result[bool, StoreError]:
        async with self._lock:
            current = self._data.get(promotion.id)
            if current is None:
                return Ok(False)
            if any(
                p.code == promotion.code and p.id != promotion.id
                for p in self._data.values()
            ):
                return Ok(False)
            self._data[promotion.id] = replace(
                promotion, used_count=current.used_count, usage=current.usage
            )
            return Ok(True)

    async def set_active(
        self, promotion_id: PromotionId, active: bool
    ) -> Result[bool, StoreError]:
        async with self._lock:
            promotion = self._data.get(promotion_id)
            if promotion is None:
                return Ok(False)
            self._data[promotion_id] = replace(promotion, is_active=active)
            return Ok(True)

    async def record_usage(
        self, promotion_id: PromotionId, user_id: UserId, now: datetime
    ) -> Result[bool, StoreError]:
        async with self._lock:
            promotion = self._data.get(promotion_id)
            if promotion is None or not promotion.redeemable_by(user_id):
                return Ok(False)
            previous = promotion.usage_for(user_id)
            count = previous.count if previous is not None else 0
            usage = {**promotion.usage, user_id: PromotionUsage(count + 1, now)}
            self._data[promotion_id] = replace(
                promotion, used_count=promotion.used_count + 1, usage=usage
            )
            return Ok(True)

    async def revert_usage(
        self, promotion_id: PromotionId, user_id: UserId
    ) -> Result[None, StoreError]:
        async with self._lock:
            promotion = self._data.get(promotion_id)
            if promotion is None:
                return Ok(None)
            usage = dict(promotion.usage)
            previous = usage.get(user_id)
            if previous is not None:
                if previous.count <= 1:
                    del usage[user_id]
                else:
                    usage[user_id] = replace(previous, count=previous.count - 1)
            self._data[promotion_id] = replace(
                promotion, used_count=max(promotion.used_count - 1, 0), usage=usage
            )
            return Ok(None)


# ═══════════════════════════════════════════════════════════════════════════════
# Carts
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryCartStore:
    def __init__(self, carts: Sequence[Cart] = ()) -> None:
        self._data: dict[UserId, Cart] = {c.user_id: c for c in carts}
        self._lock = asyncio.Lock()

    async def get(self, user_id: UserId) -> Result[Cart | None, StoreError]:
        async with self._lock:
            return Ok(self._data.get(user_id))

    async def save(self, cart: Cart) -> Result[Cart | None, StoreError]:
        async with self._lock:
            current = self._data.get(cart.user_id)
            stored_version = current.version if current is not None else 0
            if cart.version != stored_version:
                return Ok(None)
            saved = replace(cart, version=cart.version + 1)
            self._data[cart.user_id] = saved
            return Ok(saved)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryOrderStore:
    def __init__(self) -> None:
        self._data: dict[OrderId, Order] = {}
        self._lock = asyncio.Lock()

    async def insert(self, order: Order) -> Result[None, StoreError]:
        async with self._lock:
            if order.id in self._data:
                return Error(StoreError(f"duplicate order id {order.id}"))
            self._data[order.id] = order
            return Ok(None)

    async def get(self, order_id: OrderId) -> Result[Order | None, StoreError]:
        async with self._lock:
            return Ok(self._data.get(order_id))

    async def list_for_user(self, user_id: UserId) -> Result[list[Order], StoreError]:
        async with self._lock:
            orders = [o for o in self._data.values() if o.user_id == user_id]
        return Ok(sorted(orders, key=lambda o: o.placed_at, reverse=True))

    async def list_all(self) -> Result[list[Order], StoreError]:
        async with self._lock:
            orders = list(self._data.values())
        return Ok(sorted(orders, key=lambda o: o.placed_at, reverse=True))

    async def replace_if(
        self, order: Order, expected: OrderStatus
    ) -> Result[bool, StoreError]:
        async with self._lock:
            current = self._data.get(order.id)
            if current is None or current.status != expected:
                return Ok(False)
            self._data[order.id] = order
            return Ok(True)

    async def delete(self, order_id: OrderId) -> Result[bool, StoreError]:
        async with self._lock:
            return Ok(self._data.pop(order_id, None) is not None)


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout Attempts
# ═══════════════════════════════════════════════════════════════════════════════


def _expiry(now: datetime, ttl: timedelta | None) -> datetime | None:
    return now + ttl if ttl is not None else None


class MemoryAttemptStore:
    def __init__(self) -> None:
        self._data: dict[str, Attempt] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str, now: datetime) -> Result[Attempt | None, StoreError]:
        async with self._lock:
            attempt = self._data.get(key)
            if attempt is not None and attempt.is_expired(now):
                del self._data[key]
                return Ok(None)
            return Ok(attempt)

    async def begin(
        self, key: str, now: datetime, ttl: timedelta | None
    ) -> Result[bool, StoreError]:
        async with self._lock:
            existing = self._data.get(key)
            if existing is not None and not existing.is_expired(now):
                return Ok(False)
            self._data[key] = Attempt(
                key=key,
                state=AttemptState.PENDING,
                order_id=None,
                error_code=None,
                created_at=now,
                expires_at=_expiry(now, ttl),
            )
            return Ok(True)

    async def complete(
        self, key: str, order_id: OrderId, now: datetime, ttl: timedelta | None
    ) -> Result[None, StoreError]:
        async with self._lock:
            existing = self._data.get(key)
            self._data[key] = Attempt(
                key=key,
                state=AttemptState.COMPLETED,
                order_id=order_id,
                error_code=None,
                created_at=existing.created_at if existing is not None else now,
                expires_at=_expiry(now, ttl),
            )
            return Ok(None)

    async def fail(
        self, key: str, error_code: str, now: datetime, ttl: timedelta | None
    ) -> Result[None, StoreError]:
        async with self._lock:
            existing = self._data.get(key)
            self._data[key] = Attempt(
                key=key,
                state=AttemptState.FAILED,
                order_id=None,
                error_code=error_code,
                created_at=existing.created_at if existing is not None else now,
                expires_at=_expiry(now, ttl),
            )
            return Ok(None)

    async def delete(self, key: str) -> Result[bool, StoreError]:
        async with self._lock:
            return Ok(self._data.pop(key, None) is not None)


# ═══════════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════════


def memory_stores(
    products: Sequence[Product] = (),
    promotions: Sequence[Promotion] = (),
    carts: Sequence[Cart] = (),
) -> Stores:
    """
    Fresh in-memory backend.

        stores = memory_stores(products=[milk, bread])
    """
    return Stores(
        products=MemoryProductStore(products),
        promotions=MemoryPromotionStore(promotions),
        carts=MemoryCartStore(carts),
        orders=MemoryOrderStore(),
        attempts=MemoryAttemptStore(),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "MemoryProductStore",
    "MemoryPromotionStore",
    "MemoryCartStore",
    "MemoryOrderStore",
    "MemoryAttemptStore",
    "memory_stores",
)
