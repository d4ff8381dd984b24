"""
Store protocols — typed, Result-based persistence seams.

Every method returns Result[..., StoreError]. Conditional writes
(stock decrement, promotion usage, cart save) report a lost race
as Ok(False) / Ok(None) rather than an error.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Protocol

from kungfu import Result, Ok, Error

from grocer._errors import GrocerError, Errors

from grocer.domain import (
    Product,
    ProductId,
    Promotion,
    PromotionId,
    Cart,
    UserId,
    Order,
    OrderId,
    OrderStatus,
)

# ═══════════════════════════════════════════════════════════════════════════════
# Store Error
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class StoreError:
    """Storage operation error."""

    message: str
    cause: Exception | None = None


def from_store[T](result: Result[T, StoreError]) -> Result[T, GrocerError]:
    """
    Lift a store result into the service error space.

        match from_store(await stores.carts.get(user_id)):
            case Ok(cart): ...
            case Error(e): return Error(e)  # UNAVAILABLE / STORE_ERROR
    """
    match result:
        case Ok(value):
            return Ok(value)
        case Error(e):
            return Error(Errors.store(e.message))


# ═══════════════════════════════════════════════════════════════════════════════
# Products
# ═══════════════════════════════════════════════════════════════════════════════


class ProductStore(Protocol):
    async def get(self, product_id: ProductId) -> Result[Product | None, StoreError]:
        """Returns Ok(None) if not found."""
        ...

    async def get_many(
        self, product_ids: Sequence[ProductId]
    ) -> Result[dict[ProductId, Product], StoreError]:
        """Missing ids are simply absent from the mapping."""
        ...

    async def save(self, product: Product) -> Result[None, StoreError]:
        """Insert or replace."""
        ...

    async def delete(self, product_id: ProductId) -> Result[bool, StoreError]:
        """Returns Ok(True) if it existed. Cart lines referencing it become orphaned."""
        ...

    async def decrement_stock(
        self, product_id: ProductId, quantity: int
    ) -> Result[bool, StoreError]:
        """
        Atomically subtract quantity if stock >= quantity.

        Returns Ok(True) if decremented, Ok(False) if stock was short
        or the product is gone.
        """
        ...

    async def restock(
        self, product_id: ProductId, quantity: int
    ) -> Result[None, StoreError]:
        """Add quantity back."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Promotions
# ═══════════════════════════════════════════════════════════════════════════════


class PromotionStore(Protocol):
    async def get(
        self, promotion_id: PromotionId
    ) -> Result[Promotion | None, StoreError]: ...

    async def get_by_code(self, code: str) -> Result[Promotion | None, StoreError]:
        """code must already be normalised."""
        ...

    async def list_all(self) -> Result[list[Promotion], StoreError]: ...

    async def insert(self, promotion: Promotion) -> Result[bool, StoreError]:
        """Returns Ok(False) if the code is taken."""
        ...

    async def update(self, promotion: Promotion) -> Result[bool, StoreError]:
        """
        Replace the definition; used_count and per-user usage are kept.
        Returns Ok(False) if not found or the code belongs to another promotion.
        """
        ...

    async def set_active(
        self, promotion_id: PromotionId, active: bool
    ) -> Result[bool, StoreError]:
        """Returns Ok(False) if not found."""
        ...

    async def record_usage(
        self, promotion_id: PromotionId, user_id: UserId, now: datetime
    ) -> Result[bool, StoreError]:
        """
        Atomically count one redemption.

        Re-checks the global cap and the per-user limit of the usage type
        in the same critical section as the increment. Returns Ok(False)
        if either cap would be exceeded.
        """
        ...

    async def revert_usage(
        self, promotion_id: PromotionId, user_id: UserId
    ) -> Result[None, StoreError]:
        """Undo one record_usage()."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Carts
# ═══════════════════════════════════════════════════════════════════════════════


class CartStore(Protocol):
    async def get(self, user_id: UserId) -> Result[Cart | None, StoreError]: ...

    async def save(self, cart: Cart) -> Result[Cart | None, StoreError]:
        """
        Optimistic save.

        cart.version must equal the stored version (0 for a new cart).
        Returns Ok(saved) with version + 1, or Ok(None) on version conflict.
        """
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStore(Protocol):
    async def insert(self, order: Order) -> Result[None, StoreError]:
        """Error on a duplicate id; the existing order is untouched."""
        ...

    async def get(self, order_id: OrderId) -> Result[Order | None, StoreError]: ...

    async def list_for_user(self, user_id: UserId) -> Result[list[Order], StoreError]:
        """Newest first."""
        ...

    async def list_all(self) -> Result[list[Order], StoreError]:
        """Newest first."""
        ...

    async def replace_if(
        self, order: Order, expected: OrderStatus
    ) -> Result[bool, StoreError]:
        """Replace the stored order only if its status is still expected."""
        ...

    async def delete(self, order_id: OrderId) -> Result[bool, StoreError]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout Attempts
# ═══════════════════════════════════════════════════════════════════════════════


class AttemptState(StrEnum):
    """
    Lifecycle:
        PENDING → COMPLETED (order placed)
                → FAILED (placement rejected)
                → (expired/deleted)
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Attempt:
    """One checkout submission, keyed by user and request key."""

    key: str
    state: AttemptState
    order_id: OrderId | None
    error_code: str | None
    created_at: datetime
    expires_at: datetime | None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class AttemptStore(Protocol):
    async def get(self, key: str, now: datetime) -> Result[Attempt | None, StoreError]:
        """Expired attempts read as Ok(None)."""
        ...

    async def begin(
        self, key: str, now: datetime, ttl: timedelta | None
    ) -> Result[bool, StoreError]:
        """
        Atomically create a pending attempt.

        Returns Ok(True) if created, Ok(False) if a live attempt exists.
        """
        ...

    async def complete(
        self, key: str, order_id: OrderId, now: datetime, ttl: timedelta | None
    ) -> Result[None, StoreError]: ...

    async def fail(
        self, key: str, error_code: str, now: datetime, ttl: timedelta | None
    ) -> Result[None, StoreError]: ...

    async def delete(self, key: str) -> Result[bool, StoreError]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Stores — one backend's full set
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Stores:
    products: ProductStore
    promotions: PromotionStore
    carts: CartStore
    orders: OrderStore
    attempts: AttemptStore


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "StoreError",
    "from_store",
    "ProductStore",
    "PromotionStore",
    "CartStore",
    "OrderStore",
    "AttemptState",
    "Attempt",
    "AttemptStore",
    "Stores",
)
