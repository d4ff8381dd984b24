"""
Cart service — async cart operations over stores.

Every mutation follows the same path:

    lock(user) → load cart + products → pure transition → reconcile → save

The save is optimistic (version check). Losing the race returns
CART_CONFLICT and the persisted cart stays authoritative.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from enum import StrEnum

from kungfu import Result, Ok, Error

from grocer._errors import GrocerError, Errors
from grocer._types import Clock, IdFactory, utc_now, random_id
from grocer.cart import _mutations as M
from grocer.cart._reconcile import ReconciledCart, reconcile
from grocer.domain import Cart, Product, ProductId, UserId, LineId
from grocer.pricing import Money
from grocer.settings import Settings
from grocer.store import Stores, from_store

logger = logging.getLogger(__name__)

type Transition = Callable[[Cart, Mapping[ProductId, Product]], Result[Cart, GrocerError]]


# ═══════════════════════════════════════════════════════════════════════════════
# Validation Report
# ═══════════════════════════════════════════════════════════════════════════════


class IssueKind(StrEnum):
    INSUFFICIENT_STOCK = "insufficient_stock"
    PRICE_CHANGED = "price_changed"
    ORPHANED = "orphaned"


@dataclass(frozen=True, slots=True)
class CartIssue:
    """
    One blocking problem.

    INSUFFICIENT_STOCK: available / requested set.
    PRICE_CHANGED: old_price / new_price set.
    ORPHANED: only ids set.
    """

    kind: IssueKind
    line_id: LineId
    product_id: ProductId
    product_name: str | None = None
    available: int | None = None
    requested: int | None = None
    old_price: Money | None = None
    new_price: Money | None = None


@dataclass(frozen=True, slots=True)
class CartValidation:
    cart: Cart
    issues: tuple[CartIssue, ...]

    @property
    def is_valid(self) -> bool:
        return not self.issues


def collect_issues(
    view: ReconciledCart, products: Mapping[ProductId, Product]
) -> tuple[CartIssue, ...]:
    issues: list[CartIssue] = []
    for rep in view.reports:
        product = products.get(rep.product_id)
        name = product.name if product is not None else None
        if rep.orphaned:
            issues.append(CartIssue(IssueKind.ORPHANED, rep.line_id, rep.product_id))
            continue
        if rep.stock_drift:
            issues.append(
                CartIssue(
                    IssueKind.INSUFFICIENT_STOCK,
                    rep.line_id,
                    rep.product_id,
                    product_name=name,
                    available=rep.available,
                    requested=rep.quantity,
                )
            )
        if rep.price_drift:
            issues.append(
                CartIssue(
                    IssueKind.PRICE_CHANGED,
                    rep.line_id,
                    rep.product_id,
                    product_name=name,
                    old_price=rep.stored_price,
                    new_price=rep.live_price,
                )
            )
    return tuple(issues)


# ═══════════════════════════════════════════════════════════════════════════════
# CartService
# ═══════════════════════════════════════════════════════════════════════════════


class CartService:
    """
    Example:
        carts = CartService(stores)
        match await carts.add_line("u1", "milk", 2):
            case Ok(cart):
                print(cart.total)
            case Error(e):
                print(e.code)
    """

    def __init__(
        self,
        stores: Stores,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        new_id: IdFactory = random_id,
    ) -> None:
        self._stores = stores
        self._settings = settings or Settings()
        self._clock = clock
        self._new_id = new_id
        self._locks: weakref.WeakValueDictionary[UserId, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, user_id: UserId) -> asyncio.Lock:
        """
        Advisory per-user lock. Checkout takes it too.

        Held only while someone holds or awaits it; idle users leave no entry.
        """
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    # ───────────────────────────────────────────────────────────────────────────
    # Loading
    # ───────────────────────────────────────────────────────────────────────────

    async def _load(
        self,
        user_id: UserId,
        extra: Iterable[ProductId] = (),
        required: bool = False,
    ) -> Result[tuple[Cart, dict[ProductId, Product]], GrocerError]:
        """A missing cart is NOT_FOUND when required, otherwise a fresh empty one."""
        match from_store(await self._stores.carts.get(user_id)):
            case Ok(None) if required:
                return Error(Errors.cart_not_found(user_id))
            case Ok(found):
                cart = found if found is not None else Cart.empty(user_id)
            case Error(e):
                return Error(e)
        ids = list(dict.fromkeys((*cart.product_ids, *extra)))
        match from_store(await self._stores.products.get_many(ids)):
            case Ok(products):
                return Ok((cart, products))
            case Error(e):
                return Error(e)

    async def view(
        self, user_id: UserId
    ) -> Result[tuple[ReconciledCart, dict[ProductId, Product]], GrocerError]:
        """
        Reconciled view plus the product snapshot it was computed from.
        CART_NOT_FOUND when the user has no cart.
        """
        match await self._load(user_id, required=True):
            case Ok((cart, products)):
                view = reconcile(
                    cart, products, self._clock(), self._settings.price_epsilon
                )
                return Ok((view, products))
            case Error(e):
                return Error(e)

    # ───────────────────────────────────────────────────────────────────────────
    # Reads
    # ───────────────────────────────────────────────────────────────────────────

    async def create_cart(self, user_id: UserId) -> Result[Cart, GrocerError]:
        """Create the user's empty cart. Returns the existing one if present."""
        match from_store(await self._stores.carts.get(user_id)):
            case Ok(found) if found is not None:
                return Ok(found)
            case Ok(_):
                pass
            case Error(e):
                return Error(e)
        match from_store(await self._stores.carts.save(Cart.empty(user_id))):
            case Ok(saved) if saved is not None:
                return Ok(saved)
            case Ok(_):
                # Created concurrently.
                match from_store(await self._stores.carts.get(user_id)):
                    case Ok(found) if found is not None:
                        return Ok(found)
                    case Ok(_):
                        return Error(Errors.cart_conflict(user_id))
                    case Error(e):
                        return Error(e)
            case Error(e):
                return Error(e)

    async def reconcile_cart(self, user_id: UserId) -> Result[ReconciledCart, GrocerError]:
        """
        Reconcile against the live catalog.

        Persists only when a drift flag flipped. A lost save race is logged
        and the computed view is still returned.
        """
        async with self.lock_for(user_id):
            match await self.view(user_id):
                case Ok((view, _)):
                    pass
                case Error(e):
                    return Error(e)
            if not view.changed:
                return Ok(view)
            match from_store(await self._stores.carts.save(view.cart)):
                case Ok(saved) if saved is not None:
                    logger.debug("cart %s drift flags updated", user_id)
                    return Ok(replace(view, cart=saved))
                case Ok(_):
                    logger.warning("cart %s changed during reconcile", user_id)
                    return Ok(view)
                case Error(e):
                    return Error(e)

    async def validate_cart(self, user_id: UserId) -> Result[CartValidation, GrocerError]:
        """Pre-checkout validation. Lists stock, price and orphan issues. No writes."""
        match await self.view(user_id):
            case Ok((view, products)):
                return Ok(CartValidation(view.cart, collect_issues(view, products)))
            case Error(e):
                return Error(e)

    # ───────────────────────────────────────────────────────────────────────────
    # Mutations
    # ───────────────────────────────────────────────────────────────────────────

    async def _mutate(
        self,
        user_id: UserId,
        transition: Transition,
        extra: Iterable[ProductId] = (),
    ) -> Result[Cart, GrocerError]:
        async with self.lock_for(user_id):
            match await self._load(user_id, extra):
                case Ok((cart, products)):
                    pass
                case Error(e):
                    return Error(e)
            match transition(cart, products):
                case Ok(updated):
                    pass
                case Error(e):
                    return Error(e)
            view = reconcile(
                updated, products, self._clock(), self._settings.price_epsilon
            )
            match from_store(await self._stores.carts.save(view.cart)):
                case Ok(saved) if saved is not None:
                    return Ok(saved)
                case Ok(_):
                    logger.warning("cart %s version conflict", user_id)
                    return Error(Errors.cart_conflict(user_id))
                case Error(e):
                    return Error(e)

    async def add_line(
        self, user_id: UserId, product_id: ProductId, quantity: int
    ) -> Result[Cart, GrocerError]:
        now = self._clock()
        line_id = self._new_id()
        limit = self._settings.max_line_quantity
        return await self._mutate(
            user_id,
            lambda cart, products: M.add_line(
                cart, products.get(product_id), product_id, quantity, now, line_id, limit
            ),
            extra=(product_id,),
        )

    async def update_line(
        self, user_id: UserId, line_id: LineId, quantity: int
    ) -> Result[Cart, GrocerError]:
        limit = self._settings.max_line_quantity
        return await self._mutate(
            user_id,
            lambda cart, _: M.update_quantity(cart, line_id, quantity, limit),
        )

    async def remove_line(self, user_id: UserId, line_id: LineId) -> Result[Cart, GrocerError]:
        return await self._mutate(user_id, lambda cart, _: M.remove_line(cart, line_id))

    async def accept_price(self, user_id: UserId, line_id: LineId) -> Result[Cart, GrocerError]:
        now = self._clock()
        return await self._mutate(
            user_id,
            lambda cart, products: M.accept_price(
                cart, line_id, _product_for(cart, line_id, products), now
            ),
        )

    async def accept_stock(self, user_id: UserId, line_id: LineId) -> Result[Cart, GrocerError]:
        return await self._mutate(
            user_id,
            lambda cart, products: M.accept_stock(
                cart, line_id, _product_for(cart, line_id, products)
            ),
        )

    async def accept_all(self, user_id: UserId, line_id: LineId) -> Result[Cart, GrocerError]:
        now = self._clock()
        return await self._mutate(
            user_id,
            lambda cart, products: M.accept_all(
                cart, line_id, _product_for(cart, line_id, products), now
            ),
        )

    async def clear_cart(self, user_id: UserId) -> Result[Cart, GrocerError]:
        return await self._mutate(user_id, lambda cart, _: Ok(M.clear(cart)))


def _product_for(
    cart: Cart, line_id: LineId, products: Mapping[ProductId, Product]
) -> Product | None:
    line = cart.line(line_id)
    return products.get(line.product_id) if line is not None else None


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "IssueKind",
    "CartIssue",
    "CartValidation",
    "collect_issues",
    "CartService",
)
