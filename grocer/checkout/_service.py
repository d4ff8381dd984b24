"""
Checkout service — quote, then commit the order as a saga.

    place_order(user, address, method, code)
        │
        ├── fields present?                     MISSING_CHECKOUT_FIELDS
        ├── guard(checkout key)                 CHECKOUT_IN_PROGRESS / replay
        └── lock(user)
              ├── quote graph                   EMPTY_CART, ORPHANED_LINE,
              │                                 INSUFFICIENT_STOCK,
              │                                 DRIFT_UNRESOLVED, PROMOTION_INVALID
              └── saga
                    reserve stock per line  ↺ restock
                    record promotion usage  ↺ revert usage
                    insert order            ↺ delete order
                    clear cart (versioned)

Nothing is written before the quote succeeds. A saga failure undoes the
steps already taken.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping

from kungfu import Result, Ok, Error, LazyCoroResult

from grocer._errors import GrocerError, Errors
from grocer._types import Clock, IdFactory, utc_now
from grocer.cart import CartService, clear
from grocer.checkout._guard import CheckoutGuard, checkout_key
from grocer.checkout._quote import CheckoutQuote, QuoteRequest, quote
from grocer.checkout._saga import CompensationError, Step, run_saga
from grocer.domain import (
    Address,
    Cart,
    CartLine,
    Order,
    OrderLine,
    OrderStatus,
    Payment,
    PaymentMethod,
    Product,
    ProductId,
    UserId,
)
from grocer.settings import Settings
from grocer.store import Stores, from_store

logger = logging.getLogger(__name__)


def new_order_id() -> str:
    return f"ORD-{uuid.uuid4().hex[:16].upper()}"


# ═══════════════════════════════════════════════════════════════════════════════
# Field checks
# ═══════════════════════════════════════════════════════════════════════════════


def check_fields(
    delivery_address: Address | None, payment_method: str | PaymentMethod | None
) -> Result[tuple[Address, PaymentMethod], GrocerError]:
    missing: list[str] = []
    if delivery_address is None or not delivery_address.is_complete:
        missing.append("delivery_address")
    method: PaymentMethod | None = None
    if payment_method:
        try:
            method = PaymentMethod(str(payment_method).strip().lower())
        except ValueError:
            method = None
    if method is None:
        missing.append("payment_method")
    if missing or delivery_address is None or method is None:
        return Error(Errors.missing_checkout_fields(tuple(missing)))
    return Ok((delivery_address, method))


def order_lines(cart: Cart, products: Mapping[ProductId, Product]) -> tuple[OrderLine, ...]:
    """Snapshot of each line at the price the user accepted."""
    return tuple(
        OrderLine(
            product_id=line.product_id,
            name=products[line.product_id].name,
            quantity=line.quantity,
            price_at_purchase=line.current_price,
            discount_applied=line.discount_applied,
        )
        for line in cart.lines
    )


# ═══════════════════════════════════════════════════════════════════════════════
# CheckoutService
# ═══════════════════════════════════════════════════════════════════════════════


class CheckoutService:
    """
    Example:
        checkout = CheckoutService(stores, carts)
        match await checkout.place_order("u1", address, "cod", promo_code="SAVE10"):
            case Ok(order):
                print(order.id, order.total)
            case Error(e):
                print(e.code, e.details)
    """

    def __init__(
        self,
        stores: Stores,
        carts: CartService,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        new_id: IdFactory = new_order_id,
    ) -> None:
        self._stores = stores
        self._carts = carts
        self._settings = settings or Settings()
        self._clock = clock
        self._new_id = new_id
        self._guard = CheckoutGuard(
            stores.attempts, stores.orders, self._settings, clock
        )

    async def quote(
        self, user_id: UserId, promo_code: str | None = None
    ) -> Result[CheckoutQuote, GrocerError]:
        """Checkout summary. Same checks as place_order, no writes."""
        request = QuoteRequest(
            user_id=user_id,
            promo_code=promo_code,
            now=self._clock(),
            stores=self._stores,
            settings=self._settings,
        )
        return await quote(request)

    async def place_order(
        self,
        user_id: UserId,
        delivery_address: Address | None,
        payment_method: str | PaymentMethod | None,
        promo_code: str | None = None,
        request_key: str | None = None,
    ) -> Result[Order, GrocerError]:
        match check_fields(delivery_address, payment_method):
            case Ok((address, method)):
                pass
            case Error(e):
                return Error(e)

        match from_store(await self._stores.carts.get(user_id)):
            case Ok(cart):
                version = cart.version if cart is not None else 0
            case Error(e):
                return Error(e)

        key = checkout_key(user_id, request_key, version)

        async def place() -> Result[Order, GrocerError]:
            async with self._carts.lock_for(user_id):
                return await self._place(user_id, address, method, promo_code)

        return await self._guard.run(key, place)

    # ───────────────────────────────────────────────────────────────────────────
    # Commit
    # ───────────────────────────────────────────────────────────────────────────

    async def _place(
        self,
        user_id: UserId,
        address: Address,
        method: PaymentMethod,
        promo_code: str | None,
    ) -> Result[Order, GrocerError]:
        match await self.quote(user_id, promo_code):
            case Ok(q):
                pass
            case Error(e):
                return Error(e)

        now = self._clock()
        order = Order(
            id=self._new_id(),
            user_id=user_id,
            lines=order_lines(q.cart, q.products),
            subtotal=q.subtotal,
            product_discounts=q.product_discounts,
            applied_promotions=(q.promo.applied,) if q.promo is not None else (),
            delivery_fee=q.delivery_fee,
            total=q.total,
            payment=Payment.for_method(method),
            delivery_address=address,
            status=OrderStatus.PLACED,
            placed_at=now,
            updated_at=now,
        )

        steps: list[Step[object]] = [
            Step(
                f"reserve:{line.product_id}",
                self._reserve(line, q.products),
                self._release,
            )
            for line in q.cart.lines
        ]
        if q.promo is not None:
            steps.append(
                Step(
                    f"promotion:{q.promo.promotion.code}",
                    self._redeem(q.promo.promotion.id, q.promo.promotion.code, user_id),
                    self._unredeem,
                )
            )
        steps.append(Step(f"order:{order.id}", self._insert(order), self._remove))
        steps.append(Step(f"cart:{user_id}", self._clear(q.cart)))

        match await run_saga(steps):
            case Ok(_):
                logger.info(
                    "order %s placed for %s: total %s (%d lines)",
                    order.id,
                    user_id,
                    order.total,
                    len(order.lines),
                )
                return Ok(order)
            case Error(failure):
                if failure.rollback_complete:
                    logger.warning(
                        "order for %s rolled back at %s: %s",
                        user_id,
                        failure.step_failed,
                        failure.error.code,
                    )
                else:
                    logger.error(
                        "order for %s failed at %s, %d compensations failed",
                        user_id,
                        failure.step_failed,
                        failure.compensators_failed,
                    )
                return Error(failure.error)

    # ───────────────────────────────────────────────────────────────────────────
    # Saga steps
    # ───────────────────────────────────────────────────────────────────────────

    def _reserve(
        self, line: CartLine, products: Mapping[ProductId, Product]
    ) -> LazyCoroResult[CartLine, GrocerError]:
        stock = self._stores.products

        async def impl() -> Result[CartLine, GrocerError]:
            match from_store(await stock.decrement_stock(line.product_id, line.quantity)):
                case Ok(True):
                    return Ok(line)
                case Ok(False):
                    pass
                case Error(e):
                    return Error(e)
            match from_store(await stock.get(line.product_id)):
                case Ok(live):
                    available = live.stock if live is not None else 0
                    name = products[line.product_id].name
                    return Error(Errors.insufficient_stock(name, available, line.quantity))
                case Error(e):
                    return Error(e)

        return LazyCoroResult(impl)

    async def _release(self, line: CartLine) -> None:
        match await self._stores.products.restock(line.product_id, line.quantity):
            case Error(e):
                raise CompensationError(e.message)
            case _:
                pass

    def _redeem(
        self, promotion_id: str, code: str, user_id: UserId
    ) -> LazyCoroResult[tuple[str, UserId], GrocerError]:
        promotions = self._stores.promotions
        now = self._clock()

        async def impl() -> Result[tuple[str, UserId], GrocerError]:
            match from_store(await promotions.record_usage(promotion_id, user_id, now)):
                case Ok(True):
                    return Ok((promotion_id, user_id))
                case Ok(False):
                    return Error(Errors.promotion_exhausted(code))
                case Error(e):
                    return Error(e)

        return LazyCoroResult(impl)

    async def _unredeem(self, redemption: tuple[str, UserId]) -> None:
        promotion_id, user_id = redemption
        match await self._stores.promotions.revert_usage(promotion_id, user_id):
            case Error(e):
                raise CompensationError(e.message)
            case _:
                pass

    def _insert(self, order: Order) -> LazyCoroResult[Order, GrocerError]:
        orders = self._stores.orders

        async def impl() -> Result[Order, GrocerError]:
            match from_store(await orders.insert(order)):
                case Ok(_):
                    return Ok(order)
                case Error(e):
                    return Error(e)

        return LazyCoroResult(impl)

    async def _remove(self, order: Order) -> None:
        match await self._stores.orders.delete(order.id):
            case Error(e):
                raise CompensationError(e.message)
            case _:
                pass

    def _clear(self, cart: Cart) -> LazyCoroResult[Cart, GrocerError]:
        carts = self._stores.carts

        async def impl() -> Result[Cart, GrocerError]:
            match from_store(await carts.save(clear(cart))):
                case Ok(None):
                    return Error(Errors.cart_conflict(cart.user_id))
                case Ok(saved):
                    return Ok(saved)
                case Error(e):
                    return Error(e)

        return LazyCoroResult(impl)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "new_order_id",
    "check_fields",
    "order_lines",
    "CheckoutService",
)
