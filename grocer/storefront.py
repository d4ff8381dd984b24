"""
Storefront — one object exposing every cart, promotion and order operation.

    shop = Storefront(memory_stores(products=catalog))
    # or, backed by the database in settings.database_url
    shop = await Storefront.open(Settings.from_env())

    await shop.add_cart_line("u1", "milk", 2)
    await shop.place_order("u1", address, "cod")

Every method returns Result[..., GrocerError].
"""

from __future__ import annotations

from kungfu import Result
from sqlalchemy.ext.asyncio import AsyncEngine

from grocer._errors import GrocerError
from grocer._types import Clock, IdFactory, utc_now, random_id
from grocer.cart import CartService, CartValidation, ReconciledCart
from grocer.checkout import CheckoutQuote, CheckoutService, OrderService, new_order_id
from grocer.domain import (
    Address,
    Cart,
    LineId,
    Order,
    OrderId,
    OrderStatus,
    PaymentMethod,
    ProductId,
    Promotion,
    PromotionId,
    UserId,
)
from grocer.promo import PromotionDraft, PromotionService
from grocer.settings import Settings
from grocer.store import Stores, create_database, sqlalchemy_stores


class Storefront:
    def __init__(
        self,
        stores: Stores,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        new_line_id: IdFactory = random_id,
        new_order_id: IdFactory = new_order_id,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.stores = stores
        self.settings = settings or Settings()
        self.carts = CartService(stores, self.settings, clock, new_line_id)
        self.promotions = PromotionService(stores, clock)
        self.checkout = CheckoutService(
            stores, self.carts, self.settings, clock, new_order_id
        )
        self.orders = OrderService(stores, clock)
        self._engine = engine

    @classmethod
    async def open(
        cls, settings: Settings | None = None, clock: Clock = utc_now
    ) -> Storefront:
        """SQLAlchemy-backed storefront. Tables are created if missing."""
        settings = settings or Settings()
        session_factory, engine = await create_database(settings.database_url)
        return cls(sqlalchemy_stores(session_factory), settings, clock, engine=engine)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    # ───────────────────────────────────────────────────────────────────────────
    # Cart
    # ───────────────────────────────────────────────────────────────────────────

    async def create_cart(self, user_id: UserId) -> Result[Cart, GrocerError]:
        return await self.carts.create_cart(user_id)

    async def reconcile_cart(self, user_id: UserId) -> Result[ReconciledCart, GrocerError]:
        return await self.carts.reconcile_cart(user_id)

    async def validate_cart(self, user_id: UserId) -> Result[CartValidation, GrocerError]:
        return await self.carts.validate_cart(user_id)

    async def add_cart_line(
        self, user_id: UserId, product_id: ProductId, quantity: int
    ) -> Result[Cart, GrocerError]:
        return await self.carts.add_line(user_id, product_id, quantity)

    async def update_cart_line(
        self, user_id: UserId, line_id: LineId, quantity: int
    ) -> Result[Cart, GrocerError]:
        return await self.carts.update_line(user_id, line_id, quantity)

    async def remove_cart_line(
        self, user_id: UserId, line_id: LineId
    ) -> Result[Cart, GrocerError]:
        return await self.carts.remove_line(user_id, line_id)

    async def accept_price(self, user_id: UserId, line_id: LineId) -> Result[Cart, GrocerError]:
        return await self.carts.accept_price(user_id, line_id)

    async def accept_stock(self, user_id: UserId, line_id: LineId) -> Result[Cart, GrocerError]:
        return await self.carts.accept_stock(user_id, line_id)

    async def accept_all(self, user_id: UserId, line_id: LineId) -> Result[Cart, GrocerError]:
        return await self.carts.accept_all(user_id, line_id)

    async def clear_cart(self, user_id: UserId) -> Result[Cart, GrocerError]:
        return await self.carts.clear_cart(user_id)

    # ───────────────────────────────────────────────────────────────────────────
    # Promotions
    # ───────────────────────────────────────────────────────────────────────────

    async def list_eligible_promotions(
        self, user_id: UserId
    ) -> Result[list[Promotion], GrocerError]:
        return await self.promotions.list_eligible(user_id)

    async def create_promotion(
        self, draft: PromotionDraft
    ) -> Result[Promotion, GrocerError]:
        return await self.promotions.create(draft)

    async def update_promotion(
        self, promotion_id: PromotionId, draft: PromotionDraft
    ) -> Result[Promotion, GrocerError]:
        return await self.promotions.update(promotion_id, draft)

    async def set_promotion_active(
        self, promotion_id: PromotionId, active: bool
    ) -> Result[Promotion, GrocerError]:
        return await self.promotions.set_active(promotion_id, active)

    # ───────────────────────────────────────────────────────────────────────────
    # Checkout and orders
    # ───────────────────────────────────────────────────────────────────────────

    async def quote_checkout(
        self, user_id: UserId, promo_code: str | None = None
    ) -> Result[CheckoutQuote, GrocerError]:
        return await self.checkout.quote(user_id, promo_code)

    async def place_order(
        self,
        user_id: UserId,
        delivery_address: Address | None,
        payment_method: str | PaymentMethod | None,
        promo_code: str | None = None,
        request_key: str | None = None,
    ) -> Result[Order, GrocerError]:
        return await self.checkout.place_order(
            user_id, delivery_address, payment_method, promo_code, request_key
        )

    async def get_order(
        self, user_id: UserId, order_id: OrderId
    ) -> Result[Order, GrocerError]:
        return await self.orders.get_order(user_id, order_id)

    async def list_orders(self, user_id: UserId) -> Result[list[Order], GrocerError]:
        return await self.orders.list_orders(user_id)

    async def list_all_orders(self) -> Result[list[Order], GrocerError]:
        return await self.orders.list_all()

    async def update_order_status(
        self,
        order_id: OrderId,
        status: str | OrderStatus,
        reason: str | None = None,
    ) -> Result[Order, GrocerError]:
        return await self.orders.update_status(order_id, status, reason)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("Storefront",)
