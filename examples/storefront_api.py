"""
Storefront over HTTP — a thin FastAPI adapter.

Request models map to Storefront calls with to_domain(); response models
are built with from_domain(). Errors map by kind:

    VALIDATION → 422   NOT_FOUND → 404   CONFLICT / STATE → 409
    UNAVAILABLE → 503

The caller is identified by the X-User-Id header.

Run yourself with uvicorn and look at the docs:
    uvicorn examples.storefront_api:app
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal

import fastapi
from fastapi.encoders import jsonable_encoder
from kungfu import Result, Ok, Error
from pydantic import BaseModel

from grocer import Address, Cart, ErrorKind, GrocerError, Order, Storefront
from grocer.checkout import CheckoutQuote

from examples._infra import storefront

STATUS_FOR_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.STATE: 409,
    ErrorKind.UNAVAILABLE: 503,
}

UserHeader = Annotated[str, fastapi.Header(alias="X-User-Id")]


def unwrap[T](result: Result[T, GrocerError]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise fastapi.HTTPException(
                status_code=STATUS_FOR_KIND[e.kind],
                detail={
                    "code": str(e.code),
                    "message": e.message,
                    "details": jsonable_encoder(dict(e.details)),
                },
            )


# ═══════════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════════


class AddLineIn(BaseModel):
    product_id: str
    quantity: int


class QuantityIn(BaseModel):
    quantity: int


class QuoteIn(BaseModel):
    promo_code: str | None = None


class AddressIn(BaseModel):
    street: str
    city: str
    state: str
    postal_code: str
    country: str = "India"
    label: str = ""

    def to_domain(self) -> Address:
        return Address(**self.model_dump())


class PlaceOrderIn(BaseModel):
    delivery_address: AddressIn | None = None
    payment_method: str | None = None
    promo_code: str | None = None
    request_key: str | None = None


class StatusIn(BaseModel):
    status: str
    reason: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Responses
# ═══════════════════════════════════════════════════════════════════════════════


class LineOut(BaseModel):
    id: str
    product_id: str
    quantity: int
    price_at_addition: Decimal
    current_price: Decimal
    price_drift: bool


class CartOut(BaseModel):
    lines: list[LineOut]
    subtotal: Decimal
    total: Decimal
    discounts: Decimal
    version: int

    @classmethod
    def from_domain(cls, cart: Cart) -> "CartOut":
        return cls(
            lines=[
                LineOut(
                    id=line.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price_at_addition=line.price_at_addition,
                    current_price=line.current_price,
                    price_drift=line.price_drift,
                )
                for line in cart.lines
            ],
            subtotal=cart.subtotal,
            total=cart.total,
            discounts=cart.discounts,
            version=cart.version,
        )


class QuoteOut(BaseModel):
    subtotal: Decimal
    product_discounts: Decimal
    promotion_discount: Decimal
    delivery_fee: Decimal
    total: Decimal

    @classmethod
    def from_domain(cls, quote: CheckoutQuote) -> "QuoteOut":
        return cls(
            subtotal=quote.subtotal,
            product_discounts=quote.product_discounts,
            promotion_discount=quote.promotion_discount,
            delivery_fee=quote.delivery_fee,
            total=quote.total,
        )


class OrderLineOut(BaseModel):
    product_id: str
    name: str
    quantity: int
    price_at_purchase: Decimal
    line_total: Decimal


class OrderOut(BaseModel):
    id: str
    status: str
    lines: list[OrderLineOut]
    subtotal: Decimal
    promotion_discount: Decimal
    delivery_fee: Decimal
    total: Decimal
    payment_method: str
    payment_status: str
    placed_at: datetime
    cancellation_reason: str | None = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderOut":
        return cls(
            id=order.id,
            status=str(order.status),
            lines=[
                OrderLineOut(
                    product_id=line.product_id,
                    name=line.name,
                    quantity=line.quantity,
                    price_at_purchase=line.price_at_purchase,
                    line_total=line.line_total,
                )
                for line in order.lines
            ],
            subtotal=order.subtotal,
            promotion_discount=order.promotion_discount,
            delivery_fee=order.delivery_fee,
            total=order.total,
            payment_method=str(order.payment.method),
            payment_status=str(order.payment.status),
            placed_at=order.placed_at,
            cancellation_reason=order.cancellation_reason,
        )


class PromotionOut(BaseModel):
    code: str
    name: str
    description: str


# ═══════════════════════════════════════════════════════════════════════════════
# Application
# ═══════════════════════════════════════════════════════════════════════════════


def create_app(shop: Storefront) -> fastapi.FastAPI:
    app = fastapi.FastAPI(title="grocer")

    @app.get("/cart")
    async def get_cart(user_id: UserHeader) -> CartOut:
        view = unwrap(await shop.reconcile_cart(user_id))
        return CartOut.from_domain(view.cart)

    @app.post("/cart/lines")
    async def add_line(user_id: UserHeader, req: AddLineIn) -> CartOut:
        cart = unwrap(await shop.add_cart_line(user_id, req.product_id, req.quantity))
        return CartOut.from_domain(cart)

    @app.patch("/cart/lines/{line_id}")
    async def update_line(user_id: UserHeader, line_id: str, req: QuantityIn) -> CartOut:
        cart = unwrap(await shop.update_cart_line(user_id, line_id, req.quantity))
        return CartOut.from_domain(cart)

    @app.delete("/cart/lines/{line_id}")
    async def remove_line(user_id: UserHeader, line_id: str) -> CartOut:
        return CartOut.from_domain(unwrap(await shop.remove_cart_line(user_id, line_id)))

    @app.post("/cart/lines/{line_id}/accept/{what}")
    async def accept(
        user_id: UserHeader, line_id: str, what: Literal["price", "stock", "all"]
    ) -> CartOut:
        match what:
            case "price":
                result = await shop.accept_price(user_id, line_id)
            case "stock":
                result = await shop.accept_stock(user_id, line_id)
            case _:
                result = await shop.accept_all(user_id, line_id)
        return CartOut.from_domain(unwrap(result))

    @app.delete("/cart")
    async def clear_cart(user_id: UserHeader) -> CartOut:
        return CartOut.from_domain(unwrap(await shop.clear_cart(user_id)))

    @app.get("/promotions/eligible")
    async def eligible(user_id: UserHeader) -> list[PromotionOut]:
        promotions = unwrap(await shop.list_eligible_promotions(user_id))
        return [
            PromotionOut(code=p.code, name=p.name, description=p.description)
            for p in promotions
        ]

    @app.post("/checkout/quote")
    async def quote(user_id: UserHeader, req: QuoteIn) -> QuoteOut:
        return QuoteOut.from_domain(unwrap(await shop.quote_checkout(user_id, req.promo_code)))

    @app.post("/orders", status_code=201)
    async def place_order(user_id: UserHeader, req: PlaceOrderIn) -> OrderOut:
        address = req.delivery_address.to_domain() if req.delivery_address else None
        order = unwrap(
            await shop.place_order(
                user_id, address, req.payment_method, req.promo_code, req.request_key
            )
        )
        return OrderOut.from_domain(order)

    @app.get("/orders")
    async def list_orders(user_id: UserHeader) -> list[OrderOut]:
        return [OrderOut.from_domain(o) for o in unwrap(await shop.list_orders(user_id))]

    @app.get("/orders/{order_id}")
    async def get_order(user_id: UserHeader, order_id: str) -> OrderOut:
        return OrderOut.from_domain(unwrap(await shop.get_order(user_id, order_id)))

    @app.get("/admin/orders")
    async def all_orders() -> list[OrderOut]:
        return [OrderOut.from_domain(o) for o in unwrap(await shop.list_all_orders())]

    @app.patch("/admin/orders/{order_id}/status")
    async def update_status(order_id: str, req: StatusIn) -> OrderOut:
        order = unwrap(await shop.update_order_status(order_id, req.status, req.reason))
        return OrderOut.from_domain(order)

    return app


app = create_app(storefront())
