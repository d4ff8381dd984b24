"""
Checkout quote graph — validation and pricing as nodnod nodes.

Architecture:
    QuoteRequest (injected)
         │
         ▼
    RequestNode
         │
         ▼
    CartStateNode ─────────────┬──────────────────┐
         │                     │                  │
         ▼                     ▼                  ▼
    ReadinessNode        PromotionNode     DeliveryFeeNode
         │                     │                  │
         └─────────────────────┴──────────────────┘
                               │
                               ▼
                           QuoteNode

Every node carries a Result; errors flow through to QuoteNode, which
reports the first failure in precondition order (cart, stock, drift,
promotion).

Note: No 'from __future__ import annotations' here. nodnod resolves
__compose__ hints at runtime.
"""

from dataclasses import dataclass
from datetime import datetime

from kungfu import Result, Ok, Error

from grocer import _graph as G
from grocer._errors import GrocerError, Errors
from grocer.cart import ReconciledCart, reconcile
from grocer.domain import (
    AppliedPromotion,
    Cart,
    Product,
    ProductId,
    Promotion,
    UserId,
    normalize_code,
)
from grocer.pricing import Money, ZERO, round_money, clamp_zero
from grocer.promo import promo_eligible_total, check_redeemable, discount_amount
from grocer.settings import Settings
from grocer.store import Stores, from_store

# ═══════════════════════════════════════════════════════════════════════════════
# Input / Output
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class QuoteRequest:
    """Everything the quote graph needs. Injected into the graph."""

    user_id: UserId
    promo_code: str | None
    now: datetime
    stores: Stores
    settings: Settings


@dataclass(frozen=True, slots=True)
class CartState:
    view: ReconciledCart
    products: dict[ProductId, Product]

    @property
    def cart(self) -> Cart:
        return self.view.cart


@dataclass(frozen=True, slots=True)
class PromoQuote:
    promotion: Promotion
    applied: AppliedPromotion


@dataclass(frozen=True, slots=True)
class CheckoutQuote:
    """
    Priced, validated checkout summary.

    total = subtotal − product_discounts − promotion discount + delivery_fee,
    clamped at 0.
    """

    cart: Cart
    products: dict[ProductId, Product]
    subtotal: Money
    product_discounts: Money
    promo: PromoQuote | None
    delivery_fee: Money
    total: Money

    @property
    def promotion_discount(self) -> Money:
        return self.promo.applied.discount_amount if self.promo is not None else ZERO


def order_total(
    subtotal: Money,
    product_discounts: Money,
    promotion_discount: Money,
    delivery_fee: Money,
) -> Money:
    return round_money(
        clamp_zero(subtotal - product_discounts - promotion_discount + delivery_fee)
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Request
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class RequestNode:
    def __init__(self, request: QuoteRequest) -> None:
        self.request = request

    @classmethod
    def __compose__(cls, request: QuoteRequest) -> "RequestNode":
        return cls(request)


# ═══════════════════════════════════════════════════════════════════════════════
# Cart State
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class CartStateNode:
    """Load cart and its products, then reconcile."""

    def __init__(self, result: Result[CartState, GrocerError]) -> None:
        self.result = result

    @classmethod
    async def __compose__(cls, req: RequestNode) -> "CartStateNode":
        request = req.request
        match from_store(await request.stores.carts.get(request.user_id)):
            case Ok(None):
                return cls(Error(Errors.empty_cart(request.user_id)))
            case Ok(cart):
                pass
            case Error(e):
                return cls(Error(e))
        match from_store(await request.stores.products.get_many(cart.product_ids)):
            case Ok(products):
                view = reconcile(
                    cart, products, request.now, request.settings.price_epsilon
                )
                return cls(Ok(CartState(view, products)))
            case Error(e):
                return cls(Error(e))


# ═══════════════════════════════════════════════════════════════════════════════
# Readiness — empty cart, orphans, stock, drift
# ═══════════════════════════════════════════════════════════════════════════════


def check_ready(user_id: UserId, state: CartState) -> Result[CartState, GrocerError]:
    """Preconditions in order. The first failure wins."""
    view = state.view
    if view.cart.is_empty:
        return Error(Errors.empty_cart(user_id))
    for rep in view.reports:
        if rep.orphaned:
            return Error(Errors.orphaned_line(rep.line_id, rep.product_id))
        if rep.stock_drift:
            product = state.products[rep.product_id]
            return Error(
                Errors.insufficient_stock(product.name, product.stock, rep.quantity)
            )
    if view.price_drifts:
        drifted = tuple(r.line_id for r in view.price_drifts)
        return Error(Errors.drift_unresolved(drifted))
    return Ok(state)


@G.node
class ReadinessNode:
    def __init__(self, result: Result[CartState, GrocerError]) -> None:
        self.result = result

    @classmethod
    def __compose__(cls, req: RequestNode, state: CartStateNode) -> "ReadinessNode":
        match state.result:
            case Ok(loaded):
                return cls(check_ready(req.request.user_id, loaded))
            case Error(e):
                return cls(Error(e))


# ═══════════════════════════════════════════════════════════════════════════════
# Promotion
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class PromotionNode:
    """Re-validate the promo code against the current cart. Ok(None) without a code."""

    def __init__(self, result: Result[PromoQuote | None, GrocerError]) -> None:
        self.result = result

    @classmethod
    async def __compose__(
        cls, req: RequestNode, state: CartStateNode
    ) -> "PromotionNode":
        request = req.request
        if not request.promo_code or not request.promo_code.strip():
            return cls(Ok(None))
        match state.result:
            case Ok(loaded):
                pass
            case Error(e):
                return cls(Error(e))

        code = normalize_code(request.promo_code)
        match from_store(await request.stores.promotions.get_by_code(code)):
            case Ok(found):
                pass
            case Error(e):
                return cls(Error(e))

        eligible = promo_eligible_total(loaded.cart, loaded.products)
        match check_redeemable(found, code, request.user_id, eligible, request.now):
            case Ok(promotion):
                applied = AppliedPromotion(
                    promotion_id=promotion.id,
                    code=promotion.code,
                    name=promotion.name,
                    rule=promotion.rule,
                    discount_amount=discount_amount(promotion, eligible),
                )
                return cls(Ok(PromoQuote(promotion, applied)))
            case Error(e):
                return cls(Error(e))


# ═══════════════════════════════════════════════════════════════════════════════
# Delivery Fee
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class DeliveryFeeNode:
    """Free at or above the threshold, measured on the cart subtotal."""

    def __init__(self, result: Result[Money, GrocerError]) -> None:
        self.result = result

    @classmethod
    def __compose__(
        cls, req: RequestNode, state: CartStateNode
    ) -> "DeliveryFeeNode":
        match state.result:
            case Ok(loaded):
                fee = req.request.settings.delivery_fee_for(loaded.cart.subtotal)
                return cls(Ok(round_money(fee)))
            case Error(e):
                return cls(Error(e))


# ═══════════════════════════════════════════════════════════════════════════════
# Quote
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class QuoteNode:
    def __init__(self, result: Result[CheckoutQuote, GrocerError]) -> None:
        self.result = result

    @classmethod
    def __compose__(
        cls,
        ready: ReadinessNode,
        promotion: PromotionNode,
        fee: DeliveryFeeNode,
    ) -> "QuoteNode":
        match ready.result:
            case Ok(state):
                pass
            case Error(e):
                return cls(Error(e))
        match promotion.result:
            case Ok(promo):
                pass
            case Error(e):
                return cls(Error(e))
        match fee.result:
            case Ok(delivery_fee):
                pass
            case Error(e):
                return cls(Error(e))

        cart = state.cart
        promo_off = promo.applied.discount_amount if promo is not None else ZERO
        return cls(
            Ok(
                CheckoutQuote(
                    cart=cart,
                    products=state.products,
                    subtotal=cart.subtotal,
                    product_discounts=cart.discounts,
                    promo=promo,
                    delivery_fee=delivery_fee,
                    total=order_total(
                        cart.subtotal, cart.discounts, promo_off, delivery_fee
                    ),
                )
            )
        )


async def quote(request: QuoteRequest) -> Result[CheckoutQuote, GrocerError]:
    """
    Resolve the quote graph.

    Example:
        match await quote(QuoteRequest(user_id, "SAVE10", now, stores, settings)):
            case Ok(q):
                print(q.total)
            case Error(e):
                print(e.code)
    """
    node = await G.resolve(QuoteNode, request)
    return node.result


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "QuoteRequest",
    "CartState",
    "PromoQuote",
    "CheckoutQuote",
    "order_total",
    "check_ready",
    "RequestNode",
    "CartStateNode",
    "ReadinessNode",
    "PromotionNode",
    "DeliveryFeeNode",
    "QuoteNode",
    "quote",
)
