"""
Domain model — catalog, carts, promotions and orders.

All entities are frozen. Transitions build new instances with
dataclasses.replace() so a failed operation can never leave a
half-updated object behind.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from grocer.pricing import (
    Money,
    ZERO,
    DiscountRule,
    ProductDiscount,
    effective_price,
    active_discount,
)

type UserId = str
type ProductId = str
type PromotionId = str
type OrderId = str
type LineId = str

# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Product:
    """
    A sellable product.

    Note: Carts reference products by id only. The live row is always
    joined explicitly at read time.
    """

    id: ProductId
    name: str
    base_price: Decimal
    stock: int
    is_available: bool = True
    is_promotion_eligible: bool = True
    discount: ProductDiscount | None = None
    category: str = ""
    unit: str = ""

    def live_price(self, now: datetime) -> Money:
        return effective_price(self.base_price, self.discount, now)

    def live_discount(self, now: datetime) -> ProductDiscount | None:
        return active_discount(self.discount, now)


# ═══════════════════════════════════════════════════════════════════════════════
# Cart
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CartLine:
    """
    One product in a cart.

    price_at_addition: baseline the user agreed to.
    current_price: last reconciled live price (what checkout charges).
    price_drift: live price differed from current_price at last reconcile.
    """

    id: LineId
    product_id: ProductId
    quantity: int
    price_at_addition: Money
    current_price: Money
    added_at: datetime
    discount_applied: ProductDiscount | None = None
    price_drift: bool = False


@dataclass(frozen=True, slots=True)
class Cart:
    """
    A user's cart. Exactly one per user.

    subtotal = Σ price_at_addition × quantity
    total = Σ current_price × quantity
    discounts = subtotal − total

    version increases on every successful save.
    """

    user_id: UserId
    lines: tuple[CartLine, ...] = ()
    subtotal: Money = ZERO
    total: Money = ZERO
    discounts: Money = ZERO
    last_reconciled_at: datetime | None = None
    version: int = 0

    @classmethod
    def empty(cls, user_id: UserId) -> Cart:
        return cls(user_id=user_id)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def product_ids(self) -> tuple[ProductId, ...]:
        return tuple(dict.fromkeys(line.product_id for line in self.lines))

    def line(self, line_id: LineId) -> CartLine | None:
        return next((ln for ln in self.lines if ln.id == line_id), None)

    def line_for(self, product_id: ProductId) -> CartLine | None:
        return next((ln for ln in self.lines if ln.product_id == product_id), None)


# ═══════════════════════════════════════════════════════════════════════════════
# Promotions
# ═══════════════════════════════════════════════════════════════════════════════


class UsageType(StrEnum):
    """
    How often one user may redeem a promotion.

    GENERAL: unlimited per user (global cap still applies).
    SINGLE_USE: once per user.
    MULTI_USE: up to max_uses_per_user.
    """

    GENERAL = "general"
    SINGLE_USE = "single-use"
    MULTI_USE = "multi-use"


@dataclass(frozen=True, slots=True)
class PromotionUsage:
    count: int
    last_used_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class Promotion:
    """
    Code-based order discount.

    Note: code is stored upper-cased. Lookups normalise the same way.
    """

    id: PromotionId
    code: str
    name: str
    rule: DiscountRule
    min_order_value: Money = ZERO
    max_discount_amount: Money | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    usage_type: UsageType = UsageType.GENERAL
    max_total_uses: int | None = None
    max_uses_per_user: int | None = None
    used_count: int = 0
    usage: Mapping[UserId, PromotionUsage] = field(default_factory=dict)
    is_active: bool = True
    description: str = ""

    def usage_for(self, user_id: UserId) -> PromotionUsage | None:
        return self.usage.get(user_id)

    def is_live(self, now: datetime) -> bool:
        """Active flag set and now inside [valid_from, valid_to]."""
        if not self.is_active:
            return False
        if self.valid_from is not None and now < self.valid_from:
            return False
        if self.valid_to is not None and now > self.valid_to:
            return False
        return True

    def has_capacity(self) -> bool:
        """Global cap, independent of usage_type."""
        return self.max_total_uses is None or self.used_count < self.max_total_uses

    def allows_user(self, user_id: UserId) -> bool:
        """Per-user limit of the usage type."""
        record = self.usage_for(user_id)
        count = record.count if record is not None else 0
        return usage_permits(self.usage_type, count, self.max_uses_per_user)

    def redeemable_by(self, user_id: UserId) -> bool:
        return self.has_capacity() and self.allows_user(user_id)


def usage_permits(
    usage_type: UsageType, prior_uses: int, max_uses_per_user: int | None
) -> bool:
    """
    Whether a user with prior_uses redemptions may redeem once more.

    Note: MULTI_USE without max_uses_per_user is unlimited per user.
    """
    match usage_type:
        case UsageType.GENERAL:
            return True
        case UsageType.SINGLE_USE:
            return prior_uses == 0
        case UsageType.MULTI_USE:
            return max_uses_per_user is None or prior_uses < max_uses_per_user


def normalize_code(code: str) -> str:
    return code.strip().upper()


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(StrEnum):
    PLACED = "placed"
    CONFIRMED = "confirmed"
    PACKED = "packed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(StrEnum):
    COD = "cod"
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


@dataclass(frozen=True, slots=True)
class Address:
    street: str
    city: str
    state: str
    postal_code: str
    country: str = "India"
    label: str = ""

    @property
    def is_complete(self) -> bool:
        return all(
            part.strip()
            for part in (self.street, self.city, self.state, self.postal_code)
        )


@dataclass(frozen=True, slots=True)
class Payment:
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: str | None = None

    @classmethod
    def for_method(cls, method: PaymentMethod) -> Payment:
        """Cash on delivery stays pending. Other methods are treated as paid."""
        if method == PaymentMethod.COD:
            return cls(method=method, status=PaymentStatus.PENDING)
        return cls(method=method, status=PaymentStatus.COMPLETED)


@dataclass(frozen=True, slots=True)
class OrderLine:
    product_id: ProductId
    name: str
    quantity: int
    price_at_purchase: Money
    discount_applied: ProductDiscount | None = None

    @property
    def line_total(self) -> Money:
        return self.price_at_purchase * self.quantity


@dataclass(frozen=True, slots=True)
class AppliedPromotion:
    promotion_id: PromotionId
    code: str
    name: str
    rule: DiscountRule
    discount_amount: Money


@dataclass(frozen=True, slots=True)
class Order:
    """
    Immutable purchase record.

    total = subtotal − product_discounts − promo discounts + delivery_fee
    """

    id: OrderId
    user_id: UserId
    lines: tuple[OrderLine, ...]
    subtotal: Money
    product_discounts: Money
    applied_promotions: tuple[AppliedPromotion, ...]
    delivery_fee: Money
    total: Money
    payment: Payment
    delivery_address: Address
    status: OrderStatus
    placed_at: datetime
    updated_at: datetime
    cancellation_reason: str | None = None

    @property
    def promotion_discount(self) -> Money:
        return sum((p.discount_amount for p in self.applied_promotions), ZERO)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "UserId",
    "ProductId",
    "PromotionId",
    "OrderId",
    "LineId",
    "Product",
    "CartLine",
    "Cart",
    "UsageType",
    "PromotionUsage",
    "Promotion",
    "usage_permits",
    "normalize_code",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Address",
    "Payment",
    "OrderLine",
    "AppliedPromotion",
    "Order",
)
