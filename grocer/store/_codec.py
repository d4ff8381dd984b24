"""
JSON codec for nested values kept in document columns.

Money travels as strings so no precision is lost; datetimes as
ISO-8601 with offset.
"""

from __future__ import annotations

from datetime import datetime, UTC
from decimal import Decimal
from typing import Any

from grocer.domain import (
    CartLine,
    OrderLine,
    AppliedPromotion,
    Address,
)
from grocer.pricing import DiscountRule, ProductDiscount, rule_of

type Json = dict[str, Any]

# ═══════════════════════════════════════════════════════════════════════════════
# Scalars
# ═══════════════════════════════════════════════════════════════════════════════


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo. Stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def dump_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def load_time(value: str | None) -> datetime | None:
    return as_utc(datetime.fromisoformat(value)) if value is not None else None


def dump_money(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


# ═══════════════════════════════════════════════════════════════════════════════
# Discounts
# ═══════════════════════════════════════════════════════════════════════════════


def dump_rule(rule: DiscountRule) -> Json:
    return {"type": str(rule.kind), "value": str(rule.magnitude)}


def load_rule(data: Json) -> DiscountRule:
    return rule_of(data["type"], data["value"])


def dump_discount(discount: ProductDiscount | None) -> Json | None:
    if discount is None:
        return None
    return {**dump_rule(discount.rule), "expires_at": dump_time(discount.expires_at)}


def load_discount(data: Json | None) -> ProductDiscount | None:
    if data is None:
        return None
    return ProductDiscount(load_rule(data), load_time(data.get("expires_at")))


# ═══════════════════════════════════════════════════════════════════════════════
# Cart Lines
# ═══════════════════════════════════════════════════════════════════════════════


def dump_cart_line(line: CartLine) -> Json:
    return {
        "id": line.id,
        "product_id": line.product_id,
        "quantity": line.quantity,
        "price_at_addition": dump_money(line.price_at_addition),
        "current_price": dump_money(line.current_price),
        "added_at": dump_time(line.added_at),
        "discount_applied": dump_discount(line.discount_applied),
        "price_drift": line.price_drift,
    }


def load_cart_line(data: Json) -> CartLine:
    return CartLine(
        id=data["id"],
        product_id=data["product_id"],
        quantity=int(data["quantity"]),
        price_at_addition=Decimal(data["price_at_addition"]),
        current_price=Decimal(data["current_price"]),
        added_at=as_utc(datetime.fromisoformat(data["added_at"])),  # type: ignore[arg-type]
        discount_applied=load_discount(data.get("discount_applied")),
        price_drift=bool(data.get("price_drift", False)),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


def dump_order_line(line: OrderLine) -> Json:
    return {
        "product_id": line.product_id,
        "name": line.name,
        "quantity": line.quantity,
        "price_at_purchase": dump_money(line.price_at_purchase),
        "discount_applied": (
            {**dump_discount(line.discount_applied), "source": "product"}  # type: ignore[dict-item]
            if line.discount_applied is not None
            else None
        ),
    }


def load_order_line(data: Json) -> OrderLine:
    return OrderLine(
        product_id=data["product_id"],
        name=data["name"],
        quantity=int(data["quantity"]),
        price_at_purchase=Decimal(data["price_at_purchase"]),
        discount_applied=load_discount(data.get("discount_applied")),
    )


def dump_applied_promotion(applied: AppliedPromotion) -> Json:
    return {
        "promotion_id": applied.promotion_id,
        "code": applied.code,
        "name": applied.name,
        **dump_rule(applied.rule),
        "discount_amount": dump_money(applied.discount_amount),
    }


def load_applied_promotion(data: Json) -> AppliedPromotion:
    return AppliedPromotion(
        promotion_id=data["promotion_id"],
        code=data["code"],
        name=data["name"],
        rule=load_rule(data),
        discount_amount=Decimal(data["discount_amount"]),
    )


def dump_address(address: Address) -> Json:
    return {
        "street": address.street,
        "city": address.city,
        "state": address.state,
        "postal_code": address.postal_code,
        "country": address.country,
        "label": address.label,
    }


def load_address(data: Json) -> Address:
    return Address(
        street=data["street"],
        city=data["city"],
        state=data["state"],
        postal_code=data["postal_code"],
        country=data.get("country", "India"),
        label=data.get("label", ""),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Json",
    "as_utc",
    "dump_time",
    "load_time",
    "dump_money",
    "dump_rule",
    "load_rule",
    "dump_discount",
    "load_discount",
    "dump_cart_line",
    "load_cart_line",
    "dump_order_line",
    "load_order_line",
    "dump_applied_promotion",
    "load_applied_promotion",
    "dump_address",
    "load_address",
)
