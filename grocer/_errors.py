"""
Error taxonomy — every failure the core can report.

Operations return Result[T, GrocerError]; nothing raises across
a service boundary. kind groups codes the way a transport layer
maps them (400 / 404 / 409 / 422 / 503).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, auto, StrEnum
from typing import Any

# ═══════════════════════════════════════════════════════════════════════════════
# Kinds and Codes
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorKind(Enum):
    VALIDATION = auto()  # Bad input
    NOT_FOUND = auto()  # Referenced entity missing
    CONFLICT = auto()  # State changed under us
    STATE = auto()  # Entity in the wrong lifecycle state
    UNAVAILABLE = auto()  # Storage backend failure


class ErrorCode(StrEnum):
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    PRODUCT_UNAVAILABLE = "PRODUCT_UNAVAILABLE"
    QUANTITY_LIMIT_EXCEEDED = "QUANTITY_LIMIT_EXCEEDED"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    LINE_NOT_FOUND = "LINE_NOT_FOUND"
    INVALID_PRODUCT_REFERENCE = "INVALID_PRODUCT_REFERENCE"
    CART_NOT_FOUND = "CART_NOT_FOUND"
    CART_CONFLICT = "CART_CONFLICT"
    MISSING_CHECKOUT_FIELDS = "MISSING_CHECKOUT_FIELDS"
    EMPTY_CART = "EMPTY_CART"
    ORPHANED_LINE = "ORPHANED_LINE"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    DRIFT_UNRESOLVED = "DRIFT_UNRESOLVED"
    PROMOTION_INVALID = "PROMOTION_INVALID"
    PROMOTION_EXHAUSTED = "PROMOTION_EXHAUSTED"
    PROMOTION_NOT_FOUND = "PROMOTION_NOT_FOUND"
    DUPLICATE_CODE = "DUPLICATE_CODE"
    INVALID_PROMOTION = "INVALID_PROMOTION"
    CHECKOUT_IN_PROGRESS = "CHECKOUT_IN_PROGRESS"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    STORE_ERROR = "STORE_ERROR"


# ═══════════════════════════════════════════════════════════════════════════════
# GrocerError
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class GrocerError:
    """
    A reportable failure.

    details carries structured context (e.g. product/available/requested
    for INSUFFICIENT_STOCK) for transport layers to serialise.
    """

    kind: ErrorKind
    code: ErrorCode
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# ═══════════════════════════════════════════════════════════════════════════════
# Errors — named constructors
# ═══════════════════════════════════════════════════════════════════════════════


class Errors:
    """
    One constructor per code.

        return Error(Errors.line_not_found(line_id))
    """

    @staticmethod
    def product_not_found(product_id: str) -> GrocerError:
        return GrocerError(
            ErrorKind.NOT_FOUND,
            ErrorCode.PRODUCT_NOT_FOUND,
            f"Product {product_id} not found",
            {"product_id": product_id},
        )

    @staticmethod
    def product_unavailable(product_id: str, name: str) -> GrocerError:
        return GrocerError(
            ErrorKind.CONFLICT,
            ErrorCode.PRODUCT_UNAVAILABLE,
            f"{name} is currently unavailable",
            {"product_id": product_id},
        )

    @staticmethod
    def quantity_limit_exceeded(product_id: str, limit: int) -> GrocerError:
        return GrocerError(
            ErrorKind.VALIDATION,
            ErrorCode.QUANTITY_LIMIT_EXCEEDED,
            f"Cannot hold more than {limit} of one product",
            {"product_id": product_id, "limit": limit},
        )

    @staticmethod
    def invalid_quantity(quantity: object, limit: int) -> GrocerError:
        return GrocerError(
            ErrorKind.VALIDATION,
            ErrorCode.INVALID_QUANTITY,
            f"Quantity must be between 1 and {limit}",
            {"quantity": quantity, "limit": limit},
        )

    @staticmethod
    def line_not_found(line_id: str) -> GrocerError:
        return GrocerError(
            ErrorKind.NOT_FOUND,
            ErrorCode.LINE_NOT_FOUND,
            f"Cart line {line_id} not found",
            {"line_id": line_id},
        )

    @staticmethod
    def invalid_product_reference(line_id: str, product_id: str) -> GrocerError:
        return GrocerError(
            ErrorKind.NOT_FOUND,
            ErrorCode.INVALID_PRODUCT_REFERENCE,
            f"Product {product_id} on line {line_id} no longer exists",
            {"line_id": line_id, "product_id": product_id},
        )

    @staticmethod
    def cart_not_found(user_id: str) -> GrocerError:
        return GrocerError(
            ErrorKind.NOT_FOUND,
            ErrorCode.CART_NOT_FOUND,
            "Cart not found",
            {"user_id": user_id},
        )

    @staticmethod
    def cart_conflict(user_id: str) -> GrocerError:
        return GrocerError(
            ErrorKind.CONFLICT,
            ErrorCode.CART_CONFLICT,
            "Cart was modified concurrently, retry",
            {"user_id": user_id},
        )

    @staticmethod
    def missing_checkout_fields(fields: tuple[str, ...]) -> GrocerError:
        return GrocerError(
            ErrorKind.VALIDATION,
            ErrorCode.MISSING_CHECKOUT_FIELDS,
            f"Missing or invalid checkout fields: {', '.join(fields)}",
            {"fields": list(fields)},
        )

    @staticmethod
    def empty_cart(user_id: str) -> GrocerError:
        return GrocerError(
            ErrorKind.VALIDATION,
            ErrorCode.EMPTY_CART,
            "Cart is empty",
            {"user_id": user_id},
        )

    @staticmethod
    def orphaned_line(line_id: str, product_id: str) -> GrocerError:
        return GrocerError(
            ErrorKind.NOT_FOUND,
            ErrorCode.ORPHANED_LINE,
            f"Product {product_id} is no longer in the catalog",
            {"line_id": line_id, "product_id": product_id},
        )

    @staticmethod
    def insufficient_stock(product: str, available: int, requested: int) -> GrocerError:
        return GrocerError(
            ErrorKind.CONFLICT,
            ErrorCode.INSUFFICIENT_STOCK,
            f"Insufficient stock for {product}",
            {"product": product, "available": available, "requested": requested},
        )

    @staticmethod
    def drift_unresolved(line_ids: tuple[str, ...]) -> GrocerError:
        return GrocerError(
            ErrorKind.CONFLICT,
            ErrorCode.DRIFT_UNRESOLVED,
            "Prices changed since items were added, review the cart",
            {"line_ids": list(line_ids)},
        )

    @staticmethod
    def promotion_invalid(code: str, reason: str) -> GrocerError:
        return GrocerError(
            ErrorKind.VALIDATION,
            ErrorCode.PROMOTION_INVALID,
            f"Promotion {code} cannot be applied: {reason}",
            {"code": code, "reason": reason},
        )

    @staticmethod
    def promotion_exhausted(code: str) -> GrocerError:
        return GrocerError(
            ErrorKind.CONFLICT,
            ErrorCode.PROMOTION_EXHAUSTED,
            f"Promotion {code} has reached its usage limit",
            {"code": code},
        )

    @staticmethod
    def promotion_not_found(ref: str) -> GrocerError:
        return GrocerError(
            ErrorKind.NOT_FOUND,
            ErrorCode.PROMOTION_NOT_FOUND,
            f"Promotion {ref} not found",
            {"ref": ref},
        )

    @staticmethod
    def duplicate_code(code: str) -> GrocerError:
        return GrocerError(
            ErrorKind.CONFLICT,
            ErrorCode.DUPLICATE_CODE,
            f"Promotion code {code} already exists",
            {"code": code},
        )

    @staticmethod
    def invalid_promotion(reason: str) -> GrocerError:
        return GrocerError(
            ErrorKind.VALIDATION,
            ErrorCode.INVALID_PROMOTION,
            reason,
        )

    @staticmethod
    def checkout_in_progress(key: str) -> GrocerError:
        return GrocerError(
            ErrorKind.CONFLICT,
            ErrorCode.CHECKOUT_IN_PROGRESS,
            "This checkout is already being processed",
            {"key": key},
        )

    @staticmethod
    def order_not_found(order_id: str) -> GrocerError:
        return GrocerError(
            ErrorKind.NOT_FOUND,
            ErrorCode.ORDER_NOT_FOUND,
            f"Order {order_id} not found",
            {"order_id": order_id},
        )

    @staticmethod
    def invalid_status(status: object) -> GrocerError:
        return GrocerError(
            ErrorKind.VALIDATION,
            ErrorCode.INVALID_STATUS,
            f"Unknown order status: {status}",
            {"status": status},
        )

    @staticmethod
    def invalid_transition(order_id: str, current: str, target: str) -> GrocerError:
        return GrocerError(
            ErrorKind.STATE,
            ErrorCode.INVALID_TRANSITION,
            f"Order {order_id} cannot move from {current} to {target}",
            {"order_id": order_id, "from": current, "to": target},
        )

    @staticmethod
    def store(message: str) -> GrocerError:
        return GrocerError(ErrorKind.UNAVAILABLE, ErrorCode.STORE_ERROR, message)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "ErrorKind",
    "ErrorCode",
    "GrocerError",
    "Errors",
)
