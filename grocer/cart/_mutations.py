"""
Cart mutations — pure transitions over immutable carts.

Each transition returns Result[Cart, GrocerError] and ends by recomputing
aggregates from the resulting line set. Nothing is persisted here, so a
failed transition cannot leave partial state behind.

    match add_line(cart, product, "p1", 2, now, line_id="l1"):
        case Ok(updated):
            ...
        case Error(e):
            ...
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from kungfu import Result, Ok, Error

from grocer._errors import GrocerError, Errors
from grocer.cart._reconcile import with_lines
from grocer.domain import Cart, CartLine, Product, ProductId, LineId

DEFAULT_LINE_LIMIT = 100

# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════


def _valid_quantity(quantity: object, limit: int) -> bool:
    return (
        isinstance(quantity, int)
        and not isinstance(quantity, bool)
        and 1 <= quantity <= limit
    )


def _repriced(line: CartLine, product: Product, now: datetime) -> CartLine:
    """Adopt the live price as the new baseline and clear drift."""
    live = product.live_price(now)
    return replace(
        line,
        price_at_addition=live,
        current_price=live,
        discount_applied=product.live_discount(now),
        price_drift=False,
    )


def _swap(cart: Cart, line_id: LineId, line: CartLine | None) -> Cart:
    """Replace one line, or drop it when line is None."""
    swapped = (line if ln.id == line_id else ln for ln in cart.lines)
    return with_lines(cart, (ln for ln in swapped if ln is not None))


# ═══════════════════════════════════════════════════════════════════════════════
# Add / Update / Remove
# ═══════════════════════════════════════════════════════════════════════════════


def add_line(
    cart: Cart,
    product: Product | None,
    product_id: ProductId,
    quantity: int,
    now: datetime,
    line_id: LineId,
    limit: int = DEFAULT_LINE_LIMIT,
) -> Result[Cart, GrocerError]:
    """
    Add quantity of a product.

    An existing line for the product is incremented and re-priced at the
    live price. Otherwise a new line is created with line_id.

    Errors: INVALID_QUANTITY, PRODUCT_NOT_FOUND, PRODUCT_UNAVAILABLE,
    QUANTITY_LIMIT_EXCEEDED.
    """
    if not _valid_quantity(quantity, limit):
        return Error(Errors.invalid_quantity(quantity, limit))
    if product is None:
        return Error(Errors.product_not_found(product_id))
    if not product.is_available:
        return Error(Errors.product_unavailable(product.id, product.name))

    existing = cart.line_for(product.id)
    if existing is not None:
        merged = existing.quantity + quantity
        if merged > limit:
            return Error(Errors.quantity_limit_exceeded(product.id, limit))
        bumped = _repriced(replace(existing, quantity=merged), product, now)
        return Ok(_swap(cart, existing.id, bumped))

    live = product.live_price(now)
    line = CartLine(
        id=line_id,
        product_id=product.id,
        quantity=quantity,
        price_at_addition=live,
        current_price=live,
        added_at=now,
        discount_applied=product.live_discount(now),
    )
    return Ok(with_lines(cart, (*cart.lines, line)))


def update_quantity(
    cart: Cart,
    line_id: LineId,
    quantity: int,
    limit: int = DEFAULT_LINE_LIMIT,
) -> Result[Cart, GrocerError]:
    """Set an absolute quantity. Errors: INVALID_QUANTITY, LINE_NOT_FOUND."""
    if not _valid_quantity(quantity, limit):
        return Error(Errors.invalid_quantity(quantity, limit))
    line = cart.line(line_id)
    if line is None:
        return Error(Errors.line_not_found(line_id))
    return Ok(_swap(cart, line_id, replace(line, quantity=quantity)))


def remove_line(cart: Cart, line_id: LineId) -> Result[Cart, GrocerError]:
    if cart.line(line_id) is None:
        return Error(Errors.line_not_found(line_id))
    return Ok(_swap(cart, line_id, None))


def clear(cart: Cart) -> Cart:
    return with_lines(cart, ())


# ═══════════════════════════════════════════════════════════════════════════════
# Accept Drift
# ═══════════════════════════════════════════════════════════════════════════════


def _resolve(
    cart: Cart, line_id: LineId, product: Product | None
) -> Result[tuple[CartLine, Product], GrocerError]:
    line = cart.line(line_id)
    if line is None:
        return Error(Errors.line_not_found(line_id))
    if product is None or product.id != line.product_id:
        return Error(Errors.invalid_product_reference(line_id, line.product_id))
    return Ok((line, product))


def _stock_adjusted(line: CartLine, product: Product) -> CartLine | None:
    """None removes the line. Otherwise quantity is clamped to stock."""
    if product.stock <= 0:
        return None
    if line.quantity > product.stock:
        return replace(line, quantity=product.stock)
    return line


def accept_price(
    cart: Cart,
    line_id: LineId,
    product: Product | None,
    now: datetime,
) -> Result[Cart, GrocerError]:
    """
    Accept the live price as the new baseline.

    Both price_at_addition and current_price become the live price, so the
    line no longer shows a discount from its original price.
    """
    match _resolve(cart, line_id, product):
        case Ok((line, live)):
            return Ok(_swap(cart, line_id, _repriced(line, live, now)))
        case Error(e):
            return Error(e)


def accept_stock(
    cart: Cart,
    line_id: LineId,
    product: Product | None,
) -> Result[Cart, GrocerError]:
    """Stock 0 removes the line. Otherwise quantity is clamped to stock."""
    match _resolve(cart, line_id, product):
        case Ok((line, live)):
            return Ok(_swap(cart, line_id, _stock_adjusted(line, live)))
        case Error(e):
            return Error(e)


def accept_all(
    cart: Cart,
    line_id: LineId,
    product: Product | None,
    now: datetime,
) -> Result[Cart, GrocerError]:
    """
    accept_price then accept_stock as one transition.

    Both phases run on the same resolved line before any cart is built,
    so either both apply or neither does.
    """
    match _resolve(cart, line_id, product):
        case Ok((line, live)):
            adjusted = _stock_adjusted(_repriced(line, live, now), live)
            return Ok(_swap(cart, line_id, adjusted))
        case Error(e):
            return Error(e)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "DEFAULT_LINE_LIMIT",
    "add_line",
    "update_quantity",
    "remove_line",
    "clear",
    "accept_price",
    "accept_stock",
    "accept_all",
)
