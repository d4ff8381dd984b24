"""
Cart reconciliation — compare persisted lines with the live catalog.

Reconciliation never rewrites what the user agreed to: current_price and
price_at_addition stay as stored, only the drift flag moves. Lines whose
product vanished are reported as orphaned and left out of the totals.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from grocer.domain import Cart, CartLine, Product, ProductId, LineId
from grocer.pricing import Money, PRICE_EPSILON, round_money, price_drifted

# ═══════════════════════════════════════════════════════════════════════════════
# Totals — the one aggregate reducer
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CartTotals:
    subtotal: Money
    total: Money
    discounts: Money


def cart_totals(lines: Iterable[CartLine]) -> CartTotals:
    """
    Aggregate from scratch. Each figure is rounded after summation.

        subtotal = Σ price_at_addition × quantity
        total = Σ current_price × quantity
    """
    subtotal = Decimal(0)
    total = Decimal(0)
    for line in lines:
        subtotal += line.price_at_addition * line.quantity
        total += line.current_price * line.quantity
    return CartTotals(
        subtotal=round_money(subtotal),
        total=round_money(total),
        discounts=round_money(subtotal - total),
    )


def with_lines(cart: Cart, lines: Iterable[CartLine]) -> Cart:
    """Replace lines and recompute aggregates over all of them."""
    kept = tuple(lines)
    totals = cart_totals(kept)
    return replace(
        cart,
        lines=kept,
        subtotal=totals.subtotal,
        total=totals.total,
        discounts=totals.discounts,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Reports
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class LineReport:
    """
    Per-line reconciliation outcome.

    live_price and available are None for orphaned lines.
    """

    line_id: LineId
    product_id: ProductId
    quantity: int
    stored_price: Money
    live_price: Money | None
    price_drift: bool
    available: int | None
    orphaned: bool

    @property
    def stock_drift(self) -> bool:
        return self.available is not None and self.quantity > self.available


@dataclass(frozen=True, slots=True)
class ReconciledCart:
    """
    Reconciled view of a cart.

    cart: flags updated, totals over resolvable lines, last_reconciled_at set.
    changed: at least one drift flag flipped, so the cart should be persisted.
    """

    cart: Cart
    reports: tuple[LineReport, ...]
    changed: bool

    @property
    def orphaned(self) -> tuple[LineReport, ...]:
        return tuple(r for r in self.reports if r.orphaned)

    @property
    def price_drifts(self) -> tuple[LineReport, ...]:
        return tuple(r for r in self.reports if r.price_drift)

    @property
    def stock_drifts(self) -> tuple[LineReport, ...]:
        return tuple(r for r in self.reports if r.stock_drift)

    @property
    def is_clean(self) -> bool:
        return not (self.orphaned or self.price_drifts or self.stock_drifts)

    def report(self, line_id: LineId) -> LineReport | None:
        return next((r for r in self.reports if r.line_id == line_id), None)


# ═══════════════════════════════════════════════════════════════════════════════
# reconcile()
# ═══════════════════════════════════════════════════════════════════════════════


def _report(
    line: CartLine, product: Product | None, now: datetime, epsilon: Decimal
) -> LineReport:
    if product is None:
        return LineReport(
            line_id=line.id,
            product_id=line.product_id,
            quantity=line.quantity,
            stored_price=line.current_price,
            live_price=None,
            price_drift=False,
            available=None,
            orphaned=True,
        )
    live = product.live_price(now)
    return LineReport(
        line_id=line.id,
        product_id=line.product_id,
        quantity=line.quantity,
        stored_price=line.current_price,
        live_price=live,
        price_drift=price_drifted(live, line.current_price, epsilon),
        available=product.stock,
        orphaned=False,
    )


def reconcile(
    cart: Cart,
    products: Mapping[ProductId, Product],
    now: datetime,
    epsilon: Decimal = PRICE_EPSILON,
) -> ReconciledCart:
    """
    Reconcile a cart against live products.

    Steps:
        1. For each line, compute the live discounted price.
        2. Flag price drift when live differs from stored current_price.
        3. Note stock drift when quantity exceeds live stock.
        4. Aggregate totals from stored prices over non-orphaned lines.

    Example:
        view = reconcile(cart, {p.id: p for p in products}, now)
        if view.changed:
            await carts.save(view.cart)
    """
    reports = tuple(
        _report(line, products.get(line.product_id), now, epsilon)
        for line in cart.lines
    )

    lines: list[CartLine] = []
    changed = False
    for line, rep in zip(cart.lines, reports):
        if not rep.orphaned and line.price_drift != rep.price_drift:
            changed = True
            line = replace(line, price_drift=rep.price_drift)
        lines.append(line)

    resolvable = [ln for ln, rep in zip(lines, reports) if not rep.orphaned]
    totals = cart_totals(resolvable)
    reconciled = replace(
        cart,
        lines=tuple(lines),
        subtotal=totals.subtotal,
        total=totals.total,
        discounts=totals.discounts,
        last_reconciled_at=now,
    )
    return ReconciledCart(cart=reconciled, reports=reports, changed=changed)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "CartTotals",
    "cart_totals",
    "with_lines",
    "LineReport",
    "ReconciledCart",
    "reconcile",
)
