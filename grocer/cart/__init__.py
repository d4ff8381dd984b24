"""
Cart — reconciliation, pure mutations and the async cart service.

    from grocer import cart as K

    view = K.reconcile(cart, products, now)        # pure
    result = await K.CartService(stores).add_line(user_id, product_id, 2)
"""

from __future__ import annotations

from grocer.cart._reconcile import (
    CartTotals,
    cart_totals,
    with_lines,
    LineReport,
    ReconciledCart,
    reconcile,
)
from grocer.cart._mutations import (
    DEFAULT_LINE_LIMIT,
    add_line,
    update_quantity,
    remove_line,
    clear,
    accept_price,
    accept_stock,
    accept_all,
)
from grocer.cart._service import (
    IssueKind,
    CartIssue,
    CartValidation,
    collect_issues,
    CartService,
)

__all__ = (
    "CartTotals",
    "cart_totals",
    "with_lines",
    "LineReport",
    "ReconciledCart",
    "reconcile",
    "DEFAULT_LINE_LIMIT",
    "add_line",
    "update_quantity",
    "remove_line",
    "clear",
    "accept_price",
    "accept_stock",
    "accept_all",
    "IssueKind",
    "CartIssue",
    "CartValidation",
    "collect_issues",
    "CartService",
)
