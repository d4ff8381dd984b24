"""
Checkout — quote graph, commit saga, duplicate-submission guard and the
order lifecycle.

    from grocer import checkout as C

    checkout = C.CheckoutService(stores, carts, settings)
    summary = await checkout.quote(user_id, "SAVE10")
    order = await checkout.place_order(user_id, address, "upi", "SAVE10")

    orders = C.OrderService(stores)
    await orders.update_status(order_id, "confirmed")
"""

from __future__ import annotations

from grocer.checkout._quote import (
    QuoteRequest,
    CartState,
    PromoQuote,
    CheckoutQuote,
    order_total,
    check_ready,
    quote,
)
from grocer.checkout._saga import (
    CompensationError,
    Step,
    SagaReport,
    SagaFailure,
    run_saga,
)
from grocer.checkout._guard import CheckoutGuard, checkout_key
from grocer.checkout._status import (
    FULFILMENT,
    TERMINAL,
    can_transition,
    transition,
    parse_status,
    OrderService,
)
from grocer.checkout._service import (
    new_order_id,
    check_fields,
    order_lines,
    CheckoutService,
)

__all__ = (
    # Quote
    "QuoteRequest",
    "CartState",
    "PromoQuote",
    "CheckoutQuote",
    "order_total",
    "check_ready",
    "quote",
    # Saga
    "CompensationError",
    "Step",
    "SagaReport",
    "SagaFailure",
    "run_saga",
    # Guard
    "CheckoutGuard",
    "checkout_key",
    # Lifecycle
    "FULFILMENT",
    "TERMINAL",
    "can_transition",
    "transition",
    "parse_status",
    "OrderService",
    # Service
    "new_order_id",
    "check_fields",
    "order_lines",
    "CheckoutService",
)
