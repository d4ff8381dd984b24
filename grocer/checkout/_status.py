"""
Order lifecycle — status transitions and order queries.

    placed → confirmed → packed → shipped → delivered
       └──────────┴─────────┴────────┴──→ cancelled

Forward skips are allowed. delivered and cancelled are terminal.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from kungfu import Result, Ok, Error

from grocer._errors import GrocerError, Errors
from grocer._types import Clock, utc_now
from grocer.domain import Order, OrderId, OrderStatus, UserId
from grocer.store import Stores, from_store

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════════════════════

FULFILMENT: tuple[OrderStatus, ...] = (
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

TERMINAL: frozenset[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    if current in TERMINAL:
        return False
    if target is OrderStatus.CANCELLED:
        return True
    return FULFILMENT.index(target) > FULFILMENT.index(current)


def transition(
    order: Order, target: OrderStatus, now: datetime, reason: str | None = None
) -> Result[Order, GrocerError]:
    """Pure status change. The reason is kept only on cancellation."""
    if not can_transition(order.status, target):
        return Error(Errors.invalid_transition(order.id, order.status, target))
    return Ok(
        replace(
            order,
            status=target,
            updated_at=now,
            cancellation_reason=reason if target is OrderStatus.CANCELLED else None,
        )
    )


def parse_status(status: str | OrderStatus) -> Result[OrderStatus, GrocerError]:
    try:
        return Ok(OrderStatus(str(status).strip().lower()))
    except ValueError:
        return Error(Errors.invalid_status(status))


# ═══════════════════════════════════════════════════════════════════════════════
# OrderService
# ═══════════════════════════════════════════════════════════════════════════════


class OrderService:
    def __init__(self, stores: Stores, clock: Clock = utc_now) -> None:
        self._stores = stores
        self._clock = clock

    async def _find(self, order_id: OrderId) -> Result[Order, GrocerError]:
        match from_store(await self._stores.orders.get(order_id)):
            case Ok(None):
                return Error(Errors.order_not_found(order_id))
            case Ok(order):
                return Ok(order)
            case Error(e):
                return Error(e)

    async def get_order(
        self, user_id: UserId, order_id: OrderId
    ) -> Result[Order, GrocerError]:
        """Another user's order reads as ORDER_NOT_FOUND."""
        match await self._find(order_id):
            case Ok(order) if order.user_id == user_id:
                return Ok(order)
            case Ok(_):
                return Error(Errors.order_not_found(order_id))
            case Error(e):
                return Error(e)

    async def list_orders(self, user_id: UserId) -> Result[list[Order], GrocerError]:
        return from_store(await self._stores.orders.list_for_user(user_id))

    async def list_all(self) -> Result[list[Order], GrocerError]:
        return from_store(await self._stores.orders.list_all())

    async def update_status(
        self,
        order_id: OrderId,
        status: str | OrderStatus,
        reason: str | None = None,
    ) -> Result[Order, GrocerError]:
        """
        Errors: INVALID_STATUS, ORDER_NOT_FOUND, INVALID_TRANSITION.

        The write is conditional on the status read, so two concurrent
        updates cannot both apply.
        """
        match parse_status(status):
            case Ok(target):
                pass
            case Error(e):
                return Error(e)
        match await self._find(order_id):
            case Ok(order):
                pass
            case Error(e):
                return Error(e)
        match transition(order, target, self._clock(), reason):
            case Ok(updated):
                pass
            case Error(e):
                return Error(e)
        match from_store(await self._stores.orders.replace_if(updated, order.status)):
            case Ok(True):
                logger.info("order %s: %s → %s", order_id, order.status, target)
                return Ok(updated)
            case Ok(False):
                # Lost to a concurrent update; report against the fresh state.
                match await self._find(order_id):
                    case Ok(fresh):
                        return Error(
                            Errors.invalid_transition(order_id, fresh.status, target)
                        )
                    case Error(e):
                        return Error(e)
            case Error(e):
                return Error(e)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "FULFILMENT",
    "TERMINAL",
    "can_transition",
    "transition",
    "parse_status",
    "OrderService",
)
