"""
Checkout guard — one order per submission key.

    guard = CheckoutGuard(stores.attempts, stores.orders, settings, clock)
    result = await guard.run(checkout_key(user_id, request_key, version), place)

Attempt states:
    none      → begin PENDING, run place(), then COMPLETED or FAILED
    PENDING   → FAIL: CHECKOUT_IN_PROGRESS / WAIT: poll until it settles
    COMPLETED → return the stored order, place() is not called
    FAILED    → failures are not sticky, the attempt is cleared and retried
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from kungfu import Result, Ok, Error

from grocer._errors import GrocerError, Errors
from grocer._types import Clock, utc_now
from grocer.domain import Order, UserId
from grocer.settings import OnPending, Settings
from grocer.store import Attempt, AttemptState, AttemptStore, OrderStore, from_store

logger = logging.getLogger(__name__)

type Place = Callable[[], Awaitable[Result[Order, GrocerError]]]

# Begin retries after a failed or vanished attempt.
MAX_BEGIN_ATTEMPTS = 3


def checkout_key(user_id: UserId, request_key: str | None, cart_version: int) -> str:
    """Client key when given, else the cart version the submission was made against."""
    suffix = request_key if request_key else f"v{cart_version}"
    return f"checkout:{user_id}:{suffix}"


class CheckoutGuard:
    def __init__(
        self,
        attempts: AttemptStore,
        orders: OrderStore,
        settings: Settings,
        clock: Clock = utc_now,
    ) -> None:
        self._attempts = attempts
        self._orders = orders
        self._settings = settings
        self._clock = clock

    async def run(self, key: str, place: Place) -> Result[Order, GrocerError]:
        ttl = self._settings.checkout_ttl
        for _ in range(MAX_BEGIN_ATTEMPTS):
            match from_store(await self._attempts.begin(key, self._clock(), ttl)):
                case Ok(True):
                    return await self._execute(key, place)
                case Ok(False):
                    pass
                case Error(e):
                    return Error(e)

            match await self._settle(key):
                case Ok(None):
                    continue
                case Ok(attempt):
                    return await self._replay(attempt)
                case Error(e):
                    return Error(e)

        return Error(Errors.checkout_in_progress(key))

    # ───────────────────────────────────────────────────────────────────────────
    # Execution
    # ───────────────────────────────────────────────────────────────────────────

    async def _execute(self, key: str, place: Place) -> Result[Order, GrocerError]:
        ttl = self._settings.checkout_ttl
        result = await place()
        match result:
            case Ok(order):
                recorded = await self._attempts.complete(key, order.id, self._clock(), ttl)
            case Error(e):
                recorded = await self._attempts.fail(key, e.code, self._clock(), ttl)
        match recorded:
            case Error(store_error):
                logger.warning(
                    "checkout attempt %s not recorded: %s", key, store_error.message
                )
            case _:
                pass
        return result

    async def _replay(self, attempt: Attempt) -> Result[Order, GrocerError]:
        if attempt.state is AttemptState.PENDING or attempt.order_id is None:
            return Error(Errors.checkout_in_progress(attempt.key))
        logger.info("checkout %s replayed order %s", attempt.key, attempt.order_id)
        match from_store(await self._orders.get(attempt.order_id)):
            case Ok(None):
                return Error(Errors.order_not_found(attempt.order_id))
            case Ok(order):
                return Ok(order)
            case Error(e):
                return Error(e)

    # ───────────────────────────────────────────────────────────────────────────
    # Existing attempt
    # ───────────────────────────────────────────────────────────────────────────

    async def _settle(self, key: str) -> Result[Attempt | None, GrocerError]:
        """
        Ok(None): the key is free again, begin can be retried.
        Ok(attempt): COMPLETED, or PENDING when not waiting.
        """
        waiting = self._settings.checkout_on_pending is OnPending.WAIT
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.checkout_wait_timeout.total_seconds()
        interval = self._settings.checkout_poll_interval.total_seconds()

        while True:
            match from_store(await self._attempts.get(key, self._clock())):
                case Ok(None):
                    return Ok(None)
                case Ok(attempt) if attempt.state is AttemptState.FAILED:
                    match from_store(await self._attempts.delete(key)):
                        case Ok(_):
                            return Ok(None)
                        case Error(e):
                            return Error(e)
                case Ok(attempt) if attempt.state is AttemptState.COMPLETED:
                    return Ok(attempt)
                case Ok(attempt):
                    if not waiting or loop.time() >= deadline:
                        return Ok(attempt)
                case Error(e):
                    return Error(e)
            await asyncio.sleep(interval)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("checkout_key", "CheckoutGuard")
