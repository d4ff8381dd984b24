"""
Settings — immutable configuration with fluent overrides.

    settings = Settings().with_delivery(fee=Decimal("40"), free_above=Decimal("300"))
    settings = Settings.from_env()  # GROCER_* environment variables
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal
from enum import Enum, auto

from grocer.pricing import CENT

# ═══════════════════════════════════════════════════════════════════════════════
# Pending Strategy
# ═══════════════════════════════════════════════════════════════════════════════


class OnPending(Enum):
    """
    What a second checkout submission does while the first is in flight.

    FAIL: reject immediately with CHECKOUT_IN_PROGRESS.
    WAIT: poll until the first finishes, then return its order.
    """

    FAIL = auto()
    WAIT = auto()


# ═══════════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════════

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Storefront configuration.

    free_delivery_threshold: cart subtotal at or above which delivery is free.
    delivery_fee: fee charged below the threshold.
    max_line_quantity: per-line quantity cap.
    price_epsilon: minimum difference that counts as price drift.
    checkout_ttl: how long a checkout attempt record is honoured.
    """

    free_delivery_threshold: Decimal = Decimal("500")
    delivery_fee: Decimal = Decimal("50")
    max_line_quantity: int = 100
    price_epsilon: Decimal = CENT
    checkout_ttl: timedelta = timedelta(hours=24)
    checkout_on_pending: OnPending = OnPending.FAIL
    checkout_wait_timeout: timedelta = timedelta(seconds=10)
    checkout_poll_interval: timedelta = timedelta(milliseconds=50)
    database_url: str = DEFAULT_DATABASE_URL

    def with_delivery(self, fee: Decimal, free_above: Decimal) -> Settings:
        return replace(self, delivery_fee=fee, free_delivery_threshold=free_above)

    def with_max_line_quantity(self, limit: int) -> Settings:
        return replace(self, max_line_quantity=limit)

    def with_checkout(
        self,
        on_pending: OnPending,
        ttl: timedelta | None = None,
        wait_timeout: timedelta | None = None,
    ) -> Settings:
        return replace(
            self,
            checkout_on_pending=on_pending,
            checkout_ttl=ttl if ttl is not None else self.checkout_ttl,
            checkout_wait_timeout=(
                wait_timeout if wait_timeout is not None else self.checkout_wait_timeout
            ),
        )

    def with_database(self, url: str) -> Settings:
        return replace(self, database_url=url)

    def delivery_fee_for(self, subtotal: Decimal) -> Decimal:
        """Zero at or above the free-delivery threshold."""
        if subtotal >= self.free_delivery_threshold:
            return Decimal("0.00")
        return self.delivery_fee

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """
        Read overrides from GROCER_* variables. Unset variables keep defaults.

            GROCER_FREE_DELIVERY_THRESHOLD=500
            GROCER_DELIVERY_FEE=50
            GROCER_MAX_LINE_QUANTITY=100
            GROCER_CHECKOUT_TTL_SECONDS=86400
            GROCER_CHECKOUT_ON_PENDING=fail|wait
            GROCER_DATABASE_URL=sqlite+aiosqlite:///grocer.db
        """
        env = os.environ if environ is None else environ
        base = cls()
        on_pending = env.get("GROCER_CHECKOUT_ON_PENDING")
        ttl = env.get("GROCER_CHECKOUT_TTL_SECONDS")
        return replace(
            base,
            free_delivery_threshold=Decimal(
                env.get("GROCER_FREE_DELIVERY_THRESHOLD", base.free_delivery_threshold)
            ),
            delivery_fee=Decimal(env.get("GROCER_DELIVERY_FEE", base.delivery_fee)),
            max_line_quantity=int(
                env.get("GROCER_MAX_LINE_QUANTITY", base.max_line_quantity)
            ),
            checkout_ttl=(
                timedelta(seconds=int(ttl)) if ttl is not None else base.checkout_ttl
            ),
            checkout_on_pending=(
                OnPending[on_pending.upper()]
                if on_pending is not None
                else base.checkout_on_pending
            ),
            database_url=env.get("GROCER_DATABASE_URL", base.database_url),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("OnPending", "Settings", "DEFAULT_DATABASE_URL")
