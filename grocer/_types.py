"""
Core types for grocer.

Re-exports from kungfu + shared aliases for clocks and id factories.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Awaitable
from datetime import datetime, UTC

# Re-export from kungfu
from kungfu import Result, Ok, Error, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Lazy Computation Aliases
# ═══════════════════════════════════════════════════════════════════════════════

type Lazy[T, E] = LazyCoroResult[T, E]
"""Lazy async computation that may fail."""

type Compensator[T] = Callable[[T], Awaitable[None]]
"""Undoes a step, given the value the step produced."""

# ═══════════════════════════════════════════════════════════════════════════════
# Time and Identity
# ═══════════════════════════════════════════════════════════════════════════════

type Clock = Callable[[], datetime]
"""Returns the current instant. Always timezone-aware UTC."""

type IdFactory = Callable[[], str]


def utc_now() -> datetime:
    return datetime.now(UTC)


def random_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    # Aliases
    "Lazy",
    "Compensator",
    "Clock",
    "IdFactory",
    "utc_now",
    "random_id",
)
