"""
Order commit saga — sequential steps with reverse compensation.

    steps = [
        Step("reserve:milk", reserve(milk, 2), release(milk, 2)),
        Step("order", insert(order), delete(order)),
    ]
    match await run_saga(steps):
        case Ok(report): ...
        case Error(failure): failure.error  # first step that failed

Each step is a LazyCoroResult. On success its compensator is recorded;
on the first failure recorded compensators run newest first.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from kungfu import Result, Ok, Error, LazyCoroResult

from grocer._errors import GrocerError
from grocer._types import Compensator

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Types
# ═══════════════════════════════════════════════════════════════════════════════


class CompensationError(Exception):
    """Raised by a compensator that could not undo its step."""


@dataclass(frozen=True, slots=True)
class Step[T]:
    name: str
    action: LazyCoroResult[T, GrocerError]
    compensate: Compensator[T] | None = None


@dataclass(frozen=True, slots=True)
class SagaReport:
    steps_executed: int
    compensators_recorded: int


@dataclass(frozen=True, slots=True)
class SagaFailure:
    """
    error: the failing step's error, returned to the caller unchanged.
    rollback_complete: False if any compensator raised.
    """

    error: GrocerError
    step_failed: str
    compensators_run: int
    compensators_failed: int

    @property
    def rollback_complete(self) -> bool:
        return self.compensators_failed == 0


type RecordedCompensator = tuple[str, object, Compensator[object]]

# ═══════════════════════════════════════════════════════════════════════════════
# Rollback
# ═══════════════════════════════════════════════════════════════════════════════


async def run_compensators(compensators: list[RecordedCompensator]) -> tuple[int, int]:
    """Run compensators in reverse. Returns (run, failed)."""
    comp_run = 0
    comp_failed = 0

    for name, value, comp in reversed(compensators):
        try:
            await comp(value)
            comp_run += 1
        except Exception:
            comp_failed += 1
            logger.exception("compensation for %s failed", name)

    return comp_run, comp_failed


# ═══════════════════════════════════════════════════════════════════════════════
# run_saga()
# ═══════════════════════════════════════════════════════════════════════════════


async def run_saga(steps: Sequence[Step[object]]) -> Result[SagaReport, SagaFailure]:
    compensators: list[RecordedCompensator] = []
    executed = 0

    for step in steps:
        result = await step.action
        executed += 1
        match result:
            case Ok(value):
                if step.compensate is not None:
                    compensators.append((step.name, value, step.compensate))
            case Error(error):
                logger.info("saga step %s failed: %s", step.name, error.code)
                comp_run, comp_failed = await run_compensators(compensators)
                return Error(
                    SagaFailure(
                        error=error,
                        step_failed=step.name,
                        compensators_run=comp_run,
                        compensators_failed=comp_failed,
                    )
                )

    return Ok(SagaReport(steps_executed=executed, compensators_recorded=len(compensators)))


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "CompensationError",
    "Step",
    "SagaReport",
    "SagaFailure",
    "run_compensators",
    "run_saga",
)
