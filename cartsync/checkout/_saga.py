"""
Checkout saga — sequential steps with compensation.

    order = step(create_order, compensate=cancel_order)
    placed = order.then(lambda receipt: step(create_session(receipt)))
    result = await run_chain(placed)

If a later step fails, compensators recorded by earlier steps run in
reverse order. A compensator signals failure by raising.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from combinators import lift as L
from kungfu import Error, LazyCoroResult, Ok, Result

from cartsync.observability import get_logger

logger = get_logger("cartsync.checkout.saga")

type Compensator[T] = Callable[[T], Awaitable[None]]
"""Receives the step's value and undoes it."""


class CompensationError(Exception):
    """Raised by a compensator whose undo call was refused."""


# ═══════════════════════════════════════════════════════════════════════════════
# Steps
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaStep[T, E]:
    action: LazyCoroResult[T, E]
    compensate: Compensator[T] | None = None

    def then[U, E2](self, f: Callable[[T], SagaStep[U, E2]]) -> Then[T, U, E, E2]:
        return Then(self, f)


@dataclass(frozen=True, slots=True)
class Then[T, U, E, E2]:
    inner: SagaStep[T, E]
    f: Callable[[T], SagaStep[U, E2]]


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    value: T
    steps_executed: int


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    error: E
    step_failed: int
    compensators_run: int
    compensators_failed: int

    @property
    def rollback_complete(self) -> bool:
        return self.compensators_failed == 0


def step[T, E](
    action: LazyCoroResult[T, E],
    compensate: Compensator[T] | None = None,
) -> SagaStep[T, E]:
    return SagaStep(action=action, compensate=compensate)


def from_async[T, E](
    action: Callable[[], Awaitable[T]],
    on_error: Callable[[Exception], E],
    compensate: Compensator[T] | None = None,
) -> SagaStep[T, E]:
    """Step from a plain coroutine function; exceptions become `on_error(e)`."""
    return SagaStep(action=L.catching_async(action, on_error=on_error), compensate=compensate)


# ═══════════════════════════════════════════════════════════════════════════════
# Execution
# ═══════════════════════════════════════════════════════════════════════════════

type Recorded = list[tuple[object, Compensator[object]]]


async def _run_step[T, E](s: SagaStep[T, E], recorded: Recorded) -> Result[T, E]:
    result = await s.action
    match result:
        case Ok(value):
            if s.compensate is not None:
                recorded.append((value, s.compensate))  # type: ignore[arg-type]
            return Ok(value)
        case Error(e):
            return Error(e)


async def run_compensators(recorded: Recorded) -> tuple[int, int]:
    """Undo in reverse order. Returns (run, failed)."""
    run = failed = 0
    for value, compensate in reversed(recorded):
        try:
            await compensate(value)
            run += 1
        except Exception as e:
            failed += 1
            logger.error("saga.compensation_failed", error=str(e))
    return run, failed


async def run_chain[T, U, E, E2](
    chain: Then[T, U, E, E2],
) -> Result[SagaResult[U], SagaError[E | E2]]:
    """Run `inner`, feed its value to `f`, run that; roll back on failure."""
    recorded: Recorded = []

    match await _run_step(chain.inner, recorded):
        case Error(e):
            run, failed = await run_compensators(recorded)
            return Error(SagaError(e, step_failed=1, compensators_run=run, compensators_failed=failed))
        case Ok(value):
            pass

    match await _run_step(chain.f(value), recorded):
        case Ok(final):
            return Ok(SagaResult(final, steps_executed=2))
        case Error(e2):
            run, failed = await run_compensators(recorded)
            return Error(SagaError(e2, step_failed=2, compensators_run=run, compensators_failed=failed))


__all__ = (
    "Compensator",
    "CompensationError",
    "SagaStep",
    "Then",
    "SagaResult",
    "SagaError",
    "step",
    "from_async",
    "run_compensators",
    "run_chain",
)
