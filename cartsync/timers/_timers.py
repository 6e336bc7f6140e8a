"""
Cancellable timers on the running event loop.

Debouncer — one pending run; rescheduling replaces it.
Interval  — fixed-period loop until stopped.

Action exceptions are logged and never escape into the loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from cartsync.observability import get_logger

type Action = Callable[[], Awaitable[None]]

logger = get_logger("cartsync.timers")


async def _run_guarded(name: str, action: Action) -> None:
    try:
        await action()
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("timer.action_failed", timer=name)


# ═══════════════════════════════════════════════════════════════════════════════
# Debouncer
# ═══════════════════════════════════════════════════════════════════════════════


class Debouncer:
    """
    Replace-on-reschedule timer.

    Example:
        push = Debouncer(0.7, coordinator.push_now, name="cart.push")
        push.schedule()   # every local mutation
        push.schedule()   # replaces the first; one push fires 0.7s later
    """

    def __init__(self, delay: float, action: Action, *, name: str = "debounce") -> None:
        self._delay = delay
        self._action = action
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> None:
        """(Re)arm the timer. Must be called with a running loop."""
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._fire())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Cancel any pending run and run the action now."""
        self.cancel()
        await _run_guarded(self._name, self._action)

    async def _fire(self) -> None:
        await asyncio.sleep(self._delay)
        # Detach first: a schedule() issued by the action must not cancel it.
        self._task = None
        await _run_guarded(self._name, self._action)


# ═══════════════════════════════════════════════════════════════════════════════
# Interval
# ═══════════════════════════════════════════════════════════════════════════════


class Interval:
    """
    Fixed-period repeating timer. The first tick fires one period after start.

    Example:
        beat = Interval(60.0, monitor.tick, name="cart.heartbeat")
        beat.start()
        beat.start()   # no-op while running
        beat.stop()
    """

    def __init__(self, period: float, action: Action, *, name: str = "interval") -> None:
        self._period = period
        self._action = action
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._period)
            await _run_guarded(self._name, self._action)


__all__ = ("Action", "Debouncer", "Interval")
