"""
Timers — debounce and fixed-interval scheduling on asyncio.

    from cartsync import timers as T

    push = T.Debouncer(0.7, push_now)
    push.schedule()
"""

from __future__ import annotations

from cartsync.timers._timers import Action, Debouncer, Interval

__all__ = ("Action", "Debouncer", "Interval")
