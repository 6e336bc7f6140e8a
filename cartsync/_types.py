"""
Core types for cartsync.

Re-exports from kungfu/combinators + custom type aliases.
"""

from __future__ import annotations

import secrets
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any, Never, Protocol

# Re-export from kungfu
from kungfu import Result, Ok, Error, Option, Some, Nothing, LazyCoroResult

# Re-export from combinators
from combinators import LCR, NoError

# ═══════════════════════════════════════════════════════════════════════════════
# Lazy Computation Aliases
# ═══════════════════════════════════════════════════════════════════════════════

type Lazy[T, E] = LazyCoroResult[T, E]
"""Lazy async computation that may fail."""

type Pure[T] = Lazy[T, Never]
"""Lazy computation that cannot fail."""

# ═══════════════════════════════════════════════════════════════════════════════
# Injected Effects
# ═══════════════════════════════════════════════════════════════════════════════

type Clock = Callable[[], int]
"""Returns the current time in epoch milliseconds."""

type IdFactory = Callable[[], str]
"""Returns a fresh opaque identifier."""

type Unsubscribe = Callable[[], None]
"""Detaches a previously registered listener."""

type LineKey = str
"""`"{productId}::{variantId or ''}"` — identity of a line across merges."""


class EventEmitter(Protocol):
    """Anything that accepts analytics events (AnalyticsBuffer in practice)."""

    def emit(self, name: str, payload: Mapping[str, Any] | None = None) -> None:
        ...


def now_ms() -> int:
    return int(time.time() * 1000)


def new_line_id() -> str:
    return uuid.uuid4().hex


def new_client_id() -> str:
    return f"c_{secrets.token_hex(6)}"


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "Option",
    "Some",
    "Nothing",
    "LazyCoroResult",
    # Re-exports from combinators
    "LCR",
    "NoError",
    # Type aliases
    "Lazy",
    "Pure",
    "Clock",
    "IdFactory",
    "Unsubscribe",
    "LineKey",
    # Effects
    "EventEmitter",
    "now_ms",
    "new_line_id",
    "new_client_id",
)
