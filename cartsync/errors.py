"""
Cart errors — one error value, many kinds.

All failures are local and recoverable: the worst case is a stale cart that a
later successful push reconciles. Errors travel as `Error(CartError(...))`,
never as raised exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

# ═══════════════════════════════════════════════════════════════════════════════
# Error Kinds
# ═══════════════════════════════════════════════════════════════════════════════


class CartErrorKind(Enum):
    """
    Cart error kinds.

    NETWORK: transport rejection or non-OK response. Push retries on the
             next debounce cycle; validate/estimate/heartbeat degrade.
    DRIFT: validation reported server-side changes; caller must re-confirm.
    DISCOUNT_REJECTED: code not found / already applied; per-code reason.
    STORAGE: durable local store unreadable or unwritable.
    INVALID: malformed payload or argument.
    """

    NETWORK = auto()
    DRIFT = auto()
    DISCOUNT_REJECTED = auto()
    STORAGE = auto()
    INVALID = auto()


# ═══════════════════════════════════════════════════════════════════════════════
# Cart Error
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CartError:
    """Cart operation error."""

    kind: CartErrorKind
    message: str
    detail: dict[str, Any] = field(default_factory=dict[str, Any])

    @property
    def reason(self) -> str | None:
        """Short machine reason (`not_found`, `duplicate`, ...) if any."""
        value = self.detail.get("reason")
        return value if isinstance(value, str) else None

    def __str__(self) -> str:
        return f"{self.kind.name.lower()}: {self.message}"


class CartErrors:
    """Constructors for common errors."""

    @staticmethod
    def network(message: str, **detail: Any) -> CartError:
        return CartError(CartErrorKind.NETWORK, message, detail)

    @staticmethod
    def drift(message: str, **detail: Any) -> CartError:
        return CartError(CartErrorKind.DRIFT, message, detail)

    @staticmethod
    def discount_rejected(code: str, reason: str) -> CartError:
        return CartError(
            CartErrorKind.DISCOUNT_REJECTED,
            f"discount code {code!r} rejected: {reason}",
            {"code": code, "reason": reason},
        )

    @staticmethod
    def storage(message: str, **detail: Any) -> CartError:
        return CartError(CartErrorKind.STORAGE, message, detail)

    @staticmethod
    def invalid(message: str, **detail: Any) -> CartError:
        return CartError(CartErrorKind.INVALID, message, detail)


__all__ = ("CartErrorKind", "CartError", "CartErrors")
