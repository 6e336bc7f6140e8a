"""
Cart model types — core data structures.

All money is integer minor units (cents).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from cartsync._types import LineKey

# ═══════════════════════════════════════════════════════════════════════════════
# Line Key
# ═══════════════════════════════════════════════════════════════════════════════


def line_key(product_id: str, variant_id: str | None) -> LineKey:
    """Identity of a line: same product + variant → same key."""
    return f"{product_id}::{variant_id or ''}"


# ═══════════════════════════════════════════════════════════════════════════════
# Line Item
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class LineItem:
    """
    One cart line.

    Invariant: 1 <= quantity, and quantity <= stock_ceiling when known.
    line_id is generated locally and survives merges.
    """

    line_id: str
    product_id: str
    variant_id: str | None
    title: str
    image: str
    unit_price: int
    quantity: int
    last_updated_at: int
    stock_ceiling: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict[str, Any])
    weight_grams: int | None = None
    tax_code: str | None = None

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {self.quantity}")
        if self.stock_ceiling is not None and self.quantity > self.stock_ceiling:
            raise ValueError(
                f"quantity {self.quantity} exceeds stock ceiling {self.stock_ceiling}"
            )

    @property
    def key(self) -> LineKey:
        return line_key(self.product_id, self.variant_id)

    @property
    def category(self) -> str | None:
        value = self.metadata.get("category")
        return value if isinstance(value, str) and value else None

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity

    def with_quantity(self, quantity: int, at: int) -> LineItem:
        return replace(self, quantity=quantity, last_updated_at=at)


# ═══════════════════════════════════════════════════════════════════════════════
# Discount Code
# ═══════════════════════════════════════════════════════════════════════════════


class DiscountKind(Enum):
    """Wire values match the remote document (`type` field)."""

    PERCENT = "Percent"
    FIXED_AMOUNT = "Fixed"


@dataclass(frozen=True, slots=True)
class DiscountCode:
    """
    A discount code.

    amount: percent (0–100) for PERCENT, minor units for FIXED_AMOUNT.
    Codes compare case-insensitively via `normalized`.
    """

    code: str
    kind: DiscountKind
    amount: float
    stackable: bool = True
    exclusion_group: str | None = None

    @property
    def normalized(self) -> str:
        return self.code.lower()

    def same_code(self, other: str) -> bool:
        return self.normalized == other.lower()


# ═══════════════════════════════════════════════════════════════════════════════
# Cart Snapshot — unit of synchronization
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CartSnapshot:
    """
    Versioned server-side cart.

    Invariant: version only increases; receivers ignore version <= last seen.
    """

    version: int
    items: tuple[LineItem, ...]
    discounts: tuple[DiscountCode, ...]
    currency: str
    last_writer_client_id: str | None
    updated_at: int

    @property
    def is_empty(self) -> bool:
        return not self.items


# ═══════════════════════════════════════════════════════════════════════════════
# Analytics / Catalog
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class AnalyticsEvent:
    name: str
    payload: dict[str, Any]
    timestamp: int


@dataclass(frozen=True, slots=True)
class CrossSellCandidate:
    product_id: str
    title: str
    image: str
    price: int
    category: str


@dataclass(frozen=True, slots=True)
class Product:
    """Catalog product as handed to `add_item`."""

    product_id: str
    title: str
    price: int
    image: str = ""
    category: str | None = None
    stock: int | None = None
    weight_grams: int | None = None
    tax_code: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "line_key",
    "LineItem",
    "DiscountKind",
    "DiscountCode",
    "CartSnapshot",
    "AnalyticsEvent",
    "CrossSellCandidate",
    "Product",
)
