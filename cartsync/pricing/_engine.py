"""
Pricing engine — subtotal, stacked discounts, total.

Optimistic client approximation; the server re-prices at validate/checkout.
The ordering and clamping here must match it exactly:

    remaining = subtotal
    for each discount, in order:
        nominal = round(percent/100 × remaining)  | flat minor units
        take    = min(nominal, remaining)
        remaining -= take
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from cartsync.model import DiscountCode, DiscountKind, LineItem

# ═══════════════════════════════════════════════════════════════════════════════
# Totals
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Totals:
    """Invariant: total == max(subtotal - discount_amount, 0), discount_amount <= subtotal."""

    subtotal: int
    discount_amount: int
    total: int


ZERO = Totals(subtotal=0, discount_amount=0, total=0)


def round_half_up(value: Decimal) -> int:
    """Half-up rounding (0.5 → 1), not Python's banker's rounding."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def nominal_amount(discount: DiscountCode, remaining: int) -> int:
    """Unclamped value of one discount against what is still unclaimed."""
    amount = Decimal(str(discount.amount))
    match discount.kind:
        case DiscountKind.PERCENT:
            return round_half_up(amount * remaining / 100)
        case DiscountKind.FIXED_AMOUNT:
            return round_half_up(amount)


def subtotal_of(items: Iterable[LineItem]) -> int:
    return sum(item.unit_price * item.quantity for item in items)


# ═══════════════════════════════════════════════════════════════════════════════
# compute_totals() — pure
# ═══════════════════════════════════════════════════════════════════════════════


def compute_totals(
    items: Iterable[LineItem],
    discounts: Sequence[DiscountCode],
) -> Totals:
    """
    Compute subtotal, stacked discount amount and total.

    Example:
        totals = compute_totals(cart.items, cart.discounts)
        assert totals.total == max(totals.subtotal - totals.discount_amount, 0)
    """
    subtotal = subtotal_of(items)
    claimed = 0

    for discount in discounts:
        remaining = subtotal - claimed
        if remaining <= 0:
            break
        take = min(max(nominal_amount(discount, remaining), 0), remaining)
        claimed += take

    return Totals(
        subtotal=subtotal,
        discount_amount=claimed,
        total=max(subtotal - claimed, 0),
    )


__all__ = (
    "Totals",
    "ZERO",
    "round_half_up",
    "nominal_amount",
    "subtotal_of",
    "compute_totals",
)
