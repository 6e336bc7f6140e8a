"""
MergeResolver — guest cart ∪ server cart on sign-in.

    both empty                          → NOOP
    same keys, identical quantities     → RELOAD_ECHO (adopt remote as-is)
    anything else                       → MERGED (union, summed quantities)

RELOAD_ECHO exists because a signed-in shopper who reloads the page still
has the same cart in local storage; summing would double every line.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from enum import Enum, auto

from cartsync._types import Clock, LineKey
from cartsync.model import CartSnapshot, DiscountCode, LineItem

# ═══════════════════════════════════════════════════════════════════════════════
# Outcome
# ═══════════════════════════════════════════════════════════════════════════════


class MergeKind(Enum):
    NOOP = auto()
    RELOAD_ECHO = auto()
    MERGED = auto()


@dataclass(frozen=True, slots=True)
class MergeOutcome:
    """Resulting cart plus the remote version it was resolved against."""

    kind: MergeKind
    items: tuple[LineItem, ...]
    discounts: tuple[DiscountCode, ...]
    base_version: int


# ═══════════════════════════════════════════════════════════════════════════════
# Presentation carry-over
# ═══════════════════════════════════════════════════════════════════════════════


def adopt_presentation(remote: LineItem, local: LineItem | None) -> LineItem:
    """
    Remote quantity/price/timestamp with the local line's id, title, image,
    metadata, weight and tax code. The local stock ceiling survives only if
    the remote quantity still fits under it.
    """
    if local is None:
        return remote
    ceiling = (
        local.stock_ceiling
        if local.stock_ceiling is not None and remote.quantity <= local.stock_ceiling
        else remote.stock_ceiling
    )
    return replace(
        remote,
        line_id=local.line_id,
        title=local.title,
        image=local.image,
        metadata=dict(local.metadata),
        weight_grams=local.weight_grams,
        tax_code=local.tax_code,
        stock_ceiling=ceiling,
    )


def adopt_remote_lines(
    remote_items: Iterable[LineItem],
    local_items: Iterable[LineItem],
) -> tuple[LineItem, ...]:
    """Remote lines, in remote order, dressed with matching local lines."""
    by_key = {line.key: line for line in local_items}
    return tuple(adopt_presentation(r, by_key.get(r.key)) for r in remote_items)


def _quantities(items: Iterable[LineItem]) -> dict[LineKey, int]:
    return {item.key: item.quantity for item in items}


def _summed(local: LineItem, remote: LineItem, at: int) -> LineItem:
    qty = local.quantity + remote.quantity
    if local.stock_ceiling is not None:
        qty = min(qty, local.stock_ceiling)
    return replace(local, quantity=qty, unit_price=remote.unit_price, last_updated_at=at)


# ═══════════════════════════════════════════════════════════════════════════════
# resolve_merge() — pure
# ═══════════════════════════════════════════════════════════════════════════════


def resolve_merge(
    local_items: Sequence[LineItem],
    remote: CartSnapshot | None,
    *,
    local_discounts: Sequence[DiscountCode] = (),
    clock: Clock,
) -> MergeOutcome:
    """
    Resolve a guest cart against the server cart for the same identity.

    Example:
        outcome = resolve_merge(store.state.items, remote, clock=now_ms)
        # local {A:2} + remote {A:1, B:3} → {A:3, B:3}
    """
    remote_items = remote.items if remote is not None else ()
    remote_discounts = remote.discounts if remote is not None else ()
    base_version = remote.version if remote is not None else 0

    if not local_items and not remote_items:
        return MergeOutcome(MergeKind.NOOP, (), tuple(local_discounts), base_version)

    if local_items and remote_items and _quantities(local_items) == _quantities(remote_items):
        return MergeOutcome(
            MergeKind.RELOAD_ECHO,
            adopt_remote_lines(remote_items, local_items),
            tuple(remote_discounts),
            base_version,
        )

    now = clock()
    local_by_key = {line.key: line for line in local_items}
    remote_keys = {line.key for line in remote_items}

    merged: list[LineItem] = []
    for r in remote_items:
        local = local_by_key.get(r.key)
        merged.append(_summed(local, r, now) if local is not None else r)
    merged.extend(line for line in local_items if line.key not in remote_keys)

    discounts = list(local_discounts)
    for d in remote_discounts:
        if not any(existing.same_code(d.code) for existing in discounts):
            discounts.append(d)

    return MergeOutcome(MergeKind.MERGED, tuple(merged), tuple(discounts), base_version)


__all__ = (
    "MergeKind",
    "MergeOutcome",
    "adopt_presentation",
    "adopt_remote_lines",
    "resolve_merge",
)
