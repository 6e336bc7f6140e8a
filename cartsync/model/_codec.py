"""
Codecs — model ↔ wire / storage payloads.

Three shapes:
- wire line/discount: what the remote document and `/cart/*` endpoints carry
- storage: full local mirror (every field, so reload is lossless)
- document: the remote versioned cart `{version, items, discounts, ...}`

Remote lines carry no title/image/metadata; `hydrate_line` borrows those
from the matching local line so line ids stay stable.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from cartsync._types import Clock, IdFactory, LineKey
from cartsync.model._types import (
    CartSnapshot,
    DiscountCode,
    DiscountKind,
    LineItem,
    line_key,
)

type Payload = dict[str, Any]

# ═══════════════════════════════════════════════════════════════════════════════
# Discounts
# ═══════════════════════════════════════════════════════════════════════════════


def discount_to_wire(d: DiscountCode) -> Payload:
    return {"code": d.code, "type": d.kind.value, "amount": d.amount}


def discount_to_storage(d: DiscountCode) -> Payload:
    return {
        **discount_to_wire(d),
        "stackable": d.stackable,
        "nonStackingGroup": d.exclusion_group,
    }


def discount_from_wire(data: Mapping[str, Any]) -> DiscountCode:
    """Accepts both wire and storage shapes; unknown `type` → fixed amount."""
    raw_type = data.get("type", DiscountKind.FIXED_AMOUNT.value)
    kind = (
        DiscountKind.PERCENT
        if raw_type == DiscountKind.PERCENT.value
        else DiscountKind.FIXED_AMOUNT
    )
    return DiscountCode(
        code=str(data["code"]),
        kind=kind,
        amount=float(data.get("amount", 0)),
        stackable=data.get("stackable", True) is not False,
        exclusion_group=data.get("nonStackingGroup"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Lines — wire
# ═══════════════════════════════════════════════════════════════════════════════


def line_to_wire(line: LineItem) -> Payload:
    return {
        "productId": line.product_id,
        "variantId": line.variant_id,
        "qty": line.quantity,
        "price": line.unit_price,
        "lineUpdatedAt": line.last_updated_at,
    }


def wire_key(data: Mapping[str, Any]) -> LineKey:
    return line_key(str(data["productId"]), data.get("variantId") or None)


def hydrate_line(
    data: Mapping[str, Any],
    existing: LineItem | None,
    *,
    id_factory: IdFactory,
    clock: Clock,
) -> LineItem | None:
    """
    Build a local line from a wire line.

    Presentation fields come from `existing` (same key) when present.
    Returns None for lines whose quantity is not a positive integer.
    """
    qty = int(data.get("qty", 0))
    if qty < 1:
        return None

    ceiling: int | None = None
    if existing is not None and existing.stock_ceiling is not None:
        ceiling = existing.stock_ceiling if qty <= existing.stock_ceiling else None
    stock = data.get("stock")
    if isinstance(stock, int) and stock >= qty:
        ceiling = stock

    return LineItem(
        line_id=existing.line_id if existing is not None else id_factory(),
        product_id=str(data["productId"]),
        variant_id=data.get("variantId") or None,
        title=str(data.get("title") or (existing.title if existing else "Item")),
        image=str(data.get("image") or (existing.image if existing else "")),
        unit_price=int(data.get("price", existing.unit_price if existing else 0)),
        quantity=qty,
        last_updated_at=int(data.get("lineUpdatedAt") or clock()),
        stock_ceiling=ceiling,
        metadata=dict(existing.metadata) if existing is not None else {},
        weight_grams=existing.weight_grams if existing is not None else None,
        tax_code=existing.tax_code if existing is not None else None,
    )


def hydrate_lines(
    wire_items: Iterable[Mapping[str, Any]],
    existing: Iterable[LineItem],
    *,
    id_factory: IdFactory,
    clock: Clock,
) -> tuple[LineItem, ...]:
    by_key = {line.key: line for line in existing}
    lines: list[LineItem] = []
    for data in wire_items:
        line = hydrate_line(
            data, by_key.get(wire_key(data)), id_factory=id_factory, clock=clock
        )
        if line is not None:
            lines.append(line)
    return tuple(lines)


# ═══════════════════════════════════════════════════════════════════════════════
# Lines — storage (lossless)
# ═══════════════════════════════════════════════════════════════════════════════


def line_to_storage(line: LineItem) -> Payload:
    return {
        "id": line.line_id,
        "productId": line.product_id,
        "variantId": line.variant_id,
        "title": line.title,
        "image": line.image,
        "price": line.unit_price,
        "qty": line.quantity,
        "stock": line.stock_ceiling,
        "lineUpdatedAt": line.last_updated_at,
        "meta": dict(line.metadata),
        "weight": line.weight_grams,
        "taxCode": line.tax_code,
    }


def line_from_storage(data: Mapping[str, Any]) -> LineItem:
    """Raises KeyError / TypeError / ValueError on malformed payloads."""
    return LineItem(
        line_id=str(data["id"]),
        product_id=str(data["productId"]),
        variant_id=data.get("variantId"),
        title=str(data.get("title", "")),
        image=str(data.get("image", "")),
        unit_price=int(data["price"]),
        quantity=int(data["qty"]),
        last_updated_at=int(data.get("lineUpdatedAt", 0)),
        stock_ceiling=data.get("stock"),
        metadata=dict(data.get("meta") or {}),
        weight_grams=data.get("weight"),
        tax_code=data.get("taxCode"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Remote Document
# ═══════════════════════════════════════════════════════════════════════════════


def snapshot_to_document(snapshot: CartSnapshot) -> Payload:
    return {
        "version": snapshot.version,
        "items": [line_to_wire(i) for i in snapshot.items],
        "discounts": [discount_to_wire(d) for d in snapshot.discounts],
        "currency": snapshot.currency,
        "lastClientId": snapshot.last_writer_client_id,
        "updatedAt": snapshot.updated_at,
    }


def snapshot_from_document(
    doc: Mapping[str, Any],
    *,
    existing: Iterable[LineItem] = (),
    id_factory: IdFactory,
    clock: Clock,
    default_currency: str = "USD",
) -> CartSnapshot:
    """Raises KeyError / TypeError / ValueError on malformed documents."""
    items = hydrate_lines(
        doc.get("items") or [], existing, id_factory=id_factory, clock=clock
    )
    discounts = tuple(discount_from_wire(d) for d in doc.get("discounts") or [])
    return CartSnapshot(
        version=int(doc.get("version") or 0),
        items=items,
        discounts=discounts,
        currency=str(doc.get("currency") or default_currency),
        last_writer_client_id=doc.get("lastClientId"),
        updated_at=int(doc.get("updatedAt") or 0),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Payload",
    "discount_to_wire",
    "discount_to_storage",
    "discount_from_wire",
    "line_to_wire",
    "wire_key",
    "hydrate_line",
    "hydrate_lines",
    "line_to_storage",
    "line_from_storage",
    "snapshot_to_document",
    "snapshot_from_document",
)
