"""
Model — cart data types and their payload codecs.

    from cartsync import model as M

    line = M.LineItem(line_id="l1", product_id="p1", variant_id=None, ...)
    wire = M.line_to_wire(line)
"""

from __future__ import annotations

from cartsync.model._types import (
    line_key,
    LineItem,
    DiscountKind,
    DiscountCode,
    CartSnapshot,
    AnalyticsEvent,
    CrossSellCandidate,
    Product,
)
from cartsync.model._codec import (
    Payload,
    discount_to_wire,
    discount_to_storage,
    discount_from_wire,
    line_to_wire,
    wire_key,
    hydrate_line,
    hydrate_lines,
    line_to_storage,
    line_from_storage,
    snapshot_to_document,
    snapshot_from_document,
)

__all__ = (
    # Types
    "line_key",
    "LineItem",
    "DiscountKind",
    "DiscountCode",
    "CartSnapshot",
    "AnalyticsEvent",
    "CrossSellCandidate",
    "Product",
    # Codecs
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
