"""
Pricing — totals with stacked discounts, and the discount catalog.

    from cartsync import pricing as P

    totals = P.compute_totals(items, discounts)
    applied = P.DiscountCatalog.of(global_codes).apply_code(applied, "SAVE10")
"""

from __future__ import annotations

from cartsync.pricing._engine import (
    Totals,
    ZERO,
    round_half_up,
    nominal_amount,
    subtotal_of,
    compute_totals,
)
from cartsync.pricing._catalog import (
    DiscountSource,
    DiscountCatalog,
    load_catalog,
)

__all__ = (
    "Totals",
    "ZERO",
    "round_half_up",
    "nominal_amount",
    "subtotal_of",
    "compute_totals",
    "DiscountSource",
    "DiscountCatalog",
    "load_catalog",
)
