"""
Discount catalog — which codes a shopper may apply.

Codes come from a global list and an optional site-scoped list, fetched in
parallel and deduplicated by code (later entries win). A failing source
contributes nothing rather than failing the whole load.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

import combinators as C
from kungfu import Error, LazyCoroResult, Ok, Result

from cartsync.errors import CartError, CartErrors
from cartsync.model import DiscountCode
from cartsync.observability import get_logger

logger = get_logger("cartsync.pricing.catalog")

# ═══════════════════════════════════════════════════════════════════════════════
# Discount Source — external collaborator
# ═══════════════════════════════════════════════════════════════════════════════


class DiscountSource(Protocol):
    """Where published discount codes live (document store, admin API, ...)."""

    async def global_codes(self, user_id: str) -> Result[list[DiscountCode], CartError]:
        ...

    async def site_codes(
        self, user_id: str, site_id: str
    ) -> Result[list[DiscountCode], CartError]:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class DiscountCatalog:
    """Deduplicated, case-insensitive set of applicable codes."""

    codes: tuple[DiscountCode, ...] = ()

    @classmethod
    def of(cls, *lists: Iterable[DiscountCode]) -> DiscountCatalog:
        by_code: dict[str, DiscountCode] = {}
        for codes in lists:
            for code in codes:
                by_code[code.normalized] = code
        return cls(tuple(by_code.values()))

    def find(self, code: str) -> DiscountCode | None:
        wanted = code.strip().lower()
        return next((c for c in self.codes if c.normalized == wanted), None)

    def apply_code(
        self,
        applied: Sequence[DiscountCode],
        code_input: str,
    ) -> Result[tuple[DiscountCode, ...], CartError]:
        """
        Append a code to the applied list.

        Unknown → DISCOUNT_REJECTED(not_found); already applied →
        DISCOUNT_REJECTED(duplicate). The applied list is never mutated.
        """
        found = self.find(code_input)
        if found is None:
            return Error(CartErrors.discount_rejected(code_input, "not_found"))
        if any(a.same_code(found.code) for a in applied):
            return Error(CartErrors.discount_rejected(found.code, "duplicate"))
        return Ok((*applied, found))

    def __len__(self) -> int:
        return len(self.codes)


# ═══════════════════════════════════════════════════════════════════════════════
# load_catalog() — parallel fetch via combinators
# ═══════════════════════════════════════════════════════════════════════════════


def _tolerant(
    fetch: LazyCoroResult[list[DiscountCode], CartError],
    scope: str,
) -> LazyCoroResult[list[DiscountCode], CartError]:
    async def run() -> Result[list[DiscountCode], CartError]:
        result = await fetch
        match result:
            case Ok(codes):
                return Ok(codes)
            case Error(e):
                logger.warning("discounts.fetch_failed", scope=scope, error=str(e))
                return Ok([])

    return LazyCoroResult(run)


async def load_catalog(
    source: DiscountSource,
    user_id: str,
    site_id: str | None = None,
) -> Result[DiscountCatalog, CartError]:
    """
    Fetch global (+ site) codes in parallel and build a catalog.

    Example:
        match await load_catalog(source, uid, site_id="s1"):
            case Ok(catalog):
                store.apply_code(catalog, "SAVE10")
    """
    fetches = [
        _tolerant(LazyCoroResult(lambda: source.global_codes(user_id)), "global"),
    ]
    if site_id:
        fetches.append(
            _tolerant(
                LazyCoroResult(lambda: source.site_codes(user_id, site_id)), "site"
            )
        )

    result = await C.parallel(*fetches)
    match result:
        case Ok(lists):
            catalog = DiscountCatalog.of(*lists)
            logger.debug("discounts.loaded", count=len(catalog), site_id=site_id)
            return Ok(catalog)
        case Error(e):
            return Error(e)


__all__ = ("DiscountSource", "DiscountCatalog", "load_catalog")
