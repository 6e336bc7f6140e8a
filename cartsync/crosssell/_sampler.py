"""
CrossSellSampler — diversified "you may also like" picks.

    one category (or none)  → that category's pool, in-cart products removed,
                              first `limit`
    several categories      → top `max_categories` by line count, fetched in
                              parallel, `per_category` each, shuffled, capped

Never returns an in-cart product, never more than `limit`.
"""

from __future__ import annotations

import asyncio
import random
from collections import Counter
from collections.abc import Sequence
from typing import Protocol

import combinators as C
from combinators import lift as L
from kungfu import Error, LazyCoroResult, Ok, Result

from cartsync._types import Unsubscribe
from cartsync.crosssell._cache import CacheExecutor, LocalTier, cache
from cartsync.errors import CartError, CartErrors
from cartsync.model import CrossSellCandidate, LineItem
from cartsync.observability import get_logger
from cartsync.store import CartChange, LocalCartStore

logger = get_logger("cartsync.crosssell")

type Pool = list[CrossSellCandidate]


class ProductCatalog(Protocol):
    """Product lookup by category. May raise; failures become empty pools."""

    async def by_category(self, category: str, limit: int) -> Pool:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Sampler
# ═══════════════════════════════════════════════════════════════════════════════


class CrossSellSampler:
    """
    Example:
        sampler = CrossSellSampler(catalog, rng=random.Random(7))
        picks = await sampler.sample(store.state.items)

        unwatch = sampler.watch(store)   # resample on every change
        sampler.latest                   # most recent picks
    """

    def __init__(
        self,
        catalog: ProductCatalog,
        *,
        limit: int = 6,
        per_category: int = 3,
        max_categories: int = 4,
        pool_size: int = 20,
        rng: random.Random | None = None,
    ) -> None:
        self._catalog = catalog
        self._limit = limit
        self._per_category = per_category
        self._max_categories = max_categories
        self._pool_size = pool_size
        self._rng = rng or random.Random()
        self._pools: CacheExecutor[str, Pool, CartError] = (
            cache(lambda category: f"category:{category}", self._fetch_pool)
            .tier(LocalTier(max_size=64))
            .build()
        )
        self._latest: Pool = []
        self._generation = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def latest(self) -> Pool:
        return list(self._latest)

    @property
    def pools(self) -> CacheExecutor[str, Pool, CartError]:
        return self._pools

    # ─── Pools ─────────────────────────────────────────────────────────────────

    def _fetch_pool(self, category: str) -> LazyCoroResult[Pool, CartError]:
        return L.catching_async(
            lambda: self._catalog.by_category(category, self._pool_size),
            on_error=lambda e: CartErrors.network(f"catalog lookup failed: {e}", category=category),
        )

    def _pool(self, category: str) -> LazyCoroResult[Pool, CartError]:
        async def lookup() -> Result[Pool, CartError]:
            match await self._pools.get(category):
                case Ok(found):
                    return Ok(found.value)
                case Error(e):
                    logger.warning("crosssell.pool_failed", category=category, error=str(e))
                    return Ok([])

        return LazyCoroResult(lookup)

    # ─── Sampling ──────────────────────────────────────────────────────────────

    async def sample(self, items: Sequence[LineItem]) -> Pool:
        if not items or self._limit <= 0:
            return []

        in_cart = {item.product_id for item in items}
        counts = Counter(item.category for item in items if item.category)

        if len(counts) <= 1:
            category = items[-1].category or next(iter(counts), None)
            if category is None:
                return []
            match await self._pool(category):
                case Ok(pool):
                    return [c for c in pool if c.product_id not in in_cart][: self._limit]
                case Error(_):
                    return []

        # Counter preserves first-seen order; sorted() is stable, so ties keep it.
        ranked = sorted(counts, key=lambda c: counts[c], reverse=True)[: self._max_categories]

        match await C.parallel(*[self._pool(category) for category in ranked]):
            case Ok(pools):
                pass
            case Error(_):
                return []

        picks: Pool = []
        taken: set[str] = set()
        for pool in pools:
            fresh = [
                c for c in pool if c.product_id not in in_cart and c.product_id not in taken
            ][: self._per_category]
            taken.update(c.product_id for c in fresh)
            picks.extend(fresh)

        self._rng.shuffle(picks)
        return picks[: self._limit]

    # ─── Watching ──────────────────────────────────────────────────────────────

    def refresh(self, items: Sequence[LineItem]) -> asyncio.Task[None]:
        """Resample in the background; only the newest request may publish."""
        self._generation += 1
        generation = self._generation

        async def run() -> None:
            try:
                picks = await self.sample(items)
            except Exception:
                logger.exception("crosssell.refresh_failed", generation=generation)
                return
            if generation == self._generation:
                self._latest = picks

        task = asyncio.get_running_loop().create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def watch(self, store: LocalCartStore) -> Unsubscribe:
        def on_change(change: CartChange) -> None:
            self.refresh(change.state.items)

        unsubscribe = store.subscribe(on_change)
        self.refresh(store.state.items)
        return unsubscribe

    async def settle(self) -> None:
        """Wait for in-flight resamples."""
        if self._tasks:
            await C.parallel(*[_joined(task) for task in tuple(self._tasks)])


def _joined(task: asyncio.Task[None]) -> LazyCoroResult[None, CartError]:
    async def join() -> Result[None, CartError]:
        await asyncio.wait((task,))
        return Ok(None)

    return LazyCoroResult(join)


__all__ = ("Pool", "ProductCatalog", "CrossSellSampler")
