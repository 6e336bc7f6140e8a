"""
Cross-sell — category-diverse recommendations with a per-session pool cache.

    from cartsync import crosssell as X

    sampler = X.CrossSellSampler(catalog, limit=6)
    picks = await sampler.sample(store.state.items)
"""

from __future__ import annotations

from cartsync.crosssell._cache import (
    Tier,
    LocalTier,
    CacheResult,
    KeyFn,
    FetchFn,
    Cache,
    CacheExecutor,
    cache,
)
from cartsync.crosssell._sampler import Pool, ProductCatalog, CrossSellSampler

__all__ = (
    "Tier",
    "LocalTier",
    "CacheResult",
    "KeyFn",
    "FetchFn",
    "Cache",
    "CacheExecutor",
    "cache",
    "Pool",
    "ProductCatalog",
    "CrossSellSampler",
)
