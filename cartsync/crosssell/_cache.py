"""
Tiered pool cache — per-session memo of catalog lookups.

Lookups try each tier in order and fall back to the fetch; only successful
fetches populate the tiers, so a failed category is retried next time.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from kungfu import Error, LazyCoroResult, Ok, Result

from cartsync.observability import get_logger

logger = get_logger("cartsync.crosssell.cache")

# ═══════════════════════════════════════════════════════════════════════════════
# Tier Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class Tier[T](Protocol):
    """
    One cache level.

    Example — shared tier across sessions:
        class SharedPoolTier:
            name = "shared"

            async def get(self, key: str) -> list[CrossSellCandidate] | None:
                return POOLS.get(key)

            async def set(self, key: str, value: list[CrossSellCandidate]) -> None:
                POOLS[key] = value

            async def delete(self, key: str) -> bool:
                return POOLS.pop(key, None) is not None

            async def clear(self) -> int:
                n = len(POOLS); POOLS.clear(); return n
    """

    @property
    def name(self) -> str:
        ...

    async def get(self, key: str) -> T | None:
        """None on miss."""
        ...

    async def set(self, key: str, value: T) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def clear(self) -> int:
        """Drop everything. Returns how many entries went."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# LocalTier — In-Memory LRU
# ═══════════════════════════════════════════════════════════════════════════════


class LocalTier[T]:
    """
    Bounded in-memory LRU.

    Example:
        tier = LocalTier[list[CrossSellCandidate]](max_size=32)
    """

    def __init__(self, max_size: int = 64) -> None:
        self._max_size = max_size
        self._entries: OrderedDict[str, T] = OrderedDict()

    @property
    def name(self) -> str:
        return "local"

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> T | None:
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    async def set(self, key: str, value: T) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)
        self._entries[key] = value

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count


# ═══════════════════════════════════════════════════════════════════════════════
# Lookup Result
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CacheResult[T]:
    value: T
    hit: bool
    tier: str | None


type KeyFn[K] = Callable[[K], str]
type FetchFn[K, T, E] = Callable[[K], LazyCoroResult[T, E]]

# ═══════════════════════════════════════════════════════════════════════════════
# Builder
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Cache[K, T, E]:
    """
    Fluent builder.

    Example:
        pools = (
            cache(lambda q: f"category:{q.category}", fetch_pool)
            .tier(LocalTier(max_size=32))
            .build()
        )
    """

    _key_fn: KeyFn[K]
    _fetch: FetchFn[K, T, E]
    _tiers: tuple[Tier[T], ...] = ()

    def tier(self, t: Tier[T]) -> Cache[K, T, E]:
        return Cache(self._key_fn, self._fetch, (*self._tiers, t))

    def build(self) -> CacheExecutor[K, T, E]:
        return CacheExecutor(key_fn=self._key_fn, fetch=self._fetch, tiers=self._tiers)


@dataclass(frozen=True, slots=True)
class CacheExecutor[K, T, E]:
    key_fn: KeyFn[K]
    fetch: FetchFn[K, T, E]
    tiers: tuple[Tier[T], ...]

    def get(self, key: K) -> LazyCoroResult[CacheResult[T], E]:
        """Tiers in order, then fetch; a fetched value fills every tier."""
        cache_key = self.key_fn(key)

        async def lookup() -> Result[CacheResult[T], E]:
            for t in self.tiers:
                try:
                    value = await t.get(cache_key)
                except Exception as e:
                    logger.warning("cache.tier_read_failed", tier=t.name, key=cache_key, error=str(e))
                    continue
                if value is not None:
                    return Ok(CacheResult(value=value, hit=True, tier=t.name))

            match await self.fetch(key):
                case Ok(value):
                    for t in self.tiers:
                        try:
                            await t.set(cache_key, value)
                        except Exception as e:
                            logger.warning("cache.tier_write_failed", tier=t.name, key=cache_key, error=str(e))
                    return Ok(CacheResult(value=value, hit=False, tier=None))
                case Error(e):
                    return Error(e)

        return LazyCoroResult(lookup)

    async def invalidate(self, key: K) -> bool:
        cache_key = self.key_fn(key)
        dropped = False
        for t in self.tiers:
            dropped = await t.delete(cache_key) or dropped
        return dropped

    async def clear(self) -> int:
        total = 0
        for t in self.tiers:
            total += await t.clear()
        return total


def cache[K, T, E](key: KeyFn[K], fetch: FetchFn[K, T, E]) -> Cache[K, T, E]:
    """Start a cache builder; types are inferred from the arguments."""
    return Cache(key, fetch)


__all__ = (
    "Tier",
    "LocalTier",
    "CacheResult",
    "KeyFn",
    "FetchFn",
    "Cache",
    "CacheExecutor",
    "cache",
)
