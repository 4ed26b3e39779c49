"""
MODULE OVERVIEW:
A small stale-while-revalidate cache for REST data that streams invalidate.

WHAT IS HAPPENING HERE:
Screens read lists (orders, menu, cake messages) through `get()`. Stream
handlers call `invalidate()` when an event says the list changed; the cache
refetches from the API. Concurrent revalidations of one key share a single
in-flight fetch, and a refetch that fails keeps serving the previous value.
Every invalidation bumps the entry's generation; a fetch that began before
the bump cannot mark the entry fresh, so `invalidate()` waits it out and
fetches again.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable

from loguru import logger

Fetcher = Callable[[], Awaitable[Any]]


@dataclass
class CacheEntry:
    fetcher: Fetcher
    data: Any = None
    loaded: bool = False
    stale: bool = True
    error: Exception | None = None
    revalidations: int = 0
    generation: int = 0
    fetched_generation: int = -1
    inflight: asyncio.Task | None = field(default=None, repr=False)


class QueryCache:
    def __init__(self):
        self._entries: Dict[Hashable, CacheEntry] = {}

    def register(self, key: Hashable, fetcher: Fetcher) -> None:
        if key in self._entries:
            self._entries[key].fetcher = fetcher
        else:
            self._entries[key] = CacheEntry(fetcher=fetcher)

    def entry(self, key: Hashable) -> CacheEntry:
        try:
            return self._entries[key]
        except KeyError:
            raise KeyError(f"No fetcher registered for cache key {key!r}") from None

    async def _fetch(self, key: Hashable, entry: CacheEntry) -> Any:
        entry.revalidations += 1
        started = entry.generation
        entry.fetched_generation = started
        try:
            data = await entry.fetcher()
        except Exception as e:
            entry.error = e
            logger.warning(f"cache_key={key!r} revalidation failed: {e}")
            if not entry.loaded:
                raise
            return entry.data
        entry.data = data
        entry.loaded = True
        # An invalidation that landed mid-fetch keeps the entry stale.
        entry.stale = entry.generation != started
        entry.error = None
        return data

    async def revalidate(self, key: Hashable) -> Any:
        entry = self.entry(key)
        if entry.inflight is None or entry.inflight.done():
            entry.inflight = asyncio.ensure_future(self._fetch(key, entry))
        return await asyncio.shield(entry.inflight)

    async def get(self, key: Hashable) -> Any:
        entry = self.entry(key)
        if entry.loaded and not entry.stale:
            return entry.data
        return await self.revalidate(key)

    async def invalidate(self, key: Hashable) -> Any:
        entry = self.entry(key)
        entry.stale = True
        entry.generation += 1
        wanted = entry.generation
        # A fetch already running when this change arrived read the old data.
        while True:
            data = await self.revalidate(key)
            if entry.fetched_generation >= wanted:
                return data

    async def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> None:
        keys = [k for k in self._entries if predicate(k)]
        await asyncio.gather(*(self.invalidate(k) for k in keys), return_exceptions=True)


def stream_invalidator(cache: QueryCache, *keys: Hashable) -> Callable[[Any], Awaitable[None]]:
    """Build a stream handler that revalidates `keys` whatever the payload says."""
    async def handler(_payload: Any) -> None:
        for key in keys:
            try:
                await cache.invalidate(key)
            except Exception as e:
                logger.warning(f"cache_key={key!r} invalidation from stream failed: {e}")
    return handler
