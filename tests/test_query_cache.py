"""Tests for the stale-while-revalidate QueryCache."""

from __future__ import annotations

import asyncio

import pytest

from bakehouse_kiosk.client.query_cache import QueryCache, stream_invalidator


class CountingFetcher:
    def __init__(self, values):
        self.values = list(values)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        value = self.values[min(self.calls, len(self.values)) - 1]
        if isinstance(value, Exception):
            raise value
        return value


@pytest.mark.asyncio
async def test_get_fetches_once_then_serves_cached():
    cache = QueryCache()
    fetcher = CountingFetcher([["croissant"]])
    cache.register("menu", fetcher)

    assert await cache.get("menu") == ["croissant"]
    assert await cache.get("menu") == ["croissant"]
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_invalidate_refetches():
    cache = QueryCache()
    fetcher = CountingFetcher([["ORD-1"], ["ORD-1", "ORD-2"]])
    cache.register("orders", fetcher)

    await cache.get("orders")
    assert await cache.invalidate("orders") == ["ORD-1", "ORD-2"]
    assert await cache.get("orders") == ["ORD-1", "ORD-2"]
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_concurrent_invalidations_share_one_fetch():
    cache = QueryCache()
    gate = asyncio.Event()
    calls = []

    async def fetcher():
        calls.append(1)
        await gate.wait()
        return "fresh"

    cache.register("orders", fetcher)
    pending = asyncio.gather(cache.invalidate("orders"), cache.invalidate("orders"), cache.get("orders"))
    await asyncio.sleep(0)
    gate.set()

    assert await pending == ["fresh", "fresh", "fresh"]
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_failed_refetch_keeps_previous_data():
    cache = QueryCache()
    fetcher = CountingFetcher(["v1", RuntimeError("backend down")])
    cache.register("menu", fetcher)

    await cache.get("menu")
    assert await cache.invalidate("menu") == "v1"
    assert isinstance(cache.entry("menu").error, RuntimeError)


@pytest.mark.asyncio
async def test_first_load_failure_propagates():
    cache = QueryCache()
    cache.register("menu", CountingFetcher([RuntimeError("backend down")]))

    with pytest.raises(RuntimeError):
        await cache.get("menu")


@pytest.mark.asyncio
async def test_unregistered_key_raises():
    with pytest.raises(KeyError):
        await QueryCache().get("nothing")


@pytest.mark.asyncio
async def test_invalidate_where_matches_keys():
    cache = QueryCache()
    orders = CountingFetcher(["a"])
    orders_today = CountingFetcher(["b"])
    menu = CountingFetcher(["c"])
    cache.register(("orders", "all"), orders)
    cache.register(("orders", "today"), orders_today)
    cache.register(("menu",), menu)

    await cache.invalidate_where(lambda key: key[0] == "orders")

    assert (orders.calls, orders_today.calls, menu.calls) == (1, 1, 0)


@pytest.mark.asyncio
async def test_stream_invalidator_revalidates_keys():
    cache = QueryCache()
    orders = CountingFetcher(["v1", "v2"])
    cache.register("orders", orders)
    await cache.get("orders")

    handler = stream_invalidator(cache, "orders", "missing-key")
    await handler({"order_id": 3})

    assert orders.calls == 2
    assert await cache.get("orders") == "v2"


@pytest.mark.asyncio
async def test_invalidate_during_fetch_refetches_after_it():
    cache = QueryCache()
    server = {"version": 1}
    fetch_started = asyncio.Event()
    gate = asyncio.Event()
    seen = []

    async def fetcher():
        version = server["version"]
        seen.append(version)
        fetch_started.set()
        await gate.wait()
        return version

    cache.register("orders", fetcher)
    first_read = asyncio.create_task(cache.get("orders"))
    await asyncio.wait_for(fetch_started.wait(), timeout=2)

    server["version"] = 2
    refresh = asyncio.create_task(cache.invalidate("orders"))
    await asyncio.sleep(0)
    gate.set()

    assert await first_read == 1
    assert await refresh == 2
    assert seen == [1, 2]
    assert cache.entry("orders").stale is False
    assert await cache.get("orders") == 2


@pytest.mark.asyncio
async def test_fetch_overtaken_by_invalidation_leaves_entry_stale():
    cache = QueryCache()
    fetch_started = asyncio.Event()
    gate = asyncio.Event()

    async def fetcher():
        fetch_started.set()
        await gate.wait()
        return "old"

    cache.register("menu", fetcher)
    first_read = asyncio.create_task(cache.get("menu"))
    await asyncio.wait_for(fetch_started.wait(), timeout=2)
    cache.entry("menu").generation += 1
    gate.set()

    assert await first_read == "old"
    assert cache.entry("menu").stale is True
