import asyncio
from unittest.mock import AsyncMock

import pytest

from obs_queue.shared.cache import MISSING, AsyncTTLCache, cached


class Store:
    def __init__(self) -> None:
        self.read = AsyncMock(return_value="v1")

    async def get(self, key: str):
        return await self.read(key)


def make_store(cache: AsyncTTLCache) -> Store:
    store = Store()
    store.get = cached(cache, key_func=lambda key: f"k:{key}", retry_delay=0)(store.get)
    return store


async def test_second_read_is_served_from_memory():
    store = make_store(AsyncTTLCache())

    assert await store.get("a") == "v1"
    assert await store.get("a") == "v1"
    store.read.assert_awaited_once_with("a")


async def test_none_is_cached():
    cache = AsyncTTLCache()
    store = make_store(cache)
    store.read.return_value = None

    assert await store.get("a") is None
    assert await store.get("a") is None
    assert store.read.await_count == 1


async def test_write_through_replaces_value():
    cache = AsyncTTLCache()
    store = make_store(cache)
    await store.get("a")

    cache.set("k:a", "v2")

    assert await store.get("a") == "v2"
    store.read.assert_awaited_once()


async def test_concurrent_misses_share_one_load():
    store = make_store(AsyncTTLCache())
    release = asyncio.Event()

    async def slow(key):
        await release.wait()
        return "v1"

    store.read.side_effect = slow
    readers = [asyncio.create_task(store.get("a")) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()

    assert await asyncio.gather(*readers) == ["v1"] * 5
    assert store.read.await_count == 1


async def test_transient_failure_is_retried():
    store = make_store(AsyncTTLCache())
    store.read.side_effect = [ConnectionError("blip"), "v1"]

    assert await store.get("a") == "v1"
    assert store.read.await_count == 2


async def test_last_known_value_served_when_storage_is_down():
    cache = AsyncTTLCache(ttl=0.01)
    store = make_store(cache)
    await store.get("a")
    await asyncio.sleep(0.02)
    assert cache.get("k:a") is MISSING

    store.read.side_effect = ConnectionError("db down")

    assert await store.get("a") == "v1"


async def test_failure_without_known_value_raises():
    store = make_store(AsyncTTLCache())
    store.read.side_effect = ConnectionError("db down")

    with pytest.raises(ConnectionError):
        await store.get("a")
    assert store.read.await_count == 2


def test_last_good_store_is_bounded():
    cache = AsyncTTLCache(maxsize=2)
    for key in ("a", "b", "c"):
        cache.set(key, key)

    assert cache.last_good("a") is MISSING
    assert cache.last_good("c") == "c"
