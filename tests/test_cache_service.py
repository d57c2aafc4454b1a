"""
Read-through cache wrapper and memory store behaviour.
"""
import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ranklens.config import Settings
from ranklens.services.cache_service import _MISS, CacheService, invalidate_project_cache
from ranklens.utils.cache import (
    TTL_MISSING,
    WILDCARD,
    CacheBackendError,
    MemoryCacheStore,
    RedisCacheStore,
    close_cache_store,
    get_cache_store,
    init_cache_store,
    build_cache_key,
    build_cache_pattern,
)


class CountingProducer:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


def test_key_format_quotes_parts():
    assert build_cache_key(["page-metrics", "新聞", 30], prefix="p") == "p:page-metrics:%E6%96%B0%E8%81%9E:30"
    assert build_cache_key(["a:b"], prefix="p") == "p:a%3Ab"


def test_pattern_keeps_wildcard():
    assert build_cache_pattern(["page-metrics", "news", WILDCARD], prefix="p") == "p:page-metrics:news:*"


def test_literal_star_part_is_quoted():
    assert build_cache_pattern(["page-metrics", "*", WILDCARD], prefix="p") == "p:page-metrics:%2A:*"


def test_second_call_is_served_from_cache(cache):
    producer = CountingProducer({"rows": [1, 2]})
    get_data = cache.wrap(producer, ["page-metrics", "news", "h1"], ttl_seconds=60)

    async def run():
        first = await get_data()
        second = await get_data()
        return first, second

    first, second = asyncio.run(run())
    assert first == second == {"rows": [1, 2]}
    assert producer.calls == 1


def test_invalidate_exact_forces_recompute(cache):
    producer = CountingProducer([1])
    key = ["keyword-ranks", "news", "h1"]
    get_data = cache.wrap(producer, key, ttl_seconds=60)

    async def run():
        await get_data()
        removed = await cache.invalidate_exact(key)
        await get_data()
        return removed

    assert asyncio.run(run()) is True
    assert producer.calls == 2


def test_backend_down_computes_directly(failing_store):
    store = failing_store
    cache = CacheService(store, prefix="test")
    producer = CountingProducer({"ok": True})
    get_data = cache.wrap(producer, ["x"], ttl_seconds=60)

    async def run():
        return await get_data(), await get_data()

    assert asyncio.run(run()) == ({"ok": True}, {"ok": True})
    assert producer.calls == 2
    assert store.calls >= 2


def test_invalidation_on_failing_backend_is_quiet(failing_store):
    cache = CacheService(failing_store, prefix="test")

    async def run():
        return (
            await cache.invalidate_exact(["x"]),
            await cache.invalidate_pattern(["x", WILDCARD]),
            await cache.cache_info(["x"]),
        )

    assert asyncio.run(run()) == (False, 0, None)


def test_set_failure_still_returns_value(memory_store):
    async def broken_set(key, value, ttl_seconds):
        raise ConnectionError("reset by peer")

    memory_store.set_with_expiry = broken_set
    cache = CacheService(memory_store, prefix="test")
    producer = CountingProducer(42)

    assert asyncio.run(cache.wrap(producer, ["x"], ttl_seconds=60)()) == 42
    assert memory_store.keys() == []


def test_corrupted_entry_is_deleted_and_recomputed(cache, memory_store):
    key = ["page-metrics", "news", "h1"]
    producer = CountingProducer({"fresh": True})

    async def run():
        await memory_store.set_with_expiry(cache.key_for(key), b"{not json", 60)
        return await cache.wrap(producer, key, ttl_seconds=60)()

    assert asyncio.run(run()) == {"fresh": True}
    assert producer.calls == 1


def test_pattern_invalidation_scopes_to_project(cache, memory_store):
    async def run():
        for parts in (
            ["page-metrics", "news", "a"],
            ["keyword-ranks", "news", "b"],
            ["page-metrics", "sports", "c"],
            ["projects"],
        ):
            await cache.wrap(CountingProducer(1), parts, ttl_seconds=60)()
        return await invalidate_project_cache(cache, "news")

    assert asyncio.run(run()) == 2
    assert sorted(memory_store.keys()) == ["test:page-metrics:sports:c", "test:projects"]


def test_star_project_id_only_drops_its_own_entries(cache, memory_store):
    async def run():
        for parts in (
            ["page-metrics", "*", "a"],
            ["page-metrics", "news", "b"],
            ["keyword-ranks", "sports", "c"],
        ):
            await cache.wrap(CountingProducer(1), parts, ttl_seconds=60)()
        return await invalidate_project_cache(cache, "*")

    assert asyncio.run(run()) == 1
    assert sorted(memory_store.keys()) == ["test:keyword-ranks:sports:c", "test:page-metrics:news:b"]


def test_cache_info_reports_ttl(cache):
    async def run():
        await cache.wrap(CountingProducer(1), ["k"], ttl_seconds=120)()
        return await cache.cache_info(["k"]), await cache.cache_info(["missing"])

    present, missing = asyncio.run(run())
    assert present["exists"] is True
    assert 0 < present["ttl"] <= 120
    assert missing == {"key": "test:missing", "exists": False, "ttl": TTL_MISSING}


def test_single_flight_shares_one_computation(memory_store):
    cache = CacheService(memory_store, prefix="test", single_flight=True)
    calls = []

    async def slow():
        calls.append(1)
        await asyncio.sleep(0.05)
        return "value"

    get_data = cache.wrap(slow, ["slow"], ttl_seconds=60)

    async def run():
        return await asyncio.gather(get_data(), get_data(), get_data())

    assert asyncio.run(run()) == ["value", "value", "value"]
    assert len(calls) == 1


def test_producer_errors_propagate_and_nothing_is_stored(cache, memory_store):
    async def failing():
        raise RuntimeError("upstream down")

    async def run():
        try:
            await cache.wrap(failing, ["x"], ttl_seconds=60)()
        except RuntimeError as e:
            return str(e)

    assert asyncio.run(run()) == "upstream down"
    assert memory_store.keys() == []


class TestMemoryStore:
    def test_expired_entries_are_gone(self):
        store = MemoryCacheStore()

        async def run():
            await store.set_with_expiry("k", b"v", 0)
            await store.set_with_expiry("live", b"v", 60)
            return await store.get("k"), await store.ttl("k"), await store.exists("live")

        assert asyncio.run(run()) == (None, TTL_MISSING, True)

    def test_evicts_when_full(self):
        store = MemoryCacheStore(max_entries=2)

        async def run():
            await store.set_with_expiry("a", b"1", 10)
            await store.set_with_expiry("b", b"2", 100)
            await store.set_with_expiry("c", b"3", 100)

        asyncio.run(run())
        assert sorted(store.keys()) == ["b", "c"]


class _DownRedis:
    async def get(self, key):
        raise RedisConnectionError("Connection refused")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("Connection refused")

    async def ping(self):
        raise RedisConnectionError("Connection refused")

    async def aclose(self):
        return None


def test_redis_errors_become_backend_errors():
    store = RedisCacheStore("redis://localhost:6399/0", client=_DownRedis())

    async def run():
        with pytest.raises(CacheBackendError):
            await store.get("k")
        with pytest.raises(CacheBackendError):
            await store.ping()

    asyncio.run(run())


def test_redis_outage_computes_directly():
    cache = CacheService(RedisCacheStore("redis://localhost:6399/0", client=_DownRedis()), prefix="test")
    producer = CountingProducer({"ok": 1})

    async def run():
        assert await cache._read(cache.key_for(["k"])) is _MISS
        return await cache.wrap(producer, ["k"], ttl_seconds=60)()

    assert asyncio.run(run()) == {"ok": 1}
    assert producer.calls == 1


def test_store_lifecycle():
    settings = Settings(redis_url="", memory_cache_max_entries=3)

    async def run():
        store = await init_cache_store(settings)
        same = get_cache_store()
        await close_cache_store()
        return store, same

    store, same = asyncio.run(run())
    assert store is same
    assert store.backend_name == "memory"
    with pytest.raises(RuntimeError):
        get_cache_store()
