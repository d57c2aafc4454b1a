"""
Read-through cache wrapper

Memoizes async producers in the configured CacheStore:

    service = CacheService(get_cache_store())
    get_data = service.wrap(fetch_rows, ["page-metrics", project_id, params_hash], ttl_seconds=86400)
    payload = await get_data()

The store is never a source of truth.  A backend failure on get is a miss,
a backend failure on set is logged and the computed value is still returned.
"""
import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ranklens.config import get_settings
from ranklens.utils.cache import (
    CacheBackendError,
    CacheStore,
    WILDCARD,
    build_cache_key,
    build_cache_pattern,
)
from ranklens.utils.logger import log

# Connectivity errors a store may leak besides CacheBackendError
STORE_ERRORS = (CacheBackendError, ConnectionError, TimeoutError, OSError)

Producer = Callable[[], Awaitable[Any]]


class _Miss:
    def __repr__(self):
        return "<MISS>"


_MISS = _Miss()


def serialize(value: Any) -> bytes:
    return json.dumps(value, ensure_ascii=False, default=str, separators=(",", ":")).encode("utf-8")


def deserialize(raw: bytes) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw)


class CacheService:
    """Cache wrapper bound to one store handle and key prefix"""

    def __init__(self, store: CacheStore, prefix: Optional[str] = None, single_flight: bool = False):
        self.store = store
        self.prefix = prefix or get_settings().cache_prefix
        self.single_flight = single_flight
        self._in_flight: Dict[str, asyncio.Future] = {}

    def key_for(self, key_parts: Sequence[Any]) -> str:
        return build_cache_key(key_parts, prefix=self.prefix)

    def wrap(self, producer: Producer, key_parts: Sequence[Any], ttl_seconds: int) -> Producer:
        """Return a memoized version of producer stored under key_parts for ttl_seconds"""
        cache_key = self.key_for(key_parts)

        async def memoized():
            cached = await self._read(cache_key)
            if cached is not _MISS:
                return cached

            if self.single_flight:
                return await self._produce_once(cache_key, producer, ttl_seconds)
            return await self._produce_and_store(cache_key, producer, ttl_seconds)

        return memoized

    async def _read(self, cache_key: str) -> Any:
        try:
            raw = await self.store.get(cache_key)
        except STORE_ERRORS as e:
            log.warning(f"[cache] get failed for {cache_key}, computing directly: {e}")
            return _MISS

        if raw is None:
            log.debug(f"[cache] MISS {cache_key}")
            return _MISS

        try:
            value = deserialize(raw)
        except (ValueError, UnicodeDecodeError) as e:
            log.error(f"[cache] corrupted entry for {cache_key} ({len(raw)} bytes): {e}")
            try:
                await self.store.delete(cache_key)
            except STORE_ERRORS as del_error:
                log.warning(f"[cache] could not delete corrupted entry {cache_key}: {del_error}")
            return _MISS

        log.debug(f"[cache] HIT {cache_key}")
        return value

    async def _produce_and_store(self, cache_key: str, producer: Producer, ttl_seconds: int) -> Any:
        result = await producer()
        try:
            payload = serialize(result)
            await self.store.set_with_expiry(cache_key, payload, ttl_seconds)
            log.info(f"[cache] stored {cache_key} ttl={ttl_seconds}s size={len(payload)} bytes")
        except STORE_ERRORS as e:
            log.warning(f"[cache] set failed for {cache_key}: {e}")
        except (TypeError, ValueError) as e:
            log.error(f"[cache] result for {cache_key} is not serializable: {e}")
        return result

    async def _produce_once(self, cache_key: str, producer: Producer, ttl_seconds: int) -> Any:
        pending = self._in_flight.get(cache_key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[cache_key] = future
        try:
            result = await self._produce_and_store(cache_key, producer, ttl_seconds)
            future.set_result(result)
            return result
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure does not warn at GC time
            future.exception()
            raise
        except asyncio.CancelledError:
            future.cancel()
            raise
        finally:
            self._in_flight.pop(cache_key, None)

    async def invalidate_exact(self, key_parts: Sequence[Any]) -> bool:
        cache_key = self.key_for(key_parts)
        try:
            removed = await self.store.delete(cache_key)
            log.info(f"[cache] invalidated {cache_key}")
            return bool(removed)
        except STORE_ERRORS as e:
            log.warning(f"[cache] invalidate failed for {cache_key}: {e}")
            return False

    async def invalidate_pattern(self, pattern_parts: Sequence[Any]) -> int:
        pattern = build_cache_pattern(pattern_parts, prefix=self.prefix)
        try:
            removed = await self.store.delete_by_pattern(pattern)
            if removed:
                log.info(f"[cache] invalidated {removed} entries matching {pattern}")
            return removed
        except STORE_ERRORS as e:
            log.warning(f"[cache] pattern invalidate failed for {pattern}: {e}")
            return 0

    async def cache_info(self, key_parts: Sequence[Any]) -> Optional[Dict]:
        """Return {key, exists, ttl} or None when the backend is unreachable"""
        cache_key = self.key_for(key_parts)
        try:
            ttl = await self.store.ttl(cache_key)
        except STORE_ERRORS as e:
            log.warning(f"[cache] ttl lookup failed for {cache_key}: {e}")
            return None
        return {"key": cache_key, "exists": ttl != -2, "ttl": ttl}


PROJECT_CACHE_FAMILIES: List[str] = ["page-metrics", "keyword-ranks"]


async def invalidate_project_cache(cache: CacheService, project_id: str) -> int:
    """Drop every derived cache entry for a project (used on delete / re-sync)"""
    removed = 0
    for family in PROJECT_CACHE_FAMILIES:
        removed += await cache.invalidate_pattern([family, project_id, WILDCARD])
    log.info(f"Invalidated {removed} cached entries for project {project_id}")
    return removed
