"""
Cache backends for derived rank data.

Two interchangeable stores sit behind the same async interface:

    MemoryCacheStore  - in-process TTL dict, used for tests and single-node dev
    RedisCacheStore   - redis.asyncio client, used in production

The store is an accelerator only.  Every backend failure is raised as
CacheBackendError so callers can fall back to direct computation.

Lifecycle:
    await init_cache_store(settings)   # FastAPI startup
    store = get_cache_store()
    await close_cache_store()          # FastAPI shutdown
"""
import fnmatch
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ranklens.utils.logger import log

# ttl() return codes, same convention as Redis TTL
TTL_MISSING = -2


class CacheBackendError(Exception):
    """Cache backend is unreachable or returned an error"""


class CacheStore(ABC):
    """Async key -> bytes store with TTL"""

    backend_name = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> int:
        pass

    @abstractmethod
    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns count removed."""
        pass

    @abstractmethod
    async def ttl(self, key: str) -> int:
        pass

    async def exists(self, key: str) -> bool:
        return await self.ttl(key) != TTL_MISSING

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCacheStore(CacheStore):
    """In-memory cache with TTL expiry and max-entry limit."""

    backend_name = "memory"

    def __init__(self, max_entries: int = 500):
        self._store: Dict[str, Tuple[float, bytes]] = {}
        self._max_entries = max_entries

    def _live_entry(self, key: str) -> Optional[Tuple[float, bytes]]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, _ = entry
        if time.time() >= expires_at:
            del self._store[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._live_entry(key)
        return entry[1] if entry else None

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if key not in self._store and len(self._store) >= self._max_entries:
            # Evict expired entries first to stay under limit
            now = time.time()
            expired = [k for k, (exp, _) in self._store.items() if now >= exp]
            for k in expired:
                del self._store[k]
            # If still at limit, evict the entry closest to expiry
            if len(self._store) >= self._max_entries:
                oldest_key = min(self._store, key=lambda k: self._store[k][0])
                del self._store[oldest_key]
        self._store[key] = (time.time() + ttl_seconds, value)

    async def delete(self, key: str) -> int:
        return 1 if self._store.pop(key, None) is not None else 0

    async def delete_by_pattern(self, pattern: str) -> int:
        keys = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
        for k in keys:
            del self._store[k]
        return len(keys)

    async def ttl(self, key: str) -> int:
        entry = self._live_entry(key)
        if entry is None:
            return TTL_MISSING
        return max(0, int(round(entry[0] - time.time())))

    def keys(self) -> List[str]:
        return [k for k in list(self._store) if self._live_entry(k)]


class RedisCacheStore(CacheStore):
    """redis.asyncio backed store. The client pools its own connections."""

    backend_name = "redis"

    def __init__(self, redis_url: str, client: Optional[Redis] = None):
        self.redis_url = redis_url
        self.client = client or Redis.from_url(
            redis_url,
            socket_timeout=5,
            socket_connect_timeout=5,
            health_check_interval=30,
        )

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as e:
            raise CacheBackendError(f"GET {key} failed: {e}") from e

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        try:
            await self.client.set(key, value, ex=ttl_seconds)
        except (RedisError, OSError) as e:
            raise CacheBackendError(f"SET {key} failed: {e}") from e

    async def delete(self, key: str) -> int:
        try:
            return await self.client.delete(key)
        except (RedisError, OSError) as e:
            raise CacheBackendError(f"DEL {key} failed: {e}") from e

    async def delete_by_pattern(self, pattern: str) -> int:
        try:
            removed = 0
            batch = []
            async for key in self.client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    removed += await self.client.delete(*batch)
                    batch = []
            if batch:
                removed += await self.client.delete(*batch)
            return removed
        except (RedisError, OSError) as e:
            raise CacheBackendError(f"pattern delete {pattern} failed: {e}") from e

    async def ttl(self, key: str) -> int:
        try:
            return await self.client.ttl(key)
        except (RedisError, OSError) as e:
            raise CacheBackendError(f"TTL {key} failed: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as e:
            raise CacheBackendError(f"PING failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


def build_cache_key(key_parts, prefix: str = "ranklens") -> str:
    """Join key parts into a namespaced key, URL-quoting string parts (keeps CJK ids safe)."""
    encoded = [quote(part, safe="") if isinstance(part, str) else str(part) for part in key_parts]
    return f"{prefix}:{':'.join(encoded)}"


class _Wildcard:
    def __repr__(self):
        return "WILDCARD"


# Pattern part matching any key segment.  A literal "*" string is quoted like
# any other part, so a project id of "*" only matches its own keys.
WILDCARD = _Wildcard()


def build_cache_pattern(pattern_parts, prefix: str = "ranklens") -> str:
    """Like build_cache_key, but WILDCARD parts become glob wildcards."""
    encoded = [
        "*" if part is WILDCARD else (quote(part, safe="") if isinstance(part, str) else str(part))
        for part in pattern_parts
    ]
    return f"{prefix}:{':'.join(encoded)}"


# Process-wide handle, created explicitly at startup
_store: Optional[CacheStore] = None


async def init_cache_store(settings) -> CacheStore:
    """Create the cache store selected by settings.redis_url"""
    global _store
    if _store is not None:
        return _store

    if settings.redis_url:
        _store = RedisCacheStore(settings.redis_url)
        try:
            await _store.ping()
            log.info("Redis cache connected")
        except CacheBackendError as e:
            # Fail open: keep the handle, requests compute directly until Redis is back
            log.warning(f"Redis cache unavailable at startup: {e}")
    else:
        _store = MemoryCacheStore(max_entries=settings.memory_cache_max_entries)
        log.info("Using in-memory cache store")
    return _store


def get_cache_store() -> CacheStore:
    if _store is None:
        raise RuntimeError("Cache store not initialised; call init_cache_store() first")
    return _store


async def close_cache_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        log.info(f"Closed {_store.backend_name} cache store")
        _store = None
