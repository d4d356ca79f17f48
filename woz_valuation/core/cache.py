import fnmatch
import functools
import json
import logging
import time
from typing import Any, Awaitable, Callable, Protocol

from cachetools import TLRUCache
import redis.asyncio as aioredis

from .config import Settings, settings as default_settings
from .metrics import CACHE_LOOKUPS
from .utils import query_digest

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...
    async def setex(self, key: str, ttl: int, value: str) -> None: ...
    async def delete(self, *keys: str) -> int: ...
    async def exists(self, key: str) -> int: ...
    async def incr(self, key: str) -> int: ...
    async def expire(self, key: str, ttl: int) -> bool: ...
    async def keys(self, pattern: str) -> list[str]: ...
    async def aclose(self) -> None: ...


class MemoryBackend:
    """
    In-process backend for local dev and tests. Each entry carries its own
    deadline so per-key TTLs behave like Redis SETEX/EXPIRE.
    """
    def __init__(self, maxsize: int = 8192, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._data = TLRUCache(maxsize=maxsize, ttu=lambda _k, v, _now: v[1], timer=timer)

    def _deadline(self, ttl: int | None) -> float:
        return self._timer() + ttl if ttl else float("inf")

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        return entry[0] if entry else None

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._data[key] = (value, self._deadline(ttl))

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def exists(self, key: str) -> int:
        return 1 if key in self._data else 0

    async def incr(self, key: str) -> int:
        value, deadline = self._data.get(key, ("0", float("inf")))
        count = int(value) + 1
        self._data[key] = (str(count), deadline)
        return count

    async def expire(self, key: str, ttl: int) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self._deadline(ttl))
        return True

    async def keys(self, pattern: str) -> list[str]:
        self._data.expire()
        return [k for k in list(self._data.keys()) if fnmatch.fnmatchcase(k, pattern)]

    async def aclose(self) -> None:
        self._data.clear()


class RedisBackend:
    def __init__(self, url: str):
        self.client = aioredis.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        return await self.client.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        await self.client.setex(key, ttl, value)

    async def delete(self, *keys: str) -> int:
        return await self.client.delete(*keys)

    async def exists(self, key: str) -> int:
        return await self.client.exists(key)

    async def incr(self, key: str) -> int:
        return await self.client.incr(key)

    async def expire(self, key: str, ttl: int) -> bool:
        return await self.client.expire(key, ttl)

    async def keys(self, pattern: str) -> list[str]:
        return await self.client.keys(pattern)

    async def aclose(self) -> None:
        await self.client.aclose()


def _full_key(key: str, prefix: str | None) -> str:
    return f"{prefix}:{key}" if prefix else key


class Cache:
    """
    Thin abstraction over Redis/in-memory so swapping is one flag away.

    Every operation is best effort: a backend failure is logged and turned
    into a miss (``None``/``False``/``0``). Values are stored as JSON.
    """
    def __init__(self, backend: CacheBackend | None = None, settings: Settings | None = None):
        self.settings = settings or default_settings
        if backend is not None:
            self.backend = backend
        elif self.settings.USE_REDIS:
            self.backend = RedisBackend(self.settings.REDIS_URL)
        else:
            self.backend = MemoryBackend(maxsize=self.settings.LOCAL_CACHE_SIZE)

    async def get(self, key: str, prefix: str | None = None) -> Any | None:
        full_key = _full_key(key, prefix)
        try:
            raw = await self.backend.get(full_key)
        except Exception:
            logger.warning("Cache get failed", exc_info=True, extra={"context": {"key": full_key}})
            return None
        CACHE_LOOKUPS.labels(prefix=prefix or "", result="hit" if raw is not None else "miss").inc()
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry", extra={"context": {"key": full_key}})
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None, prefix: str | None = None) -> bool:
        full_key = _full_key(key, prefix)
        try:
            await self.backend.setex(
                full_key, ttl or self.settings.CACHE_DEFAULT_TTL,
                json.dumps(value, separators=(",", ":"), default=str),
            )
            return True
        except Exception:
            logger.warning("Cache set failed", exc_info=True, extra={"context": {"key": full_key}})
            return False

    async def delete(self, key: str, prefix: str | None = None) -> bool:
        full_key = _full_key(key, prefix)
        try:
            await self.backend.delete(full_key)
            return True
        except Exception:
            logger.warning("Cache delete failed", exc_info=True, extra={"context": {"key": full_key}})
            return False

    async def exists(self, key: str, prefix: str | None = None) -> bool:
        full_key = _full_key(key, prefix)
        try:
            return await self.backend.exists(full_key) == 1
        except Exception:
            logger.warning("Cache exists failed", exc_info=True, extra={"context": {"key": full_key}})
            return False

    async def increment(self, key: str, prefix: str | None = None) -> int:
        full_key = _full_key(key, prefix)
        try:
            return await self.backend.incr(full_key)
        except Exception:
            logger.warning("Cache increment failed", exc_info=True, extra={"context": {"key": full_key}})
            return 0

    async def expire(self, key: str, ttl: int, prefix: str | None = None) -> bool:
        full_key = _full_key(key, prefix)
        try:
            return bool(await self.backend.expire(full_key, ttl))
        except Exception:
            logger.warning("Cache expire failed", exc_info=True, extra={"context": {"key": full_key}})
            return False

    async def flush_pattern(self, pattern: str) -> bool:
        try:
            keys = await self.backend.keys(pattern)
            if keys:
                await self.backend.delete(*keys)
            return True
        except Exception:
            logger.warning("Cache flush failed", exc_info=True, extra={"context": {"pattern": pattern}})
            return False

    async def rate_limit_check(self, identifier: str, limit: int, window: int) -> dict:
        """
        Fixed-window limiter: INCR, and set the TTL only on the first hit of
        the window. Fails open when the backend is down.
        """
        key = f"ratelimit:{identifier}"
        current = await self.increment(key)
        if current == 0:
            return {"allowed": True, "remaining": limit}
        if current == 1:
            await self.expire(key, window)
        return {"allowed": current <= limit, "remaining": max(0, limit - current)}

    # Specialized helpers: fixed prefix + default TTL
    async def cache_property_data(self, property_id: str, data: Any, ttl: int | None = None) -> bool:
        return await self.set(property_id, data, ttl=ttl or self.settings.PROPERTY_TTL, prefix="property")

    async def get_cached_property_data(self, property_id: str) -> Any | None:
        return await self.get(property_id, "property")

    async def cache_user_session(self, user_id: str, session: Any, ttl: int | None = None) -> bool:
        return await self.set(user_id, session, ttl=ttl or self.settings.SESSION_TTL, prefix="session")

    async def get_cached_user_session(self, user_id: str) -> Any | None:
        return await self.get(user_id, "session")

    async def cache_search_results(self, query: str, results: Any, ttl: int | None = None) -> bool:
        return await self.set(query_digest(query), results, ttl=ttl or self.settings.SEARCH_TTL, prefix="search")

    async def get_cached_search_results(self, query: str) -> Any | None:
        return await self.get(query_digest(query), "search")

    async def close(self) -> None:
        try:
            await self.backend.aclose()
        except Exception:
            logger.warning("Cache close failed", exc_info=True)


def memoize_with_ttl(
    cache: Cache,
    key_fn: Callable[..., str],
    ttl: int,
    prefix: str,
    encode: Callable[[Any], Any] = lambda v: v,
    decode: Callable[[Any], Any] = lambda v: v,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[Any]]]:
    """
    Wrap an async function so results are read from / written to ``cache``
    under ``prefix:key_fn(*args, **kwargs)``. ``None`` results are not cached.

        get_stats = memoize_with_ttl(cache, lambda area: area, 86400, "area-stats")(load_stats)
    """
    def wrap(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(fn)
        async def inner(*args, **kwargs):
            key = key_fn(*args, **kwargs)
            hit = await cache.get(key, prefix)
            if hit is not None:
                return decode(hit)
            result = await fn(*args, **kwargs)
            if result is not None:
                await cache.set(key, encode(result), ttl=ttl, prefix=prefix)
            return result
        return inner
    return wrap
