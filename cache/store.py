"""
cache/store.py -- Shared key/value cache with per-key TTL.

The security core only needs three operations from its cache: get a string
value, set one with a TTL in seconds, and ping for health checks. CacheStore
is that capability as a Protocol; nothing in auth/ knows which backend sits
behind it.

Backends:
  RedisCacheStore   redis.asyncio client. Used whenever REDIS_URL is set, and
                    required when more than one worker serves traffic, since
                    revocations and login counters must be visible to all.
  MemoryCacheStore  in-process dict with monotonic-clock expiry. Development
                    and tests only.

Connectivity failures surface as CacheUnavailableError so callers can apply
their own outage policy (see auth/revocation.py and auth/throttle.py).

Usage:
    cache = RedisCacheStore("redis://localhost:6379/0")
    await cache.set("jwt:blacklist:abc", "revoked", ttl=3600)
    await cache.get("jwt:blacklist:abc")   # "revoked" or None
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger("helpdesk.cache")


class CacheUnavailableError(RuntimeError):
    """The cache backend could not be reached."""


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisCacheStore:
    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0) -> None:
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as exc:
            raise CacheUnavailableError(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl: int) -> None:
        """Store value under key for ttl seconds. ttl must be positive."""
        try:
            await self.client.set(key, value, ex=ttl)
        except RedisError as exc:
            raise CacheUnavailableError(f"SET {key} failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCacheStore:
    """Process-local TTL cache with the same contract as RedisCacheStore.

    Expired entries are dropped lazily on read and by purge_expired().
    """

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._data[key] = (value, time.monotonic() + ttl)

    async def ping(self) -> bool:
        return True

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of entries removed."""
        now = time.monotonic()
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]
        return len(expired)

    async def close(self) -> None:
        self._data.clear()
