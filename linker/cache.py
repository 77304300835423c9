"""Redis client management and the cache adapter used by the engine.

The engine only sees the CacheAdapter protocol: plain string values, TTLs in
seconds, atomic counters. RedisCacheAdapter implements it on top of two
redis.asyncio clients so that lookups can be served by a replica while every
write goes to the primary.

Flow Diagram — Client Routing
=============================
::
    ┌──────────────┐
    │ CacheAdapter  │
    │ call          │
    └──────┬───────┘
    READ?  │
    ┌──────┴──────┐
    │ YES          │ NO
    ▼              ▼
┌─────────┐   ┌─────────┐
│ replica │   │ primary │
│ get /   │   │ set/del │
│ exists  │   │ incr/...│
└─────────┘   └─────────┘

How to Use
===========
**Step 1 — Build the adapter on startup**::
    cache = RedisCacheAdapter(await get_redis(), await get_redis_read())

**Step 2 — Use it**::
    await cache.set_with_ttl("shortlink:abc", payload, 1800)
    hits = await cache.increment("access_count:abc")

**Step 3 — Cleanup on shutdown**::
    await close_redis()

Key Behaviours
===============
- Clients are created lazily and reused across requests.
- Replica lag is acceptable for cache reads; the cache is never authoritative.
- Falls back to the primary when REDIS_REPLICA_URL is empty.
- Redis errors propagate unchanged to the caller.

Classes:
    CacheAdapter:  Cache adapter protocol consumed by the engine.
    RedisCacheAdapter:  redis.asyncio implementation.

Functions:
    entry_key(), access_count_key(), lock_key():  Key layout.
    get_redis():  Primary (write) client.
    get_redis_read():  Replica (read) client.
    close_redis():  Cleanup function for shutdown.
"""

__all__ = [
    "STATS_KEY",
    "CacheAdapter",
    "RedisCacheAdapter",
    "access_count_key",
    "close_redis",
    "entry_key",
    "get_redis",
    "get_redis_read",
    "lock_key",
]

from typing import Protocol

import redis.asyncio as redis

from linker.config import get_settings

settings = get_settings()

redis_client: redis.Redis | None = None
redis_read_client: redis.Redis | None = None

STATS_KEY = "stats:system"


def entry_key(code: str) -> str:
    return f"shortlink:{code}"


def access_count_key(code: str) -> str:
    return f"access_count:{code}"


def lock_key(code: str) -> str:
    return f"lock:shortlink:{code}"


class CacheAdapter(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def increment(self, key: str, amount: int = 1) -> int: ...

    async def expire(self, key: str, ttl_seconds: int) -> bool: ...

    async def exists(self, key: str) -> bool: ...

    async def ping(self) -> bool: ...


class RedisCacheAdapter:
    """CacheAdapter over a primary and an optional read-replica client."""

    def __init__(self, writer: redis.Redis, reader: redis.Redis | None = None):
        self._writer = writer
        self._reader = reader or writer

    async def get(self, key: str) -> str | None:
        return await self._reader.get(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        await self._writer.set(key, value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self._writer.set(key, value, ex=ttl_seconds, nx=True))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._writer.delete(*keys))

    async def increment(self, key: str, amount: int = 1) -> int:
        return int(await self._writer.incrby(key, amount))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self._writer.expire(key, ttl_seconds))

    async def exists(self, key: str) -> bool:
        return bool(await self._reader.exists(key))

    async def ping(self) -> bool:
        return bool(await self._writer.ping())


async def get_redis() -> redis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return redis_client


async def get_redis_read() -> redis.Redis:
    """Return a read-only client pointed at the replica."""
    global redis_read_client
    if redis_read_client is None:
        replica_url = settings.REDIS_REPLICA_URL or settings.REDIS_URL
        redis_read_client = redis.from_url(
            replica_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return redis_read_client


async def close_redis() -> None:
    global redis_client, redis_read_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
    if redis_read_client is not None:
        await redis_read_client.aclose()
        redis_read_client = None
