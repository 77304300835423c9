"""Cache-aside read path, write-path invalidation and the best-effort access counter.

Architecture Overview
=====================
::
    ┌──────────────────────────────────────────────────────────┐
    │                       CacheLayer                         │
    │  ┌───────────────┐  ┌───────────────┐  ┌──────────────┐  │
    │  │ resolve       │  │ invalidate    │  │ stats        │  │
    │  │ • cache first │  │ • entry       │  │ • cached     │  │
    │  │ • lock + read │  │ • stats       │  │   aggregate  │  │
    │  └───────────────┘  └───────────────┘  └──────────────┘  │
    └──────────────────────────────────────────────────────────┘
              │                    │                    │
              ▼                    ▼                    ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐
    │  CacheAdapter   │  │ ShortLinkStore  │  │ AccessCount-    │
    │  (derived view) │  │ (authoritative) │  │ Flusher (queue) │
    └─────────────────┘  └─────────────────┘  └─────────────────┘

Flow Diagram — resolve()
========================
::
    ┌─────────────┐  hit   ┌────────────────────────────┐
    │ GET         ├───────►│ return target              │
    │ shortlink:  │        │ + background buffer bump   │
    │ {code}      │        └────────────────────────────┘
    └──────┬──────┘
           ▼ miss
    ┌─────────────┐  held by peer   ┌──────────────────┐
    │ SET NX lock ├────────────────►│ re-poll cache a  │
    └──────┬──────┘                 │ few times, then  │
           ▼ acquired               │ fall through     │
    ┌─────────────┐                 └──────────────────┘
    │ store read  │── absent ──► None (not cached)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ access_count│ (atomic += 1, commit)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ prime cache │ TTL ~ U[CACHE_TTL_MIN, CACHE_TTL_MAX]
    └─────────────┘

Key Behaviours
===============
- A cache hit never awaits the counter or the store. The buffer bump runs as
  a background task and its failures are logged only.
- A miss increments the durable counter synchronously. Hits served from the
  cache reach the durable counter only when the flusher merges them, so the
  two paths diverge until then.
- Missing codes are never cached.
- Entry TTLs are jittered so that entries primed together expire apart.
- The stampede lock is advisory: it expires on its own and waiting callers
  fall through to the store after CACHE_LOCK_RETRY_COUNT polls.
- is_available() is advisory. Uniqueness is decided by the store at insert.

Classes:
    CacheMetrics:  Per-instance hit/miss counters.
    CacheLayer:  Cache-aside facade over a cache adapter and a store adapter.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass

from prometheus_client import Counter, Histogram
from pydantic import ValidationError

from linker.access_counter import AccessCountFlusher
from linker.alias_policy import AliasPolicy
from linker.cache import STATS_KEY, CacheAdapter, access_count_key, entry_key, lock_key
from linker.codec import is_valid_alphabet
from linker.config import Settings, get_settings
from linker.enums import CacheStatus, RequestStatus
from linker.models import ShortLink
from linker.schemas import CachedShortLink, SystemStats
from linker.store import ShortLinkStore

__all__ = ["CacheLayer", "CacheMetrics", "wait_for_background_tasks"]

RESOLVE_REQUESTS_TOTAL = Counter(
    "linker_resolve_requests_total",
    "Total code resolutions",
    ["status", "cache_hit"],
)
RESOLVE_DURATION = Histogram(
    "linker_resolve_duration_seconds",
    "Time taken to resolve codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
CACHE_HITS_TOTAL = Counter("linker_cache_hits_total", "Total cache hits for code lookups")
CACHE_MISSES_TOTAL = Counter("linker_cache_misses_total", "Total cache misses for code lookups")
STORE_READS_TOTAL = Counter("linker_store_reads_total", "Total store reads on the resolve path")

# Hit-path tasks outlive the request that scheduled them.
_background_tasks: set[asyncio.Task] = set()


async def wait_for_background_tasks() -> None:
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


@dataclass
class CacheMetrics:
    """Resolve-path counters for one CacheLayer instance."""

    cache_hits: int = 0
    cache_misses: int = 0
    store_reads: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        return (self.cache_hits / max(total, 1)) * 100


class CacheLayer:
    """Cache-aside facade over a CacheAdapter and a ShortLinkStore.

    Example:
        >>> layer = CacheLayer(cache, store, flusher=flusher)
        >>> await layer.resolve("abc")
        'https://example.com/a'
    """

    def __init__(
        self,
        cache: CacheAdapter,
        store: ShortLinkStore,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        flusher: AccessCountFlusher | None = None,
        alias_policy: AliasPolicy | None = None,
    ):
        self._cache = cache
        self._store = store
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("linker")
        self._flusher = flusher
        self._alias_policy = alias_policy or AliasPolicy.from_settings(self._settings)
        self.metrics = CacheMetrics()

    # ========================================================================
    # READ PATH
    # ========================================================================

    async def resolve(self, code: str | None) -> str | None:
        """Resolve a code to its target address.

        Args:
            code: Short code as received from the caller

        Returns:
            str | None: Target address, or None when no record has this code
        """
        if not code or len(code) > self._alias_policy.max_length or not is_valid_alphabet(code):
            return None

        start_time = time.perf_counter()
        cached = await self._read_entry(code)
        if cached is not None:
            self._record_hit(code, start_time)
            return cached.target_address

        CACHE_MISSES_TOTAL.inc()
        self.metrics.cache_misses += 1

        acquired = await self._cache.set_if_absent(
            lock_key(code), "1", self._settings.CACHE_LOCK_TTL_SECONDS
        )
        try:
            # Another caller may have primed the entry while we waited.
            cached = await self._read_entry(code) if acquired else await self._wait_for_peer(code)
            if cached is not None:
                self._record_hit(code, start_time)
                return cached.target_address

            link = await self._store.find_by_code(code)
            STORE_READS_TOTAL.inc()
            self.metrics.store_reads += 1
            if link is None:
                RESOLVE_DURATION.observe(time.perf_counter() - start_time)
                RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=CacheStatus.MISS).inc()
                self._logger.debug(f"Code {code} not found")
                return None

            try:
                access_count = await self._store.increment_access_count(code, 1)
                await self._store.commit()
            except BaseException:
                await self._store.rollback()
                raise

            await self.prime(link, access_count)
            RESOLVE_DURATION.observe(time.perf_counter() - start_time)
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.MISS).inc()
            self._logger.debug(f"Store hit for {code}, cache primed")
            return link.target_address
        finally:
            if acquired:
                await self._cache.delete(lock_key(code))

    async def prime(self, link: ShortLink, access_count: int | None = None) -> None:
        payload = CachedShortLink.model_validate(link)
        if access_count is not None:
            payload = payload.model_copy(update={"access_count": access_count})
        ttl = random.randint(self._settings.CACHE_TTL_MIN_SECONDS, self._settings.CACHE_TTL_MAX_SECONDS)
        await self._cache.set_with_ttl(entry_key(link.code), payload.model_dump_json(), ttl)

    # ========================================================================
    # WRITE PATH
    # ========================================================================

    async def invalidate(self, code: str) -> None:
        await self._cache.delete(entry_key(code), STATS_KEY)

    # ========================================================================
    # AGGREGATES AND ADVISORY CHECKS
    # ========================================================================

    async def get_system_stats(self) -> SystemStats:
        raw = await self._cache.get(STATS_KEY)
        if raw:
            try:
                return SystemStats.model_validate_json(raw)
            except ValidationError as exc:
                self._logger.warning(f"Discarding unreadable stats cache entry: {exc}")

        stats = SystemStats(
            total_links=await self._store.count(),
            total_access=await self._store.sum_access_count(),
            custom_aliases=await self._store.count_custom_aliases(),
        )
        await self._cache.set_with_ttl(STATS_KEY, stats.model_dump_json(), self._settings.STATS_CACHE_TTL_SECONDS)
        return stats

    async def is_available(self, code: str | None) -> bool:
        if not self._alias_policy.is_well_formed(code):
            return False
        code = code.strip()
        if await self._cache.exists(entry_key(code)):
            return False
        return not await self._store.exists_by_code(code)

    async def get_buffered_access_count(self, code: str) -> int:
        raw = await self._cache.get(access_count_key(code))
        if not raw:
            return 0
        return max(int(raw), 0)

    async def wait_for_pending(self) -> None:
        await wait_for_background_tasks()

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _read_entry(self, code: str) -> CachedShortLink | None:
        raw = await self._cache.get(entry_key(code))
        if not raw:
            return None
        try:
            return CachedShortLink.model_validate_json(raw)
        except ValidationError as exc:
            self._logger.error(f"Cache deserialization error for {code}: {exc}")
            return None

    async def _wait_for_peer(self, code: str) -> CachedShortLink | None:
        for _ in range(self._settings.CACHE_LOCK_RETRY_COUNT):
            await asyncio.sleep(self._settings.CACHE_LOCK_RETRY_DELAY_SECONDS)
            cached = await self._read_entry(code)
            if cached is not None:
                return cached
        return None

    def _record_hit(self, code: str, start_time: float) -> None:
        CACHE_HITS_TOTAL.inc()
        self.metrics.cache_hits += 1
        task = asyncio.create_task(self._bump_access_buffer(code))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        RESOLVE_DURATION.observe(time.perf_counter() - start_time)
        RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.HIT).inc()
        self._logger.debug(f"Cache hit for {code}")

    async def _bump_access_buffer(self, code: str) -> None:
        key = access_count_key(code)
        try:
            buffered = await self._cache.increment(key)
            # TTL on first increment so abandoned buffers expire.
            if buffered == 1:
                await self._cache.expire(key, self._settings.ACCESS_COUNTER_TTL_SECONDS)
            if self._flusher is not None:
                self._flusher.submit(code)
                if buffered % self._settings.ACCESS_COUNTER_FLUSH_THRESHOLD == 0:
                    self._flusher.request_flush()
        except Exception as exc:
            self._logger.error(f"Access counter update failed for {code}: {exc}")
