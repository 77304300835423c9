"""Background merge of buffered access counts into the durable counter.

Hits served from the cache never touch the store. Each one bumps the per-code
buffer "access_count:{code}" and is handed to this flusher through a bounded
in-process queue. The flusher drains the queue, aggregates the deltas per code
and applies them to the store in one transaction, then subtracts the same
deltas from the cache buffers.

Flow Diagram — Hit Hand-off
===========================
::
    cache hit ──► INCRBY access_count:{code} ──► submit(code, 1)
                                                     │
                                                     ▼
                                           ┌──────────────────┐
                                           │ asyncio.Queue    │
                                           │ (bounded)        │
                                           └────────┬─────────┘
            every ACCESS_FLUSH_INTERVAL_SECONDS     │
            or request_flush() at threshold         ▼
                                           ┌──────────────────┐
                                           │ flush()          │
                                           │ aggregate by code│
                                           └────────┬─────────┘
                                                    ▼
                                  UPDATE short_links SET access_count += delta
                                                    ▼
                                              COMMIT
                                                    ▼
                                  DECRBY access_count:{code} delta
                                  (DEL when it reaches zero)

How to Use
===========
**Step 1 — Start on application startup**::
    flusher = AccessCountFlusher(sql_store_scope, cache)
    flusher.start()

**Step 2 — Hand off hits**::
    flusher.submit("abc")

**Step 3 — Stop on shutdown (final flush included)**::
    await flusher.stop()

Key Behaviours
===============
- submit() never blocks. A full queue drops the hit and logs a warning.
- The durable counter lags hits served from the cache until the next flush,
  and under-counts permanently for hits dropped or still queued when the
  process dies. Hits resolved on a cache miss are counted synchronously and
  never pass through here.
- A failed or interrupted batch is rolled back and put back on the queue, so
  the next flush retries it. The loop logs the failure and keeps running.
- stop() lets an in-progress flush finish, then flushes whatever is left.
"""

import asyncio
import contextlib
import logging

from prometheus_client import Counter
from pydantic import BaseModel, Field

from linker.cache import CacheAdapter, access_count_key
from linker.config import Settings, get_settings
from linker.store import StoreScope

__all__ = ["AccessAggregates", "AccessCountFlusher"]

ACCESS_HITS_QUEUED_TOTAL = Counter(
    "linker_access_hits_queued_total",
    "Cache-served hits handed to the access count flusher",
)
ACCESS_HITS_DROPPED_TOTAL = Counter(
    "linker_access_hits_dropped_total",
    "Cache-served hits dropped because the flush queue was full",
)
ACCESS_HITS_FLUSHED_TOTAL = Counter(
    "linker_access_hits_flushed_total",
    "Buffered hits merged into the durable access counter",
)
ACCESS_FLUSH_FAILURES_TOTAL = Counter(
    "linker_access_flush_failures_total",
    "Access count flush batches that failed",
)


class AccessAggregates(BaseModel):
    """Aggregated access deltas ready to be flushed.

    Example::

        {"abc123": 57, "promo": 12}
    """

    by_code: dict[str, int] = Field(
        default_factory=dict,
        description="Mapping of code -> aggregated access delta to apply to the store.",
        examples=[{"abc123": 57, "promo": 12}],
    )

    def add(self, code: str, delta: int) -> None:
        self.by_code[code] = self.by_code.get(code, 0) + delta

    @property
    def total_deltas(self) -> int:
        return sum(self.by_code.values())


class AccessCountFlusher:
    """Queue-fed background worker that merges cache-served hits into the store."""

    def __init__(
        self,
        store_scope: StoreScope,
        cache: CacheAdapter,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._store_scope = store_scope
        self._cache = cache
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("linker")
        self._queue: asyncio.Queue[tuple[str, int]] = asyncio.Queue(maxsize=self._settings.ACCESS_FLUSH_QUEUE_SIZE)
        self._wakeup = asyncio.Event()
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, code: str, delta: int = 1) -> bool:
        try:
            self._queue.put_nowait((code, delta))
        except asyncio.QueueFull:
            ACCESS_HITS_DROPPED_TOTAL.inc()
            self._logger.warning(f"Access flush queue full, dropping hit for {code}")
            return False
        ACCESS_HITS_QUEUED_TOTAL.inc()
        return True

    def request_flush(self) -> None:
        self._wakeup.set()

    async def flush(self) -> int:
        """Merge every queued hit into the store.

        Returns:
            int: Number of hits applied to the durable counter
        """
        aggregates = self._drain()
        if not aggregates.by_code:
            return 0

        async with self._store_scope() as store:
            try:
                for code, delta in aggregates.by_code.items():
                    updated = await store.increment_access_count(code, delta)
                    if updated is None:
                        self._logger.debug(f"Dropping {delta} buffered hits for unknown code {code}")
                await store.commit()
            except BaseException:
                await store.rollback()
                self._requeue(aggregates)
                raise

        for code, delta in aggregates.by_code.items():
            key = access_count_key(code)
            remaining = await self._cache.increment(key, -delta)
            if remaining <= 0:
                await self._cache.delete(key)

        ACCESS_HITS_FLUSHED_TOTAL.inc(aggregates.total_deltas)
        self._logger.info(f"Flushed {aggregates.total_deltas} hits across {len(aggregates.by_code)} codes")
        return aggregates.total_deltas

    async def run(self) -> None:
        interval = self._settings.ACCESS_FLUSH_INTERVAL_SECONDS
        self._logger.info(f"Starting access count flusher every {interval}s")

        while not self._stopping.is_set():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            self._wakeup.clear()
            if self._stopping.is_set():
                break

            try:
                await self.flush()
            except Exception as exc:
                ACCESS_FLUSH_FAILURES_TOTAL.inc()
                self._logger.error(f"Access count flush failed: {exc}")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._stopping.set()
            self._wakeup.set()
            try:
                await asyncio.wait_for(self._task, timeout=self._settings.ACCESS_FLUSH_STOP_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                # wait_for cancelled the task; the interrupted batch was requeued.
                self._logger.warning("Access count flusher did not stop in time, cancelled it")
            self._task = None
            self._stopping.clear()

        try:
            await self.flush()
        except Exception as exc:
            ACCESS_FLUSH_FAILURES_TOTAL.inc()
            self._logger.error(f"Final access count flush failed: {exc}")

    def _drain(self) -> AccessAggregates:
        aggregates = AccessAggregates()
        while True:
            try:
                code, delta = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            aggregates.add(code, delta)
        return aggregates

    def _requeue(self, aggregates: AccessAggregates) -> None:
        for code, delta in aggregates.by_code.items():
            try:
                self._queue.put_nowait((code, delta))
            except asyncio.QueueFull:
                ACCESS_HITS_DROPPED_TOTAL.inc(delta)
                self._logger.warning(f"Access flush queue full, dropping {delta} requeued hits for {code}")
