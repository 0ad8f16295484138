"""TTL cache for analysis results with scheduled eviction.

A ``CacheStore`` holds named partitions. Each ``CachePartition`` keeps an
in-memory mirror of its entries, persists every mutation through the injected
storage backend and owns at most one pending wake-up, always set for the
earliest ``expires_at`` in the partition (a heap of expirations with lazy
invalidation).

Reads check ``expires_at`` themselves, so an entry past its deadline is a miss
even before the wake-up has evicted it.

All mutations of one partition go through a FIFO ``asyncio.Lock``: concurrent
puts for different keys are applied one after another in submission order.
This bounds write throughput per partition but rules out lost updates.

Write failures during ``put`` raise ``StorageError`` and leave the mirror
untouched; callers on the analyze path log and carry on. Failures while
deleting are logged only. The mirror is already reduced, and rows left behind
are expired or swept again after the next load.
"""

from __future__ import annotations

import asyncio
import heapq
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from policylens.errors import StorageError
from policylens.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Callable

    from policylens.protocols import Clock, SchedulerProtocol, StorageProtocol, TimerHandle

log = structlog.get_logger()


@dataclass(frozen=True)
class SweepResult:
    removed: int
    remaining: int


class CachePartition:
    def __init__(
        self,
        name: str,
        storage: StorageProtocol,
        scheduler: SchedulerProtocol,
        *,
        clock: Clock = time.time,
    ) -> None:
        self.name = name
        self._storage = storage
        self._scheduler = scheduler
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._expirations: list[tuple[float, str]] = []
        self._lock = asyncio.Lock()
        self._timer: TimerHandle | None = None
        self._timer_at: float | None = None
        self._tasks: set[asyncio.Task[int]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Load persisted entries and arm the wake-up. Raises StorageError."""
        async with self._lock:
            entries = await self._storage.load(self.name)
            self._entries = {entry.key: entry for entry in entries}
            self._expirations = [(entry.expires_at, entry.key) for entry in entries]
            heapq.heapify(self._expirations)
            self._reschedule()
        log.info("cache_partition_opened", partition=self.name, entries=len(self._entries))

    async def close(self) -> None:
        self._cancel_timer()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, key: str) -> CacheEntry | None:
        """Return the live entry for ``key``, or ``None`` on miss or expiry."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_live(self._clock()):
            return None
        return entry

    async def find(self, predicate: Callable[[CacheEntry], bool]) -> CacheEntry | None:
        now = self._clock()
        for entry in self._entries.values():
            if entry.is_live(now) and predicate(entry):
                return entry
        return None

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        active = sum(1 for entry in self._entries.values() if entry.is_live(now))
        return {
            "partition": self.name,
            "totalEntries": len(self._entries),
            "activeEntries": active,
            "expiredEntries": len(self._entries) - active,
            "nextEvictionAt": self._timer_at,
        }

    # ------------------------------------------------------------------
    # Mutations (serialized per partition)
    # ------------------------------------------------------------------

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: float) -> CacheEntry:
        """Store ``value`` under ``key`` for ``ttl_seconds``. Raises StorageError."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        async with self._lock:
            now = self._clock()
            entry = CacheEntry(key=key, value=value, created_at=now, expires_at=now + ttl_seconds)
            await self._storage.upsert(self.name, entry)
            self._entries[key] = entry
            heapq.heappush(self._expirations, (entry.expires_at, key))
            self._reschedule()
        log.debug("cache_put", partition=self.name, key=key, expires_at=entry.expires_at)
        return entry

    async def sweep(self, max_age_minutes: float) -> SweepResult:
        """Remove entries created more than ``max_age_minutes`` ago, regardless of TTL."""
        async with self._lock:
            cutoff = self._clock() - max_age_minutes * 60
            old = [key for key, entry in self._entries.items() if entry.created_at < cutoff]
            await self._remove(old)
            self._reschedule()
            result = SweepResult(removed=len(old), remaining=len(self._entries))
        log.info(
            "cache_sweep_complete",
            partition=self.name,
            removed=result.removed,
            remaining=result.remaining,
        )
        return result

    async def evict_expired(self) -> int:
        """Remove every entry whose ``expires_at`` has passed and re-arm the wake-up."""
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            await self._remove(expired)
            self._reschedule()
        if expired:
            log.info("cache_evicted", partition=self.name, removed=len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Internals; callers hold self._lock
    # ------------------------------------------------------------------

    async def _remove(self, keys: list[str]) -> None:
        if not keys:
            return
        for key in keys:
            del self._entries[key]
        try:
            await self._storage.delete(self.name, keys)
        except StorageError:
            log.warning("cache_delete_error", partition=self.name, keys=len(keys), exc_info=True)

    def _reschedule(self) -> None:
        # Drop heap items superseded by a later put or already removed
        while self._expirations:
            expires_at, key = self._expirations[0]
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at == expires_at:
                break
            heapq.heappop(self._expirations)

        if not self._expirations:
            self._cancel_timer()
            return

        next_at = self._expirations[0][0]
        if self._timer is not None and self._timer_at == next_at:
            return
        self._cancel_timer()
        self._timer = self._scheduler.call_at(next_at, self._on_timer)
        self._timer_at = next_at

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._timer_at = None

    def _on_timer(self) -> None:
        self._timer = None
        self._timer_at = None
        task = asyncio.create_task(self.evict_expired())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


class CacheStore:
    """Registry of named partitions sharing one storage backend and scheduler."""

    def __init__(
        self,
        storage: StorageProtocol,
        scheduler: SchedulerProtocol,
        *,
        clock: Clock = time.time,
    ) -> None:
        self._storage = storage
        self._scheduler = scheduler
        self._clock = clock
        self._partitions: dict[str, CachePartition] = {}
        self._lock = asyncio.Lock()

    async def partition(self, name: str) -> CachePartition:
        """Return the named partition, loading it from storage on first use."""
        async with self._lock:
            partition = self._partitions.get(name)
            if partition is None:
                partition = CachePartition(name, self._storage, self._scheduler, clock=self._clock)
                await partition.open()
                self._partitions[name] = partition
            return partition

    async def close(self) -> None:
        for partition in self._partitions.values():
            await partition.close()
        self._partitions.clear()
