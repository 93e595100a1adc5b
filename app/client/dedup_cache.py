"""Bounded TTL cache of message keys the client view has already applied.

Lifecycle: ``load`` the snapshot at startup, mutate in memory, ``flush``
every few marks and on housekeeping, ``prune`` by TTL and size cap. The cache
is private to one process and is never consulted by the server.
"""

import asyncio
import time
from typing import Callable

from redis.exceptions import RedisError

from app.client.snapshot_store import MemorySnapshotStore, SnapshotStore
from app.logging_config import get_logger

logger = get_logger("client.dedup_cache")

DEFAULT_TTL_MS = 30 * 60 * 1000
DEFAULT_MAX_ENTRIES = 5000
FLUSH_EVERY_MARKS = 10
HOUSEKEEPING_INTERVAL_SECONDS = 60.0


def _now_ms() -> int:
    return int(time.time() * 1000)


class DedupCache:
    def __init__(
        self,
        store: SnapshotStore | None = None,
        *,
        ttl_ms: int = DEFAULT_TTL_MS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        flush_every: int = FLUSH_EVERY_MARKS,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store or MemorySnapshotStore()
        self.ttl_ms = ttl_ms
        self.max_entries = max_entries
        self.flush_every = flush_every
        self.clock = clock
        self._entries: dict[str, int] = {}
        self._marks_since_flush = 0

    def __len__(self) -> int:
        return len(self._entries)

    async def load(self) -> int:
        """Replace in-memory state with the stored snapshot, dropping expired entries."""
        snapshot = await self.store.load()
        now = self.clock()
        self._entries = {key: seen for key, seen in snapshot.items() if now - seen < self.ttl_ms}
        self._marks_since_flush = 0
        logger.debug("Dedup cache loaded", extra={"context": {"entries": len(self._entries)}})
        return len(self._entries)

    def is_processed(self, key: str | None) -> bool:
        if not key:
            return False
        seen = self._entries.get(str(key))
        if seen is None:
            return False
        if self.clock() - seen >= self.ttl_ms:
            del self._entries[str(key)]
            return False
        return True

    def mark_processed(self, key: str | None) -> bool:
        """Record ``key`` as seen now. Returns True when a flush is due."""
        if not key:
            return False
        self._entries[str(key)] = self.clock()
        self._marks_since_flush += 1
        if len(self._entries) > self.max_entries:
            self._evict_oldest()
        return self._marks_since_flush >= self.flush_every

    async def maybe_flush(self) -> bool:
        if self._marks_since_flush < self.flush_every:
            return False
        await self.flush()
        return True

    async def flush(self) -> None:
        try:
            await self.store.save(dict(self._entries))
        except (OSError, RedisError) as e:
            logger.warning("Dedup cache flush failed", extra={"context": {"entries": len(self._entries), "error": str(e)}})
            return
        self._marks_since_flush = 0

    def _evict_oldest(self) -> int:
        """Drop the oldest entries down to half the cap."""
        overflow = len(self._entries) - self.max_entries // 2
        if overflow <= 0:
            return 0
        oldest = sorted(self._entries.items(), key=lambda item: item[1])[:overflow]
        for key, _ in oldest:
            del self._entries[key]
        return len(oldest)

    def prune(self) -> int:
        now = self.clock()
        expired = [key for key, seen in self._entries.items() if now - seen >= self.ttl_ms]
        for key in expired:
            del self._entries[key]
        evicted = 0
        if len(self._entries) > self.max_entries:
            evicted = self._evict_oldest()
        return len(expired) + evicted

    async def housekeeping(self) -> int:
        removed = self.prune()
        await self.flush()
        return removed

    async def run_housekeeping(self, interval_seconds: float = HOUSEKEEPING_INTERVAL_SECONDS) -> None:
        """Prune and flush forever. Meant to run as a background task."""
        while True:
            await asyncio.sleep(interval_seconds)
            removed = await self.housekeeping()
            if removed:
                logger.debug("Dedup cache pruned", extra={"context": {"removed": removed}})

    async def clear(self) -> None:
        self._entries = {}
        self._marks_since_flush = 0
        await self.store.clear()

    def stats(self) -> dict:
        if not self._entries:
            return {"size": 0, "max_entries": self.max_entries, "ttl_ms": self.ttl_ms, "oldest_ms": None, "newest_ms": None}
        values = self._entries.values()
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_ms": self.ttl_ms,
            "oldest_ms": min(values),
            "newest_ms": max(values),
        }
