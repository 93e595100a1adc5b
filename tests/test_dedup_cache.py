import asyncio
import json
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from app.client.dedup_cache import DedupCache
from app.client.snapshot_store import JsonFileSnapshotStore, MemorySnapshotStore, RedisSnapshotStore

TTL_MS = 30 * 60 * 1000


class FakeClock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


class TestTtl:
    def test_marked_key_is_processed(self):
        cache = DedupCache(clock=FakeClock())
        cache.mark_processed("id:m1")
        assert cache.is_processed("id:m1") is True
        assert cache.is_processed("id:m2") is False
        assert cache.is_processed(None) is False

    def test_key_expires_after_ttl(self):
        clock = FakeClock()
        cache = DedupCache(clock=clock)
        cache.mark_processed("id:m1")

        clock.now += TTL_MS - 1
        assert cache.is_processed("id:m1") is True
        clock.now += 1
        assert cache.is_processed("id:m1") is False
        assert len(cache) == 0

    def test_prune_removes_expired(self):
        clock = FakeClock()
        cache = DedupCache(clock=clock)
        cache.mark_processed("old")
        clock.now += TTL_MS
        cache.mark_processed("new")

        assert cache.prune() == 1
        assert cache.is_processed("new") is True


class TestBounds:
    def test_overflow_evicts_oldest_half(self):
        clock = FakeClock()
        cache = DedupCache(clock=clock, max_entries=10)
        for index in range(11):
            clock.now += 1
            cache.mark_processed(f"k{index}")

        assert len(cache) == 5
        assert cache.is_processed("k10") is True
        assert cache.is_processed("k0") is False

    def test_stats(self):
        clock = FakeClock()
        cache = DedupCache(clock=clock)
        assert cache.stats()["size"] == 0
        cache.mark_processed("a")
        clock.now += 5
        cache.mark_processed("b")
        stats = cache.stats()
        assert stats["size"] == 2
        assert stats["newest_ms"] - stats["oldest_ms"] == 5


class TestPersistence:
    def test_flush_due_every_ten_marks(self):
        store = MemorySnapshotStore()
        cache = DedupCache(store, clock=FakeClock())
        due = [cache.mark_processed(f"k{index}") for index in range(10)]

        assert due == [False] * 9 + [True]
        assert asyncio.run(cache.maybe_flush()) is True
        assert len(store.snapshot) == 10
        assert asyncio.run(cache.maybe_flush()) is False

    def test_reload_from_json_file(self, tmp_path):
        clock = FakeClock()
        store = JsonFileSnapshotStore(tmp_path)
        cache = DedupCache(store, clock=clock)
        cache.mark_processed("id:m1")
        asyncio.run(cache.flush())

        assert (tmp_path / "whatsapp_processed_messages.json").exists()

        reloaded = DedupCache(JsonFileSnapshotStore(tmp_path), clock=clock)
        assert asyncio.run(reloaded.load()) == 1
        assert reloaded.is_processed("id:m1") is True

    def test_expired_entries_dropped_on_load(self):
        clock = FakeClock()
        store = MemorySnapshotStore({"old": clock.now - TTL_MS, "fresh": clock.now})
        cache = DedupCache(store, clock=clock)
        assert asyncio.run(cache.load()) == 1

    def test_corrupt_snapshot_starts_empty(self, tmp_path):
        (tmp_path / "whatsapp_processed_messages.json").write_text("{broken", encoding="utf-8")
        assert asyncio.run(JsonFileSnapshotStore(tmp_path).load()) == {}

    def test_failed_flush_keeps_state(self):
        store = MemorySnapshotStore()
        store.save = AsyncMock(side_effect=OSError("disk full"))
        cache = DedupCache(store, clock=FakeClock(), flush_every=1)
        cache.mark_processed("a")

        asyncio.run(cache.flush())

        assert cache.is_processed("a") is True
        assert asyncio.run(cache.maybe_flush()) is True

    def test_clear(self):
        store = MemorySnapshotStore({"a": 1})
        cache = DedupCache(store, clock=FakeClock())
        cache.mark_processed("b")
        asyncio.run(cache.clear())
        assert len(cache) == 0
        assert store.snapshot == {}


class TestRedisSnapshotStore:
    def test_round_trip_through_namespaced_key(self):
        client = AsyncMock()
        store = RedisSnapshotStore(client)

        asyncio.run(store.save({"id:m1": 5}))

        client.set.assert_awaited_once_with("inbox:client:whatsapp_processed_messages", json.dumps({"id:m1": 5}))

        client.get.return_value = json.dumps({"id:m1": 5, "bad": "x"})
        assert asyncio.run(store.load()) == {"id:m1": 5}

    def test_missing_key(self):
        client = AsyncMock()
        client.get.return_value = None
        assert asyncio.run(RedisSnapshotStore(client).load()) == {}

    def test_redis_outage_does_not_break_flush(self):
        client = AsyncMock()
        client.set.side_effect = RedisConnectionError("down")
        cache = DedupCache(RedisSnapshotStore(client), clock=FakeClock())
        cache.mark_processed("a")

        asyncio.run(cache.flush())

        assert cache.is_processed("a") is True
