"""
Tests for the staging cache.
"""

import asyncio
import random
import threading

import pytest

from backdrop.errors import ErrorKind
from backdrop.staging import ImageMetadata, StagingCache

from conftest import FakeClock

META = ImageMetadata(original_name="p.jpg", width=1080, height=1920, format="jpeg")


def make_cache(max_bytes=100, ttl_ms=10_000, clock=None):
    return StagingCache(max_bytes=max_bytes, ttl_ms=ttl_ms, clock=clock or FakeClock())


class TestStoreAndGet:
    """Basic store/get/remove behavior."""

    def test_store_returns_id_and_get_returns_original_bytes(self):
        cache = make_cache()

        result = cache.store(b"abcdef", META)

        assert result.ok
        entry = cache.get(result.entry_id)
        assert entry is not None
        assert entry.raw_bytes == b"abcdef"
        assert entry.size_bytes == 6
        assert entry.metadata == META

    def test_ids_are_unique(self):
        cache = make_cache(max_bytes=10_000)

        ids = {cache.store(b"x", META).entry_id for _ in range(200)}

        assert len(ids) == 200

    def test_get_unknown_returns_none(self):
        cache = make_cache()

        assert cache.get("nope") is None
        assert cache.has("nope") is False

    def test_remove_is_idempotent(self):
        cache = make_cache()
        entry_id = cache.store(b"12345", META).entry_id

        assert cache.remove(entry_id) is True
        assert cache.stats().used_bytes == 0
        assert cache.remove(entry_id) is False
        assert cache.stats().used_bytes == 0

    def test_remove_unknown_does_not_touch_usage(self):
        cache = make_cache()
        cache.store(b"12345", META)

        assert cache.remove("missing") is False
        assert cache.stats().used_bytes == 5

    def test_stats_snapshot(self):
        cache = make_cache(max_bytes=200)
        cache.store(b"a" * 50, META)
        cache.store(b"b" * 25, META)

        stats = cache.stats()

        assert stats.count == 2
        assert stats.used_bytes == 75
        assert stats.max_bytes == 200
        assert stats.used_percent == 38

    def test_used_bytes_matches_live_entries_over_random_operations(self):
        rng = random.Random(7)
        cache = make_cache(max_bytes=500)
        ids = []

        for _ in range(300):
            if ids and rng.random() < 0.4:
                cache.remove(ids.pop(rng.randrange(len(ids))))
            else:
                result = cache.store(b"z" * rng.randint(1, 120), META)
                ids.append(result.entry_id)

            held = [cache.get(i) for i in ids]
            expected = sum(e.size_bytes for e in held if e is not None)
            stats = cache.stats()
            assert stats.used_bytes == expected
            assert stats.used_bytes <= stats.max_bytes


class TestExpiry:
    """TTL handling."""

    def test_entry_live_before_ttl(self):
        clock = FakeClock()
        cache = make_cache(ttl_ms=1000, clock=clock)
        entry_id = cache.store(b"abc", META).entry_id

        clock.advance(0.999)

        assert cache.has(entry_id)

    def test_entry_expired_at_ttl(self):
        clock = FakeClock()
        cache = make_cache(ttl_ms=1000, clock=clock)
        entry_id = cache.store(b"abc", META).entry_id

        clock.advance(1.0)

        assert cache.get(entry_id) is None
        # Lazy expiry released the space
        assert cache.stats().used_bytes == 0
        assert cache.stats().count == 0

    def test_has_expires_too(self):
        clock = FakeClock()
        cache = make_cache(ttl_ms=1000, clock=clock)
        entry_id = cache.store(b"abc", META).entry_id

        clock.advance(5)

        assert cache.has(entry_id) is False
        assert cache.stats().count == 0

    def test_stats_does_not_expire(self):
        clock = FakeClock()
        cache = make_cache(ttl_ms=1000, clock=clock)
        cache.store(b"abc", META)

        clock.advance(5)

        assert cache.stats().count == 1

    def test_sweep_removes_only_expired(self):
        clock = FakeClock()
        cache = make_cache(ttl_ms=1000, clock=clock)
        old = cache.store(b"old", META).entry_id
        clock.advance(0.6)
        fresh = cache.store(b"fresh", META).entry_id
        clock.advance(0.5)

        removed = cache.sweep()

        assert removed == 1
        assert cache.get(old) is None
        assert cache.get(fresh) is not None
        assert cache.stats().used_bytes == 5


class TestEviction:
    """Capacity-driven eviction."""

    def test_evicts_oldest_first_until_fit(self):
        clock = FakeClock()
        cache = make_cache(max_bytes=100, clock=clock)
        first = cache.store(b"a" * 40, META).entry_id
        clock.advance(1)
        second = cache.store(b"b" * 40, META).entry_id
        clock.advance(1)
        third = cache.store(b"c" * 20, META).entry_id
        clock.advance(1)

        result = cache.store(b"d" * 30, META)

        assert result.ok
        assert cache.get(first) is None
        assert cache.get(second) is not None
        assert cache.get(third) is not None
        assert cache.stats().used_bytes == 90

    def test_evicts_several_when_needed(self):
        clock = FakeClock()
        cache = make_cache(max_bytes=100, clock=clock)
        ids = []
        for _ in range(4):
            ids.append(cache.store(b"x" * 25, META).entry_id)
            clock.advance(1)

        result = cache.store(b"y" * 60, META)

        assert result.ok
        assert [cache.has(i) for i in ids] == [False, False, False, True]
        assert cache.stats().used_bytes == 85

    def test_equal_timestamps_evict_in_insertion_order(self):
        clock = FakeClock()
        cache = make_cache(max_bytes=30, clock=clock)
        a = cache.store(b"a" * 10, META).entry_id
        b = cache.store(b"b" * 10, META).entry_id
        c = cache.store(b"c" * 10, META).entry_id

        cache.store(b"d" * 10, META)

        assert not cache.has(a)
        assert cache.has(b)
        assert cache.has(c)

    def test_oversized_buffer_rejected_and_cache_unchanged(self):
        cache = make_cache(max_bytes=100)
        kept = cache.store(b"k" * 60, META).entry_id

        result = cache.store(b"x" * 101, META)

        assert not result.ok
        assert result.error_kind == ErrorKind.CAPACITY_EXCEEDED
        assert "try again later" in result.error
        assert cache.has(kept)
        assert cache.stats().used_bytes == 60

    def test_oversized_buffer_rejected_on_empty_cache(self):
        cache = make_cache(max_bytes=100)

        result = cache.store(b"x" * 101, META)

        assert result.error_kind == ErrorKind.CAPACITY_EXCEEDED
        assert cache.stats().count == 0

    def test_exact_capacity_fits(self):
        cache = make_cache(max_bytes=100)

        assert cache.store(b"x" * 100, META).ok
        assert cache.stats().used_percent == 100


class TestConcurrency:
    """Size accounting under concurrent access."""

    def test_concurrent_stores_never_exceed_capacity(self):
        cache = StagingCache(max_bytes=1000, ttl_ms=60_000)
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            for _ in range(50):
                results.append(cache.store(b"q" * 90, META))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = cache.stats()
        assert all(r.ok for r in results)
        assert stats.used_bytes <= 1000
        assert stats.used_bytes == stats.count * 90

    def test_concurrent_remove_and_get(self):
        cache = StagingCache(max_bytes=10_000, ttl_ms=60_000)
        ids = [cache.store(b"r" * 10, META).entry_id for _ in range(200)]

        def remover():
            for i in ids:
                cache.remove(i)

        def reader():
            for i in ids:
                entry = cache.get(i)
                assert entry is None or entry.raw_bytes == b"r" * 10

        threads = [threading.Thread(target=remover), threading.Thread(target=reader)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.stats().used_bytes == 0
        assert cache.stats().count == 0


class TestBackgroundSweep:
    """Periodic sweep task lifecycle."""

    @pytest.mark.asyncio
    async def test_sweep_task_removes_expired_entries(self):
        clock = FakeClock()
        cache = StagingCache(max_bytes=100, ttl_ms=1000, sweep_interval_s=0.01, clock=clock)
        cache.store(b"abc", META)
        clock.advance(2)

        cache.start()
        try:
            for _ in range(100):
                if cache.stats().count == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await cache.stop()

        assert cache.stats().count == 0
        assert cache.stats().used_bytes == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_task(self):
        cache = StagingCache(max_bytes=100, ttl_ms=1000, sweep_interval_s=10)

        cache.start()
        assert cache.sweeping

        await cache.stop()
        assert not cache.sweeping

        # Stopping twice is harmless
        await cache.stop()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        cache = StagingCache(max_bytes=100, ttl_ms=1000, sweep_interval_s=10)

        cache.start()
        task = cache._sweeper
        cache.start()

        assert cache._sweeper is task
        await cache.stop()
