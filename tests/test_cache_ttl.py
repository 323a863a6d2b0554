"""
Tests for TTL cache regions.

Tests cover:
- Entries expire a fixed time after they were written
- Expired entries are removed on read and never come back
- TTL=0 means no expiration
- The write that would exceed max_entries evicts a batch of the oldest entries
- Write-time and access-time eviction policies
- Statistics (hits, misses, expirations, hit rate)
- Cache key derivation
- Thread safety
"""
import threading
import time

import pytest

from tts_hub.core.config import CacheRegionConfig
from tts_hub.resilience.cache import CacheRegion, CacheStore, EvictionPolicy, make_cache_key


def age_entry(store: CacheStore, key, seconds: float) -> None:
    """Pretend ``key`` was written ``seconds`` ago."""
    entry = store.entry(key)
    entry.written_at = time.time() - seconds
    entry.last_accessed_at = entry.written_at


class TestCacheTTLExpiration:
    """Tests for TTL-based expiration."""

    def test_fresh_entry_hit(self):
        store = CacheStore("audio", ttl_seconds=60)
        store.set("k", b"RIFF")

        assert store.get("k") == b"RIFF"
        assert store.stats()["hits"] == 1

    def test_entry_expires_after_ttl(self):
        store = CacheStore("audio", ttl_seconds=60)
        store.set("k", b"RIFF")
        age_entry(store, "k", 61)

        assert store.get("k") is None
        assert "k" not in store

    def test_entry_expired_exactly_at_ttl(self):
        """An entry whose age reached the TTL is already expired."""
        store = CacheStore("audio", ttl_seconds=60)
        store.set("k", b"RIFF")
        age_entry(store, "k", 60)

        found, _ = store.lookup("k")
        assert found is False

    def test_expired_entry_not_resurrected(self):
        """A second read after expiry misses too."""
        store = CacheStore("metadata", ttl_seconds=10)
        store.set("voices", ["jenny"])
        age_entry(store, "voices", 11)

        assert store.get("voices") is None
        assert store.get("voices") is None
        stats = store.stats()
        assert stats["expirations"] == 1
        assert stats["misses"] == 2
        assert stats["hits"] == 0

    def test_ttl_zero_never_expires(self):
        store = CacheStore("configuration", ttl_seconds=0)
        store.set("k", "v")
        age_entry(store, "k", 10 ** 7)

        assert store.get("k") == "v"
        assert store.cleanup_expired() == 0

    def test_access_does_not_extend_ttl(self):
        """Expiry counts from the write, however often the entry is read."""
        store = CacheStore("audio", ttl_seconds=60)
        store.set("k", b"RIFF")
        age_entry(store, "k", 59)
        assert store.get("k") == b"RIFF"

        store.entry("k").written_at -= 2
        assert store.get("k") is None

    def test_rewrite_resets_ttl(self):
        store = CacheStore("audio", ttl_seconds=60)
        store.set("k", b"old")
        age_entry(store, "k", 61)
        store.set("k", b"new")

        assert store.get("k") == b"new"

    def test_cleanup_expired(self):
        store = CacheStore("metadata", ttl_seconds=60)
        for key in ("a", "b", "c"):
            store.set(key, key)
        age_entry(store, "a", 120)
        age_entry(store, "b", 120)

        assert store.cleanup_expired() == 2
        assert len(store) == 1
        assert store.stats()["expirations"] == 2

    def test_cached_none_is_a_hit(self):
        """lookup() tells a stored None apart from a miss."""
        store = CacheStore("metadata", ttl_seconds=60)
        store.set("empty", None)

        assert store.lookup("empty") == (True, None)
        assert store.lookup("absent") == (False, None)


class TestEviction:
    """Tests for batch eviction on bounded stores."""

    def fill(self, store: CacheStore, count: int) -> None:
        base = time.time() - 1000
        for i in range(count):
            store.set(i, f"audio-{i}")
            entry = store.entry(i)
            entry.written_at = base + i
            entry.last_accessed_at = base + i

    def test_hundred_and_first_write_evicts_ten_oldest(self):
        store = CacheStore("audio", ttl_seconds=86400, max_entries=100, eviction_batch=10)
        self.fill(store, 100)
        assert len(store) == 100

        evicted = store.set(100, "audio-100")

        assert evicted == 10
        assert len(store) == 91
        assert all(i not in store for i in range(10))
        assert all(i in store for i in range(10, 101))
        assert store.stats()["evictions"] == 10

    def test_overwrite_at_capacity_does_not_evict(self):
        store = CacheStore("audio", ttl_seconds=60, max_entries=5, eviction_batch=2)
        self.fill(store, 5)

        assert store.set(3, "replaced") == 0
        assert len(store) == 5
        assert store.get(3) == "replaced"

    def test_write_time_policy_ignores_reads(self):
        store = CacheStore("audio", ttl_seconds=0, max_entries=3, eviction_batch=1)
        self.fill(store, 3)
        store.get(0)

        store.set("new", "x")
        assert 0 not in store
        assert 1 in store

    def test_access_time_policy_evicts_least_recently_read(self):
        store = CacheStore(
            "audio", ttl_seconds=0, max_entries=3, eviction_batch=1,
            policy=EvictionPolicy.ACCESS_TIME,
        )
        self.fill(store, 3)
        store.get(0)

        store.set("new", "x")
        assert 0 in store
        assert 1 not in store

    def test_unbounded_store_never_evicts(self):
        store = CacheStore("metadata", ttl_seconds=60)
        for i in range(500):
            store.set(i, i)
        assert len(store) == 500
        assert store.stats()["evictions"] == 0

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            CacheStore("audio", ttl_seconds=-1)
        with pytest.raises(ValueError):
            CacheStore("audio", ttl_seconds=1, max_entries=0)
        with pytest.raises(ValueError):
            CacheStore("audio", ttl_seconds=1, eviction_batch=0)


class TestCacheStats:
    """Tests for statistics and construction helpers."""

    def test_hit_rate(self):
        store = CacheStore("audio", ttl_seconds=60)
        store.set("a", 1)
        store.get("a")
        store.get("a")
        store.get("a")
        store.get("b")

        stats = store.stats()
        assert stats["total_requests"] == 4
        assert stats["hits"] == 3
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(75.0)

    def test_clear_keeps_counters(self):
        store = CacheStore("audio", ttl_seconds=60)
        store.set("a", 1)
        store.get("a")

        assert store.clear() == 1
        assert len(store) == 0
        assert store.stats()["hits"] == 1

    def test_delete(self):
        store = CacheStore("audio", ttl_seconds=60)
        store.set("a", 1)
        assert store.delete("a") is True
        assert store.delete("a") is False

    def test_from_config(self):
        config = CacheRegionConfig(ttl_seconds=30, max_entries=7, eviction_batch=2, eviction_policy="access_time")
        store = CacheStore.from_config(CacheRegion.METADATA.value, config)

        assert store.name == "metadata"
        assert store.max_entries == 7
        assert store.eviction_batch == 2
        assert store.policy is EvictionPolicy.ACCESS_TIME


class TestCacheKey:
    """Tests for make_cache_key()."""

    def test_deterministic(self):
        a = make_cache_key("azure", "Hello", "en-US-JennyNeural", rate="+0%")
        b = make_cache_key("azure", "Hello", "en-US-JennyNeural", rate="+0%")
        assert a == b
        assert len(a) == 64

    def test_every_parameter_matters(self):
        base = make_cache_key("azure", "Hello", "en-US-JennyNeural")
        assert make_cache_key("elevenlabs", "Hello", "en-US-JennyNeural") != base
        assert make_cache_key("azure", "Hello!", "en-US-JennyNeural") != base
        assert make_cache_key("azure", "Hello", "en-US-GuyNeural") != base
        assert make_cache_key("azure", "Hello", "en-US-JennyNeural", format="mp3") != base


class TestCacheThreadSafety:
    """Concurrent access keeps the store consistent."""

    def test_concurrent_writes_respect_bound(self):
        store = CacheStore("audio", ttl_seconds=60, max_entries=50, eviction_batch=5)

        def writer(offset):
            for i in range(200):
                store.set((offset, i), i)
                store.get((offset, i // 2))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) <= 50
        stats = store.stats()
        assert stats["hits"] + stats["misses"] == stats["total_requests"] == 1600
