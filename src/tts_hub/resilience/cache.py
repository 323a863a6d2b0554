"""
TTL Cache Regions.

A CacheStore is a thread-safe keyed store whose entries expire a fixed time
after they were written. The facade runs three of them:

    AUDIO          synthesized audio bytes, hours-scale TTL, entry-count bound
    METADATA       voice lists / provider capabilities, minutes-scale TTL
    CONFIGURATION  resolved provider settings, minutes-scale TTL

Expiry:
    Entries are checked on read. An entry whose age reached the TTL is
    removed and the read counts as a miss, so a second read misses too.

Eviction:
    A bounded store that is full evicts a batch of entries (10 by default)
    before inserting a new key. "Oldest" means oldest by write time unless
    the store is built with EvictionPolicy.ACCESS_TIME, which evicts the
    least recently read entries instead.

Example:
    >>> audio = CacheStore("audio", ttl_seconds=86400, max_entries=100)
    >>> audio.set(make_cache_key("azure", "Hello", "en-US-JennyNeural"), wav)
    >>> audio.get(key)
    b'RIFF...'
    >>> audio.stats()["hits"]
    1
"""
from __future__ import annotations

import hashlib
import heapq
import json
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional

from tts_hub.core.config import CacheRegionConfig, Defaults
from tts_hub.core.logging import get_logger, info, verbose
from tts_hub.utils.timeit import timeit

_LOG = get_logger("tts-hub.cache")


class CacheRegion(str, Enum):
    """The three cache regions owned by the facade."""
    AUDIO = "audio"
    METADATA = "metadata"
    CONFIGURATION = "configuration"


class EvictionPolicy(str, Enum):
    """Which entries an eviction sweep removes first."""
    WRITE_TIME = "write_time"
    ACCESS_TIME = "access_time"


@dataclass
class CacheEntry:
    """
    One cached value.

    Attributes:
        key: Cache key.
        value: Cached payload (audio bytes, metadata dict, ...).
        written_at: Unix timestamp of the write; drives expiry.
        last_accessed_at: Unix timestamp of the last hit.
        access_count: Number of hits served.
    """
    key: Hashable
    value: Any
    written_at: float = field(default_factory=time.time)
    last_accessed_at: float = 0.0
    access_count: int = 0

    def __post_init__(self) -> None:
        if not self.last_accessed_at:
            self.last_accessed_at = self.written_at


_MISS = object()


class CacheStore:
    """
    Thread-safe TTL store with optional entry-count bound.

    All public methods take the same lock. Statistics are cumulative for
    the life of the store; clear() drops entries but keeps the counters.

    Attributes:
        name: Region name used in logs and reports.
        ttl_seconds: Entry lifetime (0 disables expiry).
        max_entries: Bound on entries, or None for unbounded.
        eviction_batch: Entries removed per eviction sweep.
        policy: EvictionPolicy used by sweeps.
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        max_entries: Optional[int] = None,
        eviction_batch: int = Defaults.CACHE_EVICTION_BATCH,
        policy: EvictionPolicy | str = EvictionPolicy.WRITE_TIME,
    ):
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be non-negative, got {ttl_seconds}")
        if max_entries is not None and max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        if eviction_batch <= 0:
            raise ValueError(f"eviction_batch must be positive, got {eviction_batch}")

        self.name = name
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max_entries
        self.eviction_batch = int(eviction_batch)
        self.policy = EvictionPolicy(policy)

        # dict keeps write order; re-writes pop and re-insert the key
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._total_requests = 0

    @classmethod
    def from_config(cls, name: str, config: CacheRegionConfig) -> "CacheStore":
        return cls(
            name,
            ttl_seconds=config.ttl_seconds,
            max_entries=config.max_entries,
            eviction_batch=config.eviction_batch,
            policy=config.eviction_policy,
        )

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return self.ttl_seconds > 0 and now - entry.written_at >= self.ttl_seconds

    def lookup(self, key: Hashable) -> tuple[bool, Any]:
        """
        Look a key up, distinguishing a miss from a cached None.

        Returns:
            (True, value) on a fresh hit, (False, None) otherwise.
        """
        with timeit("cache_get") as t:
            with self._lock:
                self._total_requests += 1
                now = time.time()
                entry = self._entries.get(key)
                expired = False

                if entry is not None and self._is_expired(entry, now):
                    del self._entries[key]
                    self._expirations += 1
                    expired = True
                    entry = None

                if entry is None:
                    self._misses += 1
                    value: Any = _MISS
                else:
                    entry.access_count += 1
                    entry.last_accessed_at = now
                    self._hits += 1
                    value = entry.value

        short_key = str(key)[:8]
        if value is _MISS:
            verbose(_LOG, "cache_miss", region=self.name, key=short_key, expired=expired)
            return False, None

        info(_LOG, "cache_hit", region=self.name, key=short_key, seconds=round(t.timing.seconds, 5))
        return True, value

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the fresh value for ``key``, or ``default`` on a miss."""
        found, value = self.lookup(key)
        return value if found else default

    def set(self, key: Hashable, value: Any) -> int:
        """
        Insert or overwrite an entry.

        When the store is bounded, the key is new and the store is full,
        an eviction sweep runs first.

        Returns:
            Number of entries evicted by this write.
        """
        evicted: List[Hashable] = []

        with self._lock:
            is_new = self._entries.pop(key, None) is None
            if (
                is_new
                and self.max_entries is not None
                and len(self._entries) >= self.max_entries
            ):
                evicted = self._evict_locked()
            self._entries[key] = CacheEntry(key=key, value=value)

        if evicted:
            verbose(_LOG, "cache_evicted", region=self.name, count=len(evicted), policy=self.policy.value)
        return len(evicted)

    def _evict_locked(self) -> List[Hashable]:
        if self.policy is EvictionPolicy.ACCESS_TIME:
            sort_key = lambda e: e.last_accessed_at  # noqa: E731
        else:
            sort_key = lambda e: e.written_at  # noqa: E731

        # nsmallest is stable, so ties fall back to write order
        oldest = heapq.nsmallest(self.eviction_batch, self._entries.values(), key=sort_key)
        for entry in oldest:
            del self._entries[entry.key]
        self._evictions += len(oldest)
        return [entry.key for entry in oldest]

    def delete(self, key: Hashable) -> bool:
        """Remove an entry; True if it existed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry; returns how many were dropped."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def cleanup_expired(self) -> int:
        """
        Remove every expired entry without waiting for it to be read.

        Returns:
            Number of entries removed.
        """
        if self.ttl_seconds <= 0:
            return 0

        now = time.time()
        with self._lock:
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)

        if expired:
            verbose(_LOG, "cache_cleanup", region=self.name, removed=len(expired))
        return len(expired)

    def entry(self, key: Hashable) -> Optional[CacheEntry]:
        """Raw entry access without TTL checks or statistics."""
        with self._lock:
            return self._entries.get(key)

    def stats(self) -> Dict[str, Any]:
        """
        Cumulative statistics.

        Returns:
            Dictionary with hits, misses, evictions, expirations,
            total_requests, hit_rate (percent), size, max_entries,
            ttl_seconds and policy.
        """
        with self._lock:
            total = self._total_requests
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "total_requests": total,
                "hit_rate": (self._hits / total * 100.0) if total else 0.0,
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "policy": self.policy.value,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        """Presence check only; does not apply the TTL."""
        with self._lock:
            return key in self._entries


def make_cache_key(provider: str, text: str, voice: str = "", **params: Any) -> str:
    """
    Deterministic key for a synthesis result.

    Every parameter that changes the produced audio (rate, pitch, output
    format, ...) must be passed so different renderings never collide.

    Returns:
        64-character lowercase hex SHA-256 digest.
    """
    payload = {
        "provider": provider,
        "text": text,
        "voice": voice,
        "params": params,
    }
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()
