"""
In-Memory Audio Cache with Byte Budget and TTL.

Stores synthesized audio keyed by make_cache_key(), so repeated requests
are served without touching the network or the request budget.

    - Byte budget: total stored audio never exceeds max_size_bytes
    - TTL: entries expire ttl_seconds after creation (reads do not extend it)
    - Eviction: oldest-created entries go first until the new entry fits
    - Bypass: an entry larger than the whole budget is not stored
    - Thread-safe: one lock around all state

Example:
    >>> cache = AudioCache(max_size_bytes=100, ttl_seconds=3600)
    >>> cache.put("a", b"x" * 60)
    True
    >>> cache.put("b", b"y" * 60)   # evicts "a"
    True
    >>> cache.get("a") is None
    True
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from tts_gateway.core.config import Defaults
from tts_gateway.core.logging import debug, get_logger, verbose

_LOG = get_logger("tts-gateway.cache")


@dataclass
class CacheEntry:
    """
    One cached clip.

    Attributes:
        key: Cache key (SHA256 hex).
        audio: Encoded audio bytes as returned by the provider.
        created_at: Clock value when the entry was stored.
    """
    key: str
    audio: bytes
    created_at: float = field(default_factory=time.time)

    @property
    def size(self) -> int:
        return len(self.audio)


class AudioCache:
    """
    Thread-safe byte-budgeted cache with creation-time TTL.

    Entries are kept in creation order, so the front of the ordered dict
    is always the oldest entry and eviction pops from the front.

    Attributes:
        max_size_bytes: Total byte budget.
        ttl_seconds: Entry lifetime measured from creation.
    """

    def __init__(
        self,
        max_size_bytes: int = Defaults.CACHE_MAX_SIZE_BYTES,
        ttl_seconds: float = Defaults.CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size_bytes = int(max_size_bytes)
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock

        self._d: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._size = 0
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._evictions = 0
        self._bypasses = 0

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl_seconds

    def _remove(self, key: str) -> CacheEntry:
        entry = self._d.pop(key)
        self._size -= entry.size
        return entry

    def get(self, key: str) -> Optional[bytes]:
        """
        Return cached audio for ``key``, or None on miss or expiry.

        An expired entry is removed on access.
        """
        with self._lock:
            entry = self._d.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if self._expired(entry, now):
                self._remove(key)
                self._expirations += 1
                self._misses += 1
                verbose(_LOG, "cache_expired", key=key[:8], age=round(now - entry.created_at, 1))
                return None

            self._hits += 1
            return entry.audio

    def put(self, key: str, audio: bytes) -> bool:
        """
        Store audio under ``key``.

        Replaces any existing entry for the key (its age restarts). Evicts
        the oldest entries until the new one fits.

        Returns:
            True if stored, False if the entry exceeds the whole budget.
        """
        size = len(audio)
        if size > self.max_size_bytes:
            with self._lock:
                self._bypasses += 1
            verbose(_LOG, "cache_bypass", key=key[:8], bytes=size, budget=self.max_size_bytes)
            return False

        with self._lock:
            if key in self._d:
                self._remove(key)

            evicted = 0
            while self._d and self._size + size > self.max_size_bytes:
                oldest_key = next(iter(self._d))
                self._remove(oldest_key)
                evicted += 1

            self._d[key] = CacheEntry(key=key, audio=bytes(audio), created_at=self._clock())
            self._size += size
            self._evictions += evicted
            total = self._size

        debug(_LOG, "cache_put", key=key[:8], bytes=size, total_bytes=total, evicted=evicted)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._d:
                self._remove(key)
                return True
            return False

    def clear(self) -> int:
        """Drop every entry. Returns how many were removed."""
        with self._lock:
            count = len(self._d)
            self._d.clear()
            self._size = 0
            return count

    def cleanup_expired(self) -> int:
        """Remove all expired entries, returning how many were removed."""
        now = self._clock()
        with self._lock:
            expired_keys = [k for k, e in self._d.items() if self._expired(e, now)]
            for key in expired_keys:
                self._remove(key)
            self._expirations += len(expired_keys)

        if expired_keys:
            verbose(_LOG, "cache_cleanup", removed=len(expired_keys))
        return len(expired_keys)

    @property
    def size_bytes(self) -> int:
        with self._lock:
            return self._size

    def stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with hits, misses, expirations, evictions, bypasses,
            entries, size_bytes, max_size_bytes, usage_percent, ttl_seconds.
        """
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "expirations": self._expirations,
                "evictions": self._evictions,
                "bypasses": self._bypasses,
                "entries": len(self._d),
                "size_bytes": self._size,
                "max_size_bytes": self.max_size_bytes,
                "usage_percent": round(100.0 * self._size / self.max_size_bytes, 2),
                "ttl_seconds": self.ttl_seconds,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._d)

    def __contains__(self, key: str) -> bool:
        """Key presence, without TTL check. Use get() for a TTL-aware lookup."""
        with self._lock:
            return key in self._d
