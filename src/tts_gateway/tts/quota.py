"""
Account Quota Tracking.

The provider bills characters against a periodic account quota. The
QuotaTracker owns the latest known QuotaSnapshot and hands it out by
value; nobody else holds mutable quota state.

Refresh policy:
    - The account endpoint is contacted at most once per
      refresh_interval_s (default 300 s), counted from the last attempt,
      successful or not. Concurrent stale callers share a single fetch.
    - force_refresh=True always hits the endpoint.
    - A failed refresh logs a warning and returns the last known
      snapshot (or None if none was ever fetched). Quota checks never
      fail a synthesis just because the quota endpoint is unreachable.

Usage:
    tracker = QuotaTracker(provider.get_quota)
    snapshot = await tracker.get_snapshot()
    if snapshot is not None and snapshot.characters_remaining < len(text):
        raise QuotaExceededError(...)
"""
from __future__ import annotations

import asyncio
import dataclasses
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from tts_gateway.core.config import Defaults
from tts_gateway.core.errors import SynthesisError
from tts_gateway.core.logging import get_logger, verbose, warn
from tts_gateway.core.metrics import metrics
from tts_gateway.tts.cancellation import CancelToken, guarded

_LOG = get_logger("tts-gateway.quota")


@dataclass(frozen=True)
class QuotaSnapshot:
    """
    Account quota at a point in time.

    Attributes:
        characters_remaining: Characters still billable this period.
        character_limit: Characters allowed per period.
        percent_used: Share of the limit already consumed, 0-100.
        fetched_at: Wall-clock time the snapshot was taken.
        next_reset_unix: When the provider resets the counter, if known.
    """
    characters_remaining: int
    character_limit: int
    percent_used: float
    fetched_at: float
    next_reset_unix: Optional[int] = None

    @classmethod
    def from_counts(
        cls,
        character_count: int,
        character_limit: int,
        fetched_at: Optional[float] = None,
        next_reset_unix: Optional[int] = None,
    ) -> "QuotaSnapshot":
        """Build a snapshot from used/limit counters."""
        percent = (100.0 * character_count / character_limit) if character_limit > 0 else 100.0
        return cls(
            characters_remaining=max(0, character_limit - character_count),
            character_limit=character_limit,
            percent_used=round(percent, 2),
            fetched_at=time.time() if fetched_at is None else fetched_at,
            next_reset_unix=next_reset_unix,
        )

    def is_stale(self, now: float, max_age: float = Defaults.QUOTA_REFRESH_INTERVAL_S) -> bool:
        return now - self.fetched_at > max_age


QuotaFetcher = Callable[[Optional[CancelToken]], Awaitable[QuotaSnapshot]]


class QuotaTracker:
    """Owns the last known QuotaSnapshot and refreshes it on a schedule."""

    def __init__(
        self,
        fetcher: QuotaFetcher,
        refresh_interval_s: float = Defaults.QUOTA_REFRESH_INTERVAL_S,
        warn_percent: float = Defaults.QUOTA_WARN_PERCENT,
        clock: Callable[[], float] = time.time,
    ):
        self._fetcher = fetcher
        self.refresh_interval_s = float(refresh_interval_s)
        self.warn_percent = float(warn_percent)
        self._clock = clock

        self._snapshot: Optional[QuotaSnapshot] = None
        self._lock = threading.Lock()
        self._refresh_failures = 0
        self._last_attempt: Optional[float] = None
        self._refresh_loop: Optional[asyncio.AbstractEventLoop] = None
        self._async_lock: Optional[asyncio.Lock] = None

    @property
    def snapshot(self) -> Optional[QuotaSnapshot]:
        """Last known snapshot without triggering a refresh."""
        with self._lock:
            return self._snapshot

    def _due(self, now: float) -> bool:
        with self._lock:
            return self._last_attempt is None or now - self._last_attempt > self.refresh_interval_s

    def _refresh_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._refresh_loop is not loop:
            self._refresh_loop = loop
            self._async_lock = asyncio.Lock()
        return self._async_lock

    async def get_snapshot(
        self,
        force_refresh: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[QuotaSnapshot]:
        """
        Return the current snapshot, refreshing when due or forced.

        A refresh is due refresh_interval_s after the last attempt, whether
        that attempt succeeded or not. Concurrent callers share one fetch.
        Never raises for endpoint failures; returns the last known value.

        Raises:
            asyncio.CancelledError: Cancelled while the fetch was in flight.
        """
        lock = self._refresh_lock()
        if not force_refresh and not lock.locked() and not self._due(self._clock()):
            return self.snapshot

        # callers arriving mid-refresh wait for its result
        await guarded(lock.acquire(), cancel)
        try:
            now = self._clock()
            if not force_refresh and not self._due(now):
                return self.snapshot
            with self._lock:
                self._last_attempt = now
                current = self._snapshot

            try:
                fetched = await self._fetcher(cancel)
            except (SynthesisError, httpx.HTTPError, ValueError, KeyError, TypeError) as e:
                with self._lock:
                    self._refresh_failures += 1
                warn(_LOG, "quota_refresh_failed", error=str(e), have_snapshot=current is not None)
                return current

            snapshot = dataclasses.replace(fetched, fetched_at=now)
            with self._lock:
                self._snapshot = snapshot
        finally:
            lock.release()

        metrics.set_quota_percent(snapshot.percent_used)
        verbose(_LOG, "quota_refreshed", remaining=snapshot.characters_remaining, quota_percent=snapshot.percent_used)
        if snapshot.percent_used > self.warn_percent:
            warn(_LOG, "quota_high", quota_percent=snapshot.percent_used, remaining=snapshot.characters_remaining)
        return snapshot

    def record_usage(self, characters: int) -> Optional[QuotaSnapshot]:
        """
        Deduct locally spent characters from the cached snapshot.

        Keeps the pre-flight check honest between refreshes. The
        snapshot's fetch time is unchanged so the refresh schedule holds.
        """
        with self._lock:
            current = self._snapshot
            if current is None:
                return None
            used = current.character_limit - current.characters_remaining + int(characters)
            updated = QuotaSnapshot.from_counts(
                character_count=used,
                character_limit=current.character_limit,
                fetched_at=current.fetched_at,
                next_reset_unix=current.next_reset_unix,
            )
            self._snapshot = updated

        metrics.set_quota_percent(updated.percent_used)
        return updated

    def stats(self) -> dict:
        with self._lock:
            snap = self._snapshot
            return {
                "known": snap is not None,
                "characters_remaining": snap.characters_remaining if snap else None,
                "character_limit": snap.character_limit if snap else None,
                "percent_used": snap.percent_used if snap else None,
                "fetched_at": snap.fetched_at if snap else None,
                "refresh_failures": self._refresh_failures,
            }
