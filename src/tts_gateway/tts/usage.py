"""
Per-Credential Rate Limiting for the Primary Provider.

The UsageLedger keeps a 60-second sliding window of requests per
credential and decides, before any network traffic, whether another
request may go out.

Lifecycle of one request:
    1. try_acquire(cred, chars)            reserve a slot (atomic check-and-reserve)
    2a. record(cred, chars, reservation)   provider call succeeded, commit that slot
    2b. release(cred, reservation)         provider call failed, refund that slot

Only committed usage represents spend at the provider; a reservation that
is released does not count against the window. A denied try_acquire
never waits: the orchestrator routes the request to the fallback chain.

Limits:
    - max_requests_per_minute: slots (reserved + committed) in the window
    - max_characters_per_minute: characters (reserved + committed) in the window

Credentials that see no traffic for an hour are dropped during a
periodic sweep so the ledger does not grow without bound.

Usage:
    ledger = UsageLedger(max_requests_per_minute=100)
    reservation = ledger.try_acquire(api_key, len(text))
    if reservation is not None:
        try:
            audio = await provider.synthesize(...)
        except TransportError:
            ledger.release(api_key, reservation)
            raise
        ledger.record(api_key, len(text), reservation)
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional

from tts_gateway.core.config import Defaults
from tts_gateway.core.logging import debug, get_logger, info, verbose

_LOG = get_logger("tts-gateway.usage")

WINDOW_SECONDS = 60.0
IDLE_EXPIRY_SECONDS = 3600.0
SWEEP_INTERVAL_SECONDS = 300.0


@dataclass
class UsageStats:
    """Read-only snapshot of one credential's window."""
    credential: str
    requests_in_window: int
    characters_in_window: int
    remaining_requests: int
    remaining_characters: int
    rate_limited: bool
    total_requests: int
    total_characters: int
    total_rejected: int


@dataclass(eq=False)
class Reservation:
    """One request slot in a credential window, open until committed or released."""
    timestamp: float
    characters: int
    committed: bool = False


@dataclass
class _CredentialWindow:
    lock: threading.Lock = field(default_factory=threading.Lock)
    slots: Deque[Reservation] = field(default_factory=deque)
    last_activity: float = 0.0
    total_requests: int = 0
    total_characters: int = 0
    total_rejected: int = 0

    def prune(self, now: float) -> None:
        cutoff = now - WINDOW_SECONDS
        while self.slots and self.slots[0].timestamp <= cutoff:
            self.slots.popleft()

    def characters(self) -> int:
        return sum(s.characters for s in self.slots)


class UsageLedger:
    """
    Sliding-window request budget keyed by credential.

    Each credential has its own lock, so traffic on one credential never
    blocks another. The registry lock is only held to look up or create
    a window.
    """

    def __init__(
        self,
        max_requests_per_minute: int = Defaults.RATE_LIMIT_MAX_REQUESTS_PER_MINUTE,
        max_characters_per_minute: int = Defaults.RATE_LIMIT_MAX_CHARACTERS_PER_MINUTE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests_per_minute = int(max_requests_per_minute)
        self.max_characters_per_minute = int(max_characters_per_minute)
        self._clock = clock

        self._windows: Dict[str, _CredentialWindow] = {}
        self._registry_lock = threading.Lock()
        self._last_sweep = clock()

    def _window(self, credential: str) -> _CredentialWindow:
        with self._registry_lock:
            window = self._windows.get(credential)
            if window is None:
                window = _CredentialWindow(last_activity=self._clock())
                self._windows[credential] = window
            return window

    def try_acquire(self, credential: str, char_count: int) -> Optional[Reservation]:
        """
        Reserve one request slot if both budgets allow it.

        Returns:
            The Reservation to hand back to record() or release(), or None
            if the request must not be sent.
        """
        self._maybe_sweep()
        window = self._window(credential)
        with window.lock:
            now = self._clock()
            window.prune(now)
            window.last_activity = now

            if len(window.slots) >= self.max_requests_per_minute:
                window.total_rejected += 1
                verbose(_LOG, "rate_limit_denied", reason="requests", in_window=len(window.slots))
                return None

            if window.characters() + char_count > self.max_characters_per_minute:
                window.total_rejected += 1
                verbose(_LOG, "rate_limit_denied", reason="characters", chars=char_count)
                return None

            reservation = Reservation(timestamp=now, characters=int(char_count))
            window.slots.append(reservation)
            debug(_LOG, "rate_limit_reserved", in_window=len(window.slots))
            return reservation

    def record(self, credential: str, char_count: int, reservation: Optional[Reservation] = None) -> None:
        """
        Commit usage after a successful provider call.

        The given reservation is committed in place and keeps its original
        timestamp. Without one (rate limiting disabled, for example) a
        committed slot is appended so statistics stay accurate.
        """
        window = self._window(credential)
        with window.lock:
            now = self._clock()
            window.prune(now)
            window.last_activity = now

            if reservation is None:
                window.slots.append(Reservation(timestamp=now, characters=int(char_count), committed=True))
            else:
                # a reservation older than the window was already pruned
                reservation.committed = True
                reservation.characters = int(char_count)

            window.total_requests += 1
            window.total_characters += int(char_count)

    def release(self, credential: str, reservation: Optional[Reservation] = None) -> bool:
        """
        Refund an open reservation after a failed provider call.

        Refunds exactly ``reservation`` when given, otherwise the newest
        open one.

        Returns:
            True if a reservation was refunded.
        """
        window = self._window(credential)
        with window.lock:
            for idx in range(len(window.slots) - 1, -1, -1):
                slot = window.slots[idx]
                if slot.committed:
                    continue
                if reservation is None or slot is reservation:
                    del window.slots[idx]
                    return True
            return False

    def wait_time(self, credential: str) -> float:
        """Seconds until the oldest slot leaves the window, 0 when not limited."""
        window = self._window(credential)
        with window.lock:
            now = self._clock()
            window.prune(now)
            if len(window.slots) < self.max_requests_per_minute and window.characters() < self.max_characters_per_minute:
                return 0.0
            if not window.slots:
                return 0.0
            return max(0.0, window.slots[0].timestamp + WINDOW_SECONDS - now)

    def reset(self, credential: Optional[str] = None) -> None:
        """Forget one credential's window, or every window when None."""
        with self._registry_lock:
            if credential is None:
                self._windows.clear()
            else:
                self._windows.pop(credential, None)
        info(_LOG, "rate_limit_reset", credential=_mask(credential) if credential else "*")

    def cleanup_idle(self) -> int:
        """Drop credentials with no activity for IDLE_EXPIRY_SECONDS."""
        cutoff = self._clock() - IDLE_EXPIRY_SECONDS
        with self._registry_lock:
            idle = [cred for cred, w in self._windows.items() if w.last_activity < cutoff]
            for cred in idle:
                del self._windows[cred]
        if idle:
            verbose(_LOG, "rate_limit_idle_cleanup", removed=len(idle))
        return len(idle)

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if now - self._last_sweep < SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        self.cleanup_idle()

    def stats(self, credential: str) -> UsageStats:
        """Read-only view of the credential's current window."""
        with self._registry_lock:
            window = self._windows.get(credential)
        if window is None:
            return UsageStats(
                credential=_mask(credential),
                requests_in_window=0,
                characters_in_window=0,
                remaining_requests=self.max_requests_per_minute,
                remaining_characters=self.max_characters_per_minute,
                rate_limited=False,
                total_requests=0,
                total_characters=0,
                total_rejected=0,
            )

        with window.lock:
            # read-only: filter, don't prune
            cutoff = self._clock() - WINDOW_SECONDS
            live = [s for s in window.slots if s.timestamp > cutoff]
            requests = len(live)
            characters = sum(s.characters for s in live)
            return UsageStats(
                credential=_mask(credential),
                requests_in_window=requests,
                characters_in_window=characters,
                remaining_requests=max(0, self.max_requests_per_minute - requests),
                remaining_characters=max(0, self.max_characters_per_minute - characters),
                rate_limited=requests >= self.max_requests_per_minute
                or characters >= self.max_characters_per_minute,
                total_requests=window.total_requests,
                total_characters=window.total_characters,
                total_rejected=window.total_rejected,
            )

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._windows)


def _mask(credential: str) -> str:
    if len(credential) <= 8:
        return "***"
    return f"{credential[:4]}...{credential[-4:]}"
