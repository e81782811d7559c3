"""
Timing Utilities for Performance Measurement.

Measures pipeline stages (cache lookup, quota check, primary call,
fallback) so their durations can be logged and exported as metrics.

Example Usage:
    with timeit("primary") as t:
        audio = await provider.synthesize(text, voice_id, profile)
    print(f"Took {t.timing.seconds:.3f}s")

Uses time.perf_counter() for high-resolution timing.
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """
    Timing measurement result.

    Attributes:
        name: Identifier for what was timed (e.g., "primary", "cache_lookup").
        seconds: Duration in seconds.
        meta: Optional metadata dictionary for additional context.
    """
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Context manager for timing code blocks.

    Works around ``await`` expressions as well, since it only records
    wall-clock time between enter and exit. The result is available as
    ``.timing`` after the block exits, including when it raised.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        t1 = perf_counter()
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=(t1 - self._t0), meta=self.meta)

    @property
    def seconds(self) -> float:
        """Elapsed seconds; measured up to now while the block is still running."""
        if self.timing is not None:
            return self.timing.seconds
        if self._t0 is None:
            return -1.0
        return perf_counter() - self._t0
