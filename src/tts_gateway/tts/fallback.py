"""
Ordered Fallback Chain.

A strategy list of capability-typed providers, built once at startup.
The chain has no notion of "primary" or "stub": it tries each provider
in order and the first that returns audio wins.

Rules:
    - Empty audio counts as a failure.
    - After max_failures consecutive failures a provider is put in
      cooldown for cooldown_s seconds and skipped; one success resets
      its failure count.
    - If every provider fails (or is cooling down), the last error is
      raised wrapped in SynthesisUnavailableError.
    - Streaming: a provider that fails before yielding anything is
      skipped transparently. Once a provider has yielded a chunk, a later
      failure fails the whole stream closed; audio from two providers is
      never spliced together.

Cancellation (asyncio.CancelledError) is never treated as a provider
failure and always propagates.
"""
from __future__ import annotations

import asyncio
import threading
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from tts_gateway.core.config import Defaults
from tts_gateway.core.errors import ConfigurationError, SynthesisError, SynthesisUnavailableError, TransportError
from tts_gateway.core.logging import get_logger, info, success, verbose, warn
from tts_gateway.tts.cancellation import CancelToken
from tts_gateway.tts.providers.base import FallbackProvider

_LOG = get_logger("tts-gateway.fallback")


@dataclass
class ProviderHealth:
    """Failure bookkeeping for one provider."""
    name: str
    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    cooldown_until: float = 0.0
    last_error: Optional[str] = None


class FallbackChain:
    """
    Tries providers in order until one produces audio.

    Args:
        providers: Ordered providers; validated against FallbackProvider.
        max_failures: Consecutive failures that trigger a cooldown.
        cooldown_s: How long a failing provider is skipped.
    """

    def __init__(
        self,
        providers: Sequence[FallbackProvider],
        max_failures: int = Defaults.FALLBACK_MAX_FAILURES,
        cooldown_s: float = Defaults.FALLBACK_COOLDOWN_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        for provider in providers:
            if not isinstance(provider, FallbackProvider):
                raise ConfigurationError(
                    f"{type(provider).__name__} lacks synthesize/stream_synthesize",
                )
        self._providers: List[FallbackProvider] = list(providers)
        self.max_failures = int(max_failures)
        self.cooldown_s = float(cooldown_s)
        self._clock = clock

        self._lock = threading.Lock()
        self._health: Dict[str, ProviderHealth] = {
            self._name(p, i): ProviderHealth(name=self._name(p, i)) for i, p in enumerate(self._providers)
        }

    @staticmethod
    def _name(provider: FallbackProvider, index: int) -> str:
        return f"{index}:{getattr(provider, 'name', type(provider).__name__)}"

    @property
    def providers(self) -> List[FallbackProvider]:
        return list(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    # ─────────────────────────────────────────────────────────────────────────
    # Health bookkeeping
    # ─────────────────────────────────────────────────────────────────────────

    def _available(self, key: str) -> bool:
        with self._lock:
            return self._health[key].cooldown_until <= self._clock()

    def _mark_success(self, key: str) -> None:
        with self._lock:
            health = self._health[key]
            health.consecutive_failures = 0
            health.cooldown_until = 0.0
            health.total_successes += 1

    def _mark_failure(self, key: str, error: BaseException) -> None:
        with self._lock:
            health = self._health[key]
            health.consecutive_failures += 1
            health.total_failures += 1
            health.last_error = str(error)
            if health.consecutive_failures >= self.max_failures:
                health.cooldown_until = self._clock() + self.cooldown_s
                cooling = True
            else:
                cooling = False
        warn(_LOG, "fallback_provider_failed", provider=key, error=str(error))
        if cooling:
            warn(_LOG, "fallback_provider_cooldown", provider=key, seconds=self.cooldown_s)

    def _exhausted(self, last_error: Optional[BaseException], tried: List[str]) -> SynthesisUnavailableError:
        message = "All fallback providers failed" if tried else "No fallback provider available"
        return SynthesisUnavailableError(
            message,
            details={"tried": tried, "last_error": str(last_error) if last_error else None},
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Synthesis
    # ─────────────────────────────────────────────────────────────────────────

    async def synthesize(
        self,
        text: str,
        voice_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> bytes:
        """
        Return audio from the first provider that succeeds.

        Raises:
            SynthesisUnavailableError: Every provider failed or is cooling down.
            asyncio.CancelledError: Cancelled by the caller.
        """
        last_error: Optional[BaseException] = None
        tried: List[str] = []

        for index, provider in enumerate(self._providers):
            key = self._name(provider, index)
            if not self._available(key):
                verbose(_LOG, "fallback_provider_skipped", provider=key, reason="cooldown")
                continue
            tried.append(key)
            try:
                audio = await provider.synthesize(text, voice_hint, cancel)
                if not audio:
                    raise SynthesisError(f"{key} returned empty audio")
            except asyncio.CancelledError:
                raise
            except (SynthesisError, TransportError, OSError, ValueError, RuntimeError) as e:
                self._mark_failure(key, e)
                last_error = e
                continue

            self._mark_success(key)
            success(_LOG, "fallback_used", provider=key, bytes=len(audio))
            return audio

        raise self._exhausted(last_error, tried) from last_error

    async def stream_synthesize(
        self,
        text: str,
        voice_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[bytes]:
        """
        Stream audio from the first provider that yields a chunk.

        Raises:
            SynthesisUnavailableError: No provider produced audio, or the
                chosen provider failed after its first chunk.
            asyncio.CancelledError: Cancelled by the caller.
        """
        last_error: Optional[BaseException] = None
        tried: List[str] = []

        for index, provider in enumerate(self._providers):
            key = self._name(provider, index)
            if not self._available(key):
                verbose(_LOG, "fallback_provider_skipped", provider=key, reason="cooldown")
                continue
            tried.append(key)
            yielded = 0
            try:
                async with aclosing(provider.stream_synthesize(text, voice_hint, cancel)) as chunks:
                    async for chunk in chunks:
                        if not chunk:
                            continue
                        yielded += 1
                        yield chunk
            except asyncio.CancelledError:
                raise
            except (SynthesisError, TransportError, OSError, ValueError, RuntimeError) as e:
                self._mark_failure(key, e)
                if yielded:
                    err = SynthesisUnavailableError(
                        f"{key} failed mid-stream",
                        details={"provider": key, "chunks_delivered": yielded},
                    )
                    raise err from e
                last_error = e
                continue

            if yielded:
                self._mark_success(key)
                info(_LOG, "fallback_stream_used", provider=key, chunks=yielded)
                return

            empty = SynthesisError(f"{key} streamed no audio")
            self._mark_failure(key, empty)
            last_error = empty

        raise self._exhausted(last_error, tried) from last_error

    def status(self) -> List[Dict[str, Any]]:
        """Per-provider health, in chain order."""
        now = self._clock()
        with self._lock:
            return [
                {
                    "provider": h.name,
                    "available": h.cooldown_until <= now,
                    "consecutive_failures": h.consecutive_failures,
                    "total_failures": h.total_failures,
                    "total_successes": h.total_successes,
                    "cooldown_remaining_s": round(max(0.0, h.cooldown_until - now), 1),
                    "last_error": h.last_error,
                }
                for h in self._health.values()
            ]

    async def aclose(self) -> None:
        for provider in self._providers:
            closer = getattr(provider, "aclose", None)
            if closer is not None:
                await closer()
