"""
Synthesis Orchestrator.

Sequences every component of the gateway for one request. Callers only
ever see audio or a single terminal error.

Pipeline (generate_speech):
    1. Empty text                      -> b""
    2. Resolve voice                   -> ConfigurationError if none
    3. Pick a VoiceProfile by sentiment
    4. Cache lookup                    -> hit returns, no network, no budget
    5. Rate-limit reservation          -> denial goes to fallback
    6. Quota pre-flight                -> not enough characters goes to fallback
    7. Enhance text with prosody markup
    8. Primary synthesis (retried by the transport)
       success: commit usage, deduct quota, store in cache
    9. Any failure in 5-8: refund the reservation, then FallbackChain

Streaming (stream_speech) runs steps 1-7 the same way, then relays the
provider's chunks. A failure before the first chunk falls back
transparently; a failure after it fails the stream closed.

Cancellation:
    Pass a CancelToken to stop a request at the next suspension point.
    generate_speech raises asyncio.CancelledError; stream_speech simply
    ends. Cancellation never triggers a fallback.

Usage:
    orchestrator = get_orchestrator()
    audio = await orchestrator.generate_speech(SynthesisRequest("Hello"))
    async for chunk in orchestrator.stream_speech(SynthesisRequest("Hello", streaming=True)):
        ...
"""
from __future__ import annotations

import asyncio
import threading
from contextlib import aclosing
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from tts_gateway.core.config import GatewayConfig, Settings, load_settings
from tts_gateway.core.errors import (
    ConfigurationError,
    QuotaExceededError,
    RateLimitedError,
    SynthesisError,
    SynthesisUnavailableError,
    TransportError,
)
from tts_gateway.core.logging import debug, fail, get_logger, info, success, verbose, warn
from tts_gateway.core.metrics import metrics
from tts_gateway.tts.cache import AudioCache
from tts_gateway.tts.cancellation import CancelToken
from tts_gateway.tts.enhancer import enhance
from tts_gateway.tts.fallback import FallbackChain
from tts_gateway.tts.keys import make_cache_key
from tts_gateway.tts.profiles import VoiceProfile, resolve_profile, select_profile
from tts_gateway.tts.providers import HttpSynthesisProvider, PrimaryProvider, VoiceInfo, build_fallback_providers
from tts_gateway.tts.quota import QuotaSnapshot, QuotaTracker
from tts_gateway.tts.usage import Reservation, UsageLedger
from tts_gateway.utils.timeit import timeit

_LOG = get_logger("tts-gateway.orchestrator")


@dataclass(frozen=True)
class SynthesisRequest:
    """
    One synthesis request.

    Attributes:
        text: Text to speak.
        voice_id: Provider voice; the configured voice when None.
        streaming: Caller wants chunked delivery.
    """
    text: str
    voice_id: Optional[str] = None
    streaming: bool = False


@dataclass
class _Plan:
    """Per-request state resolved before any network call."""
    text: str
    voice_id: str
    profile: VoiceProfile
    cache_key: Optional[str]


def _slices(audio: bytes, chunk_size: int) -> List[bytes]:
    return [audio[i:i + chunk_size] for i in range(0, len(audio), chunk_size)]


def _reason(error: BaseException) -> str:
    if isinstance(error, SynthesisError):
        return error.code.lower()
    return type(error).__name__.lower()


class SynthesisOrchestrator:
    """
    Drives cache, rate limiting, quota, primary provider and fallback.

    Components are injected so they can be shared across the process
    and replaced in tests. Any component left as None is built from
    ``config``.

    Args:
        config: Validated gateway configuration.
        primary: Metered remote provider.
        cache: Audio cache.
        ledger: Per-credential rate limiter.
        quota: Account quota tracker; defaults to polling ``primary``.
        chain: Fallback providers in order.
    """

    def __init__(
        self,
        config: GatewayConfig,
        primary: PrimaryProvider,
        cache: Optional[AudioCache] = None,
        ledger: Optional[UsageLedger] = None,
        quota: Optional[QuotaTracker] = None,
        chain: Optional[FallbackChain] = None,
    ):
        self._config = config
        self._primary = primary
        self._default_profile = resolve_profile(config.provider.default_profile)

        # ─────────────────────────────────────────────────────────────────────
        # Cache
        # ─────────────────────────────────────────────────────────────────────
        self._cache = cache if cache is not None else AudioCache(
            max_size_bytes=config.cache.max_size_bytes,
            ttl_seconds=config.cache.ttl_seconds,
        )

        # ─────────────────────────────────────────────────────────────────────
        # Budget: rate limiting and account quota
        # ─────────────────────────────────────────────────────────────────────
        self._ledger = ledger if ledger is not None else UsageLedger(
            max_requests_per_minute=config.rate_limit.max_requests_per_minute,
            max_characters_per_minute=config.rate_limit.max_characters_per_minute,
        )
        self._quota = quota if quota is not None else QuotaTracker(
            primary.get_quota,
            refresh_interval_s=config.quota.refresh_interval_s,
            warn_percent=config.quota.warn_percent,
        )

        # ─────────────────────────────────────────────────────────────────────
        # Fallback
        # ─────────────────────────────────────────────────────────────────────
        self._chain = chain if chain is not None else FallbackChain(
            build_fallback_providers(config),
            max_failures=config.fallback.max_failures,
            cooldown_s=config.fallback.cooldown_s,
        )

        self._lock = threading.Lock()
        self._served: Dict[str, int] = {"cache": 0, "primary": 0, "fallback": 0, "error": 0}

        info(
            _LOG,
            "orchestrator_ready",
            caching=config.cache.enabled,
            rate_limiting=config.rate_limit.enabled,
            quota=config.quota.enabled,
            streaming=config.streaming.enabled,
            fallback=config.fallback.enabled,
            fallback_providers=len(self._chain),
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def cache(self) -> AudioCache:
        return self._cache

    @property
    def ledger(self) -> UsageLedger:
        return self._ledger

    @property
    def quota(self) -> QuotaTracker:
        return self._quota

    @property
    def chain(self) -> FallbackChain:
        return self._chain

    @property
    def _credential(self) -> str:
        return self._config.provider.api_key

    # =========================================================================
    # Pipeline stages
    # =========================================================================

    def _plan(self, request: SynthesisRequest) -> _Plan:
        voice_id = request.voice_id or self._config.provider.voice_id
        if not voice_id:
            raise ConfigurationError("No voice_id in request and provider.voice_id is not configured")

        profile = select_profile(request.text, self._default_profile)
        key = None
        if self._config.cache.enabled:
            key = make_cache_key(request.text, voice_id, profile)
        debug(_LOG, "resolved", voice_id=voice_id, profile=asdict(profile), cache_key=key)
        return _Plan(text=request.text, voice_id=voice_id, profile=profile, cache_key=key)

    def _lookup(self, plan: _Plan) -> Optional[bytes]:
        if plan.cache_key is None:
            return None
        audio = self._cache.get(plan.cache_key)
        metrics.record_cache("hit" if audio is not None else "miss")
        verbose(_LOG, "stage", event="cache_lookup", cache="hit" if audio is not None else "miss")
        return audio

    def _reserve(self, text: str) -> Optional[Reservation]:
        """
        Take a rate-limit slot; None when rate limiting is off.

        Raises:
            RateLimitedError: Window is full; nothing is sent.
        """
        if not self._config.rate_limit.enabled:
            return None
        reservation = self._ledger.try_acquire(self._credential, len(text))
        if reservation is not None:
            return reservation
        metrics.inc_rate_limited()
        raise RateLimitedError(
            "Primary provider rate limit reached",
            retry_after=self._ledger.wait_time(self._credential),
        )

    def _release(self, reservation: Optional[Reservation]) -> None:
        if reservation is not None:
            self._ledger.release(self._credential, reservation)

    async def _check_quota(self, text: str, cancel: Optional[CancelToken]) -> None:
        """
        Raises:
            QuotaExceededError: Known snapshot has fewer characters left than needed.
        """
        if not self._config.quota.enabled:
            return
        snapshot = await self._quota.get_snapshot(cancel=cancel)
        if snapshot is not None and snapshot.characters_remaining < len(text):
            raise QuotaExceededError(
                "Not enough characters left in the account quota",
                details={"needed": len(text), "remaining": snapshot.characters_remaining},
            )

    def _commit(self, plan: _Plan, audio: bytes, reservation: Optional[Reservation]) -> None:
        self._ledger.record(self._credential, len(plan.text), reservation)
        self._quota.record_usage(len(plan.text))
        if plan.cache_key is not None:
            self._cache.put(plan.cache_key, audio)

    def _count(self, path: str) -> None:
        with self._lock:
            self._served[path] += 1

    def _fallback_disabled(self, cause: SynthesisError) -> SynthesisUnavailableError:
        fail(_LOG, "primary_failed_no_fallback", reason=_reason(cause), error=cause.message)
        return SynthesisUnavailableError(
            "Primary provider failed and fallback is disabled",
            details={"cause": cause.code},
        )

    # =========================================================================
    # Public API: generate_speech()
    # =========================================================================

    async def generate_speech(
        self,
        request: SynthesisRequest,
        cancel: Optional[CancelToken] = None,
    ) -> bytes:
        """
        Synthesize ``request.text`` to audio bytes.

        Returns:
            Audio bytes, or b"" for empty/whitespace-only text.

        Raises:
            ConfigurationError: No voice or credential configured.
            SynthesisUnavailableError: Primary and every fallback failed,
                or the primary failed with fallback disabled.
            asyncio.CancelledError: Cancelled by token or task.
        """
        if not request.text or not request.text.strip():
            return b""

        preview = request.text[:self._config.logging.text_preview_chars]
        info(_LOG, "request", chars=len(request.text), text_preview=preview)

        with timeit("request_total") as total_t:
            plan = self._plan(request)

            cached = self._lookup(plan)
            if cached is not None:
                self._count("cache")
                metrics.record_request("cache", "success", total_t.seconds, len(cached))
                success(_LOG, "done", path="cache", bytes=len(cached))
                return cached

            reservation = None
            try:
                reservation = self._reserve(plan.text)
                await self._check_quota(plan.text, cancel)

                with timeit("enhance") as t_enh:
                    enhanced = enhance(plan.text)
                verbose(_LOG, "stage", event="enhance", seconds=round(t_enh.seconds, 4))

                with timeit("synth") as t_synth:
                    audio = await self._primary.synthesize(enhanced, plan.voice_id, plan.profile, cancel)
                verbose(_LOG, "stage", event="synth", seconds=round(t_synth.seconds, 4))
            except asyncio.CancelledError:
                self._release(reservation)
                info(_LOG, "request_cancelled")
                raise
            except ConfigurationError:
                self._release(reservation)
                raise
            except SynthesisError as e:
                self._release(reservation)
                audio = await self._fallback(plan.text, e, cancel, total_t)
                return audio

            self._commit(plan, audio, reservation)

        self._count("primary")
        metrics.record_request("primary", "success", total_t.seconds, len(audio))
        success(_LOG, "done", path="primary", bytes=len(audio), seconds=round(total_t.seconds, 3))
        return audio

    async def _fallback(
        self,
        text: str,
        cause: SynthesisError,
        cancel: Optional[CancelToken],
        total_t: timeit,
    ) -> bytes:
        reason = _reason(cause)
        if not self._config.fallback.enabled:
            self._count("error")
            metrics.record_request("primary", "error", total_t.seconds)
            raise self._fallback_disabled(cause) from cause

        warn(_LOG, "fallback", reason=reason, error=cause.message)
        metrics.inc_fallback(reason)
        try:
            audio = await self._chain.synthesize(text, None, cancel)
        except SynthesisUnavailableError:
            self._count("error")
            metrics.record_request("fallback", "error", total_t.seconds)
            fail(_LOG, "request_failed", reason=reason)
            raise

        self._count("fallback")
        metrics.record_request("fallback", "success", total_t.seconds, len(audio))
        return audio

    # =========================================================================
    # Public API: stream_speech()
    # =========================================================================

    async def stream_speech(
        self,
        request: SynthesisRequest,
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[bytes]:
        """
        Yield audio chunks for ``request.text``.

        The iterator is finite and not restartable. Cancelling ``cancel``
        closes the provider connection and ends the iterator without
        further chunks.

        Raises:
            ConfigurationError: No voice or credential configured.
            SynthesisUnavailableError: Nothing could be streamed, or the
                stream broke after audio was already delivered.
        """
        try:
            async with aclosing(self._stream(request, cancel)) as chunks:
                async for chunk in chunks:
                    yield chunk
        except asyncio.CancelledError:
            if cancel is None or not cancel.cancelled:
                raise
            info(_LOG, "stream_cancelled")

    async def _stream(self, request: SynthesisRequest, cancel: Optional[CancelToken]) -> AsyncIterator[bytes]:
        if not request.text or not request.text.strip():
            return

        chunk_size = self._config.streaming.chunk_size
        if not self._config.streaming.enabled:
            audio = await self.generate_speech(request, cancel)
            for chunk in _slices(audio, chunk_size):
                yield chunk
            return

        preview = request.text[:self._config.logging.text_preview_chars]
        info(_LOG, "stream_request", chars=len(request.text), text_preview=preview)

        with timeit("stream_total") as total_t:
            plan = self._plan(request)

            cached = self._lookup(plan)
            if cached is not None:
                self._count("cache")
                metrics.record_request("cache", "success", total_t.seconds, len(cached))
                for chunk in _slices(cached, chunk_size):
                    yield chunk
                return

            reservation = None
            completed = False
            failure: Optional[SynthesisError] = None
            parts: List[bytes] = []
            try:
                reservation = self._reserve(plan.text)
                await self._check_quota(plan.text, cancel)
                enhanced = enhance(plan.text)

                stream = self._primary.stream_synthesize(enhanced, plan.voice_id, plan.profile, cancel)
                async with aclosing(stream) as chunks:
                    async for chunk in chunks:
                        parts.append(chunk)
                        yield chunk
                if not parts:
                    raise TransportError("primary stream returned no audio", retryable=False)
                completed = True
            except ConfigurationError:
                raise
            except SynthesisError as e:
                if parts:
                    self._count("error")
                    metrics.record_request("primary", "error", total_t.seconds, sum(len(p) for p in parts))
                    fail(_LOG, "stream_failed", reason=_reason(e), chunks=len(parts))
                    raise SynthesisUnavailableError(
                        "Primary stream failed after audio was delivered",
                        details={"chunks_delivered": len(parts)},
                    ) from e
                failure = e
            finally:
                # covers failure, cancellation and early close by the consumer
                if not completed:
                    self._release(reservation)

            if failure is None:
                audio = b"".join(parts)
                self._commit(plan, audio, reservation)
                self._count("primary")
                metrics.record_request("primary", "success", total_t.seconds, len(audio))
                success(_LOG, "stream_done", path="primary", chunks=len(parts), bytes=len(audio))
                return

        async with aclosing(self._fallback_stream(plan.text, failure, cancel)) as chunks:
            async for chunk in chunks:
                yield chunk

    async def _fallback_stream(
        self,
        text: str,
        cause: SynthesisError,
        cancel: Optional[CancelToken],
    ) -> AsyncIterator[bytes]:
        reason = _reason(cause)
        if not self._config.fallback.enabled:
            self._count("error")
            raise self._fallback_disabled(cause) from cause

        warn(_LOG, "fallback", reason=reason, error=cause.message, streaming=True)
        metrics.inc_fallback(reason)
        delivered = 0
        with timeit("fallback_stream") as t:
            try:
                async with aclosing(self._chain.stream_synthesize(text, None, cancel)) as chunks:
                    async for chunk in chunks:
                        delivered += len(chunk)
                        yield chunk
            except SynthesisUnavailableError:
                self._count("error")
                metrics.record_request("fallback", "error", t.seconds, delivered)
                fail(_LOG, "stream_failed", reason=reason, path="fallback")
                raise
        self._count("fallback")
        metrics.record_request("fallback", "success", t.seconds, delivered)

    # =========================================================================
    # Public API: catalogue, quota, health, stats
    # =========================================================================

    async def list_voices(self, cancel: Optional[CancelToken] = None) -> List[VoiceInfo]:
        return await self._primary.list_voices(cancel)

    async def get_quota(
        self,
        force_refresh: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[QuotaSnapshot]:
        """Current account quota; None if it was never fetched successfully."""
        return await self._quota.get_snapshot(force_refresh=force_refresh, cancel=cancel)

    async def health(self) -> Dict[str, Any]:
        primary_ok = await self._primary.health()
        chain = self._chain.status()
        return {
            "ok": primary_ok or any(p["available"] for p in chain),
            "primary": primary_ok,
            "fallback": chain,
        }

    def stats(self) -> Dict[str, Any]:
        """
        Observability snapshot, safe to call at any time.

        Returns:
            Dictionary with served-path counters and per-component stats.
        """
        with self._lock:
            served = dict(self._served)

        result: Dict[str, Any] = {
            "served": served,
            "cache": self._cache.stats() if self._config.cache.enabled else {"enabled": False},
            "rate_limit": asdict(self._ledger.stats(self._credential)),
            "quota": self._quota.stats(),
            "fallback": self._chain.status(),
        }
        transport = getattr(self._primary, "transport", None)
        if transport is not None:
            result["transport"] = transport.stats()
        return result

    async def aclose(self) -> None:
        await self._primary.aclose()
        await self._chain.aclose()
        info(_LOG, "orchestrator_closed")


# =============================================================================
# Construction and global singleton
# =============================================================================

def build_orchestrator(
    settings: Optional[Settings] = None,
    config: Optional[GatewayConfig] = None,
    **transport_kwargs: Any,
) -> SynthesisOrchestrator:
    """
    Build an orchestrator and all of its components from settings.

    ``transport_kwargs`` (``transport=``, ``sleep=``) are passed to every
    RetryingTransport, which is how tests plug in httpx.MockTransport.

    Raises:
        ConfigurationError: Missing credential or invalid configuration.
    """
    if config is None:
        if settings is None:
            settings = load_settings(allow_missing=True)
        config = settings.get_gateway_config()

    primary = HttpSynthesisProvider.from_config(config, **transport_kwargs)
    chain = FallbackChain(
        build_fallback_providers(config, **transport_kwargs),
        max_failures=config.fallback.max_failures,
        cooldown_s=config.fallback.cooldown_s,
    )
    return SynthesisOrchestrator(config, primary, chain=chain)


_orchestrator: Optional[SynthesisOrchestrator] = None
_orchestrator_lock = threading.Lock()


def get_orchestrator(settings: Optional[Settings] = None) -> SynthesisOrchestrator:
    """
    Get or create the global SynthesisOrchestrator.

    Thread-safe lazy singleton: components (cache, ledger, quota tracker,
    HTTP clients, fallback chain) are built once per process.
    """
    global _orchestrator
    if _orchestrator is None:
        with _orchestrator_lock:
            if _orchestrator is None:
                _orchestrator = build_orchestrator(settings)
    return _orchestrator


def reset_orchestrator() -> None:
    """
    Drop the global instance.

    Used primarily for testing. The caller is responsible for closing
    the old instance if it opened connections.
    """
    global _orchestrator
    with _orchestrator_lock:
        _orchestrator = None


async def close_orchestrator() -> None:
    """Close the global instance's connections (if any) and drop it."""
    global _orchestrator
    with _orchestrator_lock:
        current, _orchestrator = _orchestrator, None
    if current is not None:
        await current.aclose()
