"""Shared fixtures and fakes for the gateway tests."""
from __future__ import annotations

import json
import os
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from tts_gateway.core.config import GatewayConfig, Settings

os.environ.setdefault("TTS_GATEWAY_NO_COLOR", "1")


class FakeClock:
    """Manually advanced clock for windows, TTLs and cooldowns."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Async sleep replacement that records delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_config(overrides: Optional[Dict[str, Any]] = None) -> GatewayConfig:
    """GatewayConfig with test credentials, silent fallback and fast timeouts."""
    raw: Dict[str, Any] = {
        "provider": {"api_key": "test-key", "voice_id": "voice-1", "base_url": "https://tts.test"},
        "transport": {"max_retry_attempts": 2, "request_timeout_s": 5},
        "streaming": {"enabled": True, "chunk_size": 4},
        "fallback": {"enabled": True, "providers": [{"type": "silent"}]},
    }
    for section, values in (overrides or {}).items():
        if isinstance(values, dict):
            raw.setdefault(section, {}).update(values)
        else:
            raw[section] = values
    return Settings(raw=raw).get_gateway_config()


def quota_body(used: int = 100, limit: int = 10_000) -> Dict[str, Any]:
    return {"character_count": used, "character_limit": limit, "next_character_count_reset_unix": 1_900_000_000}


class ProviderStub:
    """
    httpx.MockTransport handler imitating the primary provider.

    ``synth_status`` controls the text-to-speech endpoints; every call is
    recorded in ``calls`` as (method, path) and synthesis bodies in
    ``bodies``.
    """

    def __init__(
        self,
        audio: bytes = b"ID3-primary-audio",
        synth_status: int = 200,
        quota: Any = None,
        stream_chunks: Optional[List[bytes]] = None,
        headers: Optional[Dict[str, str]] = None,
        voices_status: int = 200,
        quota_status: int = 200,
    ):
        self.audio = audio
        self.synth_status = synth_status
        self.quota = quota if quota is not None else quota_body()
        self.stream_chunks = stream_chunks
        self.headers = headers or {}
        self.voices_status = voices_status
        self.quota_status = quota_status
        self.calls: List[tuple] = []
        self.bodies: List[Dict[str, Any]] = []

    def synth_calls(self) -> int:
        return sum(1 for _, path in self.calls if path.startswith("/v1/text-to-speech/"))

    def quota_calls(self) -> int:
        return sum(1 for _, path in self.calls if path == "/v1/user/subscription")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if path == "/v1/user/subscription":
            if self.quota_status != 200:
                return httpx.Response(self.quota_status, text="account service unavailable")
            return httpx.Response(200, json=self.quota)
        if path == "/v1/user":
            return httpx.Response(200, json={"subscription": {}})
        if path == "/v1/voices":
            if self.voices_status != 200:
                return httpx.Response(self.voices_status, text="bad key")
            return httpx.Response(200, json={"voices": [
                {"voice_id": "voice-1", "name": "Ada", "category": "premade", "labels": {"accent": "british"}},
            ]})
        if path.startswith("/v1/text-to-speech/"):
            self.bodies.append(json.loads(request.content or b"{}"))
            if self.synth_status != 200:
                return httpx.Response(self.synth_status, text="provider says no", headers=self.headers)
            if path.endswith("/stream") and self.stream_chunks is not None:
                return httpx.Response(200, content=_iterate(self.stream_chunks))
            return httpx.Response(200, content=self.audio)
        return httpx.Response(404)


async def _iterate(chunks: List[bytes]):
    for chunk in chunks:
        yield chunk


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def config_factory() -> Callable[..., GatewayConfig]:
    return make_config


def build_gateway(stub: ProviderStub, overrides: Optional[Dict[str, Any]] = None, sleep: Optional[SleepRecorder] = None):
    """Orchestrator wired to ``stub`` through httpx.MockTransport."""
    from tts_gateway.services.orchestrator import build_orchestrator

    return build_orchestrator(
        config=make_config(overrides),
        transport=httpx.MockTransport(stub),
        sleep=sleep or SleepRecorder(),
    )
