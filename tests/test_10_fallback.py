"""
Tests for FallbackChain.

Tests cover:
- Providers tried in order, first success wins
- Empty audio counts as a failure
- All failing -> SynthesisUnavailableError with the last error as cause
- Cooldown after consecutive failures, reset on success
- Streaming: transparent skip before the first chunk, fail closed after
- Cancellation is never a provider failure
- Providers lacking the capability are rejected at construction
"""
import asyncio

import pytest

from tts_gateway.core.config import Settings
from tts_gateway.core.errors import ConfigurationError, SynthesisUnavailableError, TransportError
from tts_gateway.tts.cancellation import CancelToken
from tts_gateway.tts.fallback import FallbackChain
from tts_gateway.tts.providers import OpenAISpeechProvider, SilentProvider, build_fallback_providers

from conftest import FakeClock, make_config


class FakeProvider:
    """Scriptable fallback provider."""

    def __init__(self, name, audio=b"audio", error=None, chunks=None, fail_after=None):
        self.name = name
        self.audio = audio
        self.error = error
        self.chunks = chunks
        self.fail_after = fail_after
        self.calls = 0

    async def synthesize(self, text, voice_hint=None, cancel=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.audio

    async def stream_synthesize(self, text, voice_hint=None, cancel=None):
        self.calls += 1
        if self.error is not None and self.fail_after is None:
            raise self.error
        for i, chunk in enumerate(self.chunks or [self.audio]):
            if self.fail_after is not None and i == self.fail_after:
                raise self.error
            yield chunk


def _collect(chain, text="hi"):
    async def run():
        return [chunk async for chunk in chain.stream_synthesize(text)]

    return asyncio.run(run())


class TestFallbackOrder:

    def test_first_success_wins(self):
        first = FakeProvider("a", audio=b"from-a")
        second = FakeProvider("b", audio=b"from-b")
        chain = FallbackChain([first, second])

        assert asyncio.run(chain.synthesize("hi")) == b"from-a"
        assert second.calls == 0

    def test_failure_moves_to_next(self):
        first = FakeProvider("a", error=TransportError("down", status_code=503))
        second = FakeProvider("b", audio=b"from-b")
        chain = FallbackChain([first, second])

        assert asyncio.run(chain.synthesize("hi")) == b"from-b"
        status = chain.status()
        assert status[0]["consecutive_failures"] == 1
        assert status[0]["last_error"] == "down"
        assert status[1]["total_successes"] == 1

    def test_empty_audio_is_failure(self):
        chain = FallbackChain([FakeProvider("a", audio=b""), FakeProvider("b", audio=b"ok")])
        assert asyncio.run(chain.synthesize("hi")) == b"ok"
        assert chain.status()[0]["total_failures"] == 1

    def test_all_fail(self):
        last = TransportError("second down")
        chain = FallbackChain([FakeProvider("a", error=TransportError("first down")), FakeProvider("b", error=last)])

        with pytest.raises(SynthesisUnavailableError) as exc_info:
            asyncio.run(chain.synthesize("hi"))

        assert exc_info.value.__cause__ is last
        assert exc_info.value.details["tried"] == ["0:a", "1:b"]

    def test_empty_chain(self):
        with pytest.raises(SynthesisUnavailableError, match="No fallback provider"):
            asyncio.run(FallbackChain([]).synthesize("hi"))


class TestCooldown:

    def test_provider_cools_down_and_recovers(self):
        clock = FakeClock()
        flaky = FakeProvider("flaky", error=TransportError("down"))
        backup = FakeProvider("backup", audio=b"ok")
        chain = FallbackChain([flaky, backup], max_failures=2, cooldown_s=60, clock=clock)

        for _ in range(2):
            asyncio.run(chain.synthesize("hi"))
        assert chain.status()[0]["available"] is False

        asyncio.run(chain.synthesize("hi"))
        assert flaky.calls == 2

        clock.advance(61)
        flaky.error = None
        assert asyncio.run(chain.synthesize("hi")) == b"audio"
        assert chain.status()[0]["consecutive_failures"] == 0

    def test_success_resets_failure_count(self):
        provider = FakeProvider("a", error=TransportError("down"))
        chain = FallbackChain([provider, FakeProvider("b")], max_failures=3)
        asyncio.run(chain.synthesize("hi"))
        provider.error = None
        asyncio.run(chain.synthesize("hi"))
        assert chain.status()[0]["consecutive_failures"] == 0


class TestFallbackStreaming:

    def test_skip_before_first_chunk(self):
        chain = FallbackChain([
            FakeProvider("a", error=TransportError("refused")),
            FakeProvider("b", chunks=[b"1", b"2"]),
        ])
        assert _collect(chain) == [b"1", b"2"]

    def test_fail_closed_after_first_chunk(self):
        broken = FakeProvider("a", chunks=[b"1", b"2"], error=TransportError("reset"), fail_after=1)
        backup = FakeProvider("b", chunks=[b"x"])
        chain = FallbackChain([broken, backup])

        received = []

        async def run():
            async for chunk in chain.stream_synthesize("hi"):
                received.append(chunk)

        with pytest.raises(SynthesisUnavailableError, match="mid-stream"):
            asyncio.run(run())

        assert received == [b"1"]
        assert backup.calls == 0

    def test_empty_stream_moves_on(self):
        chain = FallbackChain([FakeProvider("a", chunks=[b""]), FakeProvider("b", chunks=[b"ok"])])
        assert _collect(chain) == [b"ok"]

    def test_all_streams_fail(self):
        chain = FallbackChain([FakeProvider("a", error=TransportError("x"))])
        with pytest.raises(SynthesisUnavailableError):
            _collect(chain)


class TestFallbackCancellation:

    def test_cancel_is_not_a_failure(self):
        token = CancelToken()
        token.cancel()
        chain = FallbackChain([SilentProvider(), FakeProvider("b")])

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(chain.synthesize("hi", cancel=token))

        assert chain.status()[0]["total_failures"] == 0


class TestFallbackConstruction:

    def test_rejects_incapable_provider(self):
        with pytest.raises(ConfigurationError):
            FallbackChain([object()])

    def test_build_from_config(self):
        config = make_config({"fallback": {"providers": [
            {"type": "openai", "base_url": "http://localhost:8000", "voice": "nova"},
            {"type": "silent"},
        ]}})
        providers = build_fallback_providers(config)

        assert isinstance(providers[0], OpenAISpeechProvider)
        assert providers[0].voice == "nova"
        assert isinstance(providers[1], SilentProvider)

    def test_unknown_type(self):
        config = make_config({"fallback": {"providers": [{"type": "carrier-pigeon"}]}})
        with pytest.raises(ConfigurationError, match="carrier-pigeon"):
            build_fallback_providers(config)

    def test_openai_requires_base_url(self):
        config = Settings(raw={"fallback": {"providers": [{"type": "openai"}]}}).get_gateway_config()
        with pytest.raises(ConfigurationError, match="base_url"):
            build_fallback_providers(config)
