"""
Tests for SynthesisOrchestrator.stream_speech().

Tests cover:
- Chunks relayed in order; the joined audio is cached
- Cache hits are streamed in chunk_size slices
- Streaming disabled: buffered synthesis sliced into chunks
- Failure before the first chunk falls back transparently
- Failure after the first chunk fails closed, nothing cached
- Cancellation mid-stream ends the iterator quietly
"""
import asyncio

import httpx
import pytest

from tts_gateway.core.errors import SynthesisUnavailableError
from tts_gateway.services.orchestrator import SynthesisRequest, build_orchestrator
from tts_gateway.tts.cancellation import CancelToken

from conftest import ProviderStub, SleepRecorder, build_gateway, make_config, quota_body


def _stream(gateway, text, cancel=None):
    async def run():
        return [chunk async for chunk in gateway.stream_speech(SynthesisRequest(text, streaming=True), cancel)]

    return asyncio.run(run())


class TestStreamRelay:

    def test_chunks_relayed_and_cached(self):
        stub = ProviderStub(stream_chunks=[b"aaaa", b"bbbb", b"cc"])
        gateway = build_gateway(stub)

        chunks = _stream(gateway, "Hello")

        assert b"".join(chunks) == b"aaaabbbbcc"
        assert all(len(c) <= 4 for c in chunks)
        assert ("POST", "/v1/text-to-speech/voice-1/stream") in stub.calls

        again = asyncio.run(gateway.generate_speech(SynthesisRequest("Hello")))
        assert again == b"aaaabbbbcc"
        assert stub.synth_calls() == 1

    def test_cache_hit_sliced(self):
        stub = ProviderStub(audio=b"0123456789")
        gateway = build_gateway(stub)
        asyncio.run(gateway.generate_speech(SynthesisRequest("Hello")))

        assert _stream(gateway, "Hello") == [b"0123", b"4567", b"89"]
        assert stub.synth_calls() == 1

    def test_streaming_disabled_slices_buffered_audio(self):
        stub = ProviderStub(audio=b"0123456789")
        gateway = build_gateway(stub, {"streaming": {"enabled": False}})

        assert _stream(gateway, "Hello") == [b"0123", b"4567", b"89"]
        assert ("POST", "/v1/text-to-speech/voice-1") in stub.calls

    def test_empty_text_yields_nothing(self):
        stub = ProviderStub()
        assert _stream(build_gateway(stub), "  ") == []
        assert stub.calls == []

    def test_commits_usage(self):
        stub = ProviderStub(stream_chunks=[b"abcd"], quota=quota_body(used=0, limit=100))
        gateway = build_gateway(stub)
        _stream(gateway, "Hello")

        assert gateway.stats()["rate_limit"]["total_requests"] == 1
        assert gateway.quota.snapshot.characters_remaining == 95


class TestStreamFallback:

    def test_failure_before_first_chunk_falls_back(self):
        stub = ProviderStub(synth_status=500)
        gateway = build_gateway(stub)

        chunks = _stream(gateway, "Hello")

        assert b"".join(chunks)[:4] == b"RIFF"
        assert stub.synth_calls() == 3
        stats = gateway.stats()
        assert stats["served"]["fallback"] == 1
        assert stats["rate_limit"]["requests_in_window"] == 0
        assert len(gateway.cache) == 0

    def test_quota_exceeded_streams_fallback(self):
        stub = ProviderStub(quota=quota_body(used=10_000, limit=10_000))
        chunks = _stream(build_gateway(stub), "Hello")

        assert b"".join(chunks)[:4] == b"RIFF"
        assert stub.synth_calls() == 0

    def test_failure_after_first_chunk_fails_closed(self):
        stub = ProviderStub()

        async def broken_body():
            yield b"aaaa"
            raise httpx.ReadError("connection reset")

        def handler(request):
            if request.url.path.endswith("/stream"):
                stub.calls.append((request.method, request.url.path))
                return httpx.Response(200, content=broken_body())
            return stub(request)

        gateway = build_orchestrator(
            config=make_config(),
            transport=httpx.MockTransport(handler),
            sleep=SleepRecorder(),
        )
        received = []

        async def run():
            async for chunk in gateway.stream_speech(SynthesisRequest("Hello", streaming=True)):
                received.append(chunk)

        with pytest.raises(SynthesisUnavailableError) as exc_info:
            asyncio.run(run())

        assert received == [b"aaaa"]
        assert exc_info.value.details["chunks_delivered"] == 1
        stats = gateway.stats()
        assert stats["served"]["fallback"] == 0
        assert stats["served"]["error"] == 1
        assert stats["rate_limit"]["requests_in_window"] == 0
        assert len(gateway.cache) == 0

    def test_fallback_disabled(self):
        stub = ProviderStub(synth_status=503)
        gateway = build_gateway(stub, {"fallback": {"enabled": False}})

        with pytest.raises(SynthesisUnavailableError) as exc_info:
            _stream(gateway, "Hello")
        assert exc_info.value.__cause__.status_code == 503


class TestStreamCancellation:

    def test_cancel_mid_stream_ends_quietly(self):
        stub = ProviderStub(stream_chunks=[b"aaaa", b"bbbb", b"cccc"])
        gateway = build_gateway(stub)
        token = CancelToken()
        received = []

        async def run():
            async for chunk in gateway.stream_speech(SynthesisRequest("Hello", streaming=True), token):
                received.append(chunk)
                token.cancel()

        asyncio.run(run())

        assert received == [b"aaaa"]
        stats = gateway.stats()
        assert stats["served"]["fallback"] == 0
        assert stats["rate_limit"]["requests_in_window"] == 0
        assert len(gateway.cache) == 0

    def test_consumer_closing_early_refunds_reservation(self):
        stub = ProviderStub(stream_chunks=[b"aaaa", b"bbbb"])
        gateway = build_gateway(stub)

        async def run():
            stream = gateway.stream_speech(SynthesisRequest("Hello", streaming=True))
            first = await stream.__anext__()
            await stream.aclose()
            return first

        assert asyncio.run(run()) == b"aaaa"
        assert gateway.stats()["rate_limit"]["requests_in_window"] == 0
