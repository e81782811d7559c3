"""
Tests for the HTTP API.

The orchestrator dependency is overridden with one wired to a
httpx.MockTransport provider stub, so no real network is touched.
"""
from fastapi.testclient import TestClient

from tts_gateway.api.dependencies import get_synthesis_gateway
from tts_gateway.main import create_app

from conftest import ProviderStub, build_gateway


def _client(stub, overrides=None):
    gateway = build_gateway(stub, overrides)
    app = create_app()
    app.dependency_overrides[get_synthesis_gateway] = lambda: gateway
    return TestClient(app), gateway


class TestSynthesisEndpoint:

    def test_returns_audio(self):
        client, _ = _client(ProviderStub(audio=b"ID3-audio"))

        r = client.post("/v1/tts", json={"text": "Good morning, Sir."})

        assert r.status_code == 200
        assert r.headers["content-type"].startswith("audio/mpeg")
        assert r.content == b"ID3-audio"
        assert r.headers["X-Bytes"] == str(len(b"ID3-audio"))
        assert len(r.headers["X-Request-Id"]) == 12

    def test_voice_override(self):
        stub = ProviderStub()
        client, _ = _client(stub)
        r = client.post("/v1/tts", json={"text": "Hello", "voice_id": "voice-2"})
        assert r.status_code == 200
        assert ("POST", "/v1/text-to-speech/voice-2") in stub.calls

    def test_missing_text_is_400(self):
        client, _ = _client(ProviderStub())
        r = client.post("/v1/tts", json={})

        assert r.status_code == 400
        assert r.json()["error"] == "INVALID_INPUT"

    def test_whitespace_text_is_400(self):
        client, _ = _client(ProviderStub())
        r = client.post("/v1/tts", json={"text": "   "})

        assert r.status_code == 400
        body = r.json()
        assert body["ok"] is False
        assert body["error"] == "TEXT_REQUIRED"
        assert "request_id" in body

    def test_bad_voice_id_is_400(self):
        stub = ProviderStub()
        client, _ = _client(stub)
        r = client.post("/v1/tts", json={"text": "Hello", "voice_id": "../admin"})

        assert r.status_code == 400
        assert r.json()["error"] == "VOICE_ID_INVALID_CHARS"
        assert stub.synth_calls() == 0

    def test_provider_outage_served_by_fallback(self):
        client, _ = _client(ProviderStub(synth_status=500))
        r = client.post("/v1/tts", json={"text": "Hello"})

        assert r.status_code == 200
        assert r.content[:4] == b"RIFF"

    def test_unavailable_is_503(self):
        client, _ = _client(ProviderStub(synth_status=503), {"fallback": {"enabled": False}})
        r = client.post("/v1/tts", json={"text": "Hello"})

        assert r.status_code == 503
        body = r.json()
        assert body["error"] == "SYNTHESIS_UNAVAILABLE"
        assert body["details"]["cause"] == "TRANSPORT_ERROR"

    def test_missing_voice_is_500(self):
        client, _ = _client(ProviderStub(), {"provider": {"voice_id": ""}})
        r = client.post("/v1/tts", json={"text": "Hello"})

        assert r.status_code == 500
        assert r.json()["error"] == "CONFIGURATION_ERROR"


class TestStreamingEndpoint:

    def test_streams_audio(self):
        client, _ = _client(ProviderStub(stream_chunks=[b"aaaa", b"bbbb"]))
        r = client.post("/v1/tts/stream", json={"text": "Hello"})

        assert r.status_code == 200
        assert r.content == b"aaaabbbb"
        assert "X-Request-Id" in r.headers

    def test_setup_failure_is_json(self):
        client, _ = _client(ProviderStub(synth_status=500), {"fallback": {"enabled": False}})
        r = client.post("/v1/tts/stream", json={"text": "Hello"})

        assert r.status_code == 503
        assert r.json()["error"] == "SYNTHESIS_UNAVAILABLE"

    def test_bad_input(self):
        client, _ = _client(ProviderStub())
        r = client.post("/v1/tts/stream", json={"text": " "})
        assert r.status_code == 400


class TestAccountEndpoints:

    def test_voices(self):
        client, _ = _client(ProviderStub())
        r = client.get("/v1/voices")

        assert r.status_code == 200
        assert r.json()["voices"][0]["voice_id"] == "voice-1"

    def test_voices_upstream_failure(self):
        client, _ = _client(ProviderStub(voices_status=401))
        r = client.get("/v1/voices")

        assert r.status_code == 502
        assert r.json()["error"] == "TRANSPORT_ERROR"

    def test_quota(self):
        client, _ = _client(ProviderStub())
        r = client.get("/v1/quota", params={"refresh": "true"})

        assert r.status_code == 200
        body = r.json()
        assert body["known"] is True
        assert body["characters_remaining"] == 9900
        assert body["next_reset_unix"] == 1_900_000_000

    def test_quota_unknown(self):
        client, _ = _client(ProviderStub(quota={"broken": 1}))
        r = client.get("/v1/quota")
        assert r.json() == {
            "known": False,
            "characters_remaining": None,
            "character_limit": None,
            "percent_used": None,
            "fetched_at": None,
            "next_reset_unix": None,
        }


class TestOpsEndpoints:

    def test_health(self):
        client, _ = _client(ProviderStub())
        r = client.get("/health")

        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "healthy"
        assert body["primary"] is True
        assert "served" in body["stats"]

    def test_metrics(self):
        client, _ = _client(ProviderStub())
        client.post("/v1/tts", json={"text": "Hello metrics"})
        r = client.get("/metrics")

        assert r.status_code == 200
        assert "tts_gateway_requests_total" in r.text
        assert "tts_gateway_cache_misses_total" in r.text
