"""
Primary Provider: ElevenLabs-Style Speech API.

Speaks the REST schema used by ElevenLabs and compatible services:

    POST /v1/text-to-speech/{voice_id}          buffered synthesis
    POST /v1/text-to-speech/{voice_id}/stream   chunked synthesis
    GET  /v1/voices                             voice catalogue
    GET  /v1/user/subscription                  character quota
    GET  /v1/user                               credential check

Request body:
    {"text": ..., "model_id": ..., "voice_settings": {...}}
    output_format is sent as a query parameter.

The credential travels in the ``xi-api-key`` header on every request.
All calls go through RetryingTransport, so retries, backoff and
cancellation are handled there.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional

from tts_gateway.core.config import Defaults, GatewayConfig
from tts_gateway.core.errors import ConfigurationError, TransportError
from tts_gateway.core.logging import get_logger, info, warn
from tts_gateway.tts.cancellation import CancelToken
from tts_gateway.tts.profiles import VoiceProfile
from tts_gateway.tts.providers.base import VoiceInfo
from tts_gateway.tts.quota import QuotaSnapshot
from tts_gateway.tts.transport import RequestSpec, RetryingTransport

_LOG = get_logger("tts-gateway.provider.http")


class HttpSynthesisProvider:
    """
    Metered remote provider reached over HTTP.

    Attributes:
        name: Provider identifier used in logs and fallback status.
        model_id: Synthesis model sent with every request.
        output_format: Audio encoding requested from the provider.
    """

    name = "primary"

    def __init__(
        self,
        transport: RetryingTransport,
        model_id: str = Defaults.PROVIDER_MODEL_ID,
        output_format: str = Defaults.PROVIDER_OUTPUT_FORMAT,
        chunk_size: int = Defaults.STREAMING_CHUNK_SIZE,
    ):
        self.transport = transport
        self.model_id = model_id
        self.output_format = output_format
        self.chunk_size = int(chunk_size)

    @classmethod
    def from_config(cls, config: GatewayConfig, **transport_kwargs: Any) -> "HttpSynthesisProvider":
        """
        Build the provider and its transport from configuration.

        Raises:
            ConfigurationError: No API key configured.
        """
        if not config.provider.api_key:
            raise ConfigurationError("provider.api_key is not configured (set TTS_GATEWAY_API_KEY)")
        transport = RetryingTransport(
            config.provider.base_url,
            headers={"xi-api-key": config.provider.api_key, "Accept": "audio/mpeg"},
            max_retry_attempts=config.transport.max_retry_attempts,
            request_timeout_s=config.transport.request_timeout_s,
            max_backoff_s=config.transport.max_backoff_s,
            **transport_kwargs,
        )
        return cls(
            transport,
            model_id=config.provider.model_id,
            output_format=config.provider.output_format,
            chunk_size=config.streaming.chunk_size,
        )

    def _synthesis_spec(self, text: str, voice_id: str, profile: VoiceProfile, stream: bool) -> RequestSpec:
        path = f"/v1/text-to-speech/{voice_id}"
        if stream:
            path += "/stream"
        body: Dict[str, Any] = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": profile.to_payload(),
        }
        return RequestSpec(
            method="POST",
            path=path,
            json=body,
            params={"output_format": self.output_format},
            name="stream" if stream else "synthesize",
        )

    async def synthesize(
        self,
        text: str,
        voice_id: str,
        profile: VoiceProfile,
        cancel: Optional[CancelToken] = None,
    ) -> bytes:
        response = await self.transport.execute(self._synthesis_spec(text, voice_id, profile, False), cancel)
        audio = response.content
        if not audio:
            raise TransportError("synthesize returned empty audio", status_code=response.status_code)
        return audio

    async def stream_synthesize(
        self,
        text: str,
        voice_id: str,
        profile: VoiceProfile,
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[bytes]:
        spec = self._synthesis_spec(text, voice_id, profile, True)
        async for chunk in self.transport.stream(spec, self.chunk_size, cancel):
            yield chunk

    async def list_voices(self, cancel: Optional[CancelToken] = None) -> List[VoiceInfo]:
        response = await self.transport.execute(
            RequestSpec("GET", "/v1/voices", headers={"Accept": "application/json"}, name="list_voices"),
            cancel,
        )
        voices = []
        for item in response.json().get("voices", []):
            voices.append(
                VoiceInfo(
                    voice_id=str(item.get("voice_id", "")),
                    name=str(item.get("name", "")),
                    category=str(item.get("category", "") or ""),
                    labels={str(k): str(v) for k, v in (item.get("labels") or {}).items()},
                )
            )
        info(_LOG, "voices_listed", count=len(voices))
        return voices

    async def get_quota(self, cancel: Optional[CancelToken] = None) -> QuotaSnapshot:
        """
        Fetch the account's character quota.

        Sent once with a short timeout and no retries; QuotaTracker falls
        back to its last snapshot when this fails.

        Raises:
            TransportError: Endpoint unreachable, failing, or returning an
                unexpected body.
        """
        response = await self.transport.execute(
            RequestSpec(
                "GET",
                "/v1/user/subscription",
                headers={"Accept": "application/json"},
                timeout=min(self.transport.request_timeout_s, Defaults.QUOTA_REQUEST_TIMEOUT_S),
                max_retries=0,
                name="quota",
            ),
            cancel,
        )
        try:
            data = response.json()
            if not isinstance(data, dict):
                raise TypeError(f"expected a JSON object, got {type(data).__name__}")
            limit = int(data["character_limit"])
            used = int(data["character_count"])
            reset = data.get("next_character_count_reset_unix")
            return QuotaSnapshot.from_counts(
                character_count=used,
                character_limit=limit,
                next_reset_unix=int(reset) if reset is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(
                f"quota returned a malformed body: {e}",
                status_code=response.status_code,
                retryable=False,
            ) from e

    async def health(self) -> bool:
        """True when the credential is accepted by the provider."""
        try:
            await self.transport.execute(
                RequestSpec("GET", "/v1/user", headers={"Accept": "application/json"}, name="health")
            )
        except TransportError as e:
            warn(_LOG, "health_check_failed", status=e.status_code, error=e.message)
            return False
        return True

    async def aclose(self) -> None:
        await self.transport.aclose()
