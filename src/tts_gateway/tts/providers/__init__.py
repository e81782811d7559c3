"""
Synthesis Providers.

    - base.py: Capability protocols and VoiceInfo
    - http_provider.py: Primary ElevenLabs-style provider
    - openai_compat.py: OpenAI-compatible fallback provider
    - silent.py: Last-resort silent-audio fallback

build_fallback_providers() turns the ``fallback.providers`` config list
into provider instances, in order:

    fallback:
      providers:
        - {type: openai, base_url: http://localhost:8000, voice: nova}
        - {type: silent}
"""
from __future__ import annotations

from typing import Any, Dict, List

from tts_gateway.core.config import GatewayConfig
from tts_gateway.core.errors import ConfigurationError
from tts_gateway.tts.transport import RetryingTransport

from .base import FallbackProvider, PrimaryProvider, VoiceInfo
from .http_provider import HttpSynthesisProvider
from .openai_compat import OPENAI_VOICES, OpenAISpeechProvider
from .silent import SilentProvider


def _create_fallback(spec: Dict[str, Any], config: GatewayConfig, **transport_kwargs: Any) -> FallbackProvider:
    kind = str(spec.get("type", "")).strip().lower()

    if kind == "silent":
        return SilentProvider(
            sample_rate=int(spec.get("sample_rate", 22050)),
            chunk_size=config.streaming.chunk_size,
        )

    if kind == "openai":
        base_url = spec.get("base_url")
        if not base_url:
            raise ConfigurationError("fallback provider 'openai' requires base_url")
        headers = {}
        if spec.get("api_key"):
            headers["Authorization"] = f"Bearer {spec['api_key']}"
        transport = RetryingTransport(
            str(base_url),
            headers=headers,
            max_retry_attempts=int(spec.get("max_retry_attempts", 0)),
            request_timeout_s=float(spec.get("request_timeout_s", config.transport.request_timeout_s)),
            max_backoff_s=config.transport.max_backoff_s,
            **transport_kwargs,
        )
        return OpenAISpeechProvider(
            transport,
            model=str(spec.get("model", "tts-1")),
            voice=str(spec.get("voice", "alloy")),
            response_format=str(spec.get("response_format", "mp3")),
            voices=spec.get("voices", OPENAI_VOICES),
            chunk_size=config.streaming.chunk_size,
            name=str(spec.get("name", "openai")),
        )

    raise ConfigurationError(f"Unknown fallback provider type: {kind or '<missing>'}")


def build_fallback_providers(config: GatewayConfig, **transport_kwargs: Any) -> List[FallbackProvider]:
    """
    Build fallback providers in configured order.

    Raises:
        ConfigurationError: Unknown type or missing required option.
    """
    return [_create_fallback(spec, config, **transport_kwargs) for spec in config.fallback.providers]


__all__ = [
    "FallbackProvider",
    "PrimaryProvider",
    "VoiceInfo",
    "HttpSynthesisProvider",
    "OpenAISpeechProvider",
    "SilentProvider",
    "build_fallback_providers",
]
