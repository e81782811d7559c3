"""
Fallback Provider: OpenAI-Compatible Speech Server.

Targets any server exposing ``POST /v1/audio/speech`` with the OpenAI
request schema (hosted OpenAI, or a local on-device TTS microservice
with an OpenAI-compatible endpoint):

    {"model": "tts-1", "input": "...", "voice": "alloy", "response_format": "mp3"}

The voice hint from the chain is used only when it is one of this
server's own voices; primary-provider voice ids mean nothing here.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Dict, Iterable, Optional

from tts_gateway.core.config import Defaults
from tts_gateway.core.errors import TransportError
from tts_gateway.tts.cancellation import CancelToken
from tts_gateway.tts.transport import RequestSpec, RetryingTransport

OPENAI_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


class OpenAISpeechProvider:
    """OpenAI-compatible ``/v1/audio/speech`` client."""

    def __init__(
        self,
        transport: RetryingTransport,
        model: str = "tts-1",
        voice: str = "alloy",
        response_format: str = "mp3",
        voices: Iterable[str] = OPENAI_VOICES,
        chunk_size: int = Defaults.STREAMING_CHUNK_SIZE,
        name: str = "openai",
    ):
        self.transport = transport
        self.model = model
        self.voice = voice
        self.response_format = response_format
        self.voices = frozenset(voices)
        self.chunk_size = int(chunk_size)
        self.name = name

    def _spec(self, text: str, voice_hint: Optional[str]) -> RequestSpec:
        voice = voice_hint if voice_hint in self.voices else self.voice
        body: Dict[str, Any] = {
            "model": self.model,
            "input": text,
            "voice": voice,
            "response_format": self.response_format,
        }
        return RequestSpec("POST", "/v1/audio/speech", json=body, name=f"{self.name}_speech")

    async def synthesize(
        self,
        text: str,
        voice_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> bytes:
        response = await self.transport.execute(self._spec(text, voice_hint), cancel)
        if not response.content:
            raise TransportError(f"{self.name} returned empty audio", status_code=response.status_code)
        return response.content

    async def stream_synthesize(
        self,
        text: str,
        voice_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[bytes]:
        async for chunk in self.transport.stream(self._spec(text, voice_hint), self.chunk_size, cancel):
            yield chunk

    async def aclose(self) -> None:
        await self.transport.aclose()
