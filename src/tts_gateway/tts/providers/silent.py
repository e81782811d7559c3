"""
Last-Resort Fallback: Silent Audio.

Always succeeds. Produces a short silent WAV whose length grows with the
text (roughly speaking pace), so callers that need *some* audio, for
example a voice UI waiting on playback to finish, are never left with an
error. Placed last in the fallback chain.
"""
from __future__ import annotations

from typing import AsyncIterator, Optional

from tts_gateway.core.config import Defaults
from tts_gateway.tts.cancellation import CancelToken
from tts_gateway.utils.audio import DEFAULT_SAMPLE_RATE, silent_wav

SECONDS_PER_CHAR = 0.06
MIN_SECONDS = 0.25
MAX_SECONDS = 10.0


class SilentProvider:
    name = "silent"

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        chunk_size: int = Defaults.STREAMING_CHUNK_SIZE,
    ):
        self.sample_rate = int(sample_rate)
        self.chunk_size = int(chunk_size)

    def _duration(self, text: str) -> float:
        return min(MAX_SECONDS, max(MIN_SECONDS, len(text) * SECONDS_PER_CHAR))

    async def synthesize(
        self,
        text: str,
        voice_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> bytes:
        if cancel is not None:
            cancel.raise_if_cancelled()
        return silent_wav(self._duration(text), self.sample_rate)

    async def stream_synthesize(
        self,
        text: str,
        voice_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[bytes]:
        audio = await self.synthesize(text, voice_hint, cancel)
        for start in range(0, len(audio), self.chunk_size):
            if cancel is not None:
                cancel.raise_if_cancelled()
            yield audio[start:start + self.chunk_size]
