"""
Provider Capabilities.

Providers are described by capability, not by role: the fallback chain
accepts anything that can synthesize and stream, and never needs to know
whether it holds a remote API, a local server or a stub.

    FallbackProvider  synthesize(text, voice_hint) / stream_synthesize(...)
    PrimaryProvider   synthesize(text, voice_id, profile) / stream_synthesize(...)
                      + list_voices() + get_quota() + health()
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

from tts_gateway.tts.cancellation import CancelToken
from tts_gateway.tts.profiles import VoiceProfile
from tts_gateway.tts.quota import QuotaSnapshot


@dataclass
class VoiceInfo:
    """Voice metadata as reported by a provider."""
    voice_id: str
    name: str
    category: str = ""
    labels: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voice_id": self.voice_id,
            "name": self.name,
            "category": self.category,
            "labels": dict(self.labels),
        }


@runtime_checkable
class FallbackProvider(Protocol):
    """Reduced synthesis surface: voice hint optional, no profile."""

    name: str

    async def synthesize(
        self,
        text: str,
        voice_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> bytes: ...

    def stream_synthesize(
        self,
        text: str,
        voice_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[bytes]: ...


@runtime_checkable
class PrimaryProvider(Protocol):
    """Full surface of the metered remote provider."""

    name: str

    async def synthesize(
        self,
        text: str,
        voice_id: str,
        profile: VoiceProfile,
        cancel: Optional[CancelToken] = None,
    ) -> bytes: ...

    def stream_synthesize(
        self,
        text: str,
        voice_id: str,
        profile: VoiceProfile,
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[bytes]: ...

    async def list_voices(self, cancel: Optional[CancelToken] = None) -> List[VoiceInfo]: ...

    async def get_quota(self, cancel: Optional[CancelToken] = None) -> QuotaSnapshot: ...

    async def health(self) -> bool: ...

    async def aclose(self) -> None: ...
