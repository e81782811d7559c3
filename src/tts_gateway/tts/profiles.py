"""
Voice Profiles and Sentiment-Based Selection.

A VoiceProfile is the set of expressive parameters sent to the provider
alongside the text. Profiles are immutable and value-typed: two profiles
with the same fields hash identically, which the audio cache relies on.

Presets:
    default    stability=0.75 similarity=0.85 style=0.0 speaking_rate=0.9
    concerned  stability=0.80 similarity=0.90 style=0.1 speaking_rate=0.8
    excited    stability=0.60 similarity=0.80 style=0.3 speaking_rate=1.1
    calm       stability=0.85 similarity=0.90 style=0.0 speaking_rate=0.85

Selection:
    select_profile() scans the text for keywords, first match wins in
    the order concerned -> excited -> calm; otherwise the configured
    default is used.
"""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Union

from tts_gateway.core.errors import ConfigurationError
from tts_gateway.tts.keys import hash_dict

MAX_SPEAKING_RATE = 4.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, float(value)))


@dataclass(frozen=True)
class VoiceProfile:
    """
    Expressive synthesis parameters.

    stability, similarity and style are clamped into [0, 1];
    speaking_rate is clamped into [0, MAX_SPEAKING_RATE] (1.0 = normal).
    """
    stability: float = 0.75
    similarity: float = 0.85
    style: float = 0.0
    speaking_rate: float = 0.9

    def __post_init__(self) -> None:
        object.__setattr__(self, "stability", _clamp(self.stability, 0.0, 1.0))
        object.__setattr__(self, "similarity", _clamp(self.similarity, 0.0, 1.0))
        object.__setattr__(self, "style", _clamp(self.style, 0.0, 1.0))
        object.__setattr__(self, "speaking_rate", _clamp(self.speaking_rate, 0.0, MAX_SPEAKING_RATE))

    def to_payload(self) -> Dict[str, float]:
        """Provider ``voice_settings`` body."""
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity,
            "style": self.style,
            "speed": self.speaking_rate,
        }

    def fingerprint(self) -> str:
        """Stable hash of the profile fields, used in cache keys."""
        return hash_dict(asdict(self))


PRESETS: Dict[str, VoiceProfile] = {
    "default": VoiceProfile(stability=0.75, similarity=0.85, style=0.0, speaking_rate=0.9),
    "concerned": VoiceProfile(stability=0.8, similarity=0.9, style=0.1, speaking_rate=0.8),
    "excited": VoiceProfile(stability=0.6, similarity=0.8, style=0.3, speaking_rate=1.1),
    "calm": VoiceProfile(stability=0.85, similarity=0.9, style=0.0, speaking_rate=0.85),
}

# Order matters: the first sentiment whose keywords appear wins
_SENTIMENT_PATTERNS = (
    ("concerned", re.compile(r"\b(error|problem|failed|issue|warning)\b", re.IGNORECASE)),
    ("excited", re.compile(r"\b(excellent|perfect|success|completed|great)\b", re.IGNORECASE)),
    ("calm", re.compile(r"\b(calm|relax|peace|stable|normal)\b", re.IGNORECASE)),
)


def classify_sentiment(text: str) -> str | None:
    """Return the matching sentiment name, or None when no keyword matches."""
    for name, pattern in _SENTIMENT_PATTERNS:
        if pattern.search(text):
            return name
    return None


def select_profile(text: str, default: VoiceProfile) -> VoiceProfile:
    """Pick the preset matching the text's sentiment, else ``default``."""
    sentiment = classify_sentiment(text)
    if sentiment is None:
        return default
    return PRESETS[sentiment]


def resolve_profile(spec: Union[str, Mapping[str, Any], VoiceProfile]) -> VoiceProfile:
    """
    Build a VoiceProfile from a preset name, a field mapping or a profile.

    Raises:
        ConfigurationError: Unknown preset name or unknown field.
    """
    if isinstance(spec, VoiceProfile):
        return spec
    if isinstance(spec, str):
        try:
            return PRESETS[spec.strip().lower()]
        except KeyError:
            raise ConfigurationError(
                f"Unknown voice profile preset: {spec}",
                details={"known": sorted(PRESETS)},
            ) from None
    try:
        return VoiceProfile(**{k: float(v) for k, v in spec.items()})
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid voice profile: {e}") from e
