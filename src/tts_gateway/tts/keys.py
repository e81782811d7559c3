"""
Cache Key Generation.

Keys are SHA256 hashes over everything that changes the synthesized
audio: the normalized text, the voice, and the voice profile. Identical
requests always produce identical keys.

Normalization:
    1. Unicode NFC (composed and decomposed forms hash alike)
    2. Collapse runs of whitespace to a single space
    3. Strip leading/trailing whitespace

    NORMALIZE_VERSION is mixed into every key; bump it whenever the
    normalization rules change so stale entries stop matching.

Usage:
    from tts_gateway.tts.keys import make_cache_key

    key = make_cache_key("Hello  world", "21m00Tcm4TlvDq8ikWAM", profile)
"""
from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from typing import TYPE_CHECKING, Dict

if TYPE_CHECKING:
    from tts_gateway.tts.profiles import VoiceProfile

NORMALIZE_VERSION = "v1"

_WS_RE = re.compile(r"\s+")


def hash_bytes(data: bytes) -> str:
    """SHA256 of ``data`` as a 64-character lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


def hash_dict(data: Dict[str, object]) -> str:
    """
    Hash a dictionary using SHA256.

    Serializes to JSON with sorted keys for deterministic hashing.
    """
    payload = json.dumps(data, sort_keys=True, ensure_ascii=True).encode("utf-8")
    return hash_bytes(payload)


def normalize_text(text: str) -> str:
    """Normalize text for cache keying (NFC, collapsed whitespace, stripped)."""
    return _WS_RE.sub(" ", unicodedata.normalize("NFC", text)).strip()


def make_cache_key(text: str, voice_id: str, profile: "VoiceProfile") -> str:
    """
    Generate the audio cache key for a synthesis request.

    Args:
        text: Original (un-enhanced) request text; normalized here.
        voice_id: Resolved voice identifier.
        profile: Voice profile the audio is synthesized with.

    Returns:
        64-character hex string (SHA256 hash).
    """
    h = hashlib.sha256()
    h.update(NORMALIZE_VERSION.encode("utf-8"))
    h.update(b"|")
    h.update(normalize_text(text).encode("utf-8"))
    h.update(b"|")
    h.update((voice_id or "").encode("utf-8"))
    h.update(b"|")
    h.update(profile.fingerprint().encode("ascii"))
    return h.hexdigest()
