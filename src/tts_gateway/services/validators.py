"""
Input Validation for the Gateway.

Validation happens before any cache lookup or budget check so that bad
input never consumes a rate-limit slot or a quota character.

Validation Rules:
    - Text: Required, max 5000 characters
    - Voice ID: Optional, max 100 characters, [A-Za-z0-9_-] only

Error Handling:
    All validation functions raise ValidationError with:
        - message: Human-readable error description
        - code: Machine-readable error code (e.g., "TEXT_TOO_LONG")

Usage:
    from tts_gateway.services.validators import validate_text, ValidationError

    try:
        text = validate_text(request.text)
    except ValidationError as e:
        return error_response(e.code, e.message)
"""
from __future__ import annotations

import re
from typing import Optional

from tts_gateway.core.logging import get_logger, warn

_LOG = get_logger("tts-gateway.validators")

MAX_TEXT_LENGTH = 5000
MAX_VOICE_ID_LENGTH = 100

_VOICE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class ValidationError(Exception):
    """
    Exception raised when input validation fails.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for programmatic handling.

    Example:
        >>> raise ValidationError("Text is required", "TEXT_REQUIRED")
    """

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


def validate_text(text: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    """
    Validate text input.

    Returns:
        The stripped text.

    Raises:
        ValidationError: Empty or too long.
    """
    if not text or not text.strip():
        raise ValidationError("Text is required", "TEXT_REQUIRED")

    text = text.strip()

    if len(text) > max_length:
        raise ValidationError(
            f"Text exceeds maximum length ({len(text)} > {max_length})",
            "TEXT_TOO_LONG",
        )

    return text


def validate_voice_id(voice_id: Optional[str], max_length: int = MAX_VOICE_ID_LENGTH) -> Optional[str]:
    """
    Validate a provider voice identifier.

    Voice IDs end up in the request path, so only URL-safe characters
    are accepted.

    Raises:
        ValidationError: Too long or containing other characters.
    """
    if not voice_id:
        return None

    if len(voice_id) > max_length:
        raise ValidationError(
            f"Voice ID exceeds maximum length ({len(voice_id)} > {max_length})",
            "VOICE_ID_TOO_LONG",
        )

    if not _VOICE_ID_RE.match(voice_id):
        warn(_LOG, "voice_id_rejected", voice_id=voice_id[:20])
        raise ValidationError(
            "Voice ID may only contain letters, digits, '_' and '-'",
            "VOICE_ID_INVALID_CHARS",
        )

    return voice_id
