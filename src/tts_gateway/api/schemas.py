"""
API Request/Response Schemas.

Pydantic models for the gateway endpoints. They provide type checking,
field constraints and the OpenAPI documentation.

Example Request:
    {
        "text": "System check complete, Sir.",
        "voice_id": "21m00Tcm4TlvDq8ikWAM"
    }
"""
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from tts_gateway.services.validators import MAX_TEXT_LENGTH, MAX_VOICE_ID_LENGTH


class TTSRequest(BaseModel):
    """
    Synthesis request for /v1/tts and /v1/tts/stream.

    Attributes:
        text: Text to synthesize, 1-5000 characters.
        voice_id: Provider voice; the configured voice when omitted.
    """
    text: str = Field(
        ...,
        min_length=1,
        max_length=MAX_TEXT_LENGTH,
        description="Text to synthesize (1-5000 characters)",
    )
    voice_id: str | None = Field(
        default=None,
        max_length=MAX_VOICE_ID_LENGTH,
        description="Provider voice ID (None for the configured default)",
    )


class ErrorBody(BaseModel):
    ok: bool = False
    error: str
    message: str
    request_id: str | None = None
    details: Dict[str, Any] | None = None


class VoiceOut(BaseModel):
    voice_id: str
    name: str
    category: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)


class VoicesResponse(BaseModel):
    voices: List[VoiceOut]


class QuotaResponse(BaseModel):
    """
    Account quota as last seen by the gateway.

    ``known`` is False when the quota endpoint has never answered.
    """
    known: bool
    characters_remaining: int | None = None
    character_limit: int | None = None
    percent_used: float | None = None
    fetched_at: float | None = None
    next_reset_unix: int | None = None
