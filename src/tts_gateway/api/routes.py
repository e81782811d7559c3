"""
Gateway API Routes.

Endpoints:
    POST /v1/tts          - Buffered synthesis (returns audio bytes)
    POST /v1/tts/stream   - Chunked synthesis (streams audio bytes)
    GET  /v1/voices       - Provider voice catalogue
    GET  /v1/quota        - Last known account quota
    GET  /health          - Primary reachability and fallback status
    GET  /metrics         - Prometheus metrics

Error Handling:
    All errors are returned as JSON with standardized format:
    {
        "ok": false,
        "error": "<ERROR_CODE>",
        "message": "<human readable message>",
        "request_id": "<id>"
    }

    HTTP status codes are mapped from error codes:
        - INVALID_INPUT / validation codes -> 400 Bad Request
        - TRANSPORT_ERROR -> 502 Bad Gateway
        - SYNTHESIS_UNAVAILABLE -> 503 Service Unavailable
        - CONFIGURATION_ERROR and anything else -> 500 Internal Server Error

    Rate limiting, quota exhaustion and provider outages do not produce
    errors here: the orchestrator answers them with fallback audio.

Example:
    curl -X POST http://localhost:8000/v1/tts \\
        -H "Content-Type: application/json" \\
        -d '{"text": "All systems nominal, Sir."}' \\
        --output speech.mp3
"""
from __future__ import annotations

import uuid
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse, StreamingResponse

from tts_gateway.api.dependencies import get_synthesis_gateway
from tts_gateway.api.schemas import QuotaResponse, TTSRequest, VoicesResponse
from tts_gateway.core.errors import ErrorCode, SynthesisError
from tts_gateway.core.logging import fail, get_logger, set_request_id
from tts_gateway.core.metrics import metrics
from tts_gateway.services.orchestrator import SynthesisOrchestrator, SynthesisRequest
from tts_gateway.services.validators import ValidationError, validate_text, validate_voice_id

router = APIRouter()

_LOG = get_logger("tts-gateway.api")

AUDIO_MEDIA_TYPE = "audio/mpeg"

_STATUS_MAP = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.TRANSPORT_ERROR: 502,
    ErrorCode.SYNTHESIS_UNAVAILABLE: 503,
    ErrorCode.QUOTA_EXCEEDED: 503,
    ErrorCode.RATE_LIMITED: 503,
    ErrorCode.CONFIGURATION_ERROR: 500,
}


def _new_request_id() -> str:
    rid = uuid.uuid4().hex[:12]
    set_request_id(rid)
    return rid


def _error_response(error: SynthesisError, rid: str) -> JSONResponse:
    content = error.to_dict()
    content["request_id"] = rid
    return JSONResponse(status_code=_STATUS_MAP.get(error.code, 500), content=content)


def _validation_response(error: ValidationError, rid: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": error.code, "message": error.message, "request_id": rid},
    )


def _internal_error(rid: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": ErrorCode.INTERNAL_ERROR,
            "message": "Internal server error",
            "request_id": rid,
        },
    )


def _build_request(req: TTSRequest, streaming: bool) -> SynthesisRequest:
    return SynthesisRequest(
        text=validate_text(req.text),
        voice_id=validate_voice_id(req.voice_id),
        streaming=streaming,
    )


@router.post("/v1/tts", response_class=Response)
async def tts_v1(
    req: TTSRequest,
    gateway: SynthesisOrchestrator = Depends(get_synthesis_gateway),
):
    """
    Buffered synthesis endpoint.

    Returns:
        Response: audio bytes with headers X-Request-Id and X-Bytes.
    """
    rid = _new_request_id()
    try:
        audio = await gateway.generate_speech(_build_request(req, streaming=False))
    except ValidationError as e:
        return _validation_response(e, rid)
    except SynthesisError as e:
        return _error_response(e, rid)
    except Exception as e:
        fail(_LOG, "unhandled_error", error=str(e), error_type=type(e).__name__)
        return _internal_error(rid)

    headers = {"X-Request-Id": rid, "X-Bytes": str(len(audio))}
    return Response(content=audio, media_type=AUDIO_MEDIA_TYPE, headers=headers)


@router.post("/v1/tts/stream")
async def tts_stream(
    req: TTSRequest,
    gateway: SynthesisOrchestrator = Depends(get_synthesis_gateway),
):
    """
    Chunked synthesis endpoint.

    The first chunk is produced before the response starts, so setup
    failures (bad input, missing configuration, nothing available) still
    get a proper JSON error and status code. A failure after that point
    can only end the body early.
    """
    rid = _new_request_id()
    try:
        chunks = gateway.stream_speech(_build_request(req, streaming=True))
    except ValidationError as e:
        return _validation_response(e, rid)

    try:
        first = await chunks.__anext__()
    except StopAsyncIteration:
        first = b""
    except SynthesisError as e:
        await chunks.aclose()
        return _error_response(e, rid)

    async def body() -> AsyncIterator[bytes]:
        try:
            if first:
                yield first
            async for chunk in chunks:
                yield chunk
        except SynthesisError as e:
            fail(_LOG, "stream_aborted", error=e.message, code=e.code)
        finally:
            await chunks.aclose()

    return StreamingResponse(body(), media_type=AUDIO_MEDIA_TYPE, headers={"X-Request-Id": rid})


@router.get("/v1/voices", response_model=VoicesResponse)
async def list_voices(gateway: SynthesisOrchestrator = Depends(get_synthesis_gateway)):
    rid = _new_request_id()
    try:
        voices = await gateway.list_voices()
    except SynthesisError as e:
        return _error_response(e, rid)
    return {"voices": [v.to_dict() for v in voices]}


@router.get("/v1/quota", response_model=QuotaResponse)
async def quota(
    refresh: bool = False,
    gateway: SynthesisOrchestrator = Depends(get_synthesis_gateway),
):
    """Last known account quota; ``?refresh=true`` forces a fetch."""
    _new_request_id()
    snapshot = await gateway.get_quota(force_refresh=refresh)
    if snapshot is None:
        return QuotaResponse(known=False)
    return QuotaResponse(
        known=True,
        characters_remaining=snapshot.characters_remaining,
        character_limit=snapshot.character_limit,
        percent_used=snapshot.percent_used,
        fetched_at=snapshot.fetched_at,
        next_reset_unix=snapshot.next_reset_unix,
    )


@router.get("/health")
async def health(gateway: SynthesisOrchestrator = Depends(get_synthesis_gateway)):
    """
    Health check for load balancers and liveness checks.

    "healthy" when the primary accepts the credential, "degraded" when
    only fallback providers are available, "unhealthy" otherwise.
    """
    info = await gateway.health()
    if info["primary"]:
        status = "healthy"
    elif info["ok"]:
        status = "degraded"
    else:
        status = "unhealthy"
    return {
        "status": status,
        "primary": info["primary"],
        "fallback": info["fallback"],
        "stats": gateway.stats(),
    }


@router.get("/metrics")
def prometheus_metrics():
    """Prometheus text format metrics."""
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
