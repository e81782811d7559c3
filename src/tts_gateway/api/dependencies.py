"""
FastAPI Dependency Injection Providers.

    1. get_settings()            - Loads and caches application configuration
    2. get_synthesis_gateway()   - Returns the singleton SynthesisOrchestrator

Both are process-wide singletons, so the audio cache, the rate-limit
ledger, the quota snapshot and the HTTP connection pools are shared by
every request.

Usage in Route Handlers:
    @router.post("/v1/tts")
    async def tts_v1(req: TTSRequest, gateway: SynthesisOrchestrator = Depends(get_synthesis_gateway)):
        ...
"""
from __future__ import annotations

from functools import lru_cache

from tts_gateway.core.config import Settings, load_settings
from tts_gateway.services.orchestrator import SynthesisOrchestrator, get_orchestrator


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from $TTS_GATEWAY_SETTINGS (default
    config/settings.yaml); a missing file yields defaults plus
    environment overrides.
    """
    return load_settings(allow_missing=True)


def get_synthesis_gateway() -> SynthesisOrchestrator:
    """Get the singleton SynthesisOrchestrator."""
    return get_orchestrator(get_settings())
