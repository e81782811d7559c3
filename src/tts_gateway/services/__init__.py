"""
Gateway Services Layer.

Business logic between the API/CLI surfaces and the synthesis
components.

Components:
    - orchestrator.py: SynthesisOrchestrator (cache, budget, primary, fallback)
    - validators.py: Input validation functions
"""
from tts_gateway.core.errors import (
    ConfigurationError,
    ErrorCode,
    QuotaExceededError,
    RateLimitedError,
    SynthesisError,
    SynthesisUnavailableError,
    TransportError,
)

from .orchestrator import (
    SynthesisOrchestrator,
    SynthesisRequest,
    build_orchestrator,
    close_orchestrator,
    get_orchestrator,
    reset_orchestrator,
)

__all__ = [
    "SynthesisOrchestrator",
    "SynthesisRequest",
    "build_orchestrator",
    "close_orchestrator",
    "get_orchestrator",
    "reset_orchestrator",
    "SynthesisError",
    "ConfigurationError",
    "QuotaExceededError",
    "RateLimitedError",
    "TransportError",
    "SynthesisUnavailableError",
    "ErrorCode",
]
