"""
tts-gateway: Resilient speech-synthesis orchestration.

Turns text into audio through a metered remote synthesis provider while
surviving quota exhaustion, rate limiting, transient network failures and
provider outages.

Pipeline:
    request -> AudioCache -> UsageLedger -> QuotaTracker -> TextEnhancer
            -> RetryingTransport -> primary provider
    Any failure after the cache gate is routed to the FallbackChain.

Example Usage:
    >>> import asyncio
    >>> from tts_gateway.services import build_orchestrator, SynthesisRequest
    >>> from tts_gateway.core.config import load_settings
    >>>
    >>> orchestrator = build_orchestrator(load_settings("config/settings.yaml"))
    >>> audio = asyncio.run(orchestrator.generate_speech(
    ...     SynthesisRequest(text="All systems nominal, Sir.")
    ... ))
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
