"""
Synthesis Pipeline Components.

This package provides the building blocks the orchestrator composes:
    - profiles.py: Voice profiles and sentiment-based selection
    - enhancer.py: Prosody markup for synthesis input
    - cache.py: Byte-budgeted audio cache with TTL
    - usage.py: Per-credential sliding-window rate limiter
    - quota.py: Account quota snapshots
    - cancellation.py: Cooperative cancellation token
    - transport.py: HTTP transport with retry and backoff
    - fallback.py: Ordered fallback provider chain
    - providers/: Primary and fallback provider implementations
"""
