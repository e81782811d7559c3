"""
Prometheus Metrics for tts-gateway.

Metrics Exposed:
    tts_gateway_requests_total                - Requests by path (primary/fallback/cache) and status
    tts_gateway_request_duration_seconds      - Histogram of end-to-end request latency
    tts_gateway_audio_bytes_total             - Total audio bytes delivered
    tts_gateway_cache_hits_total              - Audio cache hits
    tts_gateway_cache_misses_total            - Audio cache misses
    tts_gateway_rate_limit_rejections_total   - Local rate-limit denials
    tts_gateway_quota_percent_used            - Last known account quota usage
    tts_gateway_retry_attempts_total          - Transport retries by reason
    tts_gateway_fallback_total                - Fallback activations by reason

Usage:
    from tts_gateway.core.metrics import metrics

    metrics.record_request(path="primary", status="success", duration=0.5, audio_bytes=44100)
    metrics.record_cache("hit")
    metrics.inc_rate_limited()
    metrics.set_quota_percent(42.0)

    content, content_type = metrics.get_metrics_response()

See Also:
    - api/routes.py: /metrics endpoint definition
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class GatewayMetrics:
    """
    Metrics collection for the synthesis pipeline.

    Uses a private CollectorRegistry so several instances (one per test,
    for example) never collide with each other or with the host process.
    Prometheus metric operations are thread-safe.
    """

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._requests_total = Counter(
            "tts_gateway_requests_total",
            "Total synthesis requests",
            ["path", "status"],
            registry=self._registry,
        )
        self._request_duration = Histogram(
            "tts_gateway_request_duration_seconds",
            "Synthesis request duration in seconds",
            ["path"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )
        self._audio_bytes_total = Counter(
            "tts_gateway_audio_bytes_total",
            "Total audio bytes delivered",
            registry=self._registry,
        )
        self._cache_hits = Counter(
            "tts_gateway_cache_hits_total",
            "Total audio cache hits",
            registry=self._registry,
        )
        self._cache_misses = Counter(
            "tts_gateway_cache_misses_total",
            "Total audio cache misses",
            registry=self._registry,
        )
        self._rate_limit_rejections = Counter(
            "tts_gateway_rate_limit_rejections_total",
            "Requests denied by the local rate limiter",
            registry=self._registry,
        )
        self._quota_percent = Gauge(
            "tts_gateway_quota_percent_used",
            "Last known account quota usage in percent",
            registry=self._registry,
        )
        self._retry_attempts = Counter(
            "tts_gateway_retry_attempts_total",
            "Transport retry attempts",
            ["reason"],
            registry=self._registry,
        )
        self._fallbacks = Counter(
            "tts_gateway_fallback_total",
            "Requests routed to the fallback chain",
            ["reason"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_request(
        self,
        path: str,
        status: str,
        duration: float,
        audio_bytes: int = 0,
    ) -> None:
        """
        Record a completed request.

        Args:
            path: Which source produced the audio ("cache", "primary", "fallback")
            status: "success" or "error"
            duration: End-to-end duration in seconds
            audio_bytes: Size of delivered audio
        """
        self._requests_total.labels(path=path, status=status).inc()
        self._request_duration.labels(path=path).observe(duration)
        if audio_bytes > 0:
            self._audio_bytes_total.inc(audio_bytes)

    def record_cache(self, result: str) -> None:
        """Record a cache "hit" or "miss"."""
        if result == "hit":
            self._cache_hits.inc()
        else:
            self._cache_misses.inc()

    def inc_rate_limited(self) -> None:
        self._rate_limit_rejections.inc()

    def set_quota_percent(self, percent: float) -> None:
        self._quota_percent.set(percent)

    def inc_retry(self, reason: str) -> None:
        self._retry_attempts.labels(reason=reason).inc()

    def inc_fallback(self, reason: str) -> None:
        self._fallbacks.labels(reason=reason).inc()

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus text format.

        Returns:
            Tuple of (content_bytes, content_type)
        """
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


# Global singleton metrics instance
metrics = GatewayMetrics()
