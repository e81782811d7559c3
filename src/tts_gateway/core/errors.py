"""
Error Codes and Exceptions for tts-gateway.

Every failure the pipeline can produce is one of the types below, so the
orchestrator can decide per type whether to retry, fall back or surface.

    SynthesisError                 base, carries code/message/details
    ├── ConfigurationError         fatal: never retried, never falls back
    ├── QuotaExceededError         pre-flight quota check failed -> fallback
    ├── RateLimitedError           local request budget denied   -> fallback
    ├── TransportError             HTTP/network failure -> retried, then fallback
    └── SynthesisUnavailableError  every provider exhausted (terminal)

Callers of the orchestrator only ever observe audio or one terminal error
(ConfigurationError or SynthesisUnavailableError).
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """Standardized error codes used in exceptions and API error bodies."""
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    SYNTHESIS_UNAVAILABLE = "SYNTHESIS_UNAVAILABLE"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class SynthesisError(Exception):
    """
    Base exception for the synthesis pipeline.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode.
        details: Optional dictionary with additional context.
    """

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.SYNTHESIS_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to standardized error response dict for API."""
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(SynthesisError):
    """Missing voice or credential, or invalid configuration."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


class QuotaExceededError(SynthesisError):
    """Account quota cannot cover the request."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.QUOTA_EXCEEDED, details)


class RateLimitedError(SynthesisError):
    """Local request budget for the credential is spent for this window."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, ErrorCode.RATE_LIMITED, details)


class TransportError(SynthesisError):
    """
    HTTP or network failure talking to a provider.

    Attributes:
        status_code: HTTP status, or None for connection-level failures.
        retry_after: Server-requested delay in seconds, when given.
        retryable: Whether another attempt may succeed.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        self.retry_after = retry_after
        self.retryable = retryable
        merged = {"status_code": status_code} if status_code is not None else {}
        merged.update(details or {})
        super().__init__(message, ErrorCode.TRANSPORT_ERROR, merged)


class SynthesisUnavailableError(SynthesisError):
    """Primary and every fallback provider failed; nothing can produce audio."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.SYNTHESIS_UNAVAILABLE, details)
