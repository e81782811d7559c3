"""
HTTP Transport with Retry, Backoff and Cancellation.

Every call to a remote provider goes through RetryingTransport. It owns
one httpx.AsyncClient (connection pooling, base URL, credential headers)
and wraps each call in a tenacity AsyncRetrying loop.

Retry policy:
    - At most max_retry_attempts + 1 tries (default 2 retries = 3 tries)
    - Backoff before retry n is 2 ** n seconds (2 s, 4 s, ...), capped
      at max_backoff_s
    - A Retry-After header on the failing response (seconds or HTTP date)
      replaces the computed backoff
    - Retryable: 5xx, 429, timeouts, connection errors and resets
    - Not retryable: any other 4xx; the loop stops at once

Streaming:
    stream() retries only the connection/header phase. Once the first
    body byte has been handed to the caller, a failure is final and is
    raised as a non-retryable TransportError.

Cancellation:
    An optional CancelToken is observed while sending, while sleeping
    between attempts and on every streamed chunk. Cancellation raises
    asyncio.CancelledError and closes the response.

Usage:
    transport = RetryingTransport("https://api.elevenlabs.io", headers={"xi-api-key": key})
    resp = await transport.execute(RequestSpec("GET", "/v1/voices"))
    async for chunk in transport.stream(RequestSpec("POST", path, json=body)):
        ...
"""
from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from tts_gateway.core.config import Defaults
from tts_gateway.core.errors import TransportError
from tts_gateway.core.logging import debug, get_logger, verbose, warn
from tts_gateway.core.metrics import metrics
from tts_gateway.tts.cancellation import CancelToken, guarded

_LOG = get_logger("tts-gateway.transport")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RequestSpec:
    """
    One HTTP call, relative to the transport's base URL.

    Attributes:
        method: HTTP method.
        path: URL path (or absolute URL).
        json: JSON body, if any.
        params: Query parameters.
        headers: Extra headers merged over the client defaults.
        timeout: Per-call timeout in seconds; transport default when None.
        max_retries: Retries for this call; transport default when None.
        name: Short label used in logs and metrics.
    """
    method: str
    path: str
    json: Optional[Dict[str, Any]] = None
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    timeout: Optional[float] = None
    max_retries: Optional[int] = None
    name: str = "request"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, when.timestamp() - time.time())


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TransportError) and exc.retryable


def _error_from_response(response: httpx.Response, name: str) -> TransportError:
    status = response.status_code
    try:
        body = response.text[:200]
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        body = ""
    return TransportError(
        f"{name} failed with HTTP {status}",
        status_code=status,
        retry_after=parse_retry_after(response.headers.get("retry-after")) if status == 429 or status >= 500 else None,
        retryable=is_retryable_status(status),
        details={"body": body} if body else None,
    )


def _error_from_exception(exc: httpx.HTTPError, name: str) -> TransportError:
    if isinstance(exc, httpx.TimeoutException):
        return TransportError(f"{name} timed out", retryable=True, details={"reason": "timeout"})
    if isinstance(exc, httpx.TransportError):
        return TransportError(
            f"{name} connection failed: {exc}",
            retryable=True,
            details={"reason": type(exc).__name__},
        )
    return TransportError(f"{name} failed: {exc}", retryable=False)


class RetryingTransport:
    """
    httpx client wrapper with tenacity retries.

    Attributes:
        max_retry_attempts: Retries after the first try.
        request_timeout_s: Default per-call timeout.
        max_backoff_s: Cap for the computed exponential backoff.
    """

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        max_retry_attempts: int = Defaults.TRANSPORT_MAX_RETRY_ATTEMPTS,
        request_timeout_s: float = Defaults.TRANSPORT_REQUEST_TIMEOUT_S,
        max_backoff_s: float = Defaults.TRANSPORT_MAX_BACKOFF_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retry_attempts = int(max_retry_attempts)
        self.request_timeout_s = float(request_timeout_s)
        self.max_backoff_s = float(max_backoff_s)
        self._sleep = sleep

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers or {},
            timeout=httpx.Timeout(self.request_timeout_s),
            transport=transport,
        )

        self._lock = threading.Lock()
        self._attempts = 0
        self._retries = 0
        self._failures = 0

    # ─────────────────────────────────────────────────────────────────────────
    # Retry plumbing
    # ─────────────────────────────────────────────────────────────────────────

    def _backoff(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, TransportError) and exc.retry_after is not None:
            return exc.retry_after
        return min(float(2 ** retry_state.attempt_number), self.max_backoff_s)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        reason = "unknown"
        if isinstance(exc, TransportError):
            reason = str(exc.status_code) if exc.status_code is not None else exc.details.get("reason", "network")
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        with self._lock:
            self._retries += 1
        metrics.inc_retry(reason)
        verbose(
            _LOG,
            "retry_scheduled",
            attempt=retry_state.attempt_number + 1,
            delay=round(delay, 2),
            reason=reason,
        )

    def _retryer(self, spec: RequestSpec, cancel: Optional[CancelToken]) -> AsyncRetrying:
        retries = self.max_retry_attempts if spec.max_retries is None else spec.max_retries

        async def sleep(seconds: float) -> None:
            await guarded(self._sleep(seconds), cancel)

        return AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=self._backoff,
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._before_sleep,
            sleep=sleep,
            reraise=True,
        )

    def _build_request(self, spec: RequestSpec) -> httpx.Request:
        return self._client.build_request(
            spec.method,
            spec.path,
            json=spec.json,
            params=spec.params,
            headers=spec.headers,
            timeout=httpx.Timeout(spec.timeout or self.request_timeout_s),
        )

    def _count_attempt(self) -> None:
        with self._lock:
            self._attempts += 1

    def _count_failure(self) -> None:
        with self._lock:
            self._failures += 1

    # ─────────────────────────────────────────────────────────────────────────
    # Buffered calls
    # ─────────────────────────────────────────────────────────────────────────

    async def _send_once(self, spec: RequestSpec, cancel: Optional[CancelToken]) -> httpx.Response:
        self._count_attempt()
        try:
            response = await guarded(self._client.send(self._build_request(spec)), cancel)
        except httpx.HTTPError as e:
            raise _error_from_exception(e, spec.name) from e

        if response.status_code >= 400:
            raise _error_from_response(response, spec.name)
        return response

    async def execute(self, spec: RequestSpec, cancel: Optional[CancelToken] = None) -> httpx.Response:
        """
        Perform a buffered request with retries.

        Returns:
            The successful (2xx/3xx) response with its body read.

        Raises:
            TransportError: Non-retryable failure, or retries exhausted.
            asyncio.CancelledError: Cancelled by the token or the task.
        """
        try:
            async for attempt in self._retryer(spec, cancel):
                with attempt:
                    response = await self._send_once(spec, cancel)
        except TransportError as e:
            self._count_failure()
            warn(_LOG, "transport_failed", call=spec.name, status=e.status_code, error=e.message)
            raise
        debug(_LOG, "transport_ok", call=spec.name, status=response.status_code, bytes=len(response.content))
        return response

    # ─────────────────────────────────────────────────────────────────────────
    # Streaming calls
    # ─────────────────────────────────────────────────────────────────────────

    async def _open_once(self, spec: RequestSpec, cancel: Optional[CancelToken]) -> httpx.Response:
        self._count_attempt()
        try:
            response = await guarded(self._client.send(self._build_request(spec), stream=True), cancel)
        except httpx.HTTPError as e:
            raise _error_from_exception(e, spec.name) from e

        if response.status_code >= 400:
            try:
                await response.aread()
            except httpx.HTTPError:
                pass
            finally:
                await response.aclose()
            raise _error_from_response(response, spec.name)
        return response

    async def _open_stream(self, spec: RequestSpec, cancel: Optional[CancelToken]) -> httpx.Response:
        try:
            async for attempt in self._retryer(spec, cancel):
                with attempt:
                    response = await self._open_once(spec, cancel)
        except TransportError as e:
            self._count_failure()
            warn(_LOG, "stream_open_failed", call=spec.name, status=e.status_code, error=e.message)
            raise
        return response

    async def stream(
        self,
        spec: RequestSpec,
        chunk_size: int = Defaults.STREAMING_CHUNK_SIZE,
        cancel: Optional[CancelToken] = None,
    ) -> AsyncIterator[bytes]:
        """
        Stream the response body in chunks of up to ``chunk_size`` bytes.

        Connection setup is retried; body reads are not.

        Raises:
            TransportError: Open failed after retries, or the body read
                broke mid-stream (retryable=False).
            asyncio.CancelledError: Cancelled by the token or the task.
        """
        response = await self._open_stream(spec, cancel)
        chunks = response.aiter_bytes(chunk_size)
        delivered = 0
        try:
            while True:
                try:
                    chunk = await guarded(_next_chunk(chunks), cancel)
                except httpx.HTTPError as e:
                    self._count_failure()
                    raise TransportError(
                        f"{spec.name} stream broke after {delivered} bytes: {e}",
                        retryable=False,
                        details={"reason": "stream_interrupted", "delivered_bytes": delivered},
                    ) from e
                if chunk is None:
                    break
                if chunk:
                    delivered += len(chunk)
                    yield chunk
        finally:
            await response.aclose()
            debug(_LOG, "stream_closed", call=spec.name, bytes=delivered)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle / observability
    # ─────────────────────────────────────────────────────────────────────────

    def stats(self) -> Dict[str, int]:
        """Attempt, retry and final-failure counters."""
        with self._lock:
            return {
                "attempts": self._attempts,
                "retries": self._retries,
                "failures": self._failures,
                "max_retry_attempts": self.max_retry_attempts,
            }

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        await self._client.aclose()


async def _next_chunk(chunks: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None
