"""
Cooperative Cancellation.

A CancelToken is handed down from the caller through the orchestrator,
transport and providers. Every suspension point (backoff sleep, request
send, each streamed chunk) races its work against the token, so a cancel
takes effect within one I/O step instead of after the whole synthesis.

Cancellation surfaces as asyncio.CancelledError, the same exception a
cancelled task sees, so both mechanisms share one code path.

Usage:
    token = CancelToken()
    task = asyncio.create_task(orchestrator.generate_speech(req, cancel=token))
    ...
    token.cancel()
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class CancelToken:
    """One-shot cancellation signal, safe to check from any coroutine."""

    def __init__(self) -> None:
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    def cancel(self) -> None:
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError("cancelled by caller")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the token fires first.

        Raises:
            asyncio.CancelledError: The token was cancelled; the pending
                work has been cancelled too.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise asyncio.CancelledError("cancelled by caller")
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._get_event().wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work.done():
            return work.result()
        work.cancel()
        await asyncio.wait({work})
        raise asyncio.CancelledError("cancelled by caller")

    async def sleep(self, seconds: float) -> None:
        """Sleep that wakes up early (raising CancelledError) on cancel."""
        await self.guard(asyncio.sleep(seconds))


async def guarded(awaitable: Awaitable[T], cancel: Optional[CancelToken]) -> T:
    """Await with an optional token."""
    if cancel is None:
        return await awaitable
    return await cancel.guard(awaitable)
