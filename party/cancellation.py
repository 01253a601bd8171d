"""Cooperative cancellation for one session's in-flight Round."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class RoundCancelled(Exception):
    """Raised inside a Round once its session's token has been cancelled."""


class CancelToken:
    """One-shot cancellation signal.

    guard() races an awaitable against the signal and aborts the
    awaitable when the token fires, so a stopped generation call never
    produces a result.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "stopped") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RoundCancelled(self.reason or "cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                await asyncio.gather(work, return_exceptions=True)
        if work.cancelled():
            raise RoundCancelled(self.reason or "cancelled")
        # A result that landed in the same tick as the signal is discarded.
        self.raise_if_cancelled()
        return work.result()

    async def sleep(self, delay: float) -> None:
        """Sleep for delay seconds, raising RoundCancelled if the token fires."""
        await self.guard(asyncio.sleep(delay))
