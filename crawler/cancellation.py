"""Cooperative cancellation passed down every crawl call boundary."""

from __future__ import annotations

import asyncio
from contextlib import suppress

from .errors import Cancelled


class CancellationToken:
    """Flag checked at phase boundaries and during explicit delays.

    Cancelling never interrupts a remote call that is already in flight; it
    only prevents further work from being started once the call returns.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason or "Crawl was cancelled"
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self._reason)

    async def sleep(self, delay: float) -> None:
        """Wait ``delay`` seconds, returning early once cancelled."""

        if delay <= 0 or self._event.is_set():
            await asyncio.sleep(0)
            return
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=delay)
