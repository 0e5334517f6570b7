"""Admission control for remote command channels.

SSH servers cap the number of simultaneously open channels per connection
(OpenSSH defaults to ten), so every batch command holds a ticket from a
:class:`CommandGate` while its channel is open.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import AsyncIterator, Deque

_LOGGER = logging.getLogger(__name__)

DEFAULT_CHANNEL_LIMIT = 8


class CommandGate:
    """Counting gate with a fixed limit and a FIFO wait queue.

    Acquisition never times out; callers needing bounded latency wrap it in
    ``asyncio.wait_for`` or cancel the waiting task.
    """

    def __init__(self, limit: int = DEFAULT_CHANNEL_LIMIT) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._limit = limit
        self._in_use = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        """Number of tickets currently held."""
        return self._in_use

    @property
    def waiting(self) -> int:
        """Number of callers queued for a ticket."""
        return sum(1 for fut in self._waiters if not fut.done())

    async def acquire(self) -> None:
        """Wait for and take one ticket."""
        if self._in_use < self._limit and not self._waiters:
            self._in_use += 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        _LOGGER.debug("Gate full (%s/%s); queued at position %s", self._in_use, self._limit, len(self._waiters))
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # The ticket was handed over just before cancellation.
                self.release()
            else:
                with contextlib.suppress(ValueError):
                    self._waiters.remove(fut)
            raise

    def release(self) -> None:
        """Return one ticket, handing it to the oldest waiter if any."""
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        if self._in_use <= 0:
            raise RuntimeError("CommandGate released more often than acquired")
        self._in_use -= 1

    @contextlib.asynccontextmanager
    async def ticket(self) -> AsyncIterator[None]:
        """Hold a ticket for the duration of the ``async with`` block."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()
