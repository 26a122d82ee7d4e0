"""
Ordered delivery channel for decoded ASR responses.

- Single producer (the session's receive task), any number of readers
  draining in arrival order
- Bounded: put() waits while `maxsize` responses are unread, so a slow
  consumer holds back the receive loop
- close() is idempotent, never blocks, and signals end-of-stream
- Everything put before close() is delivered; nothing is dropped
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from protocol.messages import AsrResponse
from spec import RESPONSE_CHANNEL_DEPTH


class ChannelClosedError(RuntimeError):
    """Raised when put() is called after close()."""


_CLOSED = object()


class ResponseChannel:
    """
    FIFO of AsrResponse with an explicit end-of-stream marker.

    The end marker is queued by close() when there is room, otherwise by the
    get() that frees the last slot, so close() never waits for a reader.

    Usage:
        channel = ResponseChannel()
        consumer = asyncio.create_task(print_all(channel))
        await session.execute(path, channel)
        await consumer

        async def print_all(channel):
            async for response in channel:
                print(response.text)
    """

    def __init__(self, maxsize: int = RESPONSE_CHANNEL_DEPTH) -> None:
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1, got {maxsize}")
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._end_queued = False
        self._delivered = 0
        self._ended = False

    # -------------------------
    # Producer side
    # -------------------------

    async def put(self, response: AsrResponse) -> None:
        """Enqueue one response, waiting while the channel is full."""
        if self._closed:
            raise ChannelClosedError("response channel is closed")
        await self._queue.put(response)

    def close(self) -> None:
        """
        Mark end-of-stream. Safe to call more than once; only the first call counts.
        """
        if self._closed:
            return
        self._closed = True
        self._queue_end_marker()

    @property
    def closed(self) -> bool:
        return self._closed

    def _queue_end_marker(self) -> None:
        if self._end_queued or self._queue.full():
            return
        self._end_queued = True
        self._queue.put_nowait(_CLOSED)

    # -------------------------
    # Consumer side
    # -------------------------

    async def get(self) -> Optional[AsrResponse]:
        """
        Next response in arrival order, or None once the channel is closed and drained.
        """
        if self._ended:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._ended = True
            return None
        self._delivered += 1
        if self._closed:
            self._queue_end_marker()
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[AsrResponse]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AsrResponse]:
        while True:
            response = await self.get()
            if response is None:
                return
            yield response

    async def collect(self) -> list[AsrResponse]:
        """Drain until closed. Blocks until close() if the producer is still running."""
        return [response async for response in self]

    # -------------------------
    # Introspection helpers
    # -------------------------

    def pending(self) -> int:
        """Responses enqueued but not yet read."""
        size = self._queue.qsize()
        if self._end_queued and not self._ended:
            size -= 1
        return max(size, 0)

    def snapshot(self) -> dict[str, int | bool]:
        """
        Lightweight snapshot for logging.
        """
        return {
            "pending": self.pending(),
            "delivered": self._delivered,
            "closed": self._closed,
        }
