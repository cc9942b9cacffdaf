"""
Outbound Buffer
===============

Bounded per-recipient queue of encoded outbound messages.

Each connection owns one OutboundBuffer, drained by a single writer task.
Fan-out only ever calls offer(), which never blocks: when the buffer is
full the oldest queued message is discarded, because for a live viewer
only the latest frame matters.

Design Rules:
    - Fixed maximum size (drops oldest on overflow)
    - offer() is synchronous and non-blocking
    - FIFO order is preserved for the messages that are kept
    - Closing wakes the writer so it can exit
"""

import asyncio
import logging
from typing import Optional


logger = logging.getLogger(__name__)


class OutboundBuffer:
    """
    Async-safe bounded queue with drop-oldest overflow.

    Attributes:
        maxsize: Maximum number of queued messages
        dropped_count: Number of messages dropped due to overflow

    Example:
        buffer = OutboundBuffer(maxsize=4)

        # Fan-out side (never blocks)
        buffer.offer(encoded)

        # Writer side
        while (message := await buffer.get()) is not None:
            await websocket.send_text(message)
    """

    def __init__(self, maxsize: int = 4) -> None:
        """
        Initialize outbound buffer.

        Args:
            maxsize: Maximum messages to buffer. Must be >= 1.
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._maxsize = maxsize
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=maxsize + 1)
        self._dropped_count: int = 0
        self._total_put: int = 0
        self._closed: bool = False

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def size(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    @property
    def total_put(self) -> int:
        return self._total_put

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, message: str) -> bool:
        """
        Queue a message, dropping the oldest if full.

        Args:
            message: Encoded message to queue

        Returns:
            False if the buffer is closed, True otherwise (even when an
            older message had to be dropped to make room).
        """
        if self._closed:
            return False

        self._total_put += 1

        if self._queue.qsize() >= self._maxsize:
            try:
                self._queue.get_nowait()
                self._dropped_count += 1
                logger.debug(
                    f"Outbound buffer full, dropped oldest message. "
                    f"Total dropped: {self._dropped_count}"
                )
            except asyncio.QueueEmpty:
                pass

        self._queue.put_nowait(message)
        return True

    async def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Get the next message.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next message, or None on timeout or once the buffer is closed
            and drained.
        """
        if self._closed and self._queue.empty():
            return None
        try:
            if timeout is not None:
                return await asyncio.wait_for(self._queue.get(), timeout=timeout)
            return await self._queue.get()
        except asyncio.TimeoutError:
            return None

    def get_nowait(self) -> Optional[str]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> list:
        """Remove and return every queued message (sentinel excluded)."""
        messages = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is not None:
                messages.append(item)
        return messages

    def close(self) -> None:
        """Stop accepting messages and wake the writer."""
        if self._closed:
            return
        self._closed = True
        self.drain()
        self._queue.put_nowait(None)

    def metrics(self) -> dict:
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "dropped_count": self._dropped_count,
            "total_put": self._total_put,
        }
