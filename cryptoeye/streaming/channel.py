"""Bounded, lossy, closable channel between a price stream and its session."""

from __future__ import annotations

import asyncio


class ChannelClosed(Exception):
    """Raised by receive() once the channel is closed and drained."""
    pass


class SampleChannel:
    """
    Single-producer, single-consumer sample queue.

    The producer never blocks: offer() drops the incoming sample when the
    queue is full (newest is discarded, queued samples are kept). After
    close(), samples already queued are still delivered, then receive()
    raises ChannelClosed.
    """

    def __init__(self, capacity: int = 256):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._queue: asyncio.Queue[float] = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()
        self.dropped = 0

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, value: float) -> bool:
        """
        Try to enqueue a sample without waiting.

        Returns:
            True if queued, False if dropped because the channel is full or closed
        """
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(value)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def close(self) -> None:
        """Close the channel. Idempotent."""
        self._closed.set()

    async def receive(self) -> float:
        """
        Wait for the next sample.

        Raises:
            ChannelClosed: if the channel is closed and no samples remain
        """
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self._closed.is_set():
                raise ChannelClosed()

            getter = asyncio.ensure_future(self._queue.get())
            closer = asyncio.ensure_future(self._closed.wait())
            try:
                done, _ = await asyncio.wait(
                    {getter, closer}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                closer.cancel()
                if not getter.done():
                    getter.cancel()

            if getter in done:
                return getter.result()
