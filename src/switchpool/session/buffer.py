"""Bounded output buffer between a session's reader task and its read loops."""

from __future__ import annotations

import asyncio


class OutputBuffer:
    """Bounded queue of decoded output chunks.

    The reader task ``put()``s chunks as they arrive from the transport;
    the read loops ``drain()`` whatever has accumulated since the last
    poll. When the buffer is full ``put()`` blocks, which stops the reader
    pulling from the transport until a read loop catches up.

    ``close()`` marks the end of the stream: later ``put()`` calls are
    dropped, but chunks already queued can still be drained.
    """

    def __init__(self, max_chunks: int = 1024) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_chunks)
        self._closed = False

    async def put(self, chunk: str) -> None:
        """Queue a chunk, waiting for room if the buffer is full."""
        if self._closed or not chunk:
            return
        await self._queue.put(chunk)

    def drain(self) -> str:
        """Remove and return everything queued, joined. Never blocks."""
        parts: list[str] = []
        while True:
            try:
                parts.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return "".join(parts)

    def close(self) -> None:
        """Mark the end of the stream."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ended(self) -> bool:
        """True once the stream is closed and nothing is left to drain."""
        return self._closed and self._queue.empty()
