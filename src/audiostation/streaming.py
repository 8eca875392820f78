"""Streaming primitives: cancellation token and chunk iterator."""

import asyncio
import logging
from typing import Optional

import httpx

from .exceptions import StreamCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Signal shared between a streaming read and whoever may abort it.

    Example:
        >>> token = CancellationToken()
        >>> async with client.stream_song("music_1", cancel=token) as stream:
        ...     async for chunk in stream:
        ...         if enough(chunk):
        ...             token.cancel()
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class StreamHandle:
    """Lazy, finite, non-restartable sequence of byte chunks.

    Wraps one open streaming response. The response is closed when the
    chunks are exhausted, when the token fires, or when the owning
    ``open_stream`` context exits. After cancellation the iterator raises
    StreamCancelledError instead of ending, and any chunk that arrived
    concurrently with the cancellation is dropped.

    Attributes:
        bytes_read: Total bytes handed to the consumer so far
    """

    def __init__(self, response: httpx.Response, cancel: Optional[CancellationToken] = None):
        self._response = response
        self._cancel = cancel
        self._chunks = response.aiter_bytes()
        self._exhausted = False
        self.bytes_read = 0

    @property
    def content_type(self) -> Optional[str]:
        return self._response.headers.get("content-type")

    @property
    def content_length(self) -> Optional[int]:
        length = self._response.headers.get("content-length")
        return int(length) if length and length.isdigit() else None

    @property
    def closed(self) -> bool:
        return self._response.is_closed

    def __aiter__(self) -> "StreamHandle":
        return self

    async def __anext__(self) -> bytes:
        if self._exhausted:
            raise StopAsyncIteration
        await self._raise_if_cancelled()

        chunk = await self._next_chunk()
        await self._raise_if_cancelled()

        if chunk is None:
            self._exhausted = True
            await self.aclose()
            raise StopAsyncIteration

        self.bytes_read += len(chunk)
        return chunk

    async def aclose(self) -> None:
        if not self._response.is_closed:
            await self._response.aclose()
            logger.debug(f"Stream closed after {self.bytes_read} bytes")

    async def _read_chunk(self) -> Optional[bytes]:
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return None

    async def _next_chunk(self) -> Optional[bytes]:
        if self._cancel is None:
            return await self._read_chunk()

        read = asyncio.ensure_future(self._read_chunk())
        cancelled = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (read, cancelled) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if not read.done() or read.cancelled():
            return None
        return read.result()

    async def _raise_if_cancelled(self) -> None:
        if self._cancel is not None and self._cancel.cancelled:
            self._exhausted = True
            await self.aclose()
            logger.info(f"Stream cancelled after {self.bytes_read} bytes")
            raise StreamCancelledError(f"Stream cancelled after {self.bytes_read} bytes")
