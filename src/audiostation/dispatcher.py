"""Generic query engine behind every Audio Station call.

Four dispatch modes share request construction, transport and envelope
decoding and differ only in how the body is materialized:

- object: envelope ``data`` decoded into one typed value
- list: envelope ``data`` decoded into a PagedResult
- bytes: raw body returned verbatim unless it is a failure envelope
- stream: body read incrementally through a StreamHandle

Buffered modes retry exactly once after a session-invalid error. Streams are
never retried. A call's deadline covers everything it awaits, discovery and
login included.
"""

import asyncio
import inspect
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence, Tuple

import httpx

from .envelope import decode_envelope, decode_payload, raise_for_envelope, sniff_envelope
from .exceptions import SESSION_ERROR_CODES, DecodeError, RequestTimeoutError, StreamCancelledError
from .models import ByteArrayData, PagedResult, Session
from .registry import ApiRegistry
from .request import Request, RequestBuilder
from .session import SessionManager
from .streaming import CancellationToken, StreamHandle
from .transport import send_request

logger = logging.getLogger(__name__)

Params = Sequence[Tuple[str, Any]]

_FILENAME_PATTERN = re.compile(r'filename\*?=(?:UTF-8\'\')?"?([^";]+)"?', re.IGNORECASE)

# Marker for "use the dispatcher default" since None disables the timeout
_DEFAULT = object()


class QueryDispatcher:
    """Session-aware dispatcher for the four response shapes.

    Attributes:
        default_timeout: Per-call deadline used when a call passes none

    Example:
        >>> songs = await dispatcher.query_list(
        ...     "SYNO.AudioStation.Song", "list", limit=10, offset=0,
        ...     item_key="songs", shape=Song,
        ... )
        >>> print(f"{len(songs.items)} of {songs.total}")
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        registry: ApiRegistry,
        sessions: SessionManager,
        default_timeout: Optional[float] = None,
    ):
        self._http = http
        self._registry = registry
        self._sessions = sessions
        self.default_timeout = default_timeout

    async def build_request(
        self,
        api: str,
        action: str,
        params: Params = (),
        sub_path: Optional[str] = None,
        http_method: str = "POST",
    ) -> Request:
        """Resolve the API and assemble a Request.

        Raises:
            UnsupportedApiError: If the API cannot be resolved
        """
        descriptor = await self._registry.resolve(api)
        return (
            RequestBuilder(descriptor, action, http_method=http_method, sub_path=sub_path)
            .set_params(params)
            .build()
        )

    async def query_object(
        self,
        api: str,
        action: str,
        params: Params = (),
        shape: Any = None,
        timeout: Any = _DEFAULT,
    ) -> Any:
        """Run a query and decode the envelope data into ``shape``.

        Args:
            api: Logical API name
            action: API method name
            params: Ordered (name, value) pairs
            shape: Target type for the data (None returns raw JSON)
            timeout: Deadline in seconds for the whole call (None disables)

        Returns:
            Decoded payload

        Raises:
            ApiError: If the envelope reports failure
            DecodeError: If the body or payload shape is malformed
            RequestTimeoutError: If the deadline is hit
        """

        async def run():
            request = await self.build_request(api, action, params)
            return await self._object(request, shape)

        return await self._within(run(), timeout, f"{api}.{action}")

    async def query_endpoint(
        self,
        endpoint: str,
        action: str,
        params: Params = (),
        shape: Any = None,
        timeout: Any = _DEFAULT,
    ) -> Any:
        """Object query against a fixed CGI path that SYNO.API.Info does not list.

        The path is used as given, without discovery. Session stamping,
        the re-login retry and envelope decoding behave as in query_object.

        Args:
            endpoint: Path relative to the server root
            action: Value of the ``action`` parameter
            params: Ordered (name, value) pairs
            shape: Target type for the data (None returns raw JSON)
            timeout: Deadline in seconds for the whole call (None disables)
        """
        request = RequestBuilder.for_endpoint(endpoint, action).set_params(params).build()
        return await self._within(self._object(request, shape), timeout, f"{endpoint}?action={action}")

    async def query_list(
        self,
        api: str,
        action: str,
        limit: int,
        offset: int,
        params: Params = (),
        item_key: str = "items",
        shape: Any = None,
        timeout: Any = _DEFAULT,
    ) -> PagedResult:
        """Run a paged list query.

        ``limit=0`` is a count-only request and always yields no items. The
        server enforces its own maximum page size; the client never re-pages.

        Args:
            api: Logical API name
            action: API method name
            limit: Maximum number of items (>= 0)
            offset: Index of the first item (>= 0)
            params: Additional ordered (name, value) pairs
            item_key: Key of the item array inside ``data``
            shape: Target type of each item
            timeout: Deadline in seconds for the whole call (None disables)

        Returns:
            PagedResult with total count and decoded items

        Raises:
            ValueError: If limit or offset is negative
            ApiError: If the envelope reports failure
            DecodeError: If ``total`` or the item array is malformed
        """
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be non-negative")

        async def run():
            request = await self.build_request(api, action, [("limit", limit), ("offset", offset), *params])
            response = await self._execute(request)
            envelope = decode_envelope(response.content)
            raise_for_envelope(envelope)
            return envelope.data

        data = await self._within(run(), timeout, f"{api}.{action}")
        if not isinstance(data, dict):
            raise DecodeError(f"{api}.{action}: list data is not an object")
        total = data.get("total")
        if not _is_int(total):
            raise DecodeError(f"{api}.{action}: missing integer 'total'")
        raw_items = data.get(item_key, [])
        if not isinstance(raw_items, list):
            raise DecodeError(f"{api}.{action}: '{item_key}' is not a list")

        if len(raw_items) > limit:
            if limit:
                logger.warning(f"{api}.{action} returned {len(raw_items)} items for limit {limit}, truncating")
            raw_items = raw_items[:limit]

        items = [decode_payload(item, shape, f"data.{item_key}[{i}]") for i, item in enumerate(raw_items)]
        result_offset = data.get("offset", offset)
        if not _is_int(result_offset) or result_offset < 0:
            logger.warning(f"{api}.{action} returned offset {result_offset!r}, using requested offset {offset}")
            result_offset = offset
        logger.debug(f"{api}.{action}: {len(items)} of {total} items at offset {result_offset}")
        return PagedResult(total=total, offset=result_offset, items=items)

    async def query_bytes(
        self,
        api: str,
        action: str,
        params: Params = (),
        timeout: Any = _DEFAULT,
    ) -> ByteArrayData:
        """Run a query whose success body is raw bytes.

        The body is returned untouched unless it decodes as a failure
        envelope, which is raised as ApiError.

        Raises:
            ApiError: If the server answered with a failure envelope
        """

        async def run():
            request = await self.build_request(api, action, params)
            return await self._execute(request)

        response = await self._within(run(), timeout, f"{api}.{action}")

        envelope = sniff_envelope(response)
        if envelope is not None:
            raise_for_envelope(envelope)

        content_type = response.headers.get("content-type")
        logger.debug(f"{api}.{action}: {len(response.content)} bytes ({content_type})")
        return ByteArrayData(
            data=response.content,
            content_type=content_type,
            filename=_filename(response),
        )

    async def execute(self, request: Request, timeout: Any = _DEFAULT) -> httpx.Response:
        """Send a buffered request with session stamping and one re-login retry.

        The deadline spans login, the first attempt, any re-login and the
        retry.

        Returns:
            Fully read response (envelope not yet decoded)

        Raises:
            AuthenticationError: If (re-)login fails
            RequestTimeoutError: If the deadline is hit
            httpx.HTTPStatusError: For HTTP-level errors
        """
        return await self._within(self._execute(request), timeout, f"{request.api}.{request.action}")

    @asynccontextmanager
    async def open_stream(
        self,
        request: Request,
        cancel: Optional[CancellationToken] = None,
        timeout: Any = _DEFAULT,
    ) -> AsyncIterator[StreamHandle]:
        """Open a streaming response and yield its StreamHandle.

        The connection is released when the block exits, whether the stream
        was exhausted, cancelled, or an exception was raised. The timeout
        covers login and the wait for response headers, not the body. The
        token is honoured from the start: firing it while the login or the
        headers are still pending aborts the open.

        Raises:
            StreamCancelledError: If the token fired before or during the read
            ApiError: If the server answered with a failure envelope
        """
        if cancel is not None and cancel.cancelled:
            raise StreamCancelledError("Stream cancelled before it was opened")

        opening = self._within(self._open(request), timeout, f"{request.api}.{request.action}")
        if cancel is None:
            response = await opening
        else:
            response = await _until_cancelled(opening, cancel)
        try:
            await self._raise_for_stream_error(response)
            yield StreamHandle(response, cancel)
        finally:
            await response.aclose()

    async def query_stream(
        self,
        request: Request,
        on_chunk: Callable[[bytes], Any],
        cancel: Optional[CancellationToken] = None,
        timeout: Any = _DEFAULT,
    ) -> int:
        """Stream a response into a callback.

        Args:
            request: Streaming request
            on_chunk: Called with each chunk; may be a coroutine function
            cancel: Optional cancellation token
            timeout: Deadline for login and the response headers

        Returns:
            Number of bytes delivered to ``on_chunk``

        Raises:
            StreamCancelledError: If cancelled; ``on_chunk`` is not called again
        """
        async with self.open_stream(request, cancel, timeout) as stream:
            async for chunk in stream:
                result = on_chunk(chunk)
                if inspect.isawaitable(result):
                    await result
            return stream.bytes_read

    async def _within(self, work: Awaitable, timeout: Any, label: str) -> Any:
        """Await ``work`` under one deadline.

        A login the caller was waiting on keeps running after the deadline,
        so other callers can still use it.
        """
        if timeout is _DEFAULT:
            timeout = self.default_timeout
        if timeout is None:
            return await work
        try:
            return await asyncio.wait_for(work, timeout)
        except RequestTimeoutError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning(f"Request {label} timed out after {timeout}s")
            raise RequestTimeoutError(f"{label} timed out") from e

    async def _object(self, request: Request, shape: Any) -> Any:
        response = await self._execute(request)
        envelope = decode_envelope(response.content)
        raise_for_envelope(envelope)
        return decode_payload(envelope.data, shape)

    async def _execute(self, request: Request) -> httpx.Response:
        session = await self._sessions.ensure_authenticated()
        response = await self._send(request, session)
        if not _is_session_failure(response):
            return response

        session = await self._sessions.reauthenticate(session)
        logger.debug(f"Retrying {request.api}.{request.action} with a new session")
        return await self._send(request, session)

    async def _open(self, request: Request) -> httpx.Response:
        session = await self._sessions.ensure_authenticated()
        return await send_request(self._http, request, sid=session.sid, stream=True)

    async def _send(self, request: Request, session: Session) -> httpx.Response:
        response = await send_request(self._http, request, sid=session.sid)
        response.raise_for_status()
        return response

    async def _raise_for_stream_error(self, response: httpx.Response) -> None:
        if response.is_error:
            await response.aread()
            response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            await response.aread()
            envelope = sniff_envelope(response)
            if envelope is not None:
                raise_for_envelope(envelope)


async def _until_cancelled(opening: Awaitable[httpx.Response], cancel: CancellationToken) -> httpx.Response:
    """Await a stream open, abandoning it as soon as the token fires."""
    task = asyncio.ensure_future(opening)
    cancelled = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await _close_opened(task)
        raise
    finally:
        pending = [t for t in (task, cancelled) if not t.done()]
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    if cancel.cancelled:
        await _close_opened(task)
        logger.info("Stream cancelled before the response arrived")
        raise StreamCancelledError("Stream cancelled before the response arrived")
    return task.result()


async def _close_opened(task: asyncio.Future) -> None:
    if task.done() and not task.cancelled() and task.exception() is None:
        await task.result().aclose()


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_session_failure(response: httpx.Response) -> bool:
    envelope = sniff_envelope(response)
    return envelope is not None and not envelope.success and envelope.error_code in SESSION_ERROR_CODES


def _filename(response: httpx.Response) -> Optional[str]:
    disposition = response.headers.get("content-disposition")
    if not disposition:
        return None
    match = _FILENAME_PATTERN.search(disposition)
    return match.group(1) if match else None
