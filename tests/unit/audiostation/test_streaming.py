"""
Tests for streaming reads and cancellation.

Tests cover:
- StreamHandle iteration and connection release
- CancellationToken fired from the consumer or another task
- Error envelopes at stream open (never retried)
- Task cancellation while a read is pending
- Cancellation and deadlines while login or the response headers are pending
"""
import asyncio

import httpx
import pytest

from src.audiostation.exceptions import ApiError, RequestTimeoutError, SessionExpiredError, StreamCancelledError
from src.audiostation.streaming import CancellationToken
from src.audiostation.transform import TranscodeMode

from .conftest import ChunkStream, fail

STREAM = "SYNO.AudioStation.Stream"
CHUNKS = [bytes([i]) * 1024 for i in range(10)]


def serve(fake_server, body: ChunkStream, method: str = "stream"):
    fake_server.route(
        STREAM,
        method,
        lambda params: httpx.Response(200, headers={"content-type": "audio/mpeg"}, stream=body),
    )
    return body


async def stream_request(dispatcher, action="stream", sub_path=None):
    return await dispatcher.build_request(
        STREAM, action, [("id", "music_1")], sub_path=sub_path, http_method="GET"
    )


class TestCancellationToken:
    """Tests for CancellationToken."""

    @pytest.mark.asyncio
    async def test_cancel_sets_flag_and_wakes_waiters(self):
        token = CancellationToken()
        waiter = asyncio.ensure_future(token.wait())
        await asyncio.sleep(0)

        assert not token.cancelled
        token.cancel()
        await asyncio.wait_for(waiter, 1)

        assert token.cancelled


class TestStreamHandle:
    """Tests for reading a stream to the end."""

    @pytest.mark.asyncio
    async def test_reads_all_chunks_and_releases_connection(self, dispatcher, fake_server):
        body = serve(fake_server, ChunkStream(CHUNKS))
        request = await stream_request(dispatcher)

        async with dispatcher.open_stream(request) as stream:
            received = [chunk async for chunk in stream]
            assert stream.closed
            assert stream.content_type == "audio/mpeg"

        assert b"".join(received) == b"".join(CHUNKS)
        assert stream.bytes_read == 10 * 1024
        assert body.closed

    @pytest.mark.asyncio
    async def test_stream_is_not_restartable(self, dispatcher, fake_server):
        serve(fake_server, ChunkStream(CHUNKS[:2]))
        request = await stream_request(dispatcher)

        async with dispatcher.open_stream(request) as stream:
            first = [chunk async for chunk in stream]
            second = [chunk async for chunk in stream]

        assert len(first) == 2
        assert second == []

    @pytest.mark.asyncio
    async def test_early_exit_closes_connection(self, dispatcher, fake_server):
        body = serve(fake_server, ChunkStream(CHUNKS))
        request = await stream_request(dispatcher)

        async with dispatcher.open_stream(request) as stream:
            async for _ in stream:
                break

        assert body.closed
        assert stream.closed

    @pytest.mark.asyncio
    async def test_transcode_request_wire_format(self, client, fake_server):
        serve(fake_server, ChunkStream(CHUNKS[:1]), method="transcode")

        async with client.stream_song("music_1", TranscodeMode.MP3_320, position=12.5) as stream:
            async for _ in stream:
                pass

        request = fake_server.requests[-1]
        assert request.method == "GET"
        assert request.url.path == "/webapi/AudioStation/stream.cgi/0.mp3"
        params = list(request.url.params.multi_items())
        assert params == [
            ("api", STREAM),
            ("version", "2"),
            ("method", "transcode"),
            ("id", "music_1"),
            ("format", "mp3"),
            ("position", "12.5"),
            ("bitrate", "320000"),
            ("_sid", "sid-1"),
        ]


class TestCancellation:
    """Tests for cancelling a stream through its token."""

    @pytest.mark.asyncio
    async def test_cancel_from_callback_stops_delivery(self, dispatcher, fake_server):
        body = serve(fake_server, ChunkStream(CHUNKS))
        request = await stream_request(dispatcher)
        token = CancellationToken()
        delivered = []

        def on_chunk(chunk):
            delivered.append(chunk)
            if len(delivered) == 2:
                token.cancel()

        with pytest.raises(StreamCancelledError):
            await dispatcher.query_stream(request, on_chunk, cancel=token)

        assert len(delivered) == 2
        assert body.closed

        await asyncio.sleep(0.05)
        assert len(delivered) == 2

    @pytest.mark.asyncio
    async def test_cancel_from_other_task_while_read_pending(self, dispatcher, fake_server):
        body = serve(fake_server, ChunkStream(CHUNKS, stall_after=2))
        request = await stream_request(dispatcher)
        token = CancellationToken()
        delivered = []
        two_received = asyncio.Event()

        def on_chunk(chunk):
            delivered.append(chunk)
            if len(delivered) == 2:
                two_received.set()

        async def canceller():
            await two_received.wait()
            await asyncio.sleep(0.01)
            token.cancel()

        cancel_task = asyncio.ensure_future(canceller())
        with pytest.raises(StreamCancelledError):
            await asyncio.wait_for(dispatcher.query_stream(request, on_chunk, cancel=token), 2)
        await cancel_task

        assert len(delivered) == 2
        assert body.closed

        await asyncio.sleep(0.05)
        assert len(delivered) == 2

    @pytest.mark.asyncio
    async def test_cancelled_before_open(self, dispatcher, fake_server):
        serve(fake_server, ChunkStream(CHUNKS))
        request = await stream_request(dispatcher)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(StreamCancelledError):
            await dispatcher.query_stream(request, lambda chunk: None, cancel=token)

        assert fake_server.count(STREAM) == 0

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_headers(self, dispatcher, fake_server):
        async def slow_headers(params):
            await asyncio.sleep(3)
            return httpx.Response(200, headers={"content-type": "audio/mpeg"}, stream=ChunkStream(CHUNKS))

        fake_server.route(STREAM, "stream", slow_headers)
        request = await stream_request(dispatcher)
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.1, token.cancel)

        started = loop.time()
        with pytest.raises(StreamCancelledError):
            await dispatcher.query_stream(request, lambda chunk: None, cancel=token)

        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_cancel_while_logging_in(self, dispatcher, fake_server, client):
        serve(fake_server, ChunkStream(CHUNKS))
        fake_server.login_delay = 0.3
        request = await stream_request(dispatcher)
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, token.cancel)

        started = loop.time()
        with pytest.raises(StreamCancelledError):
            async with dispatcher.open_stream(request, cancel=token):
                pass

        assert loop.time() - started < 0.25
        session = await client.sessions.ensure_authenticated()
        assert session.valid
        assert fake_server.login_count == 1
        assert fake_server.count(STREAM) == 0

    @pytest.mark.asyncio
    async def test_open_deadline_covers_login(self, dispatcher, fake_server, client):
        serve(fake_server, ChunkStream(CHUNKS))
        fake_server.login_delay = 0.3
        request = await stream_request(dispatcher)

        with pytest.raises(RequestTimeoutError):
            async with dispatcher.open_stream(request, cancel=CancellationToken(), timeout=0.1):
                pass

        await client.sessions.ensure_authenticated()
        assert fake_server.count(STREAM) == 0

    @pytest.mark.asyncio
    async def test_async_callback(self, dispatcher, fake_server):
        serve(fake_server, ChunkStream(CHUNKS[:3]))
        request = await stream_request(dispatcher)
        delivered = []

        async def on_chunk(chunk):
            await asyncio.sleep(0)
            delivered.append(len(chunk))

        total = await dispatcher.query_stream(request, on_chunk)

        assert delivered == [1024, 1024, 1024]
        assert total == 3 * 1024

    @pytest.mark.asyncio
    async def test_task_cancellation_releases_connection(self, dispatcher, fake_server):
        body = serve(fake_server, ChunkStream(CHUNKS, stall_after=2))
        request = await stream_request(dispatcher)
        two_received = asyncio.Event()
        delivered = []

        def on_chunk(chunk):
            delivered.append(chunk)
            if len(delivered) == 2:
                two_received.set()

        task = asyncio.ensure_future(dispatcher.query_stream(request, on_chunk, cancel=CancellationToken()))
        await two_received.wait()
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert body.closed
        assert len(delivered) == 2


class TestStreamErrors:
    """Tests for failures when a stream is opened."""

    @pytest.mark.asyncio
    async def test_error_envelope_raised(self, dispatcher, fake_server):
        fake_server.route(STREAM, "stream", lambda params: fail(101))
        request = await stream_request(dispatcher)

        with pytest.raises(ApiError) as exc_info:
            await dispatcher.query_stream(request, lambda chunk: None)

        assert exc_info.value.code == 101
        assert fake_server.count(STREAM) == 1

    @pytest.mark.asyncio
    async def test_session_error_not_retried(self, dispatcher, fake_server):
        fake_server.route(STREAM, "stream", lambda params: fail(119))
        request = await stream_request(dispatcher)

        with pytest.raises(SessionExpiredError):
            await dispatcher.query_stream(request, lambda chunk: None)

        assert fake_server.count(STREAM) == 1
        assert fake_server.login_count == 1

    @pytest.mark.asyncio
    async def test_http_error_raised(self, dispatcher, fake_server):
        fake_server.route(STREAM, "stream", lambda params: httpx.Response(404, text="not found"))
        request = await stream_request(dispatcher)

        with pytest.raises(httpx.HTTPStatusError):
            await dispatcher.query_stream(request, lambda chunk: None)
