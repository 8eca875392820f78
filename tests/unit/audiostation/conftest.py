"""Shared fixtures for Audio Station client tests.

All tests run against FakeAudioStation, an in-process server reached through
httpx.MockTransport, so no real NAS is needed.
"""

import asyncio
import inspect
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from src.audiostation.client import AudioStationClient
from src.audiostation.models import AudioStationConfig

FIXTURES = Path(__file__).parent / "fixtures"
BASE_URL = "https://nas.example.com:5001"


def load_api_info() -> Dict[str, dict]:
    with open(FIXTURES / "api_info.json", "r", encoding="utf-8") as f:
        return json.load(f)


def ok(data=None) -> httpx.Response:
    """Success envelope."""
    body = {"success": True}
    if data is not None:
        body["data"] = data
    return httpx.Response(200, json=body)


def fail(code: int) -> httpx.Response:
    """Failure envelope."""
    return httpx.Response(200, json={"success": False, "error": {"code": code}})


def paged(items: List[dict], key: str) -> Callable[[dict], httpx.Response]:
    """Route handler serving ``items`` in offset/limit windows."""

    def handler(params: dict) -> httpx.Response:
        limit = int(params["limit"])
        offset = int(params["offset"])
        return ok({"total": len(items), "offset": offset, key: items[offset:offset + limit]})

    return handler


class ChunkStream(httpx.AsyncByteStream):
    """Streaming body that records how far it was read and whether it was closed.

    With ``stall_after`` set, the stream hangs forever after that many chunks,
    like a server that stops sending mid-transfer.
    """

    def __init__(self, chunks: List[bytes], stall_after: Optional[int] = None):
        self.chunks = list(chunks)
        self.stall_after = stall_after
        self.sent = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            if self.stall_after is not None and self.sent >= self.stall_after:
                await asyncio.Event().wait()
            self.sent += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeAudioStation:
    """Minimal Synology web API server.

    Attributes:
        apis: Capability set returned by SYNO.API.Info
        calls: (api, method) of every request, in order
        params: Decoded parameters of every request, in order
        requests: Raw httpx requests, in order
        login_count: Number of login attempts
        login_error: Error code returned by login when set
        login_delay: Seconds each login takes
        info_error: Error code returned by SYNO.API.Info when set
    """

    def __init__(self, apis: Optional[Dict[str, dict]] = None, password: str = "secret"):
        self.apis = apis if apis is not None else load_api_info()
        self.password = password
        self.calls: List[Tuple[str, str]] = []
        self.params: List[dict] = []
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Callable] = {}
        self.sids = set()
        self.login_count = 0
        self.login_error: Optional[int] = None
        self.login_delay = 0.0
        self.info_error: Optional[int] = None
        self._next_sid = 0

    def route(self, api: str, method: str, handler: Callable) -> None:
        self.routes[(api, method)] = handler

    def count(self, api: str, method: Optional[str] = None) -> int:
        return sum(1 for a, m in self.calls if a == api and (method is None or m == method))

    def params_for(self, api: str, method: str) -> List[dict]:
        return [p for (a, m), p in zip(self.calls, self.params) if a == api and m == method]

    def expire_sessions(self) -> None:
        self.sids.clear()

    async def handle(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        if request.method == "POST":
            params.update(httpx.QueryParams(request.content.decode()))
        # Fixed CGI endpoints are keyed by path and action
        endpoint = not request.url.path.startswith("/webapi/")
        if endpoint:
            api, method = request.url.path.lstrip("/"), params.get("action")
        else:
            api, method = params.get("api"), params.get("method")
        self.calls.append((api, method))
        self.params.append(params)
        self.requests.append(request)

        if not endpoint:
            if api == "SYNO.API.Info":
                if self.info_error:
                    return fail(self.info_error)
                names = params.get("query", "").split(",")
                return ok({name: self.apis[name] for name in names if name in self.apis})

            info = self.apis.get(api)
            if info is None:
                return fail(102)
            if not request.url.path.startswith(f"/webapi/{info['path']}"):
                return httpx.Response(404)

            if api == "SYNO.API.Auth":
                return await self._auth(method, params)

        if params.get("_sid") not in self.sids:
            return fail(119)

        handler = self.routes.get((api, method))
        if handler is None:
            return fail(103)
        result = handler(params)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _auth(self, method: str, params: dict) -> httpx.Response:
        if method == "login":
            self.login_count += 1
            if self.login_delay:
                await asyncio.sleep(self.login_delay)
            if self.login_error:
                return fail(self.login_error)
            if params.get("passwd") != self.password:
                return fail(400)
            self._next_sid += 1
            sid = f"sid-{self._next_sid}"
            self.sids.add(sid)
            return ok({"sid": sid})
        if method == "logout":
            self.sids.discard(params.get("_sid"))
            return ok()
        return fail(103)


@pytest.fixture
def fake_server():
    return FakeAudioStation()


@pytest.fixture
def config():
    return AudioStationConfig(
        url=BASE_URL,
        username="admin",
        password="secret",
        timeout=5.0,
    )


@pytest.fixture
def http(fake_server):
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(fake_server.handle))


@pytest.fixture
def client(config, http):
    return AudioStationClient(config, http=http)


@pytest.fixture
def dispatcher(client):
    return client.dispatcher
