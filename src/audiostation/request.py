"""Request construction for Synology web API calls.

A Request is assembled once and is fully self-describing: every parameter is
already coerced to its wire string, so the same object can be replayed after
a re-login without rebuilding it.

Example:
    >>> descriptor = ApiDescriptor("SYNO.AudioStation.Song", "AudioStation/song.cgi", 3, 1, 3)
    >>> request = (
    ...     RequestBuilder(descriptor, "list")
    ...     .set_param("limit", 10)
    ...     .set_param("additional", ["song_tag", "song_audio"])
    ...     .build()
    ... )
    >>> request.wire_params()
    [('api', 'SYNO.AudioStation.Song'), ('version', '3'), ('method', 'list'),
     ('limit', '10'), ('additional', 'song_tag,song_audio')]
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple

import httpx

from .models import ApiDescriptor

WEBAPI_PREFIX = "/webapi/"
RESERVED_PARAMS = frozenset({"api", "version", "method", "_sid"})


def to_wire_value(value: Any) -> str:
    """Coerce a parameter value to its wire string form.

    Args:
        value: str, bool, int, float, Enum, list/tuple of those, or dict

    Returns:
        Wire string

    Raises:
        TypeError: For unordered collections and unsupported types
    """
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        return to_wire_value(value.value)
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join(to_wire_value(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"))
    if isinstance(value, (set, frozenset)):
        raise TypeError("set parameters have no deterministic order, pass a list or tuple")
    raise TypeError(f"Unsupported parameter type: {type(value).__name__}")


@dataclass(frozen=True)
class Request:
    """One outbound API call.

    Attributes:
        api: Logical API name
        path: CGI path below /webapi/
        http_method: "GET" or "POST"
        action: API method name (sent as ``method``)
        version: API version
        params: Ordered (name, wire value) pairs
        sub_path: Optional suffix appended to the endpoint path (streaming)
        endpoint: True for fixed CGI paths outside /webapi/ that take an
            ``action`` parameter instead of api/version/method
    """

    api: str
    path: str
    http_method: str
    action: str
    version: int
    params: Tuple[Tuple[str, str], ...] = ()
    sub_path: Optional[str] = None
    endpoint: bool = False

    @property
    def url_path(self) -> str:
        if self.endpoint:
            return f"/{self.path}"
        return f"{WEBAPI_PREFIX}{self.path}{self.sub_path or ''}"

    def wire_params(self, sid: Optional[str] = None) -> List[Tuple[str, str]]:
        """Return parameters in wire order, stamped with the session id if given."""
        if self.endpoint:
            params = [("action", self.action)]
        else:
            params = [
                ("api", self.api),
                ("version", str(self.version)),
                ("method", self.action),
            ]
        params.extend(self.params)
        if sid is not None:
            params.append(("_sid", sid))
        return params

    def to_httpx(self, client: httpx.AsyncClient, sid: Optional[str] = None) -> httpx.Request:
        """Build the httpx request for this call.

        GET sends parameters in the query string, POST as a form body.
        """
        params = self.wire_params(sid)
        if self.http_method == "GET":
            return client.build_request("GET", self.url_path, params=params)
        return client.build_request(self.http_method, self.url_path, data=dict(params))


class RequestBuilder:
    """Fluent builder producing immutable Request objects."""

    def __init__(
        self,
        descriptor: ApiDescriptor,
        action: str,
        http_method: str = "POST",
        sub_path: Optional[str] = None,
    ):
        """Initialize builder for one API call.

        Args:
            descriptor: Resolved endpoint for the logical API
            action: API method name (e.g., "list", "getinfo")
            http_method: "GET" or "POST"
            sub_path: Optional path suffix, must start with "/"

        Raises:
            ValueError: If http_method or sub_path is invalid
        """
        http_method = http_method.upper()
        if http_method not in ("GET", "POST"):
            raise ValueError(f"Unsupported HTTP method: {http_method}")
        if sub_path is not None and not sub_path.startswith("/"):
            raise ValueError("sub_path must start with '/'")
        self._descriptor = descriptor
        self._action = action
        self._http_method = http_method
        self._sub_path = sub_path
        self._params: List[Tuple[str, str]] = []
        self._names = set()
        self._endpoint = False

    @classmethod
    def for_endpoint(cls, endpoint: str, action: str, http_method: str = "POST") -> "RequestBuilder":
        """Create a builder for a fixed CGI path that is not listed by SYNO.API.Info.

        Args:
            endpoint: Path relative to the server root, without a leading "/"
            action: Value sent as the ``action`` parameter
            http_method: "GET" or "POST"

        Raises:
            ValueError: If the endpoint is empty or absolute
        """
        if not endpoint or endpoint.startswith("/"):
            raise ValueError("endpoint must be a non-empty relative path")
        descriptor = ApiDescriptor(name=endpoint, path=endpoint, version=0, min_version=0, max_version=0)
        builder = cls(descriptor, action, http_method)
        builder._endpoint = True
        return builder

    def set_param(self, name: str, value: Any) -> "RequestBuilder":
        """Add one parameter; None values are skipped.

        Raises:
            ValueError: If the name is reserved or already set
        """
        if name in RESERVED_PARAMS or (self._endpoint and name == "action"):
            raise ValueError(f"Parameter name '{name}' is reserved")
        if name in self._names:
            raise ValueError(f"Duplicate parameter '{name}'")
        if value is None:
            return self
        self._params.append((name, to_wire_value(value)))
        self._names.add(name)
        return self

    def set_params(self, params: Iterable[Tuple[str, Any]]) -> "RequestBuilder":
        for name, value in params:
            self.set_param(name, value)
        return self

    def build(self) -> Request:
        return Request(
            api=self._descriptor.name,
            path=self._descriptor.path,
            http_method=self._http_method,
            action=self._action,
            version=self._descriptor.version,
            params=tuple(self._params),
            sub_path=self._sub_path,
            endpoint=self._endpoint,
        )
