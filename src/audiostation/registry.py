"""Capability discovery and endpoint resolution.

The server advertises its APIs through SYNO.API.Info. The registry queries
it once, lazily, for the configured allow-list and caches one ApiDescriptor
per logical name for its whole lifetime.
"""

import asyncio
import logging
from typing import Dict, Mapping, Optional, Sequence

import httpx

from .envelope import decode_envelope, raise_for_envelope
from .exceptions import DecodeError, UnsupportedApiError
from .models import INFO_API, ApiDescriptor
from .request import RequestBuilder
from .transport import send_request

logger = logging.getLogger(__name__)

# SYNO.API.Info lives at a fixed path and version on every DSM release
INFO_DESCRIPTOR = ApiDescriptor(name=INFO_API, path="query.cgi", version=1, min_version=1, max_version=1)


class ApiRegistry:
    """Maps logical API names to the versioned paths the server advertises.

    Attributes:
        allowed_apis: Logical names the client is willing to use

    Example:
        >>> registry = ApiRegistry(http, ["SYNO.API.Auth", "SYNO.AudioStation.Song"])
        >>> descriptor = await registry.resolve("SYNO.AudioStation.Song")
        >>> descriptor.path
        'AudioStation/song.cgi'
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        allowed_apis: Sequence[str],
        api_versions: Optional[Mapping[str, int]] = None,
        timeout: Optional[float] = None,
    ):
        self._http = http
        self.allowed_apis = tuple(dict.fromkeys(allowed_apis))
        self._api_versions = dict(api_versions or {})
        self._timeout = timeout
        self._advertised: Optional[Dict[str, dict]] = None
        self._descriptors: Dict[str, ApiDescriptor] = {}
        self._lock = asyncio.Lock()

    @property
    def is_discovered(self) -> bool:
        return self._advertised is not None

    @property
    def descriptors(self) -> Dict[str, ApiDescriptor]:
        """Descriptors resolved so far, keyed by logical name."""
        return dict(self._descriptors)

    async def discover(self) -> Dict[str, dict]:
        """Query SYNO.API.Info once and return the advertised capability set.

        Concurrent callers share a single discovery call. A failed discovery
        is not cached, so the next call retries it.

        Returns:
            Mapping of advertised API name to its raw info (path, versions)

        Raises:
            ApiError: If the server rejects the query
            DecodeError: If the response is malformed
        """
        if self._advertised is not None:
            return self._advertised

        async with self._lock:
            if self._advertised is not None:
                return self._advertised

            request = (
                RequestBuilder(INFO_DESCRIPTOR, "query", http_method="GET")
                .set_param("query", list(self.allowed_apis))
                .build()
            )
            logger.debug(f"Discovering APIs: {', '.join(self.allowed_apis)}")
            response = await send_request(self._http, request, timeout=self._timeout)
            response.raise_for_status()
            envelope = decode_envelope(response.content)
            raise_for_envelope(envelope)

            if not isinstance(envelope.data, dict):
                raise DecodeError("SYNO.API.Info data is not an object")

            advertised = {
                name: info
                for name, info in envelope.data.items()
                if name in self.allowed_apis and isinstance(info, dict)
            }
            missing = [name for name in self.allowed_apis if name not in advertised]
            if missing:
                logger.warning(f"Server does not advertise allow-listed APIs: {', '.join(missing)}")

            self._advertised = advertised
            logger.info(f"Discovered {len(advertised)} of {len(self.allowed_apis)} allow-listed APIs")
            return advertised

    async def resolve(self, name: str) -> ApiDescriptor:
        """Resolve a logical API name to its descriptor.

        Args:
            name: Logical API name (e.g., "SYNO.AudioStation.Song")

        Returns:
            Cached ApiDescriptor

        Raises:
            UnsupportedApiError: If the name is not allow-listed, not
                advertised, or pinned to a version the server lacks
        """
        descriptor = self._descriptors.get(name)
        if descriptor is not None:
            return descriptor

        if name not in self.allowed_apis:
            raise UnsupportedApiError(name, "not in the configured allow-list")

        advertised = await self.discover()
        info = advertised.get(name)
        if info is None:
            raise UnsupportedApiError(name, "not advertised by the server")

        descriptor = self._build_descriptor(name, info)
        self._descriptors[name] = descriptor
        logger.debug(f"Resolved {name} -> {descriptor.path} v{descriptor.version}")
        return descriptor

    def _build_descriptor(self, name: str, info: dict) -> ApiDescriptor:
        try:
            path = info["path"]
            min_version = int(info.get("minVersion", 1))
            max_version = int(info["maxVersion"])
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Malformed capability entry for {name}: {info!r}") from e

        version = self._api_versions.get(name, max_version)
        if not min_version <= version <= max_version:
            raise UnsupportedApiError(
                name, f"version {version} outside advertised range {min_version}-{max_version}"
            )
        return ApiDescriptor(
            name=name,
            path=path,
            version=version,
            min_version=min_version,
            max_version=max_version,
        )
