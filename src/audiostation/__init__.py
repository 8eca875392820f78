"""Async client for the Synology Audio Station web API."""

__version__ = "1.0.0"

from .client import AudioStationClient
from .dispatcher import QueryDispatcher
from .exceptions import (
    ApiError,
    AudioStationError,
    AuthenticationError,
    DecodeError,
    RequestTimeoutError,
    SessionExpiredError,
    StreamCancelledError,
    UnsupportedApiError,
)
from .logger import setup_logging
from .models import (
    Album,
    ApiDescriptor,
    Artist,
    AudioStationConfig,
    ByteArrayData,
    Envelope,
    FileTagChange,
    Folder,
    PagedResult,
    Playlist,
    SearchResults,
    Session,
    Song,
)
from .registry import ApiRegistry
from .request import Request, RequestBuilder
from .session import SessionManager
from .streaming import CancellationToken, StreamHandle
from .transform import SongAdditional, TranscodeMode

__all__ = [
    # Client
    "AudioStationClient",
    "ApiRegistry",
    "SessionManager",
    "QueryDispatcher",
    "Request",
    "RequestBuilder",
    "CancellationToken",
    "StreamHandle",
    "setup_logging",
    # Models
    "AudioStationConfig",
    "ApiDescriptor",
    "Session",
    "Envelope",
    "PagedResult",
    "ByteArrayData",
    "Folder",
    "Artist",
    "Album",
    "Song",
    "Playlist",
    "SearchResults",
    "FileTagChange",
    "SongAdditional",
    "TranscodeMode",
    # Exceptions
    "AudioStationError",
    "ApiError",
    "SessionExpiredError",
    "AuthenticationError",
    "UnsupportedApiError",
    "DecodeError",
    "RequestTimeoutError",
    "StreamCancelledError",
]
