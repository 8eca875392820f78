"""Data models for Audio Station API integration."""

import os
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")

AUTH_API = "SYNO.API.Auth"
INFO_API = "SYNO.API.Info"

# APIs the client is willing to use unless configured otherwise
DEFAULT_APIS: Tuple[str, ...] = (
    AUTH_API,
    "SYNO.AudioStation.Info",
    "SYNO.AudioStation.Album",
    "SYNO.AudioStation.Composer",
    "SYNO.AudioStation.Genre",
    "SYNO.AudioStation.Artist",
    "SYNO.AudioStation.Folder",
    "SYNO.AudioStation.Song",
    "SYNO.AudioStation.Cover",
    "SYNO.AudioStation.Stream",
    "SYNO.AudioStation.Search",
    "SYNO.AudioStation.Lyrics",
    "SYNO.AudioStation.Playlist",
)

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class AudioStationConfig:
    """Configuration for connecting to a Synology Audio Station server.

    Attributes:
        url: Base DSM URL (e.g., "https://nas.example.com:5001")
        username: DSM account name
        password: DSM account password
        session_name: Session name passed to SYNO.API.Auth
        apis: Allow-list of logical API names the client may resolve
        api_versions: Optional version pins per logical API name
        personal_music_only: Restrict queries to the personal library
        verify_ssl: Verify TLS certificates
        timeout: Default per-call timeout in seconds (None disables)
    """

    url: str
    username: str
    password: str
    session_name: str = "AudioStation"
    apis: Tuple[str, ...] = DEFAULT_APIS
    api_versions: Dict[str, int] = field(default_factory=dict)
    personal_music_only: bool = False
    verify_ssl: bool = True
    timeout: Optional[float] = 30.0

    def __post_init__(self):
        """Validate configuration on initialization."""
        if not self.url or not self.url.startswith(("http://", "https://")):
            raise ValueError("url must be a valid HTTP/HTTPS URL")
        if not self.username:
            raise ValueError("username is required")
        if not self.password:
            raise ValueError("password is required")
        if not self.apis:
            raise ValueError("apis allow-list must not be empty")
        self.apis = tuple(self.apis)

        if not self.url.startswith("https://"):
            warnings.warn(
                "Using HTTP instead of HTTPS for Audio Station connection. "
                "Credentials will be transmitted insecurely.",
                UserWarning,
                stacklevel=2,
            )

    @classmethod
    def from_environment(cls) -> "AudioStationConfig":
        """Load configuration from environment variables.

        Returns:
            AudioStationConfig: Loaded configuration object

        Raises:
            EnvironmentError: If required environment variables are missing
        """
        required = {
            "AUDIOSTATION_URL": os.getenv("AUDIOSTATION_URL"),
            "AUDIOSTATION_USER": os.getenv("AUDIOSTATION_USER"),
            "AUDIOSTATION_PASSWORD": os.getenv("AUDIOSTATION_PASSWORD"),
        }
        missing = [var for var, value in required.items() if not value]
        if missing:
            raise EnvironmentError(
                f"Required environment variables missing: {', '.join(missing)}\n"
                f"Example: export AUDIOSTATION_URL='https://nas.example.com:5001'"
            )

        kwargs: Dict[str, Any] = {}
        apis = os.getenv("AUDIOSTATION_APIS")
        if apis:
            kwargs["apis"] = tuple(name.strip() for name in apis.split(",") if name.strip())
        timeout = os.getenv("AUDIOSTATION_TIMEOUT")
        if timeout:
            kwargs["timeout"] = float(timeout)

        return cls(
            url=required["AUDIOSTATION_URL"],
            username=required["AUDIOSTATION_USER"],
            password=required["AUDIOSTATION_PASSWORD"],
            personal_music_only=os.getenv("AUDIOSTATION_PERSONAL_ONLY", "false").lower() in _TRUE_VALUES,
            verify_ssl=os.getenv("AUDIOSTATION_VERIFY_SSL", "true").lower() in _TRUE_VALUES,
            **kwargs,
        )


@dataclass(frozen=True)
class ApiDescriptor:
    """Resolved endpoint for one logical API name.

    Attributes:
        name: Logical API name (e.g., "SYNO.AudioStation.Song")
        path: CGI path below /webapi/ (e.g., "AudioStation/song.cgi")
        version: Version the client speaks
        min_version: Lowest version advertised by the server
        max_version: Highest version advertised by the server
    """

    name: str
    path: str
    version: int
    min_version: int
    max_version: int


@dataclass
class Session:
    """Authenticated DSM session.

    Attributes:
        sid: Session id stamped on every request as ``_sid``
        account: Account that owns the session
        generation: Login attempt that produced this session
        created_at: Login timestamp
        valid: False once logged out or rejected by the server
    """

    sid: str
    account: str
    generation: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    valid: bool = True

    def invalidate(self) -> None:
        self.valid = False

    def __repr__(self) -> str:
        return f"Session(account={self.account!r}, generation={self.generation}, valid={self.valid})"


@dataclass
class Envelope:
    """Decoded ``{"success": ..., "data": ..., "error": ...}`` wrapper."""

    success: bool
    data: Any = None
    error_code: Optional[int] = None
    error_details: Any = None


@dataclass
class PagedResult(Generic[T]):
    """One offset/limit window of a list query.

    Attributes:
        total: Total number of items on the server
        offset: Offset of the first item in ``items``
        items: Decoded items (never more than the requested limit)
    """

    total: int
    offset: int
    items: List[T] = field(default_factory=list)


@dataclass
class ByteArrayData:
    """Raw binary payload returned by byte-array queries."""

    data: bytes
    content_type: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class Folder:
    """Folder entry from SYNO.AudioStation.Folder list."""

    id: str
    title: str
    path: str = ""
    type: str = "folder"
    is_personal: bool = False


@dataclass
class Artist:
    """Artist entry from SYNO.AudioStation.Artist list."""

    name: str
    additional: Optional[Dict[str, Any]] = None


@dataclass
class Album:
    """Album entry from SYNO.AudioStation.Album list."""

    name: str
    artist: str = ""
    album_artist: str = ""
    display_artist: str = ""
    year: int = 0
    additional: Optional[Dict[str, Any]] = None


@dataclass
class Song:
    """Song entry from SYNO.AudioStation.Song list/getinfo."""

    id: str
    title: str
    path: str = ""
    type: str = "file"
    additional: Optional[Dict[str, Any]] = None


@dataclass
class SongInfo:
    """Payload of SYNO.AudioStation.Song getinfo."""

    songs: List[Song] = field(default_factory=list)


@dataclass
class Playlist:
    """Playlist entry from SYNO.AudioStation.Playlist."""

    id: str
    name: str
    library: str = ""
    type: str = "normal"
    path: str = ""
    sharing_status: str = ""
    additional: Optional[Dict[str, Any]] = None


@dataclass
class SearchResults:
    """Payload of SYNO.AudioStation.Search list.

    The server reports counts as ``albumTotal``, ``artistTotal`` and
    ``songTotal``; they are decoded into the snake_case attributes below.
    """

    albums: List[Album] = field(default_factory=list)
    album_total: int = field(default=0, metadata={"wire": "albumTotal"})
    artists: List[Artist] = field(default_factory=list)
    artist_total: int = field(default=0, metadata={"wire": "artistTotal"})
    songs: List[Song] = field(default_factory=list)
    song_total: int = field(default=0, metadata={"wire": "songTotal"})


@dataclass
class FileTagChange:
    """Batch edit for the Audio Station tag editor.

    Attributes:
        audio_infos: Files to edit, one ``{"path": ...}`` object per file
        tags: Tag values to write, keyed by tag editor field name
            (e.g. "title", "artist", "album", "year")
    """

    audio_infos: List[Dict[str, str]] = field(default_factory=list)
    tags: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_paths(cls, paths: List[str], **tags: Any) -> "FileTagChange":
        return cls(audio_infos=[{"path": path} for path in paths], tags=tags)

    def to_wire(self) -> Dict[str, Any]:
        return {**self.tags, "audioInfos": self.audio_infos}
