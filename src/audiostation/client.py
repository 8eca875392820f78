"""Async HTTP client for the Synology Audio Station web API."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Mapping, Optional

import httpx

from .dispatcher import QueryDispatcher
from .models import (
    Album,
    Artist,
    AudioStationConfig,
    ByteArrayData,
    FileTagChange,
    Folder,
    PagedResult,
    Playlist,
    SearchResults,
    Song,
    SongInfo,
)
from .registry import ApiRegistry
from .session import SessionManager
from .streaming import CancellationToken, StreamHandle
from .transform import SongAdditional, TranscodeMode, additional_fields, library_param, stream_parameters

logger = logging.getLogger(__name__)

INFO = "SYNO.AudioStation.Info"
ALBUM = "SYNO.AudioStation.Album"
ARTIST = "SYNO.AudioStation.Artist"
FOLDER = "SYNO.AudioStation.Folder"
SONG = "SYNO.AudioStation.Song"
COVER = "SYNO.AudioStation.Cover"
STREAM = "SYNO.AudioStation.Stream"
SEARCH = "SYNO.AudioStation.Search"
PLAYLIST = "SYNO.AudioStation.Playlist"

# Not listed by SYNO.API.Info; addressed directly
TAG_EDITOR_ENDPOINT = "webman/3rdparty/AudioStation/tagEditorUI/tag_editor.cgi"

# Detail blocks requested for single-song and search lookups
DETAILED_SONG_FIELDS = (SongAdditional.SONG_TAG, SongAdditional.SONG_AUDIO, SongAdditional.SONG_RATING)


class AudioStationClient:
    """Async client for Synology Audio Station.

    This client provides:
    - Lazy API discovery through SYNO.API.Info with an allow-list
    - Session login with single-flight re-authentication
    - Typed object, paged list, byte-array and streaming queries
    - Server-side transcoding selection for song streams

    Attributes:
        config: AudioStationConfig with server connection details
        http: httpx.AsyncClient shared by every call
        registry: ApiRegistry resolving logical API names
        sessions: SessionManager owning the live session
        dispatcher: QueryDispatcher running all queries

    Example:
        >>> config = AudioStationConfig(
        ...     url="https://nas.example.com:5001",
        ...     username="john",
        ...     password="secret",
        ... )
        >>> async with AudioStationClient(config) as client:
        ...     page = await client.list_songs(limit=100, offset=0)
        ...     print(f"Showing {len(page.items)} of {page.total} songs")
    """

    def __init__(self, config: AudioStationConfig, http: Optional[httpx.AsyncClient] = None):
        """Initialize Audio Station client.

        Args:
            config: AudioStationConfig with server URL and credentials
            http: Optional pre-configured httpx.AsyncClient (base_url must
                point at the DSM root); one is created and owned otherwise
        """
        self.config = config
        self._base_url = config.url.rstrip("/")
        self._owns_http = http is None
        self.http = http if http is not None else self._create_http_client()

        self.registry = ApiRegistry(
            self.http,
            config.apis,
            api_versions=config.api_versions,
            timeout=config.timeout,
        )
        self.sessions = SessionManager(self.http, self.registry, config)
        self.dispatcher = QueryDispatcher(self.http, self.registry, self.sessions, config.timeout)

        logger.info(f"Initialized Audio Station client for {self._base_url}")

    def _create_http_client(self) -> httpx.AsyncClient:
        options = dict(
            base_url=self._base_url,
            timeout=httpx.Timeout(
                connect=30.0,
                read=60.0,  # long reads for covers and streams
                write=30.0,
                pool=5.0,
            ),
            limits=httpx.Limits(
                max_connections=100,
                max_keepalive_connections=20,
                keepalive_expiry=5.0,
            ),
            verify=self.config.verify_ssl,
            follow_redirects=True,
        )
        # HTTP/2 needs the optional h2 package
        try:
            return httpx.AsyncClient(http2=True, **options)
        except ImportError:
            logger.debug("HTTP/2 not available, using HTTP/1.1")
            return httpx.AsyncClient(**options)

    async def connect(self) -> None:
        """Discover the server's APIs and log in.

        Raises:
            AuthenticationError: If credentials are invalid
            UnsupportedApiError: If SYNO.API.Auth is unavailable
        """
        await self.registry.discover()
        await self.sessions.ensure_authenticated()

    async def close(self) -> None:
        """Log out and release the HTTP client if this instance created it."""
        try:
            if self.sessions.session is not None and self.sessions.session.valid:
                await self.sessions.logout()
        finally:
            if self._owns_http:
                await self.http.aclose()
            logger.info("Closed Audio Station client")

    async def __aenter__(self) -> "AudioStationClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _library(self):
        return library_param(self.config.personal_music_only)

    # Info

    async def get_server_info(self) -> Dict[str, Any]:
        """Get Audio Station settings and capabilities for the current user."""
        return await self.dispatcher.query_object(INFO, "getinfo", shape=dict)

    # Folders

    async def list_folders(self, limit: int, offset: int, folder_id: Optional[str] = None) -> PagedResult:
        """List child folders of ``folder_id`` (the roots when omitted); not recursive."""
        params = [self._library(), ("id", folder_id or None)]
        return await self.dispatcher.query_list(
            FOLDER, "list", limit, offset, params, item_key="items", shape=Folder
        )

    # Artists

    async def list_artists(self, limit: int, offset: int) -> PagedResult:
        return await self.dispatcher.query_list(
            ARTIST, "list", limit, offset, [self._library()], item_key="artists", shape=Artist
        )

    async def get_artist_cover(self, artist: str) -> ByteArrayData:
        return await self.dispatcher.query_bytes(
            COVER, "getcover", [self._library(), ("artist_name", artist)]
        )

    # Albums

    async def list_albums(
        self,
        limit: int,
        offset: int,
        artist: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> PagedResult:
        """List albums, optionally filtered by artist and extra query filters.

        Args:
            limit: Maximum number of items to return
            offset: Start position in the list
            artist: Filter by artist name
            filters: Extra filter parameters (e.g., {"sort_by": "year"})

        Returns:
            PagedResult of Album
        """
        params = [*(filters or {}).items(), self._library(), ("artist", artist or None)]
        return await self.dispatcher.query_list(
            ALBUM, "list", limit, offset, params, item_key="albums", shape=Album
        )

    async def get_album_cover(self, artist: str, album: str) -> ByteArrayData:
        return await self.dispatcher.query_bytes(
            COVER, "getcover", [("album_name", album), ("album_artist_name", artist)]
        )

    # Songs

    async def list_songs(
        self,
        limit: int,
        offset: int,
        additional: Iterable[SongAdditional] = (),
        filters: Optional[Mapping[str, Any]] = None,
    ) -> PagedResult:
        """List songs.

        Args:
            limit: Maximum number of items to return
            offset: Start position in the list
            additional: Detail blocks to load for each song
            filters: Extra filter parameters (e.g., {"album": "Abbey Road"})

        Returns:
            PagedResult of Song
        """
        params = [
            *(filters or {}).items(),
            self._library(),
            ("additional", additional_fields(additional)),
        ]
        return await self.dispatcher.query_list(
            SONG, "list", limit, offset, params, item_key="songs", shape=Song
        )

    async def get_song(self, song_id: str) -> Optional[Song]:
        """Get one song with tag, audio and rating details.

        Returns:
            Song, or None if the server returned no entry
        """
        info = await self.dispatcher.query_object(
            SONG,
            "getinfo",
            [("id", song_id), ("additional", additional_fields(DETAILED_SONG_FIELDS))],
            shape=SongInfo,
        )
        return info.songs[0] if info.songs else None

    async def rate_song(self, song_id: str, rating: int) -> None:
        """Set song rating.

        Args:
            song_id: Song ID
            rating: Value from 0 to 5

        Raises:
            ValueError: If rating is out of range
        """
        if rating < 0 or rating > 5:
            raise ValueError("rating must be between 0 and 5")
        await self.dispatcher.query_object(SONG, "setrating", [("id", song_id), ("rating", rating)])

    # Streaming

    async def _stream_request(self, song_id: str, transcode: TranscodeMode, position: float):
        profile, params = stream_parameters(transcode, song_id, position)
        return await self.dispatcher.build_request(
            STREAM, profile.action, params, sub_path=profile.sub_path, http_method="GET"
        )

    @asynccontextmanager
    async def stream_song(
        self,
        song_id: str,
        transcode: TranscodeMode = TranscodeMode.ORIGINAL,
        position: float = 0.0,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamHandle]:
        """Open a song stream.

        Example:
            >>> async with client.stream_song("music_1", TranscodeMode.MP3_320) as stream:
            ...     async for chunk in stream:
            ...         out.write(chunk)
        """
        request = await self._stream_request(song_id, transcode, position)
        async with self.dispatcher.open_stream(request, cancel) as stream:
            yield stream

    async def download_song(
        self,
        song_id: str,
        on_chunk: Callable[[bytes], Any],
        transcode: TranscodeMode = TranscodeMode.ORIGINAL,
        position: float = 0.0,
        cancel: Optional[CancellationToken] = None,
    ) -> int:
        """Stream a song into ``on_chunk`` and return the byte count."""
        request = await self._stream_request(song_id, transcode, position)
        total = await self.dispatcher.query_stream(request, on_chunk, cancel)
        logger.info(f"Downloaded {total} bytes for song {song_id}")
        return total

    async def get_stream_url(
        self,
        song_id: str,
        transcode: TranscodeMode = TranscodeMode.ORIGINAL,
        position: float = 0.0,
    ) -> str:
        """Get an authenticated stream URL for external players.

        The URL embeds the current session id and stops working once the
        session ends.
        """
        request = await self._stream_request(song_id, transcode, position)
        session = await self.sessions.ensure_authenticated()
        return str(request.to_httpx(self.http, session.sid).url)

    # Search

    async def search(self, keyword: str) -> SearchResults:
        return await self.dispatcher.query_object(
            SEARCH,
            "list",
            [("additional", additional_fields(DETAILED_SONG_FIELDS)), ("keyword", keyword)],
            shape=SearchResults,
        )

    # Playlists

    async def list_playlists(self, limit: int, offset: int) -> PagedResult:
        return await self.dispatcher.query_list(
            PLAYLIST, "list", limit, offset, [self._library()], item_key="playlists", shape=Playlist
        )

    async def get_playlist(
        self,
        playlist_id: str,
        limit: int,
        offset: int,
        additional: Iterable[SongAdditional] = (),
    ) -> Optional[Playlist]:
        """Get a playlist with its songs.

        Args:
            playlist_id: Playlist ID
            limit: Maximum number of playlists in the window (usually 1)
            offset: Start position
            additional: Detail blocks to load for each song in the playlist

        Returns:
            Playlist (songs under ``additional["songs"]``), or None
        """
        fields = additional_fields(additional, prefix="songs_") or "songs"
        page = await self.dispatcher.query_list(
            PLAYLIST,
            "getinfo",
            limit,
            offset,
            [self._library(), ("id", playlist_id), ("additional", fields)],
            item_key="playlists",
            shape=Playlist,
        )
        return page.items[0] if page.items else None

    async def add_songs_to_playlist(self, playlist_id: str, song_ids: Iterable[str]) -> None:
        await self.dispatcher.query_object(
            PLAYLIST,
            "updatesongs",
            [("id", playlist_id), ("offset", -1), ("limit", 0), ("songs", list(song_ids))],
        )

    async def remove_songs_from_playlist(self, playlist_id: str, start_index: int, count: int) -> None:
        """Remove ``count`` songs starting at ``start_index``.

        The API cannot remove songs by ID; query the playlist first to find
        their positions.
        """
        await self.dispatcher.query_object(
            PLAYLIST,
            "updatesongs",
            [("id", playlist_id), ("offset", start_index), ("limit", count), ("songs", "")],
        )

    # Tags

    async def get_song_file_tags(self, paths: Iterable[str]) -> Dict[str, Any]:
        """Load the tags stored in music files through the tag editor.

        Args:
            paths: Internal file paths, using forward slashes

        Returns:
            Raw tag editor payload

        Raises:
            ValueError: If no path is given or a path contains a back-slash
        """
        paths = list(paths)
        if not paths:
            raise ValueError("At least one path is required")
        if any("\\" in path for path in paths):
            raise ValueError("Invalid path. Paths must use forward slashes '/', not back-slashes '\\'")

        return await self.dispatcher.query_endpoint(
            TAG_EDITOR_ENDPOINT,
            "load",
            [("audioInfos", json.dumps([{"path": path} for path in paths])), ("requestFrom", "")],
            shape=dict,
        )

    async def set_song_file_tags(self, change: FileTagChange) -> Any:
        """Write tags to one or more music files.

        Raises:
            ValueError: If the change names no files
        """
        if change is None or not change.audio_infos:
            raise ValueError("change.audio_infos must name at least one file")

        logger.info(f"Writing tags to {len(change.audio_infos)} file(s)")
        return await self.dispatcher.query_endpoint(
            TAG_EDITOR_ENDPOINT,
            "apply",
            [("data", json.dumps([change.to_wire()]))],
        )
