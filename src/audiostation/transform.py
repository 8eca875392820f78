"""Pure mappings from client-side selectors to wire parameters."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

# Decimal places kept for stream start positions
POSITION_PRECISION = 4


class TranscodeMode(Enum):
    """Server-side transcoding applied to a streamed song."""

    ORIGINAL = "original"
    MP3_128 = "mp3_128"
    MP3_192 = "mp3_192"
    MP3_256 = "mp3_256"
    MP3_320 = "mp3_320"
    WAV = "wav"


@dataclass(frozen=True)
class TranscodeProfile:
    """Wire parameters for one transcode mode.

    Attributes:
        action: API method ("stream" or "transcode")
        sub_path: Path suffix naming the output container, if any
        format: Target format token, if any
        bitrate: Target bitrate in bits per second, if any
    """

    action: str
    sub_path: Optional[str] = None
    format: Optional[str] = None
    bitrate: Optional[int] = None


TRANSCODE_PROFILES = {
    TranscodeMode.ORIGINAL: TranscodeProfile(action="stream"),
    TranscodeMode.MP3_128: TranscodeProfile("transcode", "/0.mp3", "mp3", 128000),
    TranscodeMode.MP3_192: TranscodeProfile("transcode", "/0.mp3", "mp3", 192000),
    TranscodeMode.MP3_256: TranscodeProfile("transcode", "/0.mp3", "mp3", 256000),
    TranscodeMode.MP3_320: TranscodeProfile("transcode", "/0.mp3", "mp3", 320000),
    TranscodeMode.WAV: TranscodeProfile("transcode", "/0.wav", "wav"),
}


def format_position(seconds: float) -> str:
    """Format a start position with fixed precision and invariant notation.

    Examples:
        >>> format_position(12.5)
        '12.5'
        >>> format_position(90.123456)
        '90.1235'
        >>> format_position(30.0)
        '30'
    """
    text = f"{round(seconds, POSITION_PRECISION):.{POSITION_PRECISION}f}"
    return text.rstrip("0").rstrip(".")


def stream_parameters(
    mode: TranscodeMode, song_id: str, position: float = 0.0
) -> Tuple[TranscodeProfile, List[Tuple[str, str]]]:
    """Map a transcode mode and start position to stream request parameters.

    Args:
        mode: Requested transcoding
        song_id: Song to stream
        position: Start position in seconds (sent only when positive)

    Returns:
        (profile, ordered parameter pairs)
    """
    profile = TRANSCODE_PROFILES[mode]
    params = [("id", song_id)]
    if profile.format:
        params.append(("format", profile.format))
    if position > 0:
        params.append(("position", format_position(position)))
    if profile.bitrate:
        params.append(("bitrate", str(profile.bitrate)))
    return profile, params


class SongAdditional(Enum):
    """Optional song detail blocks, in the order they are sent."""

    SONG_AUDIO = "song_audio"
    SONG_RATING = "song_rating"
    SONG_TAG = "song_tag"


def additional_fields(fields: Iterable[SongAdditional], prefix: str = "") -> Optional[str]:
    """Join requested detail blocks in declared order.

    Args:
        fields: Requested blocks (any order, duplicates ignored)
        prefix: Prefix for each token (e.g., "songs_" for playlists)

    Returns:
        Comma-joined tokens, or None when nothing is requested

    Examples:
        >>> additional_fields({SongAdditional.SONG_TAG, SongAdditional.SONG_AUDIO})
        'song_audio,song_tag'
        >>> additional_fields([SongAdditional.SONG_RATING], prefix="songs_")
        'songs_song_rating'
    """
    requested = set(fields)
    tokens = [f"{prefix}{field.value}" for field in SongAdditional if field in requested]
    return ",".join(tokens) if tokens else None


def library_param(personal_music_only: bool) -> Tuple[str, str]:
    return ("library", "personal" if personal_music_only else "all")
