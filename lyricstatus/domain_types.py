"""
Domain Models and Pure Functions

Immutable data structures and stateless functions for lyric timelines,
playback snapshots and status text. No I/O happens here.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


# Discord custom status limit
MAX_STATUS_LENGTH = 128
ELLIPSIS = "..."

LYRIC_MARKER = "♪ "
TITLE_MARKER = "🎵 "

LRC_TAG = re.compile(r'\[(\d{2}):(\d{2})\.(\d{2})\](.*)')
ARTIST_DELIMITER = re.compile(r'\s*[,;]\s*')


# =============================================================================
# ERRORS
# =============================================================================

class LyricStatusError(Exception):
    """Base exception for lyricstatus."""
    pass


class ConfigError(LyricStatusError):
    """Missing or invalid configuration."""
    pass


class LyricsParseError(LyricStatusError):
    """Lyric document could not be parsed."""
    pass


class PlaybackSourceError(LyricStatusError):
    """Playback provider could not be queried."""
    pass


class PlaybackTransientError(PlaybackSourceError):
    """Rate limited or network failure. Retry on a later tick."""
    pass


class PlaybackAuthExpiredError(PlaybackSourceError):
    """Access token expired or was rejected."""
    pass


class StatusSinkError(LyricStatusError):
    """Status provider rejected or failed an update."""
    pass


class StatusAuthError(StatusSinkError):
    """Status token invalid."""
    pass


class StatusTransientError(StatusSinkError):
    """Network failure or non-auth error from the status provider."""
    pass


# =============================================================================
# IMMUTABLE DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class LyricLine:
    """A single cue: playback offset in milliseconds and its text."""
    offset_ms: int
    text: str


class TimelineKind(Enum):
    """Where a timeline came from."""
    SYNCED = "synced"
    PLAIN = "plain"
    INSTRUMENTAL = "instrumental"


@dataclass(frozen=True)
class LyricTimeline:
    """
    Ordered cues for one track. Immutable.

    An empty timeline is a valid state of its own ("we looked, there is
    nothing to show"), distinct from having no timeline at all.
    """
    lines: Tuple[LyricLine, ...] = ()
    kind: TimelineKind = TimelineKind.SYNCED

    def __len__(self) -> int:
        return len(self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @classmethod
    def instrumental(cls) -> 'LyricTimeline':
        return cls(lines=(), kind=TimelineKind.INSTRUMENTAL)


@dataclass(frozen=True)
class PlaybackSnapshot:
    """One reading of the playback provider."""
    identity: str
    title: str
    artists: str
    duration_ms: int = 0
    progress_ms: int = 0
    is_playing: bool = False


class LyricsState(Enum):
    SYNCED = "synced"
    PLAIN = "plain"
    INSTRUMENTAL = "instrumental"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class LyricsResult:
    """
    Lyrics provider answer. Exactly one state; `text` carries the synced
    or plain document for the states that have one.

    Usage:
        result = LyricsResult.synced("[00:01.00]Hello")
        if result.state is LyricsState.SYNCED: ...
    """
    state: LyricsState
    text: str = ""

    @classmethod
    def synced(cls, text: str) -> 'LyricsResult':
        return cls(LyricsState.SYNCED, text)

    @classmethod
    def plain(cls, text: str) -> 'LyricsResult':
        return cls(LyricsState.PLAIN, text)

    @classmethod
    def instrumental(cls) -> 'LyricsResult':
        return cls(LyricsState.INSTRUMENTAL)

    @classmethod
    def not_found(cls) -> 'LyricsResult':
        return cls(LyricsState.NOT_FOUND)


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def parse_lrc(lrc_text: Optional[str]) -> LyricTimeline:
    """
    Parse LRC lyrics into a timeline. Pure function.

    LRC Format: [mm:ss.xx]Lyric text
    Lines without a tag, or with nothing after the tag, are skipped.
    Document order is kept as-is (no sorting).
    """
    if lrc_text is None:
        return LyricTimeline()
    if not isinstance(lrc_text, str):
        raise LyricsParseError(f"Expected LRC text, got {type(lrc_text).__name__}")

    lines = []
    for raw_line in lrc_text.splitlines():
        match = LRC_TAG.match(raw_line.strip())
        if not match:
            continue
        minutes, seconds, centis, text = match.groups()
        text = text.strip()
        if text:
            offset_ms = int(minutes) * 60000 + int(seconds) * 1000 + int(centis) * 10
            lines.append(LyricLine(offset_ms=offset_ms, text=text))

    return LyricTimeline(lines=tuple(lines), kind=TimelineKind.SYNCED)


def parse_synced(lrc_text: Optional[str]) -> LyricTimeline:
    """
    parse_lrc() for a document the provider labelled as synced.
    Raises LyricsParseError when non-blank text yields no cue at all.
    """
    timeline = parse_lrc(lrc_text)
    if timeline.is_empty and lrc_text and lrc_text.strip():
        raise LyricsParseError("no [mm:ss.xx] timestamped lines")
    return timeline


def plain_to_timed(plain_text: Optional[str], duration_ms: int) -> LyricTimeline:
    """
    Spread plain lyrics evenly across the track duration.

    Line i of n starts at round(i * duration / n). A rough approximation,
    only used when no synced lyrics exist.
    """
    texts = [line.strip() for line in (plain_text or "").splitlines()]
    texts = [text for text in texts if text]
    if not texts:
        return LyricTimeline(kind=TimelineKind.PLAIN)

    count = len(texts)
    duration_ms = max(0, duration_ms)
    lines = tuple(
        LyricLine(offset_ms=round(i * duration_ms / count), text=text)
        for i, text in enumerate(texts)
    )
    return LyricTimeline(lines=lines, kind=TimelineKind.PLAIN)


def get_active_line_index(timeline: Optional[LyricTimeline], progress_ms: float) -> int:
    """
    Index of the most recent cue at or before progress_ms. Pure function.
    Returns -1 before the first cue or for an empty timeline.
    Scans in document order and stops at the first cue in the future.
    """
    if not timeline:
        return -1

    active = -1
    for i, line in enumerate(timeline.lines):
        if line.offset_ms <= progress_ms:
            active = i
        else:
            break
    return active


def line_at(timeline: Optional[LyricTimeline], progress_ms: float) -> Optional[str]:
    """Text of the active cue at progress_ms, or None."""
    index = get_active_line_index(timeline, progress_ms)
    if index < 0:
        return None
    return timeline.lines[index].text


def truncate_status(text: str, prefix: str = "", max_length: int = MAX_STATUS_LENGTH) -> str:
    """
    Prefix text with a marker and fit it into max_length characters.
    Overlong text loses its tail to an ellipsis; the result never exceeds
    max_length.
    """
    room = max_length - len(prefix)
    if len(text) > room:
        return prefix + text[:max(0, room - len(ELLIPSIS))] + ELLIPSIS
    return prefix + text


def primary_artist(artists: str) -> str:
    """First artist of a comma or semicolon separated list."""
    if not artists:
        return ""
    return ARTIST_DELIMITER.split(artists.strip(), maxsplit=1)[0]


def cache_key(title: str, artists: str) -> str:
    """
    Case-insensitive key for a title/artist pair.
    The title is length-prefixed so no two pairs share a key.
    """
    title = (title or "").lower()
    artists = (artists or "").lower()
    return f"{len(title)}:{title}::{artists}"


# =============================================================================
# CURSOR - Incremental lookup for a forward-moving playhead
# =============================================================================

class TimelineCursor:
    """
    Remembers the last active index so that repeated lookups with a
    growing progress only walk the cues passed since the previous call.

    Gives the same answer as get_active_line_index(). A progress value
    smaller than the previous one (a seek backwards) restarts from the top.
    """

    def __init__(self, timeline: Optional[LyricTimeline] = None):
        self._timeline = timeline
        self._index = -1
        self._last_progress: Optional[float] = None

    def reset(self, timeline: Optional[LyricTimeline] = None) -> None:
        self._timeline = timeline
        self._index = -1
        self._last_progress = None

    def seek(self, progress_ms: float) -> int:
        """Move to progress_ms and return the active index."""
        if not self._timeline:
            return -1

        if self._last_progress is None or progress_ms < self._last_progress:
            self._index = get_active_line_index(self._timeline, progress_ms)
        else:
            lines = self._timeline.lines
            # Stop at the first future cue, same as the full scan
            while self._index + 1 < len(lines) and lines[self._index + 1].offset_ms <= progress_ms:
                self._index += 1
        self._last_progress = progress_ms
        return self._index

    def line_at(self, progress_ms: float) -> Optional[str]:
        index = self.seek(progress_ms)
        if index < 0:
            return None
        return self._timeline.lines[index].text
