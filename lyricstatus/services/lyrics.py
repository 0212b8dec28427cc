"""
Lyrics services - timeline cache and resolver.

LyricCache:
    cache.get(title, artists) → LyricTimeline | None
    cache.set(title, artists, timeline)
    cache.clear()

LyricResolver hides the lookup order:
    cache hit → provider (synced → plain → instrumental) → None

    resolver.resolve(title, artists, duration_ms) → LyricTimeline | None

Never raises. Misses are not cached, so a track that LRCLIB learns about
later can still be found on a later play.
"""

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Protocol

from ..domain_types import (
    LyricTimeline, LyricsResult, LyricsState, LyricsParseError,
    cache_key, parse_synced, plain_to_timed, primary_artist,
)

logger = logging.getLogger('lyricstatus')

DEFAULT_TTL_MS = 600_000


def wall_ms() -> float:
    return time.time() * 1000.0


class LyricsProvider(Protocol):
    """Anything that can look lyrics up by metadata."""

    def fetch_by_metadata(self, title: str, artist: str, duration_ms: int) -> LyricsResult:
        ...


# =============================================================================
# CACHE
# =============================================================================

@dataclass(frozen=True)
class CacheEntry:
    key: str
    timeline: LyricTimeline
    created_at: float


class LyricCache:
    """
    In-memory timeline cache with a fixed TTL per entry.

    Expired entries are dropped lazily when read. No size bound: a single
    listener only plays so many distinct tracks per process lifetime.
    When disabled, get/set do nothing.
    """

    def __init__(self, ttl_ms: float = DEFAULT_TTL_MS, enabled: bool = True,
                 clock: Callable[[], float] = wall_ms):
        self.ttl_ms = ttl_ms
        self._enabled = enabled
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value
        if not value:
            self.clear()

    def get(self, title: str, artists: str) -> Optional[LyricTimeline]:
        if not self._enabled:
            return None

        key = cache_key(title, artists)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.created_at > self.ttl_ms:
                del self._entries[key]
                return None
            return entry.timeline

    def set(self, title: str, artists: str, timeline: LyricTimeline) -> None:
        if not self._enabled:
            return

        key = cache_key(title, artists)
        with self._lock:
            self._entries[key] = CacheEntry(key=key, timeline=timeline, created_at=self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()


# =============================================================================
# RESOLVER
# =============================================================================

class LyricResolver:
    """
    Finds a timeline for a track.

    Dependency Injection: LyricsProvider, LyricCache.
    """

    def __init__(self, provider: LyricsProvider, cache: Optional[LyricCache] = None):
        self._provider = provider
        self._cache = cache if cache is not None else LyricCache()

    @property
    def cache(self) -> LyricCache:
        return self._cache

    def resolve(self, title: str, artists: str, duration_ms: int = 0,
                identity: str = "") -> Optional[LyricTimeline]:
        """
        Timeline for the track, or None if nothing usable was found.
        identity only labels log lines (e.g. the Spotify track id).
        """
        try:
            return self._resolve(title, artists, duration_ms, identity)
        except Exception as e:
            logger.error(f"Lyrics lookup failed for {artists} - {title}: {e}")
            return None

    def _resolve(self, title: str, artists: str, duration_ms: int,
                 identity: str) -> Optional[LyricTimeline]:
        cached = self._cache.get(title, artists)
        if cached is not None:
            logger.debug(f"Lyrics loaded from cache: {artists} - {title}")
            return cached

        logger.debug(f"Fetching lyrics from LRCLIB: {artists} - {title}")
        result = self._provider.fetch_by_metadata(title, primary_artist(artists), duration_ms)
        timeline = self._to_timeline(result, title, artists, duration_ms, identity)

        if timeline is None:
            logger.info(f"No lyrics found: {artists} - {title}")
            return None

        self._cache.set(title, artists, timeline)
        logger.debug(f"Lyrics cached: {artists} - {title} ({len(timeline)} lines, {timeline.kind.value})")
        return timeline

    def _to_timeline(self, result: LyricsResult, title: str, artists: str,
                     duration_ms: int, identity: str) -> Optional[LyricTimeline]:
        if result.state is LyricsState.SYNCED:
            try:
                return parse_synced(result.text)
            except LyricsParseError as e:
                logger.warning(f"Unparseable lyrics for {artists} - {title} [{identity or 'unknown id'}]: {e}")
                return None
        if result.state is LyricsState.PLAIN:
            logger.debug(f"Using plain lyrics as fallback: {artists} - {title}")
            return plain_to_timed(result.text, duration_ms)
        if result.state is LyricsState.INSTRUMENTAL:
            logger.debug(f"Track is instrumental: {artists} - {title}")
            return LyricTimeline.instrumental()
        if result.state is LyricsState.NOT_FOUND:
            return None
        raise ValueError(f"Unhandled lyrics state: {result.state}")
