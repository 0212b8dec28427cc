"""
Lyric Status

Mirrors the currently playing Spotify lyric line into a Discord custom status.

Features:
- LRC parsing and active-line lookup with a forward-moving cursor
- Lyrics cache with per-entry TTL
- Diff + rate gate in front of the status provider
- Fail-soft tick orchestration, serialized by a depth-1 trigger queue

Usage:
    from lyricstatus import (
        StatusEngine, EngineSettings, SpotifyMonitor, LrclibClient, DiscordStatusSink
    )

    engine = StatusEngine(
        EngineSettings(),
        SpotifyMonitor(client_id, client_secret, refresh_token),
        LrclibClient(),
        DiscordStatusSink(user_token),
    )
    engine.run()
"""

from .domain_types import (
    LyricLine, LyricTimeline, TimelineKind, PlaybackSnapshot,
    LyricsResult, LyricsState, TimelineCursor,
    parse_lrc, parse_synced, plain_to_timed, get_active_line_index, line_at,
    truncate_status, primary_artist, cache_key,
    LyricStatusError, ConfigError, LyricsParseError,
    PlaybackSourceError, PlaybackTransientError, PlaybackAuthExpiredError,
    StatusSinkError, StatusAuthError, StatusTransientError,
)
from .infra import Config, EngineSettings, ServiceHealth, setup_logging
from .services import LyricCache, LyricResolver, UpdateGate, GateState
from .orchestrators import SyncOrchestrator, SyncState, TickAction, TickResult
from .adapters import LrclibClient, SpotifyMonitor, DiscordStatusSink, LogStatusSink
from .engine import StatusEngine, main

__version__ = "1.0.0"
