"""
SyncOrchestrator - tick-driven controller

One tick:
    playback snapshot → track change? → resolve lyrics → active line at
    (progress + sync offset) → candidate status → UpdateGate → status sink

States:
    IDLE      no known track
    TRACKING  a track identity is current (its timeline may be None)

Every tick is fail-soft: errors are logged and the next tick runs as usual.
Ticks must not overlap; StatusEngine serializes them.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from .domain_types import (
    LyricTimeline, PlaybackSnapshot, PlaybackSourceError, PlaybackAuthExpiredError,
    TimelineCursor, truncate_status, LYRIC_MARKER, TITLE_MARKER,
)
from .infra import PollBackoff
from .services.gate import UpdateGate
from .services.lyrics import LyricResolver

logger = logging.getLogger('lyricstatus')


# =============================================================================
# COLLABORATOR PROTOCOLS
# =============================================================================

class PlaybackSource(Protocol):
    """Reads what is currently playing."""

    def fetch_current(self) -> Optional[PlaybackSnapshot]:
        """Snapshot, or None when nothing is playing. Raises PlaybackSourceError."""
        ...


class StatusSink(Protocol):
    """Where status text ends up."""

    def set_text(self, text: str) -> None:
        """Raises StatusSinkError on failure."""
        ...

    def clear(self) -> None:
        """Best-effort. Never raises."""
        ...


# =============================================================================
# TICK RESULT
# =============================================================================

class SyncState(Enum):
    IDLE = "idle"
    TRACKING = "tracking"


class TickAction(Enum):
    IDLE = "idle"              # nothing playing, nothing to do
    CLEARED = "cleared"        # playback stopped, status cleared
    PAUSED = "paused"          # track paused, tick skipped
    EMITTED = "emitted"        # status sent
    UNCHANGED = "unchanged"    # same text as before
    THROTTLED = "throttled"    # new text, but too soon after the last update
    SKIPPED = "skipped"        # playback source failed or is backing off
    FAILED = "failed"          # error inside the tick


@dataclass(frozen=True)
class TickResult:
    """What a single tick did."""
    action: TickAction
    text: str = ""
    track_changed: bool = False
    error: str = ""


# =============================================================================
# SYNC ORCHESTRATOR
# =============================================================================

class SyncOrchestrator:
    """
    Owns the current track identity, its timeline and the update gate.

    Interface:
        poll() -> TickResult          # read playback source, then tick
        tick(snapshot) -> TickResult  # advance with a given snapshot (or None)
        shutdown()                    # final best-effort clear

    Dependency Injection: LyricResolver, UpdateGate, StatusSink, PlaybackSource
    """

    def __init__(
        self,
        resolver: LyricResolver,
        gate: UpdateGate,
        sink: StatusSink,
        source: Optional[PlaybackSource] = None,
        sync_offset_ms: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._resolver = resolver
        self._gate = gate
        self._sink = sink
        self._source = source
        self._sync_offset_ms = sync_offset_ms
        self._clock = clock

        self._state = SyncState.IDLE
        self._identity: Optional[str] = None
        self._timeline: Optional[LyricTimeline] = None
        self._cursor = TimelineCursor()
        self._backoff = PollBackoff()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def current_identity(self) -> Optional[str]:
        return self._identity

    @property
    def current_timeline(self) -> Optional[LyricTimeline]:
        return self._timeline

    @property
    def gate(self) -> UpdateGate:
        return self._gate

    @property
    def sync_offset_ms(self) -> int:
        return self._sync_offset_ms

    @property
    def backoff(self) -> PollBackoff:
        return self._backoff

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def poll(self) -> TickResult:
        """Fetch a snapshot from the playback source and run one tick."""
        if self._source is None:
            raise RuntimeError("No playback source configured")

        now = self._clock()
        if self._backoff.blocked(now):
            logger.debug(f"Playback poll backing off ({self._backoff.seconds_left(now):.1f}s left)")
            return TickResult(TickAction.SKIPPED, error=self._backoff.last_error)

        try:
            snapshot = self._source.fetch_current()
        except PlaybackSourceError as e:
            # Keep the current status; no clear on a failed read
            self._backoff = self._backoff.after_failure(str(e), now)
            if isinstance(e, PlaybackAuthExpiredError):
                logger.warning(f"Spotify auth expired, will refresh: {e}")
            else:
                logger.warning(f"Playback unavailable: {e}")
            return TickResult(TickAction.SKIPPED, error=str(e))
        except Exception as e:
            self._backoff = self._backoff.after_failure(str(e), now)
            logger.error(f"Playback poll error: {e}")
            return TickResult(TickAction.SKIPPED, error=str(e))

        self._backoff = PollBackoff()
        return self.tick(snapshot)

    def tick(self, snapshot: Optional[PlaybackSnapshot]) -> TickResult:
        """Advance the state machine by one tick. Never raises."""
        try:
            return self._tick(snapshot)
        except Exception as e:
            logger.error(f"Polling cycle error: {e}")
            return TickResult(TickAction.FAILED, error=str(e))

    def candidate_text(self, snapshot: PlaybackSnapshot) -> str:
        """Status text for the snapshot against the current timeline."""
        progress = max(0, snapshot.progress_ms + self._sync_offset_ms)
        lyric = self._cursor.line_at(progress)

        if lyric is not None:
            return truncate_status(lyric, LYRIC_MARKER)
        if self._timeline is not None and not self._timeline.is_empty:
            # Intro or gap before the next cue
            return truncate_status(snapshot.title, TITLE_MARKER)
        return truncate_status(f"Listening to {snapshot.title}", TITLE_MARKER)

    def shutdown(self) -> None:
        """Forget the current track and clear the status once."""
        self._reset_track()
        self._sink.clear()

    # =========================================================================
    # PRIVATE
    # =========================================================================

    def _tick(self, snapshot: Optional[PlaybackSnapshot]) -> TickResult:
        if snapshot is None:
            if self._state is SyncState.IDLE:
                return TickResult(TickAction.IDLE)
            self._reset_track()
            self._sink.clear()
            logger.info("Playback stopped")
            return TickResult(TickAction.CLEARED)

        track_changed = snapshot.identity != self._identity
        if track_changed:
            self._start_track(snapshot)

        if not snapshot.is_playing:
            logger.debug("Track is paused")
            return TickResult(TickAction.PAUSED, track_changed=track_changed)

        text = self.candidate_text(snapshot)

        if not self._gate.changed(text):
            logger.debug("Status unchanged, skipping update")
            return TickResult(TickAction.UNCHANGED, text=text, track_changed=track_changed)

        if not self._gate.allowed():
            logger.debug("Rate limit threshold not met")
            return TickResult(TickAction.THROTTLED, text=text, track_changed=track_changed)

        self._sink.set_text(text)
        logger.info(f"Status: {text}")
        return TickResult(TickAction.EMITTED, text=text, track_changed=track_changed)

    def _start_track(self, snapshot: PlaybackSnapshot) -> None:
        logger.info(f"Track changed: {snapshot.artists} - {snapshot.title}")
        self._gate.reset()
        self._identity = snapshot.identity
        self._state = SyncState.TRACKING
        self._timeline = self._resolver.resolve(
            snapshot.title, snapshot.artists, snapshot.duration_ms, identity=snapshot.identity,
        )
        self._cursor.reset(self._timeline)

    def _reset_track(self) -> None:
        self._gate.reset()
        self._identity = None
        self._timeline = None
        self._cursor.reset()
        self._state = SyncState.IDLE
