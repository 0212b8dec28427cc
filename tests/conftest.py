"""
Shared fixtures: deterministic clocks, in-memory collaborators and a
connectivity check for the few tests that talk to LRCLIB.
"""
import socket
from typing import List, Optional

import pytest

from lyricstatus.domain_types import LyricsResult, PlaybackSnapshot


class FakeClock:
    """Manually advanced clock. Callable like time.monotonic."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: float) -> float:
        self.now += delta
        return self.now


class RecordingSink:
    """StatusSink that remembers every call, in order in events."""

    def __init__(self):
        self.texts: List[str] = []
        self.clears = 0
        self.events: List[tuple] = []
        self.fail_with: Optional[Exception] = None

    def set_text(self, text: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.texts.append(text)
        self.events.append(("set", text))

    def clear(self) -> None:
        self.clears += 1
        self.events.append(("clear",))


class StubProvider:
    """LyricsProvider returning a fixed result and counting lookups."""

    def __init__(self, result: LyricsResult = None):
        self.result = result or LyricsResult.not_found()
        self.calls = []

    def fetch_by_metadata(self, title: str, artist: str, duration_ms: int) -> LyricsResult:
        self.calls.append((title, artist, duration_ms))
        return self.result


class ScriptedSource:
    """
    PlaybackSource that replays a list of snapshots (or exceptions).
    When the list runs out it returns None, or keeps returning the last
    item with repeat_last=True.
    """

    def __init__(self, *items, repeat_last: bool = False):
        self.items = list(items)
        self.repeat_last = repeat_last

    def fetch_current(self) -> Optional[PlaybackSnapshot]:
        if self.repeat_last and len(self.items) == 1:
            item = self.items[0]
        else:
            item = self.items.pop(0) if self.items else None
        if isinstance(item, Exception):
            raise item
        return item


def snapshot(progress_ms: int = 0, identity: str = "track-x", title: str = "Song X",
             artists: str = "Artist A, Artist B", is_playing: bool = True,
             duration_ms: int = 200_000) -> PlaybackSnapshot:
    return PlaybackSnapshot(
        identity=identity,
        title=title,
        artists=artists,
        duration_ms=duration_ms,
        progress_ms=progress_ms,
        is_playing=is_playing,
    )


THREE_LINE_LRC = """[00:00.00]Hello
[00:05.50]Is it me you're looking for
[00:10.25]I can see it in your eyes
"""


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def requires_internet():
    """Check internet connectivity (no prompt needed)."""
    try:
        socket.create_connection(("lrclib.net", 443), timeout=5)
    except (socket.timeout, OSError):
        pytest.skip("No internet connection")
