"""
UpdateGate - decides whether a candidate status is worth sending.

Two checks, evaluated in order:
    1. DiffChecker: text differs from the last text that passed the diff check
    2. RateLimiter: at least threshold_ms since the last allowed update

Note the diff check remembers a new text as soon as it is seen, even if the
rate limiter then blocks it. A line that was throttled is therefore never
sent later just because the interval opened up. Existing behaviour, kept
on purpose; see DESIGN.md before changing it.

Usage:
    gate = UpdateGate(threshold_ms=1000)
    if gate.should_emit("♪ Hello"):
        sink.set_text("♪ Hello")
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class GateState:
    """Mutable cursors of the gate. None means "nothing yet"."""
    last_emitted_text: Optional[str] = None
    last_emit_time: Optional[float] = None


class DiffChecker:
    """Passes only text that differs from the previous passing text."""

    def __init__(self, state: GateState):
        self._state = state

    def has_changed(self, text: str) -> bool:
        changed = text != self._state.last_emitted_text
        if changed:
            self._state.last_emitted_text = text
        return changed

    def reset(self) -> None:
        self._state.last_emitted_text = None


class RateLimiter:
    """Allows at most one update per threshold_ms."""

    def __init__(self, state: GateState, threshold_ms: float = 1000,
                 clock: Callable[[], float] = monotonic_ms):
        self._state = state
        self.threshold_ms = threshold_ms
        self._clock = clock

    def can_update(self) -> bool:
        now = self._clock()
        last = self._state.last_emit_time
        if last is None or now - last >= self.threshold_ms:
            self._state.last_emit_time = now
            return True
        return False

    def reset(self) -> None:
        self._state.last_emit_time = None


class UpdateGate:
    """Diff check AND rate limit, diff first."""

    def __init__(self, threshold_ms: float = 1000,
                 clock: Callable[[], float] = monotonic_ms,
                 state: Optional[GateState] = None):
        self._state = state or GateState()
        self._diff = DiffChecker(self._state)
        self._limiter = RateLimiter(self._state, threshold_ms, clock)

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def threshold_ms(self) -> float:
        return self._limiter.threshold_ms

    def changed(self, text: str) -> bool:
        return self._diff.has_changed(text)

    def allowed(self) -> bool:
        return self._limiter.can_update()

    def should_emit(self, text: str) -> bool:
        """True if text should go out now. Advances cursors as a side effect."""
        if not self.changed(text):
            return False
        return self.allowed()

    def reset(self) -> None:
        self._diff.reset()
        self._limiter.reset()
