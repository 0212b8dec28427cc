"""Services package - lyric lookup and update gating used by the orchestrator."""

__all__ = ["LyricCache", "LyricResolver", "LyricsProvider", "UpdateGate", "GateState"]

from .lyrics import LyricCache, LyricResolver, LyricsProvider
from .gate import UpdateGate, GateState
