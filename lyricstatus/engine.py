#!/usr/bin/env python3
"""
Lyric Status Engine - Spotify lyrics as Discord custom status

Polls Spotify for the current track, looks up synced lyrics on LRCLIB and
mirrors the active line into the Discord custom status.

Architecture:
- StatusEngine: composition root and serialized tick scheduler
- SyncOrchestrator: one tick of snapshot → lyric → gate → status
- Adapters: LrclibClient, SpotifyMonitor, DiscordStatusSink

Threads:
    Lyric-Timer   puts a trigger in a depth-1 queue every poll period
    Lyric-Worker  takes triggers and runs ticks one at a time
A trigger that arrives while the queue is full is dropped, so ticks never
overlap and never pile up behind a slow network call.
"""

import argparse
import logging
import signal
import time
from queue import Queue, Full, Empty
from threading import Event, Thread
from typing import Optional

from .adapters import DiscordStatusSink, LogStatusSink, LrclibClient, SpotifyMonitor
from .domain_types import ConfigError
from .infra import Config, EngineSettings, setup_logging
from .orchestrators import PlaybackSource, StatusSink, SyncOrchestrator, TickResult
from .services.gate import UpdateGate
from .services.lyrics import LyricCache, LyricResolver, LyricsProvider

logger = logging.getLogger('lyricstatus')


class StatusEngine:
    """
    Wires settings and collaborators into a SyncOrchestrator and drives it.

    Usage:
        engine = StatusEngine(settings, source, provider, sink)
        engine.start()      # background threads
        ...
        engine.stop()       # joins threads, clears status once

        engine.run()        # foreground, blocks until stop()
        engine.run_once()   # single tick
    """

    def __init__(
        self,
        settings: EngineSettings,
        source: PlaybackSource,
        provider: LyricsProvider,
        sink: StatusSink,
    ):
        self._settings = settings
        self._cache = LyricCache(ttl_ms=settings.cache_ttl_ms, enabled=settings.cache_enabled)
        self._resolver = LyricResolver(provider, self._cache)
        self._gate = UpdateGate(threshold_ms=settings.rate_limit_ms)
        self._orchestrator = SyncOrchestrator(
            resolver=self._resolver,
            gate=self._gate,
            sink=sink,
            source=source,
            sync_offset_ms=settings.sync_offset_ms,
        )

        self._triggers: Queue = Queue(maxsize=1)
        self._stop_event = Event()
        self._timer: Optional[Thread] = None
        self._worker: Optional[Thread] = None
        self._running = False
        self._ticks = 0
        self._dropped = 0

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def orchestrator(self) -> SyncOrchestrator:
        return self._orchestrator

    @property
    def cache(self) -> LyricCache:
        return self._cache

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_count(self) -> int:
        return self._ticks

    @property
    def dropped_triggers(self) -> int:
        return self._dropped

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self):
        """Start timer and worker threads. The first tick runs right away."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._trigger()

        self._worker = Thread(target=self._worker_loop, daemon=True, name="Lyric-Worker")
        self._worker.start()
        self._timer = Thread(target=self._timer_loop, daemon=True, name="Lyric-Timer")
        self._timer.start()

        logger.info(
            f"Lyric status engine started (poll interval: {self._settings.poll_interval_ms}ms, "
            f"sync offset: {self._settings.sync_offset_ms}ms, "
            f"cache: {'on' if self._settings.cache_enabled else 'off'})"
        )

    def stop(self):
        """
        Stop scheduling, let the running tick finish, then clear the status.

        The worker is joined without a timeout: a tick still in flight could
        otherwise set a lyric after the final clear.
        """
        if not self._running:
            return

        self._stop_event.set()
        if self._timer:
            self._timer.join(timeout=10)
        if self._worker:
            self._worker.join()
        self._timer = None
        self._worker = None
        self._running = False

        self._orchestrator.shutdown()
        logger.info(f"Lyric status engine stopped ({self._ticks} ticks)")

    def run(self):
        """Run in foreground (blocking) until stop() is called from elsewhere."""
        self.start()
        try:
            while not self._stop_event.wait(0.5):
                pass
        finally:
            self.stop()

    def request_stop(self):
        """Ask run() to return. Safe to call from a signal handler."""
        self._stop_event.set()

    def run_once(self) -> TickResult:
        """Run a single tick synchronously."""
        return self._run_tick()

    # =========================================================================
    # PRIVATE
    # =========================================================================

    def _trigger(self):
        try:
            self._triggers.put_nowait(time.monotonic())
        except Full:
            self._dropped += 1
            logger.debug("Previous tick still running, skipping trigger")

    def _timer_loop(self):
        interval = self._settings.poll_interval_ms / 1000.0
        while not self._stop_event.wait(interval):
            self._trigger()

    def _worker_loop(self):
        while not self._stop_event.is_set():
            try:
                self._triggers.get(timeout=0.5)
            except Empty:
                continue
            self._run_tick()

    def _run_tick(self) -> TickResult:
        self._ticks += 1
        result = self._orchestrator.poll()
        logger.debug(f"Tick {self._ticks}: {result.action.value}")
        return result


# =============================================================================
# CLI
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='lyricstatus',
        description='Show the current Spotify lyric line as your Discord custom status',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Required environment (or .env file):
  SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET, SPOTIFY_REFRESH_TOKEN
  DISCORD_USER_TOKEN            (not needed with --dry-run)

Optional environment:
  POLLING_INTERVAL, CACHE_ENABLED, CACHE_TTL, RATE_LIMIT_THRESHOLD,
  SYNC_OFFSET, LOG_LEVEL, SPOTIFY_REDIRECT_URI
"""
    )
    parser.add_argument('--poll-interval', type=int, metavar='MS', help='Spotify poll period in ms')
    parser.add_argument('--sync-offset', type=int, metavar='MS',
                        help='Lyric timing offset in ms (negative = later)')
    parser.add_argument('--rate-limit', type=int, metavar='MS', help='Minimum ms between status updates')
    parser.add_argument('--cache-ttl', type=int, metavar='MS', help='Lyrics cache lifetime in ms')
    parser.add_argument('--no-cache', action='store_true', help='Disable the lyrics cache')
    parser.add_argument('--dry-run', action='store_true', help='Log statuses instead of setting them')
    parser.add_argument('--once', action='store_true', help='Run a single tick and exit')
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser


def settings_from_args(args: argparse.Namespace, base: EngineSettings) -> EngineSettings:
    """Overlay CLI flags on settings read from the environment."""
    return base.update(
        poll_interval_ms=(
            max(Config.MIN_POLL_INTERVAL_MS, min(Config.MAX_POLL_INTERVAL_MS, args.poll_interval))
            if args.poll_interval is not None else None
        ),
        sync_offset_ms=(
            max(-Config.MAX_SYNC_OFFSET_MS, min(Config.MAX_SYNC_OFFSET_MS, args.sync_offset))
            if args.sync_offset is not None else None
        ),
        rate_limit_ms=max(0, args.rate_limit) if args.rate_limit is not None else None,
        cache_ttl_ms=max(0, args.cache_ttl) if args.cache_ttl is not None else None,
        cache_enabled=False if args.no_cache else None,
    )


def create_engine(settings: EngineSettings, dry_run: bool = False) -> StatusEngine:
    """Build the engine with the real Spotify, LRCLIB and Discord adapters."""
    creds = Config.get_spotify_credentials()
    source = SpotifyMonitor(**creds)
    sink = LogStatusSink() if dry_run else DiscordStatusSink(Config.get_discord_token())
    return StatusEngine(settings, source, LrclibClient(), sink)


def main(argv=None) -> int:
    from dotenv import load_dotenv
    load_dotenv()

    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        Config.validate(dry_run=args.dry_run)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    settings = settings_from_args(args, Config.engine_settings())
    engine = create_engine(settings, dry_run=args.dry_run)

    if args.once:
        result = engine.run_once()
        logger.info(f"Tick result: {result.action.value} {result.text}".rstrip())
        return 0

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down")
        engine.request_stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        engine.run()
    except Exception as e:
        logger.error(f"Uncaught exception: {e}")
        return 1
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
