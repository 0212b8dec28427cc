"""
Tests for StatusEngine scheduling and the CLI entry point.
"""

import threading
import time

from lyricstatus import engine as engine_module
from lyricstatus.domain_types import LyricsResult
from lyricstatus.engine import StatusEngine, build_parser, main, settings_from_args
from lyricstatus.infra import EngineSettings
from lyricstatus.orchestrators import TickAction

from conftest import RecordingSink, ScriptedSource, StubProvider, snapshot, THREE_LINE_LRC


def _engine(*snapshots, settings=None, repeat_last=False):
    sink = RecordingSink()
    engine = StatusEngine(
        settings or EngineSettings(poll_interval_ms=50, rate_limit_ms=0),
        ScriptedSource(*snapshots, repeat_last=repeat_last),
        StubProvider(LyricsResult.synced(THREE_LINE_LRC)),
        sink,
    )
    return engine, sink


class SlowProvider(StubProvider):
    """Signals when a lookup starts, then takes a while to answer."""

    def __init__(self, delay: float):
        super().__init__(LyricsResult.synced(THREE_LINE_LRC))
        self.delay = delay
        self.entered = threading.Event()

    def fetch_by_metadata(self, title, artist, duration_ms):
        self.entered.set()
        time.sleep(self.delay)
        return super().fetch_by_metadata(title, artist, duration_ms)


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestStatusEngine:
    """Composition and tick scheduling."""

    def test_run_once(self):
        engine, sink = _engine(snapshot(progress_ms=0))
        result = engine.run_once()
        assert result.action is TickAction.EMITTED
        assert sink.texts == ["♪ Hello"]
        assert engine.tick_count == 1

    def test_settings_reach_components(self):
        settings = EngineSettings(cache_enabled=False, cache_ttl_ms=5, rate_limit_ms=42, sync_offset_ms=-7)
        engine, _ = _engine(settings=settings)
        assert engine.cache.enabled is False
        assert engine.cache.ttl_ms == 5
        assert engine.orchestrator.gate.threshold_ms == 42
        assert engine.orchestrator.sync_offset_ms == -7

    def test_start_ticks_immediately_and_stop_clears(self):
        engine, sink = _engine(snapshot(progress_ms=0), snapshot(progress_ms=6000), repeat_last=True)
        engine.start()
        try:
            assert _wait_for(lambda: engine.tick_count >= 1)
            assert engine.is_running
        finally:
            engine.stop()

        assert not engine.is_running
        assert sink.texts[0] == "♪ Hello"
        assert sink.clears == 1

    def test_stop_waits_for_running_tick_before_clearing(self):
        """A lyric set by a tick in flight during stop() never outlives the clear."""
        sink = RecordingSink()
        provider = SlowProvider(delay=0.5)
        engine = StatusEngine(
            EngineSettings(poll_interval_ms=50, rate_limit_ms=0),
            ScriptedSource(snapshot(progress_ms=0), repeat_last=True),
            provider,
            sink,
        )
        engine.start()
        assert provider.entered.wait(2.0)
        engine.stop()

        assert sink.events == [("set", "♪ Hello"), ("clear",)]

    def test_stop_without_start_does_nothing(self):
        engine, sink = _engine()
        engine.stop()
        assert sink.clears == 0

    def test_redundant_trigger_dropped(self):
        engine, _ = _engine()
        engine._trigger()
        engine._trigger()
        assert engine.dropped_triggers == 1

    def test_run_returns_after_request_stop(self):
        engine, sink = _engine(snapshot(progress_ms=0), repeat_last=True)
        stopper = threading.Timer(0.2, engine.request_stop)
        stopper.start()
        engine.run()
        stopper.join()
        assert not engine.is_running
        assert sink.clears == 1


class TestCli:
    """Argument handling and main()."""

    def test_flags_override_settings(self):
        args = build_parser().parse_args([
            '--poll-interval', '1000', '--sync-offset', '-250', '--rate-limit', '2000',
            '--cache-ttl', '60000', '--no-cache',
        ])
        settings = settings_from_args(args, EngineSettings())
        assert settings == EngineSettings(
            poll_interval_ms=1000,
            cache_enabled=False,
            cache_ttl_ms=60000,
            rate_limit_ms=2000,
            sync_offset_ms=-250,
        )

    def test_no_flags_keep_settings(self):
        base = EngineSettings(poll_interval_ms=2000, sync_offset_ms=100)
        args = build_parser().parse_args([])
        assert settings_from_args(args, base) == base

    def test_poll_interval_clamped(self):
        args = build_parser().parse_args(['--poll-interval', '1'])
        assert settings_from_args(args, EngineSettings()).poll_interval_ms == 500

    def test_missing_credentials_exit_code(self, monkeypatch):
        for name in ('DISCORD_USER_TOKEN', 'SPOTIFY_CLIENT_ID',
                     'SPOTIFY_CLIENT_SECRET', 'SPOTIFY_REFRESH_TOKEN'):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setattr('dotenv.load_dotenv', lambda *a, **k: False)
        assert main([]) == 1

    def test_once_dry_run(self, monkeypatch):
        monkeypatch.setattr('dotenv.load_dotenv', lambda *a, **k: False)
        monkeypatch.delenv('DISCORD_USER_TOKEN', raising=False)
        monkeypatch.setenv('SPOTIFY_CLIENT_ID', 'cid')
        monkeypatch.setenv('SPOTIFY_CLIENT_SECRET', 'secret')
        monkeypatch.setenv('SPOTIFY_REFRESH_TOKEN', 'refresh')

        built = {}

        def fake_create_engine(settings, dry_run=False):
            built['dry_run'] = dry_run
            built['engine'], built['sink'] = _engine(snapshot(progress_ms=0), settings=settings)
            return built['engine']

        monkeypatch.setattr(engine_module, 'create_engine', fake_create_engine)

        assert main(['--once', '--dry-run']) == 0
        assert built['dry_run'] is True
        assert built['sink'].texts == ["♪ Hello"]
