"""
Infrastructure and Cross-Cutting Concerns

Configuration from the environment, logging setup, service health
logging and the playback poll backoff.
"""

import os
import logging
from dataclasses import dataclass, replace
from threading import Lock
from typing import Optional, Dict, List

from .domain_types import ConfigError

logger = logging.getLogger('lyricstatus')

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
TRUTHY = ('1', 'true', 'yes', 'on')
FALSY = ('0', 'false', 'no', 'off')


def setup_logging(level: Optional[str] = None, verbose: bool = False) -> None:
    """Configure root logging once. LOG_LEVEL env is used when level is None."""
    name = (level or os.environ.get('LOG_LEVEL', 'info')).upper()
    resolved = logging.DEBUG if verbose else getattr(logging, name, logging.INFO)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger().setLevel(resolved)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class EngineSettings:
    """Tunables handed to the sync core. All times in milliseconds."""
    poll_interval_ms: int = 3500
    cache_enabled: bool = True
    cache_ttl_ms: int = 600_000
    rate_limit_ms: int = 1000
    sync_offset_ms: int = 0

    def update(self, **kwargs) -> 'EngineSettings':
        """Create new instance with updated fields (None values ignored)."""
        changes = {k: v for k, v in kwargs.items() if v is not None}
        return replace(self, **changes)


def _env_int(name: str, default: int, minimum: Optional[int] = None,
             maximum: Optional[int] = None) -> int:
    """Read an integer env var, falling back to default on bad input."""
    raw = os.environ.get(name, '').strip()
    if not raw:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
            value = default
    if minimum is not None:
        value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, '').strip().lower()
    if raw in TRUTHY:
        return True
    if raw in FALSY:
        return False
    return default


class Config:
    """Configuration with defaults, read from the environment."""

    REQUIRED_SPOTIFY = ('SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET', 'SPOTIFY_REFRESH_TOKEN')
    REQUIRED_DISCORD = ('DISCORD_USER_TOKEN',)

    DEFAULT_REDIRECT_URI = 'http://localhost:8888/callback'

    DEFAULT_POLL_INTERVAL_MS = 3500
    MIN_POLL_INTERVAL_MS = 500
    MAX_POLL_INTERVAL_MS = 60_000
    DEFAULT_CACHE_TTL_MS = 600_000
    DEFAULT_RATE_LIMIT_MS = 1000
    MAX_SYNC_OFFSET_MS = 60_000

    @classmethod
    def get_spotify_credentials(cls) -> Dict[str, str]:
        """Extract Spotify credentials from environment."""
        return {
            'client_id': os.environ.get('SPOTIFY_CLIENT_ID', ''),
            'client_secret': os.environ.get('SPOTIFY_CLIENT_SECRET', ''),
            'refresh_token': os.environ.get('SPOTIFY_REFRESH_TOKEN', ''),
            'redirect_uri': os.environ.get('SPOTIFY_REDIRECT_URI', cls.DEFAULT_REDIRECT_URI),
        }

    @classmethod
    def get_discord_token(cls) -> str:
        return os.environ.get('DISCORD_USER_TOKEN', '')

    @classmethod
    def missing_credentials(cls, dry_run: bool = False) -> List[str]:
        """Names of required variables that are unset or empty."""
        required = cls.REQUIRED_SPOTIFY if dry_run else cls.REQUIRED_DISCORD + cls.REQUIRED_SPOTIFY
        return [key for key in required if not os.environ.get(key, '').strip()]

    @classmethod
    def validate(cls, dry_run: bool = False) -> None:
        """Raise ConfigError naming every missing credential."""
        missing = cls.missing_credentials(dry_run=dry_run)
        if missing:
            raise ConfigError(f"Missing required environment variable(s): {', '.join(missing)}")
        logger.info("Configuration validated")

    @classmethod
    def engine_settings(cls) -> EngineSettings:
        """Core tunables from environment, clamped to sane ranges."""
        return EngineSettings(
            poll_interval_ms=_env_int(
                'POLLING_INTERVAL', cls.DEFAULT_POLL_INTERVAL_MS,
                cls.MIN_POLL_INTERVAL_MS, cls.MAX_POLL_INTERVAL_MS,
            ),
            cache_enabled=_env_bool('CACHE_ENABLED', True),
            cache_ttl_ms=_env_int('CACHE_TTL', cls.DEFAULT_CACHE_TTL_MS, 0),
            rate_limit_ms=_env_int('RATE_LIMIT_THRESHOLD', cls.DEFAULT_RATE_LIMIT_MS, 0),
            sync_offset_ms=_env_int(
                'SYNC_OFFSET', 0, -cls.MAX_SYNC_OFFSET_MS, cls.MAX_SYNC_OFFSET_MS,
            ),
        )


# =============================================================================
# SERVICE HEALTH - Up/down transitions of an external service
# =============================================================================

class ServiceHealth:
    """
    Logs an outage once when it starts (or its error changes) and once when
    the service answers again, instead of on every failed request.
    """

    def __init__(self, name: str):
        self.name = name
        self._up: Optional[bool] = None
        self._error = ""
        self._lock = Lock()

    def mark_up(self, message: str = ""):
        with self._lock:
            if self._up is not True and message:
                logger.info(f"{self.name}: {message}")
            self._up = True
            self._error = ""

    def mark_down(self, error: str):
        with self._lock:
            if self._up is not False or error != self._error:
                logger.warning(f"{self.name}: {error}")
            self._up = False
            self._error = error


# =============================================================================
# BACKOFF - Playback poll delay after consecutive failures
# =============================================================================

@dataclass(frozen=True)
class PollBackoff:
    """
    0.5s after the first failure, doubling up to 30s. Times are seconds on
    the caller's clock. Immutable; a successful poll starts from PollBackoff().
    """
    failures: int = 0
    retry_at: float = 0.0
    last_error: str = ""

    BASE_DELAY = 0.5
    MAX_DELAY = 30.0

    def blocked(self, now: float) -> bool:
        return now < self.retry_at

    def after_failure(self, error: str, now: float) -> 'PollBackoff':
        delay = min(self.BASE_DELAY * (2 ** self.failures), self.MAX_DELAY)
        return PollBackoff(failures=self.failures + 1, retry_at=now + delay, last_error=error)

    def seconds_left(self, now: float) -> float:
        return max(0.0, self.retry_at - now)
