"""
External Service Adapters

Deep modules that hide protocol details behind small interfaces.
One adapter per service:
    LrclibClient       lyrics by metadata (LRCLIB HTTP API)
    SpotifyMonitor     currently playing track (Spotify Web API via spotipy)
    DiscordStatusSink  custom status text (Discord user settings API)
    LogStatusSink      dry-run stand-in for Discord
"""

import logging
from typing import Any, Dict, List, Optional

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from .domain_types import (
    LyricsResult, PlaybackSnapshot, MAX_STATUS_LENGTH,
    PlaybackAuthExpiredError, PlaybackTransientError,
    StatusAuthError, StatusTransientError,
)
from .infra import ServiceHealth

logger = logging.getLogger('lyricstatus')

USER_AGENT = "lyricstatus/1.0 (+https://github.com/lyricstatus/lyricstatus)"
INSTRUMENTAL_MARKER = "[au: instrumental]"

# Request failed (timeout, connection error, 5xx, bad JSON), as opposed to a 404
FAILED = object()


# =============================================================================
# LRCLIB - Lyrics by track metadata
# =============================================================================

class LrclibClient:
    """
    LRCLIB lookups.

    Simple interface:
        fetch_by_metadata(title, artist, duration_ms) -> LyricsResult

    Never raises: timeouts, HTTP errors and bad payloads come back as
    LyricsResult.not_found(). /search is only tried after a real 404, so
    a failing service costs one request per lookup.
    """

    BASE_URL = "https://lrclib.net/api"
    TIMEOUT = 5.0  # seconds
    DURATION_TOLERANCE_SEC = 2.0

    def __init__(self, session: Optional[requests.Session] = None,
                 base_url: Optional[str] = None, search_fallback: bool = True):
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = USER_AGENT
        self._base_url = (base_url or self.BASE_URL).rstrip("/")
        self._search_fallback = search_fallback
        self._health = ServiceHealth("LRCLIB")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def fetch_by_metadata(self, title: str, artist: str, duration_ms: int = 0) -> LyricsResult:
        params = {"track_name": title, "artist_name": artist}
        if duration_ms and duration_ms > 0:
            params["duration"] = str(int(round(duration_ms / 1000.0)))

        data = self._get_json("/get", params)
        if data is None and self._search_fallback:
            data = self._search(title, artist, duration_ms)

        if not isinstance(data, dict):
            logger.debug(f"Lyrics not found on LRCLIB: {artist} - {title}")
            return LyricsResult.not_found()
        return self.to_result(data)

    @staticmethod
    def to_result(data: Dict[str, Any]) -> LyricsResult:
        """Map an LRCLIB record onto exactly one LyricsResult state."""
        synced = (data.get("syncedLyrics") or "").strip()
        plain = (data.get("plainLyrics") or "").strip()

        if data.get("instrumental") or synced.lower() == INSTRUMENTAL_MARKER:
            return LyricsResult.instrumental()
        if synced:
            return LyricsResult.synced(synced)
        if plain:
            return LyricsResult.plain(plain)
        return LyricsResult.not_found()

    # =========================================================================
    # PRIVATE
    # =========================================================================

    def _search(self, title: str, artist: str, duration_ms: int) -> Optional[Dict[str, Any]]:
        """Fall back to /search, trusting only a hit of matching length."""
        items = self._get_json("/search", {"track_name": title, "artist_name": artist})
        if not isinstance(items, list):
            return None

        wanted = duration_ms / 1000.0 if duration_ms else 0.0
        for item in items:
            if not isinstance(item, dict):
                continue
            if not wanted:
                return item
            try:
                length = float(item.get("duration") or 0)
            except (TypeError, ValueError):
                continue
            if abs(length - wanted) <= self.DURATION_TOLERANCE_SEC:
                logger.debug(f"LRCLIB search matched: {artist} - {title}")
                return item
        return None

    def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        """GET and decode. None on 404, FAILED when there was no usable answer."""
        try:
            resp = self._session.get(f"{self._base_url}{path}", params=params, timeout=self.TIMEOUT)
        except requests.Timeout:
            self._health.mark_down("request timeout")
            return FAILED
        except requests.RequestException as e:
            self._health.mark_down(f"request failed: {e}")
            return FAILED

        if resp.status_code == 404:
            self._health.mark_up("reachable")
            return None
        if resp.status_code != 200:
            self._health.mark_down(f"HTTP {resp.status_code}")
            return FAILED

        try:
            data = resp.json()
        except ValueError:
            self._health.mark_down(f"invalid JSON from {path}")
            return FAILED

        self._health.mark_up("reachable")
        return data


# =============================================================================
# SPOTIFY - Currently playing track
# =============================================================================

class SpotifyMonitor:
    """
    Reads the currently playing item from the Spotify Web API.

    Authorised with a long-lived refresh token: spotipy refreshes the
    access token by itself whenever the cached one is expired, and no
    browser flow is ever started.
    """

    SCOPE = "user-read-currently-playing"
    TIMEOUT = 5  # seconds

    def __init__(self, client_id: str, client_secret: str, refresh_token: str,
                 redirect_uri: str = "http://localhost:8888/callback",
                 client: Optional[spotipy.Spotify] = None):
        self._cache_handler = MemoryCacheHandler(token_info={
            "access_token": "",
            "token_type": "Bearer",
            "expires_in": 0,
            "expires_at": 0,
            "refresh_token": refresh_token,
            "scope": self.SCOPE,
        })
        self._client = client or spotipy.Spotify(
            auth_manager=SpotifyOAuth(
                client_id=client_id,
                client_secret=client_secret,
                redirect_uri=redirect_uri,
                scope=self.SCOPE,
                cache_handler=self._cache_handler,
                open_browser=False,
            ),
            requests_timeout=self.TIMEOUT,
            retries=0,
        )
        self._health = ServiceHealth("Spotify")

    def fetch_current(self) -> Optional[PlaybackSnapshot]:
        """Snapshot of the current item, or None when nothing is playing."""
        try:
            data = self._client.current_user_playing_track()
        except spotipy.SpotifyException as e:
            raise self._translate(e) from e
        except SpotifyOauthError as e:
            self._health.mark_down(f"token refresh failed: {e}")
            raise PlaybackAuthExpiredError(f"Failed to refresh Spotify access token: {e}") from e
        except requests.RequestException as e:
            self._health.mark_down(str(e))
            raise PlaybackTransientError(f"Spotify request failed: {e}") from e

        self._health.mark_up("connected")

        if not data or not data.get("item"):
            logger.debug("No active Spotify playback")
            return None
        return self.to_snapshot(data)

    @staticmethod
    def to_snapshot(data: Dict[str, Any]) -> PlaybackSnapshot:
        """Convert a currently-playing payload into a PlaybackSnapshot."""
        item = data["item"]
        title = item.get("name") or ""
        artists = ", ".join(a.get("name", "") for a in item.get("artists") or [] if a.get("name"))
        if not artists and item.get("show"):
            # Podcast episodes carry a show instead of artists
            artists = item["show"].get("name", "")
        identity = item.get("id") or item.get("uri") or f"{artists}|{title}"

        return PlaybackSnapshot(
            identity=identity,
            title=title,
            artists=artists,
            duration_ms=int(item.get("duration_ms") or 0),
            progress_ms=int(data.get("progress_ms") or 0),
            is_playing=bool(data.get("is_playing")),
        )

    def _translate(self, error: spotipy.SpotifyException) -> Exception:
        status = error.http_status
        if status == 401:
            self._expire_token()
            self._health.mark_down("token expired or invalid")
            return PlaybackAuthExpiredError("Spotify token invalid - will refresh on next attempt")
        if status == 429:
            self._health.mark_down("rate limited")
            return PlaybackTransientError("Spotify API rate limited - backing off")
        self._health.mark_down(f"HTTP {status}")
        return PlaybackTransientError(f"Spotify API error {status}: {error.msg}")

    def _expire_token(self) -> None:
        """Make the next call refresh the access token."""
        token_info = self._cache_handler.get_cached_token()
        if token_info:
            self._cache_handler.save_token_to_cache(dict(token_info, expires_at=0))


# =============================================================================
# DISCORD - Custom status text
# =============================================================================

class DiscordStatusSink:
    """
    Sets the custom status of the account owning the user token.

    Skips the request when the text is already the current status.
    """

    API_BASE = "https://discord.com/api/v10"
    TIMEOUT = 5.0  # seconds

    def __init__(self, user_token: str, session: Optional[requests.Session] = None):
        self._token = user_token
        self._session = session or requests.Session()
        self._last_status: Optional[str] = None
        self._health = ServiceHealth("Discord")

    def set_text(self, text: str) -> None:
        text = text[:MAX_STATUS_LENGTH]
        if text == self._last_status:
            logger.debug("Discord status unchanged, skipping request")
            return

        self._patch({"custom_status": {"text": text}})
        self._last_status = text
        logger.debug(f"Discord status updated: {text[:50]}")

    def clear(self) -> None:
        try:
            self._patch({"custom_status": {"text": "", "emoji_name": None}})
        except (StatusAuthError, StatusTransientError) as e:
            logger.error(f"Error clearing Discord status: {e}")
            return
        self._last_status = None
        logger.debug("Discord status cleared")

    def _patch(self, payload: Dict[str, Any]) -> None:
        try:
            resp = self._session.patch(
                f"{self.API_BASE}/users/@me/settings",
                json=payload,
                headers={"Authorization": self._token, "Content-Type": "application/json"},
                timeout=self.TIMEOUT,
            )
        except requests.RequestException as e:
            self._health.mark_down(str(e))
            raise StatusTransientError(f"Failed to update Discord status: {e}") from e

        if resp.status_code in (401, 403):
            self._health.mark_down("user token invalid or expired")
            raise StatusAuthError(f"Discord user token invalid or expired (HTTP {resp.status_code})")
        if resp.status_code >= 400:
            self._health.mark_down(f"HTTP {resp.status_code}")
            raise StatusTransientError(f"Failed to update Discord status (HTTP {resp.status_code})")

        self._health.mark_up("status updates working")


class LogStatusSink:
    """Logs statuses instead of sending them. Used by --dry-run."""

    def __init__(self):
        self.history: List[str] = []

    def set_text(self, text: str) -> None:
        self.history.append(text)
        logger.info(f"[dry-run] status → {text}")

    def clear(self) -> None:
        self.history.append("")
        logger.info("[dry-run] status cleared")
