"""FPL API client with rate limiting for statistics collection."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx
from cachetools import TTLCache
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from fdr.services.errors import SourceUnavailable

logger = logging.getLogger(__name__)

FPL_BASE_URL = "https://fantasy.premierleague.com/api"

# HTTP status codes that should trigger a retry
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# bootstrap-static is ~1.8MB and rarely changes within an invocation
BOOTSTRAP_CACHE_TTL = 300

# The FPL API returns 403 to requests without browser-like headers
DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
    "Referer": "https://fantasy.premierleague.com/",
}


def _safe_int(val: Any, default: int = 0) -> int:
    """Safely convert API value to int, handling None and empty strings."""
    if val is None or val == "":
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


def _safe_float(val: Any, default: float = 0.0) -> float:
    """Safely convert API value to float, handling None and empty strings."""
    if val is None or val == "":
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        return default


def _is_retryable_error(exception: BaseException) -> bool:
    """Check if an error should trigger a retry."""
    if isinstance(exception, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in RETRYABLE_STATUS_CODES
    return False


def _status_code(exception: BaseException | None) -> int | None:
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code
    return None


@dataclass(slots=True)
class PlayerHistory:
    """Player's gameweek history entry from element-summary endpoint."""

    # Core identification
    fixture_id: int
    opponent_team: int
    gameweek: int
    was_home: bool
    kickoff_time: str | None

    # Points breakdown
    minutes: int
    total_points: int
    bonus: int
    bps: int  # Bonus Points System raw score

    # Attacking stats
    goals_scored: int
    assists: int
    expected_goals: float
    expected_assists: float
    expected_goal_involvements: float

    # Defensive stats
    clean_sheets: int
    goals_conceded: int
    own_goals: int
    penalties_saved: int
    penalties_missed: int
    saves: int
    expected_goals_conceded: float

    # Cards
    yellow_cards: int
    red_cards: int

    # ICT Index
    influence: float
    creativity: float
    threat: float
    ict_index: float

    # Value and ownership at time of match
    value: int  # Price * 10
    selected: int
    transfers_in: int
    transfers_out: int


@dataclass
class BootstrapData:
    """Core bootstrap data from FPL API."""

    players: list[dict[str, Any]]
    teams: list[dict[str, Any]]
    events: list[dict[str, Any]]
    current_gameweek: int | None


def current_gameweek_from_events(events: list[dict[str, Any]]) -> int | None:
    """Find the gameweek flagged is_current in bootstrap events."""
    for event in events:
        if event.get("is_current"):
            return event.get("id")
    return None


class FplApiClient:
    """
    FPL API client with rate limiting.

    The FPL API doesn't officially document rate limits, but empirically:
    - ~60 requests/minute is safe for sustained crawls
    - 503s happen if you go too fast
    - Player element-summary endpoints are the heaviest

    Non-success responses are retried for transient statuses and then surface
    as SourceUnavailable.
    """

    def __init__(
        self,
        requests_per_second: float = 1.0,
        max_concurrent: int = 5,
        base_url: str = FPL_BASE_URL,
    ):
        """
        Initialize the client.

        Args:
            requests_per_second: Target rate (1.0 = 1 request/sec)
            max_concurrent: Maximum concurrent requests
            base_url: FPL API base URL (no trailing slash)
        """
        self.base_url = base_url.rstrip("/")
        self.delay = 1.0 / requests_per_second
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()
        self._client: httpx.AsyncClient | None = None
        self._bootstrap_cache: TTLCache[str, dict[str, Any]] = TTLCache(
            maxsize=1, ttl=BOOTSTRAP_CACHE_TTL
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy initialization, coroutine-safe)."""
        if self._client is None:
            async with self._lock:
                if self._client is None:  # Double-check after acquiring lock
                    self._client = httpx.AsyncClient(
                        timeout=30.0, headers=DEFAULT_HEADERS
                    )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources (coroutine-safe)."""
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
            self._bootstrap_cache.clear()

    async def __aenter__(self) -> "FplApiClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager and close client."""
        await self.close()

    async def _rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self.delay:
                await asyncio.sleep(self.delay - elapsed)
            self._last_request_time = time.monotonic()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception(_is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    async def _get(self, url: str) -> Any:
        """Make a rate-limited GET request with retries."""
        async with self.semaphore:
            await self._rate_limit()

            client = await self._get_client()
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

    async def _fetch(self, path: str) -> Any:
        """GET a path relative to the base URL, mapping failures to SourceUnavailable."""
        url = f"{self.base_url}{path}"
        try:
            return await self._get(url)
        except RetryError as e:
            last = e.last_attempt.exception()
            raise SourceUnavailable(
                f"GET {url} failed after retries: {last}", _status_code(last)
            ) from e
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(
                f"GET {url} returned HTTP {e.response.status_code}",
                e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise SourceUnavailable(f"GET {url} failed: {type(e).__name__}: {e}") from e

    async def get_bootstrap(self) -> BootstrapData:
        """
        Fetch bootstrap-static data (players, teams, gameweeks).

        Cached per client instance so a single invocation parses the ~1.8MB
        response once.
        """
        data = self._bootstrap_cache.get("bootstrap")
        if data is None:
            logger.info("Fetching bootstrap-static from FPL API")
            data = await self._fetch("/bootstrap-static/")
            if data.get("elements"):
                self._bootstrap_cache["bootstrap"] = data
            else:
                logger.error(
                    "Bootstrap response missing 'elements' key. "
                    f"Response keys: {list(data.keys())}. "
                    "API may be under maintenance or rate-limiting."
                )

        events = data.get("events", [])
        return BootstrapData(
            players=data.get("elements", []),
            teams=data.get("teams", []),
            events=events,
            current_gameweek=current_gameweek_from_events(events),
        )

    async def get_player_history(self, player_id: int) -> list[PlayerHistory]:
        """
        Fetch a player's gameweek history (element-summary endpoint).
        This is the heavy endpoint - one request per player.

        A gameweek missing from the returned history has simply not been
        played yet; it is not an error.
        """
        data = await self._fetch(f"/element-summary/{player_id}/")

        history = []
        for h in data.get("history", []):
            history.append(
                PlayerHistory(
                    # Core identification
                    fixture_id=h["fixture"],
                    opponent_team=h["opponent_team"],
                    gameweek=h["round"],
                    was_home=h["was_home"],
                    kickoff_time=h.get("kickoff_time"),
                    # Points breakdown
                    minutes=_safe_int(h.get("minutes")),
                    total_points=_safe_int(h.get("total_points")),
                    bonus=_safe_int(h.get("bonus")),
                    bps=_safe_int(h.get("bps")),
                    # Attacking stats
                    goals_scored=_safe_int(h.get("goals_scored")),
                    assists=_safe_int(h.get("assists")),
                    expected_goals=_safe_float(h.get("expected_goals")),
                    expected_assists=_safe_float(h.get("expected_assists")),
                    expected_goal_involvements=_safe_float(
                        h.get("expected_goal_involvements")
                    ),
                    # Defensive stats
                    clean_sheets=_safe_int(h.get("clean_sheets")),
                    goals_conceded=_safe_int(h.get("goals_conceded")),
                    own_goals=_safe_int(h.get("own_goals")),
                    penalties_saved=_safe_int(h.get("penalties_saved")),
                    penalties_missed=_safe_int(h.get("penalties_missed")),
                    saves=_safe_int(h.get("saves")),
                    expected_goals_conceded=_safe_float(
                        h.get("expected_goals_conceded")
                    ),
                    # Cards
                    yellow_cards=_safe_int(h.get("yellow_cards")),
                    red_cards=_safe_int(h.get("red_cards")),
                    # ICT Index
                    influence=_safe_float(h.get("influence")),
                    creativity=_safe_float(h.get("creativity")),
                    threat=_safe_float(h.get("threat")),
                    ict_index=_safe_float(h.get("ict_index")),
                    # Value and ownership
                    value=_safe_int(h.get("value")),
                    selected=_safe_int(h.get("selected")),
                    transfers_in=_safe_int(h.get("transfers_in")),
                    transfers_out=_safe_int(h.get("transfers_out")),
                )
            )

        return history

    async def get_fixtures(self) -> list[dict[str, Any]]:
        """Fetch all fixtures for the current season (including per-fixture stats)."""
        return await self._fetch("/fixtures/")
