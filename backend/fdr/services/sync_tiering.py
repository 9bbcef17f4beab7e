"""Sync tiering: decide which players' statistics need re-fetching.

The FPL API serves player history one request per player, and the full roster
(~700+ players) does not fit a single bounded invocation. Only players who
featured recently can have changed history, so syncs are split into:

- recent tier: players appearing in finished fixtures of the last 3 gameweeks,
  keeping only rows for those gameweeks (run hourly)
- full tier: the whole roster, keeping every row up to the current gameweek
  (run weekly, separately budgeted)
- live tier: the whole roster, keeping only the current gameweek's rows while
  that gameweek is in progress (run every few minutes on match days)
- gameweek tier: the whole roster, keeping one named gameweek (manual
  backfill of a gameweek a scheduled run missed; no time budget)
"""

from collections.abc import Iterable
from typing import Any, Protocol, TypeVar

from fdr.services.models import SyncPlan

DEFAULT_RECENT_GAMEWEEKS = 3

TIER_RECENT = "recent"
TIER_FULL = "full"
TIER_LIVE = "live"
TIER_GAMEWEEK = "gameweek"

FIRST_GAMEWEEK = 1
LAST_GAMEWEEK = 38


class _HasGameweek(Protocol):
    gameweek: int


T = TypeVar("T", bound=_HasGameweek)


def recent_gameweeks(current_gameweek: int, window: int = DEFAULT_RECENT_GAMEWEEKS) -> frozenset[int]:
    """Current gameweek and the (window - 1) before it, ignoring non-positive ids."""
    return frozenset(
        gw for gw in range(current_gameweek - window + 1, current_gameweek + 1) if gw > 0
    )


def fixture_participants(fixture: dict[str, Any]) -> set[int]:
    """Player ids listed in any of a fixture's stat participant lists (home and away)."""
    players: set[int] = set()
    for stat in fixture.get("stats") or []:
        for side in ("h", "a"):
            for entry in stat.get(side) or []:
                element = entry.get("element")
                if element is not None:
                    players.add(int(element))
    return players


def recent_player_ids(
    fixtures: Iterable[dict[str, Any]],
    current_gameweek: int,
    window: int = DEFAULT_RECENT_GAMEWEEKS,
) -> list[int]:
    """Deduplicated, sorted ids of players in finished fixtures of the recent window.

    Args:
        fixtures: Fixture dicts from the FPL fixtures endpoint
        current_gameweek: Current gameweek number
        window: Number of gameweeks (including the current one) to scan

    Returns:
        Sorted player ids; players only seen in older gameweeks are excluded
    """
    gameweeks = recent_gameweeks(current_gameweek, window)
    players: set[int] = set()
    for fixture in fixtures:
        # event is None for postponed fixtures
        if not fixture.get("finished") or fixture.get("event") not in gameweeks:
            continue
        players |= fixture_participants(fixture)
    return sorted(players)


def plan_recent_sync(
    fixtures: Iterable[dict[str, Any]],
    current_gameweek: int,
    window: int = DEFAULT_RECENT_GAMEWEEKS,
) -> SyncPlan:
    """Plan the recent (hourly) tier."""
    fixtures = list(fixtures)
    gameweeks = recent_gameweeks(current_gameweek, window)
    return SyncPlan(
        tier=TIER_RECENT,
        player_ids=recent_player_ids(fixtures, current_gameweek, window),
        gameweeks=gameweeks,
        current_gameweek=current_gameweek,
        metadata={
            "recent_fixtures": sum(
                1 for f in fixtures if f.get("finished") and f.get("event") in gameweeks
            ),
        },
    )


def roster_player_ids(players: Iterable[dict[str, Any]]) -> list[int]:
    return sorted({int(p["id"]) for p in players if p.get("id") is not None})


def plan_full_sync(players: Iterable[dict[str, Any]], current_gameweek: int) -> SyncPlan:
    """Plan the full (weekly) tier: every roster player, gameweeks 1..current."""
    return SyncPlan(
        tier=TIER_FULL,
        player_ids=roster_player_ids(players),
        gameweeks=frozenset(range(1, current_gameweek + 1)),
        current_gameweek=current_gameweek,
    )


def plan_live_sync(
    players: Iterable[dict[str, Any]],
    events: Iterable[dict[str, Any]],
    current_gameweek: int,
) -> SyncPlan:
    """Plan the live tier: every roster player, current gameweek only.

    Once the current gameweek is finished the plan is empty; the recent tier
    picks up any late corrections.
    """
    event = next((e for e in events if e.get("id") == current_gameweek), {})
    finished = bool(event.get("finished"))
    return SyncPlan(
        tier=TIER_LIVE,
        player_ids=[] if finished else roster_player_ids(players),
        gameweeks=frozenset({current_gameweek}),
        current_gameweek=current_gameweek,
        metadata={"gameweek_finished": finished},
    )


def plan_gameweek_sync(players: Iterable[dict[str, Any]], gameweek: int) -> SyncPlan:
    """Plan a one-gameweek backfill over the whole roster.

    Raises:
        ValueError: If gameweek is outside 1-38
    """
    if not FIRST_GAMEWEEK <= gameweek <= LAST_GAMEWEEK:
        raise ValueError(
            f"Gameweek must be between {FIRST_GAMEWEEK} and {LAST_GAMEWEEK}, got {gameweek}"
        )
    return SyncPlan(
        tier=TIER_GAMEWEEK,
        player_ids=roster_player_ids(players),
        gameweeks=frozenset({gameweek}),
        current_gameweek=gameweek,
    )


def filter_history(history: Iterable[T], gameweeks: frozenset[int]) -> list[T]:
    """Drop history rows whose gameweek falls outside the tier's gameweek set."""
    return [h for h in history if h.gameweek in gameweeks]
