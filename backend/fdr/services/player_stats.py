"""Per-player read models over stored gameweek rows.

Pure functions, no I/O. Used by the player history and gameweek-range
endpoints; team-level factors live in aggregator.py.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Any

from fdr.services.models import PlayerGameweekStat

# =============================================================================
# Constants
# =============================================================================

# Counting stats summed across a gameweek range
RANGE_INT_FIELDS: tuple[str, ...] = (
    "minutes",
    "total_points",
    "goals_scored",
    "assists",
    "clean_sheets",
    "goals_conceded",
    "own_goals",
    "penalties_saved",
    "penalties_missed",
    "yellow_cards",
    "red_cards",
    "saves",
    "bonus",
    "bps",
)

RANGE_FLOAT_FIELDS: tuple[str, ...] = (
    "expected_goals",
    "expected_assists",
    "expected_goal_involvements",
    "expected_goals_conceded",
    "influence",
    "creativity",
    "threat",
    "ict_index",
)

DECIMALS = 2


def summarize_history(rows: Sequence[PlayerGameweekStat]) -> dict[str, Any]:
    """Season-to-date totals for one player's history rows.

    Returns:
        Dict with totals and average_points (0.0 for an empty history)
    """
    total_points = sum(r.total_points for r in rows)
    return {
        "total_gameweeks": len(rows),
        "total_points": total_points,
        "total_minutes": sum(r.minutes for r in rows),
        "total_goals": sum(r.goals_scored for r in rows),
        "total_assists": sum(r.assists for r in rows),
        "total_clean_sheets": sum(r.clean_sheets for r in rows),
        "total_bonus": sum(r.bonus for r in rows),
        "average_points": round(total_points / len(rows), DECIMALS) if rows else 0.0,
    }


def aggregate_range(
    player_ids: Iterable[int], rows: Iterable[PlayerGameweekStat]
) -> dict[int, dict[str, Any]]:
    """Sum each player's rows over a gameweek range.

    Args:
        player_ids: Players to report; those without rows get zero totals
        rows: Rows already filtered to the range

    Returns:
        player_id -> totals, games_played (rows with minutes) and points_per_game
    """
    by_player: dict[int, list[PlayerGameweekStat]] = defaultdict(list)
    for row in rows:
        by_player[row.player_id].append(row)

    result = {}
    for player_id in sorted(set(player_ids)):
        player_rows = by_player.get(player_id, [])
        games = sum(1 for r in player_rows if r.minutes > 0)
        totals: dict[str, Any] = {
            "player_id": player_id,
            "games_played": games,
        }
        for name in RANGE_INT_FIELDS:
            totals[name] = sum(getattr(r, name) for r in player_rows)
        for name in RANGE_FLOAT_FIELDS:
            totals[name] = round(sum(getattr(r, name) for r in player_rows), DECIMALS)
        totals["points_per_game"] = (
            round(totals["total_points"] / games, DECIMALS) if games else 0.0
        )
        result[player_id] = totals
    return result
