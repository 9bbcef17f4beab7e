"""Pure aggregation of player gameweek rows into per-team factor snapshots.

These functions are stateless and have no database or external dependencies,
making them easy to test in isolation.

All team rates are totals across the team's players divided by the team's
total minutes / 90, never an average of per-player rates:

    rate = sum(stat over rows) / (sum(minutes over rows) / 90)
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from fdr.services.models import PlayerGameweekStat, TeamFactorSnapshot

# =============================================================================
# Constants
# =============================================================================

MINUTES_PER_MATCH = 90
DEFAULT_RECENT_FORM_GAMEWEEKS = 5
DEFAULT_RECENT_FORM_WEIGHT_PCT = 60.0

# League points per result
POINTS_WIN = 3
POINTS_DRAW = 1


# =============================================================================
# Per-90 helpers
# =============================================================================


@dataclass(slots=True)
class _Totals:
    minutes: int = 0
    goals: float = 0.0
    goals_conceded: float = 0.0
    xg: float = 0.0
    xgc: float = 0.0


def per_90(total: float, minutes: int) -> float:
    """Normalize a stat total to a 90-minute basis.

    Args:
        total: Summed stat value across rows
        minutes: Summed minutes across the same rows

    Returns:
        total / (minutes / 90), or 0.0 when no minutes were played
    """
    if minutes <= 0:
        return 0.0
    return float(total) / (minutes / MINUTES_PER_MATCH)


def _sum_rows(rows: Iterable[PlayerGameweekStat]) -> _Totals:
    totals = _Totals()
    for row in rows:
        totals.minutes += row.minutes
        totals.goals += row.goals_scored
        totals.goals_conceded += row.goals_conceded
        totals.xg += row.expected_goals
        totals.xgc += row.expected_goals_conceded
    return totals


def _goal_difference_per_90(totals: _Totals) -> float:
    return per_90(totals.goals, totals.minutes) - per_90(
        totals.goals_conceded, totals.minutes
    )


# =============================================================================
# Windows and fixtures
# =============================================================================


def recent_window(
    rows: Sequence[PlayerGameweekStat], gameweeks: int
) -> list[PlayerGameweekStat]:
    """Restrict rows to the last N distinct gameweeks (by gameweek_id descending).

    Args:
        rows: Qualifying rows for one team
        gameweeks: Window size N

    Returns:
        Rows whose gameweek_id is among the N most recent gameweeks present
    """
    if gameweeks <= 0:
        return []
    recent = set(sorted({r.gameweek_id for r in rows}, reverse=True)[:gameweeks])
    return [r for r in rows if r.gameweek_id in recent]


def _group_fixtures(
    rows: Iterable[PlayerGameweekStat],
) -> dict[tuple[int, int], list[PlayerGameweekStat]]:
    """Group rows by (gameweek, opponent); keeps fixtures where anyone played."""
    fixtures: dict[tuple[int, int], list[PlayerGameweekStat]] = defaultdict(list)
    for row in rows:
        fixtures[(row.gameweek_id, row.opponent_team)].append(row)
    return {
        key: fixture_rows
        for key, fixture_rows in fixtures.items()
        if any(r.minutes > 0 for r in fixture_rows)
    }


def count_games_played(rows: Iterable[PlayerGameweekStat]) -> int:
    """Count distinct fixtures in which at least one row has minutes > 0."""
    return len(_group_fixtures(rows))


def points_per_game(rows: Iterable[PlayerGameweekStat]) -> float:
    """League points per game inferred from the team's player rows.

    Per fixture, goals for = sum of the team's goals_scored and goals against =
    the highest goals_conceded among the team's players who featured (a player
    on the pitch for the whole match carries the full count).
    """
    fixtures = _group_fixtures(rows)
    if not fixtures:
        return 0.0

    points = 0
    for fixture_rows in fixtures.values():
        goals_for = sum(r.goals_scored for r in fixture_rows)
        goals_against = max(
            (r.goals_conceded for r in fixture_rows if r.minutes > 0), default=0
        )
        if goals_for > goals_against:
            points += POINTS_WIN
        elif goals_for == goals_against:
            points += POINTS_DRAW

    return points / len(fixtures)


# =============================================================================
# Team aggregation
# =============================================================================


def aggregate_team(
    team_id: int,
    rows: Iterable[PlayerGameweekStat],
    gameweek_upper_bound: int,
    recent_form_gameweeks: int = DEFAULT_RECENT_FORM_GAMEWEEKS,
    recent_form_weight_pct: float = DEFAULT_RECENT_FORM_WEIGHT_PCT,
) -> TeamFactorSnapshot:
    """Reduce one team's player gameweek rows into a TeamFactorSnapshot.

    Args:
        team_id: Team being aggregated
        rows: The team's players' rows (any gameweeks)
        gameweek_upper_bound: Only rows with gameweek_id <= this qualify
        recent_form_gameweeks: Size of the recent-form window
        recent_form_weight_pct: Share (0-100) of the recent-form factor taken
            from the window; the remainder comes from the whole season

    Returns:
        Snapshot with games_played and per-90 factors (all 0.0 without minutes)
    """
    qualifying = [r for r in rows if r.gameweek_id <= gameweek_upper_bound]
    season = _sum_rows(qualifying)

    if season.minutes <= 0:
        return TeamFactorSnapshot(team_id=team_id)

    home = _sum_rows(r for r in qualifying if r.was_home)
    away = _sum_rows(r for r in qualifying if not r.was_home)
    window = _sum_rows(recent_window(qualifying, recent_form_gameweeks))

    goals_per_90 = per_90(season.goals, season.minutes)
    xg_per_90 = per_90(season.xg, season.minutes)

    pct = min(max(recent_form_weight_pct, 0.0), 100.0) / 100
    recent_form = pct * _goal_difference_per_90(window) + (1 - pct) * (
        _goal_difference_per_90(season)
    )

    return TeamFactorSnapshot(
        team_id=team_id,
        games_played=count_games_played(qualifying),
        goals_per_90=goals_per_90,
        goals_conceded_per_90=per_90(season.goals_conceded, season.minutes),
        xg_per_90=xg_per_90,
        xgc_per_90=per_90(season.xgc, season.minutes),
        home_goals_per_90=per_90(home.goals, home.minutes),
        home_xg_per_90=per_90(home.xg, home.minutes),
        away_goals_per_90=per_90(away.goals, away.minutes),
        away_xg_per_90=per_90(away.xg, away.minutes),
        recent_form=recent_form,
        ppg=points_per_game(qualifying),
        goals_vs_xg=goals_per_90 - xg_per_90,
    )


def aggregate_league(
    team_ids: Iterable[int],
    rows: Iterable[PlayerGameweekStat],
    gameweek_upper_bound: int,
    recent_form_gameweeks: int = DEFAULT_RECENT_FORM_GAMEWEEKS,
    recent_form_weight_pct: float = DEFAULT_RECENT_FORM_WEIGHT_PCT,
) -> list[TeamFactorSnapshot]:
    """Aggregate every known team, sorted by team_id.

    Rows without a team_id, or for teams not in team_ids, are ignored. Known
    teams without rows get an empty snapshot (games_played = 0).

    Rows are attributed to the player's current team, so a row played for a
    former club against the current one (opponent_team == team_id) is dropped.
    """
    by_team: dict[int, list[PlayerGameweekStat]] = defaultdict(list)
    for row in rows:
        if row.team_id is None or row.opponent_team == row.team_id:
            continue
        by_team[row.team_id].append(row)

    return [
        aggregate_team(
            team_id,
            by_team.get(team_id, []),
            gameweek_upper_bound,
            recent_form_gameweeks=recent_form_gameweeks,
            recent_form_weight_pct=recent_form_weight_pct,
        )
        for team_id in sorted(set(team_ids))
    ]
