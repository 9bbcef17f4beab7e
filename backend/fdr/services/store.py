"""PostgreSQL stat store for the FDR pipeline.

Every write declares its natural key and is an idempotent upsert, so repeated
or concurrent invocations converge on the same rows without locking.
"""

import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import asyncpg

from fdr.services.errors import PersistenceError
from fdr.services.models import (
    FACTOR_KEYS,
    LastCalculation,
    Player,
    PlayerGameweekStat,
    Team,
    TeamFdrCalculation,
    WeightProfile,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Column lists
# =============================================================================

# player_gameweek_stats columns, in insert order. team_id is not stored.
STAT_COLUMNS: tuple[str, ...] = (
    "player_id",
    "gameweek_id",
    "opponent_team",
    "was_home",
    "kickoff_time",
    "total_points",
    "minutes",
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
    "expected_goals",
    "expected_assists",
    "expected_goal_involvements",
    "expected_goals_conceded",
    "value",
    "selected",
    "transfers_in",
    "transfers_out",
    "influence",
    "creativity",
    "threat",
    "ict_index",
)

SCORE_COLUMNS: tuple[str, ...] = tuple(f"{key}_score" for key in FACTOR_KEYS)

CALCULATION_COLUMNS: tuple[str, ...] = (
    "team_id",
    "season_id",
    "gameweek_calculated",
    "calculation_timestamp",
    "games_played",
    *FACTOR_KEYS,
    *SCORE_COLUMNS,
    "home_strength_score",
    "away_strength_score",
    "overall_strength_score",
    "home_difficulty",
    "away_difficulty",
    "weight_profile_id",
)


STAT_COLUMN_LIST = ", ".join(STAT_COLUMNS)
CALCULATION_COLUMN_LIST = ", ".join(CALCULATION_COLUMNS)
SELECT_STAT_COLUMNS = ", ".join(f"s.{c}" for c in STAT_COLUMNS)


def _placeholders(count: int) -> str:
    return ", ".join(f"${i}" for i in range(1, count + 1))


def _updates(columns: Iterable[str], key: Sequence[str]) -> str:
    return ",\n    ".join(f"{c} = EXCLUDED.{c}" for c in columns if c not in key)


UPSERT_STAT_SQL = f"""
INSERT INTO player_gameweek_stats ({STAT_COLUMN_LIST}, updated_at)
VALUES ({_placeholders(len(STAT_COLUMNS))}, NOW())
ON CONFLICT (player_id, gameweek_id) DO UPDATE SET
    {_updates(STAT_COLUMNS, ("player_id", "gameweek_id"))},
    updated_at = NOW()
"""

UPSERT_CALCULATION_SQL = f"""
INSERT INTO team_fdr_calculations ({CALCULATION_COLUMN_LIST})
VALUES ({_placeholders(len(CALCULATION_COLUMNS))})
ON CONFLICT (team_id, season_id, gameweek_calculated) DO UPDATE SET
    {_updates(CALCULATION_COLUMNS, ("team_id", "season_id", "gameweek_calculated"))}
"""


def _stat_args(row: PlayerGameweekStat) -> tuple[Any, ...]:
    return tuple(getattr(row, column) for column in STAT_COLUMNS)


def _calculation_args(calc: TeamFdrCalculation) -> tuple[Any, ...]:
    return (
        calc.team_id,
        calc.season_id,
        calc.gameweek_calculated,
        calc.calculation_timestamp,
        calc.games_played,
        *(calc.raw_factors[key] for key in FACTOR_KEYS),
        *(calc.factor_scores[key] for key in FACTOR_KEYS),
        calc.home_strength_score,
        calc.away_strength_score,
        calc.overall_strength_score,
        calc.home_difficulty,
        calc.away_difficulty,
        calc.weight_profile_id,
    )


def _float(value: Any) -> float:
    """Convert NUMERIC/NULL column values to float."""
    return float(value) if value is not None else 0.0


# =============================================================================
# Row mappers
# =============================================================================


def row_to_stat(row: Any) -> PlayerGameweekStat:
    """Map a player_gameweek_stats row (joined with player.team_id) to a record."""
    values = {column: row[column] for column in STAT_COLUMNS}
    return PlayerGameweekStat(team_id=row["team_id"], **values)


def row_to_calculation(row: Any) -> TeamFdrCalculation:
    """Map a team_fdr_calculations row to a TeamFdrCalculation.

    Neutral fallback rows are the only ones written with games_played = 0,
    so is_default is derived rather than stored.
    """
    return TeamFdrCalculation(
        team_id=row["team_id"],
        games_played=row["games_played"],
        raw_factors={key: _float(row[key]) for key in FACTOR_KEYS},
        factor_scores={key: _float(row[f"{key}_score"]) for key in FACTOR_KEYS},
        home_strength_score=_float(row["home_strength_score"]),
        away_strength_score=_float(row["away_strength_score"]),
        overall_strength_score=_float(row["overall_strength_score"]),
        home_difficulty=row["home_difficulty"],
        away_difficulty=row["away_difficulty"],
        season_id=row["season_id"],
        gameweek_calculated=row["gameweek_calculated"],
        calculation_timestamp=row["calculation_timestamp"],
        weight_profile_id=row["weight_profile_id"],
        is_default=row["games_played"] == 0,
    )


def row_to_weight_profile(row: Any) -> WeightProfile:
    """Map an fdr_weightings row; weight columns are named weight_<factor>."""
    return WeightProfile(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        version=row["version"],
        weights={key: _float(row[f"weight_{key}"]) for key in FACTOR_KEYS},
        recent_form_gameweeks=row["recent_form_gameweeks"],
        recent_form_weight_pct=_float(row["recent_form_weight_pct"]),
    )


def row_to_player(row: Any) -> Player:
    return Player(
        id=row["id"],
        team_id=row["team_id"],
        web_name=row["web_name"],
        first_name=row["first_name"],
        second_name=row["second_name"],
        element_type=row["element_type"],
        team_name=row["team_name"],
        team_short_name=row["team_short_name"],
    )


def row_to_team(row: Any) -> Team:
    return Team(
        id=row["id"],
        name=row["name"],
        short_name=row["short_name"],
        code=row["code"],
        home_difficulty=row["home_difficulty"],
        away_difficulty=row["away_difficulty"],
        updated_at=row["updated_at"],
    )


# =============================================================================
# Store
# =============================================================================


class FdrStore:
    """Stat Store backed by an asyncpg pool.

    All database failures surface as PersistenceError.
    """

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise PersistenceError(f"{type(e).__name__}: {e}") from e

    # -------------------------------------------------------------------------
    # Gameweeks and seasons
    # -------------------------------------------------------------------------

    async def get_current_gameweek(self) -> int | None:
        """Gameweek flagged is_current, or None if no marker exists."""
        async with self._connection() as conn:
            return await conn.fetchval(
                "SELECT id FROM gameweek WHERE is_current ORDER BY id DESC LIMIT 1"
            )

    async def get_latest_stat_gameweek(self) -> int | None:
        """Highest gameweek present in player_gameweek_stats."""
        async with self._connection() as conn:
            return await conn.fetchval(
                "SELECT MAX(gameweek_id) FROM player_gameweek_stats"
            )

    async def get_current_season_id(self) -> int | None:
        async with self._connection() as conn:
            return await conn.fetchval(
                "SELECT id FROM season WHERE is_current ORDER BY id DESC LIMIT 1"
            )

    async def ensure_season(self, code: str, start_year: int) -> int:
        """Get or create the season with this code and mark it as the current one."""
        async with self._connection() as conn:
            async with conn.transaction():
                season_id = await conn.fetchval(
                    """
                    INSERT INTO season (code, start_year, is_current)
                    VALUES ($1, $2, true)
                    ON CONFLICT (code) DO UPDATE SET is_current = true
                    RETURNING id
                    """,
                    code,
                    start_year,
                )
                await conn.execute(
                    "UPDATE season SET is_current = false WHERE id <> $1 AND is_current",
                    season_id,
                )
        return season_id

    async def sync_gameweeks(self, events: Sequence[dict[str, Any]]) -> int | None:
        """Upsert gameweeks from bootstrap events, moving the is_current marker.

        Returns:
            The gameweek that was current before the sync (None if none was)
        """
        async with self._connection() as conn:
            async with conn.transaction():
                previous = await conn.fetchval(
                    "SELECT id FROM gameweek WHERE is_current ORDER BY id DESC LIMIT 1"
                )
                await conn.executemany(
                    """
                    INSERT INTO gameweek (id, name, deadline_time, finished, is_current)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (id) DO UPDATE SET
                        name = EXCLUDED.name,
                        deadline_time = EXCLUDED.deadline_time,
                        finished = EXCLUDED.finished,
                        is_current = EXCLUDED.is_current
                    """,
                    [
                        (
                            event["id"],
                            event.get("name") or f"Gameweek {event['id']}",
                            parse_timestamp(event.get("deadline_time")),
                            bool(event.get("finished")),
                            bool(event.get("is_current")),
                        )
                        for event in events
                    ],
                )
        return previous

    # -------------------------------------------------------------------------
    # Teams and players
    # -------------------------------------------------------------------------

    async def list_teams(self) -> list[Team]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT id, name, short_name, code,
                       home_difficulty, away_difficulty, updated_at
                FROM team
                ORDER BY name
                """
            )
        return [row_to_team(row) for row in rows]

    async def get_team(self, team_id: int) -> Team | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, name, short_name, code,
                       home_difficulty, away_difficulty, updated_at
                FROM team
                WHERE id = $1
                """,
                team_id,
            )
        return row_to_team(row) if row else None

    async def upsert_teams(self, teams: Sequence[dict[str, Any]]) -> int:
        """Upsert teams from bootstrap-static. Ratings are left untouched."""
        async with self._connection() as conn:
            await conn.executemany(
                """
                INSERT INTO team (id, name, short_name, code)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    short_name = EXCLUDED.short_name,
                    code = EXCLUDED.code
                """,
                [(t["id"], t["name"], t["short_name"], t.get("code")) for t in teams],
            )
        return len(teams)

    async def upsert_players(self, players: Sequence[dict[str, Any]]) -> int:
        """Upsert the player roster (new signings, transfers between clubs)."""
        async with self._connection() as conn:
            await conn.executemany(
                """
                INSERT INTO player (
                    id, code, team_id, web_name, first_name, second_name,
                    element_type, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, NOW())
                ON CONFLICT (id) DO UPDATE SET
                    code = EXCLUDED.code,
                    team_id = EXCLUDED.team_id,
                    web_name = EXCLUDED.web_name,
                    first_name = EXCLUDED.first_name,
                    second_name = EXCLUDED.second_name,
                    element_type = EXCLUDED.element_type,
                    updated_at = NOW()
                """,
                [
                    (
                        p["id"],
                        p.get("code"),
                        p["team"],
                        p.get("web_name"),
                        p.get("first_name"),
                        p.get("second_name"),
                        p.get("element_type"),
                    )
                    for p in players
                ],
            )
        return len(players)

    async def get_players(self, player_ids: Sequence[int]) -> list[Player]:
        """Roster players with their current club, ordered by id. Unknown ids are skipped."""
        if not player_ids:
            return []
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT p.id, p.team_id, p.web_name, p.first_name, p.second_name,
                       p.element_type, t.name AS team_name, t.short_name AS team_short_name
                FROM player p
                JOIN team t ON t.id = p.team_id
                WHERE p.id = ANY($1::int[])
                ORDER BY p.id
                """,
                list(player_ids),
            )
        return [row_to_player(row) for row in rows]

    async def get_player(self, player_id: int) -> Player | None:
        players = await self.get_players([player_id])
        return players[0] if players else None

    async def update_team_rating(
        self,
        team_id: int,
        home_difficulty: int,
        away_difficulty: int,
        updated_at: datetime,
    ) -> None:
        """Project a calculation's difficulty onto the team's current rating."""
        async with self._connection() as conn:
            await conn.execute(
                """
                UPDATE team
                SET home_difficulty = $2, away_difficulty = $3, updated_at = $4
                WHERE id = $1
                """,
                team_id,
                home_difficulty,
                away_difficulty,
                updated_at,
            )

    # -------------------------------------------------------------------------
    # Player gameweek stats
    # -------------------------------------------------------------------------

    async def get_player_gameweek_stats(
        self, up_to_gameweek: int
    ) -> list[PlayerGameweekStat]:
        """Rows up to and including a gameweek, attributed to the player's team."""
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {SELECT_STAT_COLUMNS}, p.team_id
                FROM player_gameweek_stats s
                JOIN player p ON p.id = s.player_id
                WHERE s.gameweek_id <= $1
                ORDER BY s.gameweek_id, s.player_id
                """,
                up_to_gameweek,
            )
        return [row_to_stat(row) for row in rows]

    async def get_player_history(
        self, player_id: int, limit: int | None = None
    ) -> list[PlayerGameweekStat]:
        """One player's rows in gameweek order, optionally only the first `limit`."""
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {SELECT_STAT_COLUMNS}, p.team_id
                FROM player_gameweek_stats s
                JOIN player p ON p.id = s.player_id
                WHERE s.player_id = $1
                ORDER BY s.gameweek_id
                LIMIT $2
                """,
                player_id,
                limit,
            )
        return [row_to_stat(row) for row in rows]

    async def get_player_stats_in_range(
        self, player_ids: Sequence[int], start_gameweek: int, end_gameweek: int
    ) -> list[PlayerGameweekStat]:
        """Rows for the given players with start <= gameweek_id <= end."""
        if not player_ids:
            return []
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {SELECT_STAT_COLUMNS}, p.team_id
                FROM player_gameweek_stats s
                JOIN player p ON p.id = s.player_id
                WHERE s.player_id = ANY($1::int[])
                  AND s.gameweek_id BETWEEN $2 AND $3
                ORDER BY s.player_id, s.gameweek_id
                """,
                list(player_ids),
                start_gameweek,
                end_gameweek,
            )
        return [row_to_stat(row) for row in rows]

    async def upsert_player_gameweek_stats(
        self, rows: Sequence[PlayerGameweekStat]
    ) -> int:
        """Batch upsert keyed by (player_id, gameweek_id).

        The batch is one statement; on failure none of it is assumed written
        and the caller may retry row by row.
        """
        if not rows:
            return 0
        async with self._connection() as conn:
            await conn.executemany(UPSERT_STAT_SQL, [_stat_args(r) for r in rows])
        return len(rows)

    async def upsert_player_gameweek_stat(self, row: PlayerGameweekStat) -> None:
        async with self._connection() as conn:
            await conn.execute(UPSERT_STAT_SQL, *_stat_args(row))

    # -------------------------------------------------------------------------
    # Weightings and calculations
    # -------------------------------------------------------------------------

    async def get_active_weight_profile(self) -> WeightProfile | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM fdr_weightings WHERE is_active ORDER BY version DESC LIMIT 1"
            )
        return row_to_weight_profile(row) if row else None

    async def get_last_calculation(self, season_id: int) -> LastCalculation | None:
        """Most recent calculation marker for a season (input to the staleness gate)."""
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT gameweek_calculated, calculation_timestamp
                FROM team_fdr_calculations
                WHERE season_id = $1
                ORDER BY calculation_timestamp DESC
                LIMIT 1
                """,
                season_id,
            )
        if not row:
            return None
        return LastCalculation(
            gameweek=row["gameweek_calculated"],
            calculated_at=row["calculation_timestamp"],
        )

    async def get_latest_calculation(self, team_id: int) -> TeamFdrCalculation | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT *
                FROM team_fdr_calculations
                WHERE team_id = $1
                ORDER BY calculation_timestamp DESC
                LIMIT 1
                """,
                team_id,
            )
        return row_to_calculation(row) if row else None

    async def upsert_calculation(self, calc: TeamFdrCalculation) -> None:
        """Upsert keyed by (team_id, season_id, gameweek_calculated)."""
        async with self._connection() as conn:
            await conn.execute(UPSERT_CALCULATION_SQL, *_calculation_args(calc))
