"""Shared pytest fixtures for backend tests."""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from fdr.config import Settings
from fdr.context import PipelineContext
from fdr.dependencies import get_context
from fdr.main import app
from fdr.services.errors import PersistenceError, SourceUnavailable
from fdr.services.fpl_client import BootstrapData, PlayerHistory
from fdr.services.models import (
    LastCalculation,
    Player,
    PlayerGameweekStat,
    Team,
    TeamFdrCalculation,
    WeightProfile,
)

FIXED_NOW = datetime(2025, 11, 1, 12, 0, tzinfo=UTC)

ADMIN_TOKEN = "test-admin-token"
CRON_SECRET = "test-cron-secret"
ADMIN_HEADERS = {"Authorization": f"Bearer {ADMIN_TOKEN}"}


# =============================================================================
# Builders
# =============================================================================


def make_team(team_id: int, name: str | None = None, short_name: str | None = None) -> Team:
    return Team(
        id=team_id,
        name=name or f"Team {team_id:02d}",
        short_name=short_name or f"T{team_id:02d}",
        code=team_id * 10,
    )


def make_stat(
    player_id: int,
    gameweek_id: int,
    team_id: int,
    opponent_team: int = 99,
    was_home: bool = True,
    minutes: int = 90,
    **stats: Any,
) -> PlayerGameweekStat:
    return PlayerGameweekStat(
        player_id=player_id,
        gameweek_id=gameweek_id,
        team_id=team_id,
        opponent_team=opponent_team,
        was_home=was_home,
        minutes=minutes,
        **stats,
    )


def make_history(
    gameweek: int,
    opponent_team: int = 2,
    was_home: bool = True,
    minutes: int = 90,
    **overrides: Any,
) -> PlayerHistory:
    values: dict[str, Any] = {
        "fixture_id": gameweek * 100 + opponent_team,
        "opponent_team": opponent_team,
        "gameweek": gameweek,
        "was_home": was_home,
        "kickoff_time": "2025-08-16T14:00:00Z",
        "minutes": minutes,
        "total_points": 2,
        "bonus": 0,
        "bps": 10,
        "goals_scored": 0,
        "assists": 0,
        "expected_goals": 0.0,
        "expected_assists": 0.0,
        "expected_goal_involvements": 0.0,
        "clean_sheets": 0,
        "goals_conceded": 0,
        "own_goals": 0,
        "penalties_saved": 0,
        "penalties_missed": 0,
        "saves": 0,
        "expected_goals_conceded": 0.0,
        "yellow_cards": 0,
        "red_cards": 0,
        "influence": 0.0,
        "creativity": 0.0,
        "threat": 0.0,
        "ict_index": 0.0,
        "value": 55,
        "selected": 1000,
        "transfers_in": 0,
        "transfers_out": 0,
    }
    values.update(overrides)
    return PlayerHistory(**values)


def make_fixture(
    event: int | None,
    finished: bool = True,
    home_players: tuple[int, ...] = (),
    away_players: tuple[int, ...] = (),
) -> dict[str, Any]:
    """Fixture dict shaped like the FPL fixtures endpoint, participants in stats."""
    return {
        "id": (event or 0) * 100 + len(home_players),
        "event": event,
        "finished": finished,
        "team_h": 1,
        "team_a": 2,
        "stats": [
            {
                "identifier": "bps",
                "h": [{"value": 10, "element": p} for p in home_players],
                "a": [{"value": 8, "element": p} for p in away_players],
            }
        ],
    }


# =============================================================================
# Test doubles
# =============================================================================


class FakeStore:
    """In-memory FdrStore with the same async interface and upsert semantics."""

    def __init__(self) -> None:
        self.current_gameweek: int | None = None
        self.season_id: int | None = 1
        self.season_code: str | None = None
        self.teams: dict[int, Team] = {}
        self.player_teams: dict[int, int] = {}
        self.players: dict[int, dict[str, Any]] = {}
        self.stats: dict[tuple[int, int], PlayerGameweekStat] = {}
        self.weight_profile: WeightProfile | None = None
        self.calculations: dict[tuple[int, int, int], TeamFdrCalculation] = {}

        # Failure injection
        self.fail_batch_upsert = False
        self.failing_stat_keys: set[tuple[int, int]] = set()
        self.failing_calculation_teams: set[int] = set()
        self.failing_rating_teams: set[int] = set()

        # Call log, in order: ("snapshot" | "rating", team_id)
        self.log: list[tuple[str, int]] = []
        self.batch_upserts = 0

    def add_teams(self, *team_ids: int) -> None:
        for team_id in team_ids:
            self.teams[team_id] = make_team(team_id)

    async def get_current_gameweek(self) -> int | None:
        return self.current_gameweek

    async def get_latest_stat_gameweek(self) -> int | None:
        return max((gw for _, gw in self.stats), default=None)

    async def get_current_season_id(self) -> int | None:
        return self.season_id

    async def ensure_season(self, code: str, start_year: int) -> int:
        self.season_code = code
        if self.season_id is None:
            self.season_id = 1
        return self.season_id

    async def sync_gameweeks(self, events: list[dict[str, Any]]) -> int | None:
        previous = self.current_gameweek
        self.current_gameweek = next(
            (e["id"] for e in events if e.get("is_current")), None
        )
        return previous

    async def list_teams(self) -> list[Team]:
        return sorted(self.teams.values(), key=lambda t: t.name)

    async def get_team(self, team_id: int) -> Team | None:
        return self.teams.get(team_id)

    async def upsert_teams(self, teams: list[dict[str, Any]]) -> int:
        for t in teams:
            existing = self.teams.get(t["id"])
            self.teams[t["id"]] = Team(
                id=t["id"],
                name=t["name"],
                short_name=t["short_name"],
                code=t.get("code"),
                home_difficulty=existing.home_difficulty if existing else None,
                away_difficulty=existing.away_difficulty if existing else None,
                updated_at=existing.updated_at if existing else None,
            )
        return len(teams)

    async def upsert_players(self, players: list[dict[str, Any]]) -> int:
        for p in players:
            self.player_teams[p["id"]] = p["team"]
            self.players[p["id"]] = p
        return len(players)

    async def get_players(self, player_ids: list[int]) -> list[Player]:
        players = []
        for player_id in sorted(set(player_ids)):
            team_id = self.player_teams.get(player_id)
            if team_id is None:
                continue
            raw = self.players.get(player_id, {})
            team = self.teams.get(team_id)
            players.append(
                Player(
                    id=player_id,
                    team_id=team_id,
                    web_name=raw.get("web_name"),
                    first_name=raw.get("first_name"),
                    second_name=raw.get("second_name"),
                    element_type=raw.get("element_type"),
                    team_name=team.name if team else None,
                    team_short_name=team.short_name if team else None,
                )
            )
        return players

    async def get_player(self, player_id: int) -> Player | None:
        players = await self.get_players([player_id])
        return players[0] if players else None

    async def update_team_rating(
        self, team_id: int, home_difficulty: int, away_difficulty: int, updated_at: datetime
    ) -> None:
        self.log.append(("rating", team_id))
        if team_id in self.failing_rating_teams:
            raise PersistenceError(f"rating write failed for {team_id}")
        team = self.teams[team_id]
        team.home_difficulty = home_difficulty
        team.away_difficulty = away_difficulty
        team.updated_at = updated_at

    async def get_player_gameweek_stats(self, up_to_gameweek: int) -> list[PlayerGameweekStat]:
        rows = []
        for (player_id, gameweek), row in sorted(self.stats.items(), key=lambda kv: (kv[0][1], kv[0][0])):
            if gameweek <= up_to_gameweek:
                rows.append(replace(row, team_id=self.player_teams.get(player_id, row.team_id)))
        return rows

    async def get_player_history(
        self, player_id: int, limit: int | None = None
    ) -> list[PlayerGameweekStat]:
        rows = [
            replace(row, team_id=self.player_teams.get(player_id, row.team_id))
            for (pid, _), row in sorted(self.stats.items(), key=lambda kv: kv[0][1])
            if pid == player_id
        ]
        return rows[:limit] if limit is not None else rows

    async def get_player_stats_in_range(
        self, player_ids: list[int], start_gameweek: int, end_gameweek: int
    ) -> list[PlayerGameweekStat]:
        wanted = set(player_ids)
        return [
            row
            for (player_id, gameweek), row in sorted(self.stats.items())
            if player_id in wanted and start_gameweek <= gameweek <= end_gameweek
        ]

    async def upsert_player_gameweek_stats(self, rows: list[PlayerGameweekStat]) -> int:
        self.batch_upserts += 1
        if self.fail_batch_upsert:
            raise PersistenceError("batch upsert failed")
        for row in rows:
            self.stats[(row.player_id, row.gameweek_id)] = row
        return len(rows)

    async def upsert_player_gameweek_stat(self, row: PlayerGameweekStat) -> None:
        key = (row.player_id, row.gameweek_id)
        if key in self.failing_stat_keys:
            raise PersistenceError(f"row upsert failed for {key}")
        self.stats[key] = row

    async def get_active_weight_profile(self) -> WeightProfile | None:
        return self.weight_profile

    async def get_last_calculation(self, season_id: int) -> LastCalculation | None:
        calcs = [c for c in self.calculations.values() if c.season_id == season_id]
        if not calcs:
            return None
        latest = max(calcs, key=lambda c: c.calculation_timestamp)
        return LastCalculation(latest.gameweek_calculated, latest.calculation_timestamp)

    async def get_latest_calculation(self, team_id: int) -> TeamFdrCalculation | None:
        calcs = [c for c in self.calculations.values() if c.team_id == team_id]
        return max(calcs, key=lambda c: c.calculation_timestamp, default=None)

    async def upsert_calculation(self, calc: TeamFdrCalculation) -> None:
        await asyncio.sleep(0)
        self.log.append(("snapshot", calc.team_id))
        if calc.team_id in self.failing_calculation_teams:
            raise PersistenceError(f"snapshot write failed for {calc.team_id}")
        self.calculations[(calc.team_id, calc.season_id, calc.gameweek_calculated)] = calc


class FakeSource:
    """In-memory FplApiClient."""

    def __init__(
        self,
        bootstrap: BootstrapData | None = None,
        fixtures: list[dict[str, Any]] | None = None,
        histories: dict[int, list[PlayerHistory]] | None = None,
    ) -> None:
        self.bootstrap = bootstrap or BootstrapData(
            players=[], teams=[], events=[], current_gameweek=None
        )
        self.fixtures = fixtures or []
        self.histories = histories or {}
        self.failing_players: set[int] = set()
        self.bootstrap_error: Exception | None = None
        self.fixtures_error: Exception | None = None
        self.requested: list[int] = []
        self.closed = False

    async def get_bootstrap(self) -> BootstrapData:
        if self.bootstrap_error is not None:
            raise self.bootstrap_error
        return self.bootstrap

    async def get_fixtures(self) -> list[dict[str, Any]]:
        if self.fixtures_error is not None:
            raise self.fixtures_error
        return self.fixtures

    async def get_player_history(self, player_id: int) -> list[PlayerHistory]:
        self.requested.append(player_id)
        if player_id in self.failing_players:
            raise SourceUnavailable(f"player {player_id} returned HTTP 503", 503)
        return self.histories.get(player_id, [])

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def async_client():
    """Async HTTP client for testing the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        admin_token=ADMIN_TOKEN,
        cron_secret=CRON_SECRET,
        database_url="",
        quick_sync_delay_seconds=0.0,
        full_sync_delay_seconds=0.0,
    )


@pytest.fixture
def pipeline_context(fake_store, fake_source, test_settings) -> PipelineContext:
    return PipelineContext(
        settings=test_settings,
        store=fake_store,
        source=fake_source,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def override_context(pipeline_context):
    """Route requests to the in-memory context and test credentials."""
    app.dependency_overrides[get_context] = lambda: pipeline_context
    with patch("fdr.dependencies.get_settings", return_value=pipeline_context.settings):
        yield pipeline_context
    app.dependency_overrides.clear()


@pytest.fixture
def admin_settings(test_settings):
    """Test credentials without overriding the database dependency."""
    with patch("fdr.dependencies.get_settings", return_value=test_settings):
        yield test_settings
