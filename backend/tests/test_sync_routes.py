"""Tests for sync API routes."""

import pytest
from httpx import AsyncClient

from fdr.services.errors import SourceUnavailable
from fdr.services.fpl_client import BootstrapData
from tests.conftest import (
    ADMIN_HEADERS,
    CRON_SECRET,
    make_fixture,
    make_history,
    make_stat,
)

TEAMS = [
    {"id": 1, "name": "Arsenal", "short_name": "ARS", "code": 3},
    {"id": 2, "name": "Aston Villa", "short_name": "AVL", "code": 7},
]
EVENTS = [
    {"id": 1, "is_current": False, "finished": True, "deadline_time": "2025-08-15T17:30:00Z"},
    {"id": 2, "is_current": True, "finished": True, "deadline_time": "2025-08-22T17:30:00Z"},
]


@pytest.fixture
def live_source(override_context):
    """Bootstrap with two teams, two players and one finished GW2 fixture."""
    source = override_context.source
    source.bootstrap = BootstrapData(
        players=[{"id": 10, "team": 1}, {"id": 20, "team": 2}],
        teams=TEAMS,
        events=EVENTS,
        current_gameweek=2,
    )
    source.fixtures = [make_fixture(2, home_players=(10,), away_players=(20,))]
    source.histories = {
        10: [make_history(2, opponent_team=2, was_home=True, goals_scored=2)],
        20: [make_history(2, opponent_team=1, was_home=False, goals_conceded=2)],
    }
    return source


class TestAuth:
    async def test_sync_routes_require_credentials(
        self, async_client: AsyncClient, override_context
    ):
        for path in ("players", "quick-stats", "full-stats", "live-gameweek", "trigger"):
            response = await async_client.post(f"/api/v1/sync/{path}")
            assert response.status_code == 401


class TestPlayersSync:
    async def test_players_sync(self, async_client: AsyncClient, override_context, live_source):
        response = await async_client.post("/api/v1/sync/players", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["teams_synced"] == 2
        assert data["players_synced"] == 2
        assert data["gameweek_advanced"] == [None, 2]
        assert override_context.store.current_gameweek == 2

    async def test_source_failure_is_502(self, async_client: AsyncClient, override_context):
        override_context.source.bootstrap_error = SourceUnavailable("HTTP 503", 503)

        response = await async_client.post("/api/v1/sync/players", headers=ADMIN_HEADERS)

        assert response.status_code == 502


class TestStatsSync:
    async def test_quick_stats(self, async_client: AsyncClient, override_context, live_source):
        response = await async_client.post("/api/v1/sync/quick-stats", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "recent"
        assert data["players_planned"] == 2
        assert data["stats_updated"] == 2
        assert data["truncated"] is False
        assert set(override_context.store.stats) == {(10, 2), (20, 2)}

    async def test_full_stats(self, async_client: AsyncClient, override_context, live_source):
        response = await async_client.post("/api/v1/sync/full-stats", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["tier"] == "full"
        assert response.json()["gameweeks"] == [1, 2]

    async def test_live_gameweek_with_cron_secret(
        self, async_client: AsyncClient, override_context, live_source
    ):
        live_source.bootstrap.events = [
            {**EVENTS[0]},
            {**EVENTS[1], "finished": False},
        ]

        response = await async_client.post(
            "/api/v1/sync/live-gameweek", headers={"x-cron-secret": CRON_SECRET}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "live"
        assert data["gameweeks"] == [2]
        assert data["stats_updated"] == 2

    async def test_no_current_gameweek_is_409(
        self, async_client: AsyncClient, override_context
    ):
        response = await async_client.post("/api/v1/sync/quick-stats", headers=ADMIN_HEADERS)

        assert response.status_code == 409


class TestTrigger:
    async def test_full_cycle(self, async_client: AsyncClient, override_context, live_source):
        response = await async_client.post("/api/v1/sync/trigger", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["roster"]["teams_synced"] == 2
        assert data["stats"]["stats_updated"] == 2
        assert data["fdr"]["status"] == "completed"
        assert data["fdr"]["teams_updated"] == 2
        assert data["errors"] == 0
        store = override_context.store
        assert store.teams[1].home_difficulty > store.teams[2].home_difficulty

    async def test_roster_failure_reported_and_run_continues(
        self, async_client: AsyncClient, override_context, live_source
    ):
        store = override_context.store
        await store.upsert_teams(TEAMS)
        await store.upsert_players(live_source.bootstrap.players)
        store.current_gameweek = 2

        # Only the roster step sees the outage; the stats step reads bootstrap again
        calls = []
        original = live_source.get_bootstrap

        async def bootstrap_once_failing():
            calls.append(1)
            if len(calls) == 1:
                raise SourceUnavailable("bootstrap down", 503)
            return await original()

        live_source.get_bootstrap = bootstrap_once_failing

        response = await async_client.post("/api/v1/sync/trigger", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["roster"] is None
        assert "bootstrap down" in data["roster_error"]
        assert data["fdr"]["status"] == "completed"
        assert data["errors"] == 1

    async def test_stats_outage_still_runs_fdr_cycle(
        self, async_client: AsyncClient, override_context, live_source
    ):
        store = override_context.store
        await store.upsert_teams(TEAMS)
        await store.upsert_players(live_source.bootstrap.players)
        store.current_gameweek = 2
        store.stats[(10, 2)] = make_stat(10, 2, team_id=1, opponent_team=2, goals_scored=2)
        store.stats[(20, 2)] = make_stat(20, 2, team_id=2, opponent_team=1, was_home=False)
        live_source.fixtures_error = SourceUnavailable("fixtures 503", 503)

        response = await async_client.post("/api/v1/sync/trigger", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["stats"] is None
        assert "fixtures 503" in data["stats_error"]
        assert data["fdr"]["status"] == "completed"
        assert data["fdr"]["teams_updated"] == 2
        assert data["errors"] == 1
        assert len(store.calculations) == 2
