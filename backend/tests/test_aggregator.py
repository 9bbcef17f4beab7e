"""Tests for per-team factor aggregation."""

import pytest

from fdr.services.aggregator import (
    aggregate_league,
    aggregate_team,
    count_games_played,
    per_90,
    points_per_game,
    recent_window,
)
from tests.conftest import make_stat


class TestPer90:
    """Tests for the per-90 normalization helper."""

    @pytest.mark.parametrize(
        ("total", "minutes", "expected"),
        [
            (2, 90, 2.0),
            (1, 45, 2.0),
            (3, 270, 1.0),
            (0.5, 180, 0.25),
        ],
    )
    def test_rate(self, total, minutes, expected):
        assert per_90(total, minutes) == pytest.approx(expected)

    def test_zero_minutes_is_zero_not_nan(self):
        assert per_90(5, 0) == 0.0


class TestAggregateTeam:
    """Tests for aggregate_team."""

    def test_team_rate_sums_players_not_averages(self):
        """One player 90 min / 2 goals plus one unused player gives 2.0 goals per 90."""
        rows = [
            make_stat(1, 1, team_id=10, minutes=90, goals_scored=2),
            make_stat(2, 1, team_id=10, minutes=0, goals_scored=0),
        ]

        snapshot = aggregate_team(10, rows, gameweek_upper_bound=1)

        assert snapshot.goals_per_90 == pytest.approx(2.0)
        assert snapshot.games_played == 1

    def test_no_minutes_gives_empty_snapshot(self):
        rows = [make_stat(1, 1, team_id=10, minutes=0, goals_scored=0)]

        snapshot = aggregate_team(10, rows, gameweek_upper_bound=5)

        assert snapshot.games_played == 0
        assert all(value == 0.0 for value in snapshot.factors().values())

    def test_rows_after_upper_bound_are_ignored(self):
        rows = [
            make_stat(1, 1, team_id=10, goals_scored=1),
            make_stat(1, 2, team_id=10, goals_scored=5),
        ]

        snapshot = aggregate_team(10, rows, gameweek_upper_bound=1)

        assert snapshot.games_played == 1
        assert snapshot.goals_per_90 == pytest.approx(1.0)

    def test_home_away_split_uses_was_home(self):
        rows = [
            make_stat(1, 1, team_id=10, was_home=True, goals_scored=3, expected_goals=2.0),
            make_stat(1, 2, team_id=10, was_home=False, goals_scored=1, expected_goals=0.5),
        ]

        snapshot = aggregate_team(10, rows, gameweek_upper_bound=2)

        assert snapshot.home_goals_per_90 == pytest.approx(3.0)
        assert snapshot.home_xg_per_90 == pytest.approx(2.0)
        assert snapshot.away_goals_per_90 == pytest.approx(1.0)
        assert snapshot.away_xg_per_90 == pytest.approx(0.5)
        assert snapshot.goals_per_90 == pytest.approx(2.0)

    def test_goals_vs_xg_is_signed(self):
        rows = [make_stat(1, 1, team_id=10, goals_scored=0, expected_goals=1.5)]

        snapshot = aggregate_team(10, rows, gameweek_upper_bound=1)

        assert snapshot.goals_vs_xg == pytest.approx(-1.5)

    def test_defensive_rates(self):
        rows = [
            make_stat(1, 1, team_id=10, goals_conceded=2, expected_goals_conceded=1.2),
            make_stat(1, 2, team_id=10, goals_conceded=0, expected_goals_conceded=0.4),
        ]

        snapshot = aggregate_team(10, rows, gameweek_upper_bound=2)

        assert snapshot.goals_conceded_per_90 == pytest.approx(1.0)
        assert snapshot.xgc_per_90 == pytest.approx(0.8)

    def test_recent_form_blends_window_and_season(self):
        """Window GW3 has goal difference +3, the season +1 per 90 over three games."""
        rows = [
            make_stat(1, 1, team_id=10, opponent_team=2, goals_conceded=2),
            make_stat(1, 2, team_id=10, opponent_team=3, goals_scored=0),
            make_stat(1, 3, team_id=10, opponent_team=4, goals_scored=3),
        ]

        snapshot = aggregate_team(
            10,
            rows,
            gameweek_upper_bound=3,
            recent_form_gameweeks=1,
            recent_form_weight_pct=60.0,
        )

        # window: +3.0 per 90, season: (3 - 2) / 3 games = +0.333 per 90
        assert snapshot.recent_form == pytest.approx(0.6 * 3.0 + 0.4 * (1 / 3))

    def test_recent_form_full_weight_uses_window_only(self):
        rows = [
            make_stat(1, 1, team_id=10, opponent_team=2, goals_conceded=4),
            make_stat(1, 2, team_id=10, opponent_team=3, goals_scored=1),
        ]

        snapshot = aggregate_team(
            10, rows, 2, recent_form_gameweeks=1, recent_form_weight_pct=100.0
        )

        assert snapshot.recent_form == pytest.approx(1.0)


class TestRecentWindow:
    def test_keeps_last_n_distinct_gameweeks(self):
        rows = [make_stat(p, gw, team_id=1) for gw in (1, 2, 3, 4) for p in (1, 2)]

        window = recent_window(rows, 2)

        assert {r.gameweek_id for r in window} == {3, 4}
        assert len(window) == 4

    def test_zero_window_is_empty(self):
        assert recent_window([make_stat(1, 1, team_id=1)], 0) == []


class TestGamesAndPoints:
    def test_games_played_counts_distinct_fixtures_with_minutes(self):
        rows = [
            make_stat(1, 1, team_id=10, opponent_team=2),
            make_stat(2, 1, team_id=10, opponent_team=2),
            make_stat(1, 2, team_id=10, opponent_team=3, minutes=0),
            make_stat(1, 3, team_id=10, opponent_team=4),
        ]

        assert count_games_played(rows) == 2

    def test_double_gameweek_counts_two_fixtures(self):
        rows = [
            make_stat(1, 5, team_id=10, opponent_team=2),
            make_stat(1, 5, team_id=10, opponent_team=7),
        ]

        assert count_games_played(rows) == 2

    def test_points_per_game_win_draw_loss(self):
        rows = [
            # win 2-1
            make_stat(1, 1, team_id=10, opponent_team=2, goals_scored=2, goals_conceded=1),
            make_stat(2, 1, team_id=10, opponent_team=2, minutes=30, goals_conceded=0),
            # draw 1-1
            make_stat(1, 2, team_id=10, opponent_team=3, goals_scored=1, goals_conceded=1),
            # loss 0-2
            make_stat(1, 3, team_id=10, opponent_team=4, goals_conceded=2),
        ]

        assert points_per_game(rows) == pytest.approx((3 + 1 + 0) / 3)

    def test_points_per_game_without_games(self):
        assert points_per_game([]) == 0.0


class TestAggregateLeague:
    def test_every_known_team_gets_a_snapshot(self):
        rows = [make_stat(1, 1, team_id=1, goals_scored=1)]

        snapshots = aggregate_league([3, 1, 2], rows, gameweek_upper_bound=1)

        assert [s.team_id for s in snapshots] == [1, 2, 3]
        assert snapshots[0].games_played == 1
        assert snapshots[1].games_played == 0
        assert snapshots[2].games_played == 0

    def test_rows_for_unknown_teams_are_ignored(self):
        rows = [
            make_stat(1, 1, team_id=1),
            make_stat(2, 1, team_id=42, goals_scored=9),
        ]

        snapshots = aggregate_league([1], rows, gameweek_upper_bound=1)

        assert len(snapshots) == 1
        assert snapshots[0].goals_per_90 == 0.0

    def test_rows_against_own_club_are_dropped(self):
        # Player transferred to team 1 after scoring against it for a former club
        rows = [
            make_stat(7, 1, team_id=1, opponent_team=1, goals_scored=3),
            make_stat(8, 2, team_id=1, opponent_team=2, goals_scored=1),
        ]

        snapshot = aggregate_league([1], rows, gameweek_upper_bound=2)[0]

        assert snapshot.games_played == 1
        assert snapshot.goals_per_90 == 1.0
