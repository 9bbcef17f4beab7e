"""Bounded, budgeted synchronization of player gameweek statistics.

Players are fetched in fixed-size batches run concurrently with
asyncio.gather. Between batches the service sleeps delay * batch_size to stay
under the FPL API's informal rate limits. Each run has a wall-clock budget:
once it is spent no further batch is started, in-flight fetches are never
interrupted, and the result reports truncated=True.
"""

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from fdr.services.errors import ConfigMissing, PersistenceError, SourceUnavailable
from fdr.services.fpl_client import FplApiClient, PlayerHistory
from fdr.services.models import PlayerGameweekStat, SyncPlan, parse_timestamp
from fdr.services.store import FdrStore
from fdr.services.sync_tiering import (
    DEFAULT_RECENT_GAMEWEEKS,
    filter_history,
    plan_full_sync,
    plan_gameweek_sync,
    plan_live_sync,
    plan_recent_sync,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
PROGRESS_LOG_EVERY = 10  # batches


# =============================================================================
# Results
# =============================================================================


@dataclass
class SyncResult:
    """Outcome of one stats sync run."""

    tier: str
    current_gameweek: int
    gameweeks: list[int]
    players_planned: int
    players_synced: int = 0
    stats_updated: int = 0
    errors: int = 0
    batches_run: int = 0
    truncated: bool = False
    duration_seconds: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RosterSyncResult:
    """Outcome of syncing teams, players and gameweeks from bootstrap-static."""

    season_id: int | None
    teams_synced: int
    players_synced: int
    current_gameweek: int | None
    gameweek_advanced: tuple[int | None, int] | None
    duration_seconds: float


# =============================================================================
# Conversion helpers
# =============================================================================


def history_to_stat(player_id: int, h: PlayerHistory) -> PlayerGameweekStat:
    """Convert an element-summary history entry to a stat store row."""
    return PlayerGameweekStat(
        player_id=player_id,
        gameweek_id=h.gameweek,
        opponent_team=h.opponent_team,
        was_home=h.was_home,
        kickoff_time=parse_timestamp(h.kickoff_time),
        total_points=h.total_points,
        minutes=h.minutes,
        goals_scored=h.goals_scored,
        assists=h.assists,
        clean_sheets=h.clean_sheets,
        goals_conceded=h.goals_conceded,
        own_goals=h.own_goals,
        penalties_saved=h.penalties_saved,
        penalties_missed=h.penalties_missed,
        yellow_cards=h.yellow_cards,
        red_cards=h.red_cards,
        saves=h.saves,
        bonus=h.bonus,
        bps=h.bps,
        expected_goals=h.expected_goals,
        expected_assists=h.expected_assists,
        expected_goal_involvements=h.expected_goal_involvements,
        expected_goals_conceded=h.expected_goals_conceded,
        value=h.value,
        selected=h.selected,
        transfers_in=h.transfers_in,
        transfers_out=h.transfers_out,
        influence=h.influence,
        creativity=h.creativity,
        threat=h.threat,
        ict_index=h.ict_index,
    )


def season_from_events(events: Sequence[dict[str, Any]]) -> tuple[str, int] | None:
    """Derive ("2025-26", 2025) from the first gameweek deadline."""
    for event in events:
        deadline = parse_timestamp(event.get("deadline_time"))
        if deadline is not None:
            start_year = deadline.year
            return f"{start_year}-{(start_year + 1) % 100:02d}", start_year
    return None


def _batches(items: Sequence[int], size: int) -> list[Sequence[int]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


# =============================================================================
# Service
# =============================================================================


class StatsSyncService:
    """Fetches player histories from the FPL API and upserts them into the store."""

    def __init__(
        self,
        store: FdrStore,
        source: FplApiClient,
        batch_size: int = DEFAULT_BATCH_SIZE,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.store = store
        self.source = source
        self.batch_size = batch_size
        self._monotonic = monotonic
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Roster
    # -------------------------------------------------------------------------

    async def sync_roster(self) -> RosterSyncResult:
        """Upsert season, teams, players and gameweeks from bootstrap-static.

        Runs before any stats sync so that stat rows never reference unknown
        players.
        """
        started = self._monotonic()
        bootstrap = await self.source.get_bootstrap()

        if not bootstrap.teams:
            raise SourceUnavailable("Bootstrap data contains no teams")
        if not bootstrap.players:
            raise SourceUnavailable("Bootstrap data contains no players")

        season_id = None
        season = season_from_events(bootstrap.events)
        if season is not None:
            season_id = await self.store.ensure_season(*season)

        teams_synced = await self.store.upsert_teams(bootstrap.teams)
        players_synced = await self.store.upsert_players(bootstrap.players)
        previous = await self.store.sync_gameweeks(bootstrap.events)

        advanced = None
        current = bootstrap.current_gameweek
        if current is not None and previous != current:
            advanced = (previous, current)
            logger.info(f"Advancing current gameweek: GW{previous} -> GW{current}")

        result = RosterSyncResult(
            season_id=season_id,
            teams_synced=teams_synced,
            players_synced=players_synced,
            current_gameweek=current,
            gameweek_advanced=advanced,
            duration_seconds=round(self._monotonic() - started, 2),
        )
        logger.info(
            f"Roster sync complete: {teams_synced} teams, {players_synced} players "
            f"in {result.duration_seconds}s"
        )
        return result

    # -------------------------------------------------------------------------
    # Tiers
    # -------------------------------------------------------------------------

    async def _current_gameweek(self) -> int:
        bootstrap = await self.source.get_bootstrap()
        if bootstrap.current_gameweek is None:
            raise ConfigMissing("FPL API reports no current gameweek")
        return bootstrap.current_gameweek

    async def sync_recent(
        self,
        delay_per_player: float,
        budget_seconds: float,
        window: int = DEFAULT_RECENT_GAMEWEEKS,
    ) -> SyncResult:
        """Quick tier: players from finished fixtures of the last `window` gameweeks."""
        current_gameweek = await self._current_gameweek()
        fixtures = await self.source.get_fixtures()
        plan = plan_recent_sync(fixtures, current_gameweek, window)
        logger.info(
            f"Recent sync plan: {len(plan.player_ids)} players from "
            f"{plan.metadata.get('recent_fixtures', 0)} finished fixtures, "
            f"GWs {sorted(plan.gameweeks)}"
        )
        return await self.run(plan, delay_per_player, budget_seconds)

    async def sync_full(self, delay_per_player: float, budget_seconds: float) -> SyncResult:
        """Full tier: every roster player, gameweeks 1..current."""
        current_gameweek = await self._current_gameweek()
        bootstrap = await self.source.get_bootstrap()
        plan = plan_full_sync(bootstrap.players, current_gameweek)
        logger.info(
            f"Full sync plan: {len(plan.player_ids)} players, GW1-{current_gameweek}"
        )
        return await self.run(plan, delay_per_player, budget_seconds)

    async def sync_live(self, delay_per_player: float, budget_seconds: float) -> SyncResult:
        """Live tier: current gameweek rows for every roster player.

        Does nothing once the current gameweek is finished.
        """
        current_gameweek = await self._current_gameweek()
        bootstrap = await self.source.get_bootstrap()
        plan = plan_live_sync(bootstrap.players, bootstrap.events, current_gameweek)
        if plan.metadata["gameweek_finished"]:
            logger.info(f"GW{current_gameweek} is finished, skipping live sync")
        else:
            logger.info(f"Live sync plan: {len(plan.player_ids)} players, GW{current_gameweek}")
        return await self.run(plan, delay_per_player, budget_seconds)

    async def sync_gameweek(self, gameweek: int, delay_per_player: float) -> SyncResult:
        """Backfill one gameweek for every roster player, without a time budget.

        Raises:
            ValueError: If gameweek is outside 1-38
        """
        bootstrap = await self.source.get_bootstrap()
        plan = plan_gameweek_sync(bootstrap.players, gameweek)
        logger.info(f"Gameweek backfill plan: {len(plan.player_ids)} players, GW{gameweek}")
        return await self.run(plan, delay_per_player, budget_seconds=math.inf)

    # -------------------------------------------------------------------------
    # Batch execution
    # -------------------------------------------------------------------------

    async def run(
        self, plan: SyncPlan, delay_per_player: float, budget_seconds: float
    ) -> SyncResult:
        """
        Execute a sync plan in bounded batches.

        Args:
            plan: Players to fetch and gameweeks to keep
            delay_per_player: Seconds per player slept between batches
            budget_seconds: Wall-clock budget; no batch starts after it is spent

        Returns:
            SyncResult with counts, errors and whether the run was truncated
        """
        started = self._monotonic()
        result = SyncResult(
            tier=plan.tier,
            current_gameweek=plan.current_gameweek,
            gameweeks=sorted(plan.gameweeks),
            players_planned=len(plan.player_ids),
            metadata=dict(plan.metadata),
        )
        batches = _batches(plan.player_ids, self.batch_size)

        for index, batch in enumerate(batches):
            if index > 0:
                await self._sleep(delay_per_player * self.batch_size)

            elapsed = self._monotonic() - started
            if elapsed >= budget_seconds:
                result.truncated = True
                logger.warning(
                    f"{plan.tier} sync budget of {budget_seconds}s spent after "
                    f"{index}/{len(batches)} batches; "
                    f"{sum(len(b) for b in batches[index:])} players not attempted"
                )
                break

            await self._run_batch(batch, plan, result)
            result.batches_run += 1

            if result.batches_run % PROGRESS_LOG_EVERY == 0:
                logger.info(
                    f"Progress: {result.batches_run}/{len(batches)} batches, "
                    f"{result.stats_updated} rows, {result.errors} errors"
                )

        result.duration_seconds = round(self._monotonic() - started, 2)
        logger.info(
            f"{plan.tier} sync complete: {result.players_synced} players, "
            f"{result.stats_updated} rows, {result.errors} errors, "
            f"truncated={result.truncated}, {result.duration_seconds}s"
        )
        return result

    async def _fetch_player(
        self, player_id: int, plan: SyncPlan
    ) -> list[PlayerGameweekStat]:
        history = await self.source.get_player_history(player_id)
        return [history_to_stat(player_id, h) for h in filter_history(history, plan.gameweeks)]

    async def _run_batch(
        self, batch: Sequence[int], plan: SyncPlan, result: SyncResult
    ) -> None:
        fetched = await asyncio.gather(
            *(self._fetch_player(player_id, plan) for player_id in batch),
            return_exceptions=True,
        )

        rows: list[PlayerGameweekStat] = []
        for player_id, outcome in zip(batch, fetched, strict=True):
            if isinstance(outcome, Exception):
                result.errors += 1
                logger.warning(f"Failed to fetch history for player {player_id}: {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.players_synced += 1
                rows.extend(outcome)

        if not rows:
            return

        try:
            result.stats_updated += await self.store.upsert_player_gameweek_stats(rows)
        except PersistenceError as e:
            logger.warning(
                f"Batch upsert of {len(rows)} rows failed ({e}); retrying row by row"
            )
            await self._upsert_rows_individually(rows, result)

    async def _upsert_rows_individually(
        self, rows: Sequence[PlayerGameweekStat], result: SyncResult
    ) -> None:
        for row in rows:
            try:
                await self.store.upsert_player_gameweek_stat(row)
                result.stats_updated += 1
            except PersistenceError as e:
                result.errors += 1
                logger.warning(
                    f"Failed to upsert player {row.player_id} GW{row.gameweek_id}: {e}"
                )
