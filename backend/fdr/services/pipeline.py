"""FDR recalculation cycle: staleness gate, aggregate, score, record."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from fdr.services.aggregator import aggregate_league
from fdr.services.errors import ConfigMissing
from fdr.services.recorder import CalculationRecorder
from fdr.services.scorer import DEFAULT_WEIGHT_PROFILE, score_teams
from fdr.services.staleness import DEFAULT_FRESHNESS_WINDOW, evaluate_staleness
from fdr.services.store import FdrStore

logger = logging.getLogger(__name__)

STATUS_SKIPPED = "skipped"
STATUS_COMPLETED = "completed"

SAMPLE_RATINGS_COUNT = 3


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class CycleSummary:
    """Result of one run_cycle call, returned to API and CLI callers."""

    status: str
    gameweek: int
    teams_updated: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    reason: str | None = None
    minutes_since_last_update: float | None = None
    weight_profile: str | None = None
    sample_ratings: list[dict[str, Any]] = field(default_factory=list)


async def resolve_current_gameweek(store: FdrStore) -> int:
    """Current gameweek from the store marker, else the latest gameweek with stats.

    Raises:
        ConfigMissing: If neither source yields a gameweek
    """
    gameweek = await store.get_current_gameweek()
    if gameweek is not None:
        return gameweek

    gameweek = await store.get_latest_stat_gameweek()
    if gameweek is not None:
        logger.warning(
            f"No current gameweek marker; inferring GW{gameweek} from stored stats"
        )
        return gameweek

    raise ConfigMissing(
        "Cannot determine current gameweek: no gameweek marker and no stored stats"
    )


class FdrPipeline:
    """Runs one gate-guarded FDR recalculation against a store."""

    def __init__(
        self,
        store: FdrStore,
        clock: Callable[[], datetime] = utc_now,
        freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
    ):
        self.store = store
        self.clock = clock
        self.freshness_window = freshness_window

    async def run_cycle(self, force: bool = False) -> CycleSummary:
        """
        Recalculate FDR for every team unless the last calculation is still fresh.

        Args:
            force: Bypass the staleness gate

        Returns:
            CycleSummary with status "skipped" or "completed"

        Raises:
            ConfigMissing: No current gameweek, no current season or no teams
        """
        started = time.monotonic()

        gameweek = await resolve_current_gameweek(self.store)
        season_id = await self.store.get_current_season_id()
        if season_id is None:
            raise ConfigMissing("No current season recorded; run a roster sync first")

        now = self.clock()
        last = await self.store.get_last_calculation(season_id)
        decision = evaluate_staleness(last, gameweek, now, self.freshness_window)

        if not decision.is_stale and not force:
            logger.info(
                f"FDR still fresh for GW{gameweek} "
                f"({decision.minutes_since_last_update} min old), skipping"
            )
            return CycleSummary(
                status=STATUS_SKIPPED,
                gameweek=gameweek,
                reason=decision.reason,
                minutes_since_last_update=decision.minutes_since_last_update,
                duration_seconds=round(time.monotonic() - started, 2),
            )

        reason = "forced" if force and not decision.is_stale else decision.reason
        logger.info(f"Recalculating FDR for GW{gameweek} ({reason})")

        teams = await self.store.list_teams()
        if not teams:
            raise ConfigMissing("No teams in the store; run a roster sync first")
        team_ids = [team.id for team in teams]

        profile = await self.store.get_active_weight_profile()
        if profile is None:
            logger.warning("No active FDR weighting profile, using built-in default")
            profile = DEFAULT_WEIGHT_PROFILE

        rows = await self.store.get_player_gameweek_stats(gameweek)
        snapshots = aggregate_league(
            team_ids,
            rows,
            gameweek,
            recent_form_gameweeks=profile.recent_form_gameweeks,
            recent_form_weight_pct=profile.recent_form_weight_pct,
        )
        calculations = score_teams(snapshots, profile)

        recorded = await CalculationRecorder(self.store).record(
            calculations,
            team_ids,
            season_id,
            gameweek,
            now,
            weight_profile_id=profile.id,
        )

        names = {team.id: team.short_name for team in teams}
        top = sorted(
            recorded.calculations,
            key=lambda c: (-c.home_strength_score, c.team_id),
        )[:SAMPLE_RATINGS_COUNT]

        summary = CycleSummary(
            status=STATUS_COMPLETED,
            gameweek=gameweek,
            teams_updated=recorded.teams_updated,
            errors=recorded.errors,
            duration_seconds=round(time.monotonic() - started, 2),
            reason=reason,
            minutes_since_last_update=decision.minutes_since_last_update,
            weight_profile=profile.name,
            sample_ratings=[
                {
                    "team_id": c.team_id,
                    "team": names.get(c.team_id),
                    "home_difficulty": c.home_difficulty,
                    "away_difficulty": c.away_difficulty,
                    "home_strength": c.home_strength_score,
                    "away_strength": c.away_strength_score,
                }
                for c in top
            ],
        )
        logger.info(
            f"FDR cycle complete for GW{gameweek}: {summary.teams_updated} teams, "
            f"{summary.errors} errors, {len(calculations)} rated from "
            f"{len(rows)} stat rows in {summary.duration_seconds}s"
        )
        return summary
