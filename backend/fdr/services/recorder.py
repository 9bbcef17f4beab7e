"""Calculation recorder: persist scored calculations and project team ratings."""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime

from fdr.services.models import TeamFdrCalculation
from fdr.services.scorer import default_calculation
from fdr.services.store import FdrStore

logger = logging.getLogger(__name__)


@dataclass
class RecordResult:
    """Outcome of recording one calculation run."""

    calculations: list[TeamFdrCalculation] = field(default_factory=list)
    snapshots_written: int = 0
    teams_updated: int = 0
    snapshot_errors: int = 0
    rating_errors: int = 0
    backfilled_team_ids: list[int] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return self.snapshot_errors + self.rating_errors


def _count_failures(
    results: Sequence[object], calcs: Sequence[TeamFdrCalculation], action: str
) -> int:
    """Log and count per-team failures from an asyncio.gather(return_exceptions=True)."""
    failures = 0
    for calc, result in zip(calcs, results, strict=True):
        if isinstance(result, Exception):
            failures += 1
            logger.warning(f"Failed to {action} for team {calc.team_id}: {result}")
        elif isinstance(result, BaseException):
            raise result
    return failures


class CalculationRecorder:
    """Writes calculation snapshots, then projects difficulty onto each team.

    Per-team failures are counted and never block other teams. The rating
    projection only starts after every snapshot write has settled.
    """

    def __init__(self, store: FdrStore):
        self.store = store

    async def record(
        self,
        calculations: Iterable[TeamFdrCalculation],
        team_ids: Iterable[int],
        season_id: int,
        gameweek: int,
        calculated_at: datetime,
        weight_profile_id: int | None = None,
    ) -> RecordResult:
        """
        Stamp, backfill and persist one run's calculations.

        Args:
            calculations: Scorer output
            team_ids: Every team known to the store
            season_id: Current season
            gameweek: Current gameweek (gameweek_calculated)
            calculated_at: Timestamp stamped on every snapshot and rating
            weight_profile_id: Profile recorded on backfilled rows

        Returns:
            RecordResult with the stamped calculations and failure counts
        """
        stamped = {
            calc.team_id: replace(
                calc,
                season_id=season_id,
                gameweek_calculated=gameweek,
                calculation_timestamp=calculated_at,
            )
            for calc in calculations
        }

        backfilled = sorted(set(team_ids) - set(stamped))
        for team_id in backfilled:
            stamped[team_id] = replace(
                default_calculation(team_id, weight_profile_id=weight_profile_id),
                season_id=season_id,
                gameweek_calculated=gameweek,
                calculation_timestamp=calculated_at,
            )
        if backfilled:
            logger.info(
                f"Backfilled neutral ratings for {len(backfilled)} teams without a "
                f"calculation: {backfilled}"
            )

        calcs = [stamped[team_id] for team_id in sorted(stamped)]

        # Snapshot upserts all settle before the rating projection starts
        snapshot_results = await asyncio.gather(
            *(self.store.upsert_calculation(calc) for calc in calcs),
            return_exceptions=True,
        )
        snapshot_errors = _count_failures(snapshot_results, calcs, "store calculation")

        rating_results = await asyncio.gather(
            *(
                self.store.update_team_rating(
                    calc.team_id,
                    calc.home_difficulty,
                    calc.away_difficulty,
                    calculated_at,
                )
                for calc in calcs
            ),
            return_exceptions=True,
        )
        rating_errors = _count_failures(rating_results, calcs, "update rating")

        result = RecordResult(
            calculations=calcs,
            snapshots_written=len(calcs) - snapshot_errors,
            teams_updated=len(calcs) - rating_errors,
            snapshot_errors=snapshot_errors,
            rating_errors=rating_errors,
            backfilled_team_ids=backfilled,
        )
        logger.info(
            f"Recorded GW{gameweek}: {result.snapshots_written} snapshots, "
            f"{result.teams_updated} ratings updated, {result.errors} errors"
        )
        return result
