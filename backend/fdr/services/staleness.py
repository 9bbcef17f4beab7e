"""Staleness gate deciding whether an FDR recalculation is needed.

Pure decision function: it reads the last calculation marker and the clock
value it is given, and never writes or advances anything.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from fdr.services.models import LastCalculation

DEFAULT_FRESHNESS_WINDOW = timedelta(hours=1)


class Freshness(StrEnum):
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True, slots=True)
class StalenessDecision:
    """Outcome of the staleness gate."""

    state: Freshness
    reason: str
    minutes_since_last_update: float | None = None

    @property
    def is_stale(self) -> bool:
        return self.state is Freshness.STALE


def evaluate_staleness(
    last: LastCalculation | None,
    current_gameweek: int,
    now: datetime,
    window: timedelta = DEFAULT_FRESHNESS_WINDOW,
) -> StalenessDecision:
    """Decide whether the last calculation is still fresh.

    Rules (first match wins):
    - No prior calculation -> STALE
    - Last calculation covered a different gameweek -> STALE
    - Time since last calculation exceeds the window -> STALE
    - Otherwise FRESH

    Args:
        last: Most recent calculation marker, or None
        current_gameweek: Externally known current gameweek
        now: Current time (timezone-aware, same zone as last.calculated_at)
        window: Freshness window

    Returns:
        StalenessDecision with minutes since the last update when known
    """
    if last is None:
        return StalenessDecision(Freshness.STALE, "no_previous_calculation")

    minutes = round((now - last.calculated_at).total_seconds() / 60, 1)

    if last.gameweek != current_gameweek:
        return StalenessDecision(
            Freshness.STALE,
            f"gameweek_changed:{last.gameweek}->{current_gameweek}",
            minutes,
        )

    if now - last.calculated_at > window:
        return StalenessDecision(Freshness.STALE, "window_expired", minutes)

    return StalenessDecision(Freshness.FRESH, "within_window", minutes)
