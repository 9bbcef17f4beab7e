"""Domain records shared by the FDR pipeline services.

Difficulty convention used throughout:
- home_difficulty of team X: how hard it is for an opponent visiting X
  (X playing at home).
- away_difficulty of team X: how hard it is for an opponent hosting X
  (X playing away).
Both are 1-10, higher = harder opponent.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# =============================================================================
# Constants
# =============================================================================

# Tracked factor keys, in storage column order
FACTOR_KEYS: tuple[str, ...] = (
    "goals_per_90",
    "goals_conceded_per_90",
    "xg_per_90",
    "xgc_per_90",
    "home_goals_per_90",
    "home_xg_per_90",
    "away_goals_per_90",
    "away_xg_per_90",
    "recent_form",
    "ppg",
    "goals_vs_xg",
)

NEUTRAL_DIFFICULTY = 5
NEUTRAL_SCORE = 50.0  # Midpoint of the 0-100 normalized scale
DIFFICULTY_MIN = 1
DIFFICULTY_MAX = 10


# =============================================================================
# Stat Store rows
# =============================================================================


@dataclass(slots=True)
class PlayerGameweekStat:
    """One player's statistics for one gameweek, keyed by (player_id, gameweek_id).

    team_id is not a stored column; the store fills it from the player's team
    when reading rows for aggregation.
    """

    player_id: int
    gameweek_id: int
    opponent_team: int = 0
    was_home: bool = False
    kickoff_time: datetime | None = None
    team_id: int | None = None

    total_points: int = 0
    minutes: int = 0
    goals_scored: int = 0
    assists: int = 0
    clean_sheets: int = 0
    goals_conceded: int = 0
    own_goals: int = 0
    penalties_saved: int = 0
    penalties_missed: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    saves: int = 0
    bonus: int = 0
    bps: int = 0

    expected_goals: float = 0.0
    expected_assists: float = 0.0
    expected_goal_involvements: float = 0.0
    expected_goals_conceded: float = 0.0

    value: int = 0
    selected: int = 0
    transfers_in: int = 0
    transfers_out: int = 0

    influence: float = 0.0
    creativity: float = 0.0
    threat: float = 0.0
    ict_index: float = 0.0


# =============================================================================
# Aggregation / scoring records
# =============================================================================


@dataclass(slots=True)
class TeamFactorSnapshot:
    """Per-team raw factors for one calculation run (never persisted directly)."""

    team_id: int
    games_played: int = 0
    goals_per_90: float = 0.0
    goals_conceded_per_90: float = 0.0
    xg_per_90: float = 0.0
    xgc_per_90: float = 0.0
    home_goals_per_90: float = 0.0
    home_xg_per_90: float = 0.0
    away_goals_per_90: float = 0.0
    away_xg_per_90: float = 0.0
    recent_form: float = 0.0
    ppg: float = 0.0
    goals_vs_xg: float = 0.0

    def factors(self) -> dict[str, float]:
        """Raw factor values keyed by FACTOR_KEYS."""
        return {key: getattr(self, key) for key in FACTOR_KEYS}


@dataclass
class WeightProfile:
    """Named, versioned set of factor weights. One row is active at a time."""

    name: str
    weights: dict[str, float]
    recent_form_gameweeks: int = 5
    recent_form_weight_pct: float = 60.0
    id: int | None = None
    version: int = 1
    description: str | None = None

    def weight(self, key: str) -> float:
        return float(self.weights.get(key, 0.0))


@dataclass
class TeamFdrCalculation:
    """Calculation snapshot for one team. Unique per (team_id, season_id, gameweek)."""

    team_id: int
    games_played: int
    raw_factors: dict[str, float]
    factor_scores: dict[str, float]
    home_strength_score: float
    away_strength_score: float
    overall_strength_score: float
    home_difficulty: int
    away_difficulty: int
    season_id: int | None = None
    gameweek_calculated: int | None = None
    calculation_timestamp: datetime | None = None
    weight_profile_id: int | None = None
    is_default: bool = False  # True for neutral "insufficient data" rows


@dataclass(slots=True)
class LastCalculation:
    """Most recent calculation marker, input to the staleness gate."""

    gameweek: int
    calculated_at: datetime


@dataclass(slots=True)
class Player:
    """A roster player with the name of the club they currently play for."""

    id: int
    team_id: int
    web_name: str | None = None
    first_name: str | None = None
    second_name: str | None = None
    element_type: int | None = None  # 1 GKP, 2 DEF, 3 MID, 4 FWD
    team_name: str | None = None
    team_short_name: str | None = None


@dataclass(slots=True)
class Team:
    """A team known to the store, with its current rating projection."""

    id: int
    name: str
    short_name: str
    code: int | None = None
    home_difficulty: int | None = None
    away_difficulty: int | None = None
    updated_at: datetime | None = None


@dataclass
class SyncPlan:
    """Which players to re-fetch and which gameweeks to keep from their history."""

    tier: str  # "recent", "full", "live" or "gameweek"
    player_ids: list[int]
    gameweeks: frozenset[int]
    current_gameweek: int
    metadata: dict[str, Any] = field(default_factory=dict)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an FPL ISO timestamp ("2025-08-15T17:30:00Z"); None if blank or malformed."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
