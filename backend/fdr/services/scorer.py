"""Scoring engine: normalized factor scores, weighted strengths and difficulty ratings.

Normalization is min-max over the teams rated in the current run, mapped to a
0-100 scale. It is recomputed on every run so ratings follow the league's
scoring environment as it drifts through a season. Factors where a higher raw
value means a weaker team (goals conceded, xGC) are inverted so that a higher
score always means a stronger team.

Strengths are weighted means of normalized scores:

    home_strength = sum(w_f * score_f) / sum(w_f)   over home-relevant factors
    away_strength = sum(w_f * score_f) / sum(w_f)   over away-relevant factors
    overall_strength = (home_strength + away_strength) / 2

A strength of s maps to difficulty ceil(s / 10) clamped to 1-10. A strong team
is a hard opponent, so higher strength means a higher difficulty for whoever
faces it.

No clock or randomness is used here: identical snapshots and profile produce
identical output.
"""

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from fdr.services.models import (
    DIFFICULTY_MAX,
    DIFFICULTY_MIN,
    FACTOR_KEYS,
    NEUTRAL_DIFFICULTY,
    NEUTRAL_SCORE,
    TeamFactorSnapshot,
    TeamFdrCalculation,
    WeightProfile,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Factor definitions
# =============================================================================


@dataclass(frozen=True, slots=True)
class FactorSpec:
    """How a factor participates in scoring."""

    key: str
    home: bool  # Included in home_strength
    away: bool  # Included in away_strength
    inverted: bool = False  # Higher raw value = weaker team


FACTOR_SPECS: tuple[FactorSpec, ...] = (
    FactorSpec("goals_per_90", home=True, away=True),
    FactorSpec("goals_conceded_per_90", home=True, away=True, inverted=True),
    FactorSpec("xg_per_90", home=True, away=True),
    FactorSpec("xgc_per_90", home=True, away=True, inverted=True),
    FactorSpec("home_goals_per_90", home=True, away=False),
    FactorSpec("home_xg_per_90", home=True, away=False),
    FactorSpec("away_goals_per_90", home=False, away=True),
    FactorSpec("away_xg_per_90", home=False, away=True),
    FactorSpec("recent_form", home=True, away=True),
    FactorSpec("ppg", home=True, away=True),
    FactorSpec("goals_vs_xg", home=True, away=True),
)

SCORE_MIN = 0.0
SCORE_MAX = 100.0
SCORE_DECIMALS = 2

# Default profile used when no weighting profile is active
DEFAULT_WEIGHTS: dict[str, float] = {
    "goals_per_90": 0.12,
    "goals_conceded_per_90": 0.12,
    "xg_per_90": 0.14,
    "xgc_per_90": 0.14,
    "home_goals_per_90": 0.05,
    "home_xg_per_90": 0.05,
    "away_goals_per_90": 0.05,
    "away_xg_per_90": 0.05,
    "recent_form": 0.15,
    "ppg": 0.10,
    "goals_vs_xg": 0.03,  # Finishing luck, kept small
}

DEFAULT_WEIGHT_PROFILE = WeightProfile(
    name="default",
    description="Built-in balanced profile (used when no profile is active)",
    weights=DEFAULT_WEIGHTS,
    recent_form_gameweeks=5,
    recent_form_weight_pct=60.0,
)


def _validate_specs() -> None:
    """Validate factor specs and default weights cover exactly FACTOR_KEYS.

    Raises:
        ValueError: If a factor is missing or unknown
    """
    spec_keys = tuple(spec.key for spec in FACTOR_SPECS)
    if spec_keys != FACTOR_KEYS:
        raise ValueError(f"FACTOR_SPECS out of sync with FACTOR_KEYS: {spec_keys}")
    if set(DEFAULT_WEIGHTS) != set(FACTOR_KEYS):
        raise ValueError("DEFAULT_WEIGHTS must define a weight for every factor")


# Validate at module load to catch config errors early
_validate_specs()


# =============================================================================
# Normalization
# =============================================================================


def _clamp_score(value: float) -> float:
    return round(min(SCORE_MAX, max(SCORE_MIN, value)), SCORE_DECIMALS)


def normalize_min_max(values: dict[int, float], inverted: bool = False) -> dict[int, float]:
    """Map values onto 0-100 relative to the current population.

    Args:
        values: Raw factor value per team_id
        inverted: Map the minimum to 100 instead of 0

    Returns:
        Normalized score per team_id; 50.0 for everyone when all values are equal
    """
    if not values:
        return {}

    low = min(values.values())
    high = max(values.values())
    spread = high - low

    if spread <= 0:
        return {team_id: NEUTRAL_SCORE for team_id in values}

    scores = {}
    for team_id, value in values.items():
        score = (value - low) / spread * SCORE_MAX
        if inverted:
            score = SCORE_MAX - score
        scores[team_id] = _clamp_score(score)
    return scores


# =============================================================================
# Weighting and difficulty
# =============================================================================


def effective_weights(profile: WeightProfile) -> dict[str, float]:
    """Weights per factor, with missing or negative weights treated as 0."""
    weights = {}
    for key in FACTOR_KEYS:
        weight = profile.weight(key)
        if weight < 0:
            logger.warning(
                f"Weight profile '{profile.name}' has negative weight {weight} "
                f"for {key}, using 0"
            )
            weight = 0.0
        weights[key] = weight
    return weights


def weighted_strength(
    scores: dict[str, float],
    weights: dict[str, float],
    keys: Iterable[str],
) -> float:
    """Weighted mean of normalized scores over the given factor keys.

    Returns:
        Strength on the 0-100 scale, or 50.0 if the selected weights total 0
    """
    keys = list(keys)
    total_weight = sum(weights[k] for k in keys)
    if total_weight <= 0:
        return NEUTRAL_SCORE
    strength = sum(weights[k] * scores[k] for k in keys) / total_weight
    return _clamp_score(strength)


def strength_to_difficulty(strength: float) -> int:
    """Bucket a 0-100 strength into an integer difficulty rating 1-10."""
    bucket = math.ceil(strength / 10)
    return min(DIFFICULTY_MAX, max(DIFFICULTY_MIN, bucket))


# =============================================================================
# Scoring
# =============================================================================


def default_calculation(
    team_id: int,
    games_played: int = 0,
    weight_profile_id: int | None = None,
) -> TeamFdrCalculation:
    """Neutral "insufficient data" calculation: rating 5 home and away."""
    return TeamFdrCalculation(
        team_id=team_id,
        games_played=games_played,
        raw_factors={key: 0.0 for key in FACTOR_KEYS},
        factor_scores={key: NEUTRAL_SCORE for key in FACTOR_KEYS},
        home_strength_score=NEUTRAL_SCORE,
        away_strength_score=NEUTRAL_SCORE,
        overall_strength_score=NEUTRAL_SCORE,
        home_difficulty=NEUTRAL_DIFFICULTY,
        away_difficulty=NEUTRAL_DIFFICULTY,
        weight_profile_id=weight_profile_id,
        is_default=True,
    )


def score_teams(
    snapshots: Sequence[TeamFactorSnapshot],
    profile: WeightProfile,
) -> list[TeamFdrCalculation]:
    """Produce one TeamFdrCalculation per snapshot.

    Only teams with games_played > 0 form the normalization population; teams
    without games receive the neutral default calculation.

    Args:
        snapshots: One snapshot per team for the current run
        profile: Active weight profile

    Returns:
        Calculations sorted by team_id (not yet stamped with season/gameweek)
    """
    weights = effective_weights(profile)
    home_keys = [spec.key for spec in FACTOR_SPECS if spec.home]
    away_keys = [spec.key for spec in FACTOR_SPECS if spec.away]

    rated = sorted(
        (s for s in snapshots if s.games_played > 0), key=lambda s: s.team_id
    )
    raw_by_team = {s.team_id: s.factors() for s in rated}

    # factor -> team_id -> normalized score
    normalized: dict[str, dict[int, float]] = {
        spec.key: normalize_min_max(
            {team_id: raw[spec.key] for team_id, raw in raw_by_team.items()},
            inverted=spec.inverted,
        )
        for spec in FACTOR_SPECS
    }

    results = []
    for snapshot in sorted(snapshots, key=lambda s: s.team_id):
        if snapshot.games_played <= 0:
            results.append(
                default_calculation(snapshot.team_id, weight_profile_id=profile.id)
            )
            continue

        scores = {key: normalized[key][snapshot.team_id] for key in FACTOR_KEYS}
        home_strength = weighted_strength(scores, weights, home_keys)
        away_strength = weighted_strength(scores, weights, away_keys)
        overall_strength = _clamp_score((home_strength + away_strength) / 2)

        results.append(
            TeamFdrCalculation(
                team_id=snapshot.team_id,
                games_played=snapshot.games_played,
                raw_factors=raw_by_team[snapshot.team_id],
                factor_scores=scores,
                home_strength_score=home_strength,
                away_strength_score=away_strength,
                overall_strength_score=overall_strength,
                home_difficulty=strength_to_difficulty(home_strength),
                away_difficulty=strength_to_difficulty(away_strength),
                weight_profile_id=profile.id,
            )
        )

    return results
