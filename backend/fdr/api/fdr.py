"""FDR API routes - team ratings, factor breakdown and recalculation trigger."""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from fdr.context import PipelineContext
from fdr.dependencies import get_context, require_admin
from fdr.services.errors import ConfigMissing
from fdr.services.models import DIFFICULTY_MAX, DIFFICULTY_MIN, FACTOR_KEYS, NEUTRAL_DIFFICULTY

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/fdr", tags=["fdr"])


# =============================================================================
# Pydantic Response Models
# =============================================================================


class TeamRatingResponse(BaseModel):
    """Current difficulty rating for one team."""

    id: int
    name: str
    short_name: str
    code: int | None
    home_difficulty: int = Field(
        ge=DIFFICULTY_MIN,
        le=DIFFICULTY_MAX,
        description="Difficulty for an opponent visiting this team (team plays at home)",
    )
    away_difficulty: int = Field(
        ge=DIFFICULTY_MIN,
        le=DIFFICULTY_MAX,
        description="Difficulty for an opponent hosting this team (team plays away)",
    )
    updated_at: datetime | None


class RatingsResponse(BaseModel):
    """Response for GET /ratings."""

    teams: list[TeamRatingResponse]
    updated_at: datetime | None = Field(description="Most recent rating update")
    count: int = Field(ge=0)


class FactorBreakdown(BaseModel):
    """One factor's raw value, normalized score and weight."""

    raw: float
    score: float = Field(ge=0, le=100)
    weight: float | None = Field(default=None, description="Active profile weight")


class WeightProfileResponse(BaseModel):
    id: int | None
    name: str
    version: int
    recent_form_gameweeks: int
    recent_form_weight_pct: float


class BreakdownResponse(BaseModel):
    """Response for GET /breakdown/{team_id}."""

    team_id: int
    name: str
    short_name: str
    gameweek_calculated: int | None
    calculation_timestamp: datetime | None
    games_played: int = Field(ge=0)
    home_strength_score: float = Field(ge=0, le=100)
    away_strength_score: float = Field(ge=0, le=100)
    overall_strength_score: float = Field(ge=0, le=100)
    home_difficulty: int = Field(ge=DIFFICULTY_MIN, le=DIFFICULTY_MAX)
    away_difficulty: int = Field(ge=DIFFICULTY_MIN, le=DIFFICULTY_MAX)
    is_default: bool = Field(
        description="Neutral rating used because the team has no games yet"
    )
    factors: dict[str, FactorBreakdown]
    weight_profile: WeightProfileResponse | None


class CalculateResponse(BaseModel):
    """Response for POST /calculate. Partial failures still return 200."""

    status: str = Field(description="'completed' or 'skipped'")
    gameweek: int
    teams_updated: int = Field(ge=0)
    errors: int = Field(ge=0)
    duration_seconds: float = Field(ge=0)
    reason: str | None = None
    minutes_since_last_update: float | None = None
    weight_profile: str | None = None
    sample_ratings: list[dict[str, Any]] = []


TeamIdPath = Annotated[int, Path(ge=1, description="FPL team ID")]


# =============================================================================
# Routes
# =============================================================================


@router.get("/ratings", response_model=RatingsResponse)
async def get_ratings(ctx: PipelineContext = Depends(get_context)) -> dict:
    """
    Get current FDR ratings for all teams.

    Ratings are refreshed by the recalculation cycle, so they may lag the
    latest stats by up to the freshness window. Teams never rated read as 5.
    """
    try:
        teams = await ctx.store.list_teams()
    except Exception as e:
        logger.exception(f"Failed to get FDR ratings: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while fetching FDR ratings",
        ) from e

    updated = [t.updated_at for t in teams if t.updated_at is not None]
    return {
        "teams": [
            {
                "id": t.id,
                "name": t.name,
                "short_name": t.short_name,
                "code": t.code,
                "home_difficulty": t.home_difficulty or NEUTRAL_DIFFICULTY,
                "away_difficulty": t.away_difficulty or NEUTRAL_DIFFICULTY,
                "updated_at": t.updated_at,
            }
            for t in teams
        ],
        "updated_at": max(updated) if updated else None,
        "count": len(teams),
    }


@router.get("/breakdown/{team_id}", response_model=BreakdownResponse)
async def get_breakdown(
    team_id: TeamIdPath,
    ctx: PipelineContext = Depends(get_context),
) -> dict:
    """
    Get the latest factor breakdown for one team.

    Returns raw factors, normalized scores and the weights of the active profile.
    """
    try:
        team = await ctx.store.get_team(team_id)
        calculation = await ctx.store.get_latest_calculation(team_id)
        profile = await ctx.store.get_active_weight_profile()
    except Exception as e:
        logger.exception(f"Failed to get FDR breakdown for team {team_id}: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while fetching FDR breakdown",
        ) from e

    if team is None:
        raise HTTPException(status_code=404, detail=f"Team {team_id} not found")
    if calculation is None:
        raise HTTPException(
            status_code=404,
            detail="No FDR calculation found for this team. Run /api/v1/fdr/calculate first.",
        )
    if profile is None:
        logger.warning("No active weighting profile found")

    return {
        "team_id": team.id,
        "name": team.name,
        "short_name": team.short_name,
        "gameweek_calculated": calculation.gameweek_calculated,
        "calculation_timestamp": calculation.calculation_timestamp,
        "games_played": calculation.games_played,
        "home_strength_score": calculation.home_strength_score,
        "away_strength_score": calculation.away_strength_score,
        "overall_strength_score": calculation.overall_strength_score,
        "home_difficulty": calculation.home_difficulty,
        "away_difficulty": calculation.away_difficulty,
        "is_default": calculation.is_default,
        "factors": {
            key: {
                "raw": calculation.raw_factors[key],
                "score": calculation.factor_scores[key],
                "weight": profile.weight(key) if profile else None,
            }
            for key in FACTOR_KEYS
        },
        "weight_profile": (
            {
                "id": profile.id,
                "name": profile.name,
                "version": profile.version,
                "recent_form_gameweeks": profile.recent_form_gameweeks,
                "recent_form_weight_pct": profile.recent_form_weight_pct,
            }
            if profile
            else None
        ),
    }


@router.post(
    "/calculate",
    response_model=CalculateResponse,
    dependencies=[Depends(require_admin)],
)
async def calculate_fdr(
    force: bool = Query(default=False, description="Bypass the freshness check"),
    ctx: PipelineContext = Depends(get_context),
) -> dict:
    """
    Run one FDR recalculation cycle.

    Skips (status "skipped") when the last calculation covers the current
    gameweek and is inside the freshness window, unless force=true.
    """
    try:
        summary = await ctx.pipeline().run_cycle(force=force)
    except ConfigMissing as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except Exception as e:
        logger.exception(f"FDR calculation failed: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while calculating FDR",
        ) from e

    return asdict(summary)
