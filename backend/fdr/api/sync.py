"""Sync API routes - roster, tiered stats sync and the combined scheduled trigger."""

import logging
import time
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from fdr.context import PipelineContext
from fdr.dependencies import get_context, require_admin
from fdr.services.errors import ConfigMissing, SourceUnavailable

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/sync",
    tags=["sync"],
    dependencies=[Depends(require_admin)],
)


# =============================================================================
# Pydantic Response Models
# =============================================================================


class RosterSyncResponse(BaseModel):
    """Response for POST /players."""

    season_id: int | None
    teams_synced: int = Field(ge=0)
    players_synced: int = Field(ge=0)
    current_gameweek: int | None
    gameweek_advanced: tuple[int | None, int] | None = Field(
        default=None, description="(previous, new) current gameweek when it moved"
    )
    duration_seconds: float = Field(ge=0)


class StatsSyncResponse(BaseModel):
    """Response for POST /quick-stats, /full-stats and /live-gameweek."""

    tier: str
    current_gameweek: int
    gameweeks: list[int]
    players_planned: int = Field(ge=0)
    players_synced: int = Field(ge=0)
    stats_updated: int = Field(ge=0)
    errors: int = Field(ge=0)
    batches_run: int = Field(ge=0)
    truncated: bool = Field(description="Budget ran out before every batch started")
    duration_seconds: float = Field(ge=0)
    metadata: dict[str, Any] = {}


class TriggerResponse(BaseModel):
    """Response for POST /trigger: each step's result, or its error."""

    roster: dict[str, Any] | None
    roster_error: str | None = None
    stats: dict[str, Any] | None
    stats_error: str | None = None
    fdr: dict[str, Any]
    errors: int = Field(ge=0)
    duration_seconds: float = Field(ge=0)


# =============================================================================
# Routes
# =============================================================================


@router.post("/players", response_model=RosterSyncResponse)
async def sync_players(ctx: PipelineContext = Depends(get_context)) -> dict:
    """Sync teams, players and the current gameweek marker from bootstrap-static."""
    try:
        result = await ctx.stats_sync().sync_roster()
    except SourceUnavailable as e:
        raise HTTPException(status_code=502, detail=f"FPL API unavailable: {e}") from e
    except Exception as e:
        logger.exception(f"Players sync failed: {e}")
        raise HTTPException(
            status_code=500, detail="Internal server error while syncing players"
        ) from e
    return asdict(result)


@router.post("/quick-stats", response_model=StatsSyncResponse)
async def sync_quick_stats(ctx: PipelineContext = Depends(get_context)) -> dict:
    """
    Sync stats for players in finished fixtures of the recent gameweeks.

    Fast enough to run hourly within its budget.
    """
    settings = ctx.settings
    try:
        result = await ctx.stats_sync().sync_recent(
            delay_per_player=settings.quick_sync_delay_seconds,
            budget_seconds=settings.quick_sync_budget_seconds,
            window=settings.recent_sync_gameweeks,
        )
    except ConfigMissing as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except SourceUnavailable as e:
        raise HTTPException(status_code=502, detail=f"FPL API unavailable: {e}") from e
    except Exception as e:
        logger.exception(f"Quick stats sync failed: {e}")
        raise HTTPException(
            status_code=500, detail="Internal server error while syncing stats"
        ) from e
    return asdict(result)


@router.post("/full-stats", response_model=StatsSyncResponse)
async def sync_full_stats(ctx: PipelineContext = Depends(get_context)) -> dict:
    """
    Sync every player's history up to the current gameweek.

    Heavy (one request per player); run weekly.
    """
    settings = ctx.settings
    try:
        result = await ctx.stats_sync().sync_full(
            delay_per_player=settings.full_sync_delay_seconds,
            budget_seconds=settings.full_sync_budget_seconds,
        )
    except ConfigMissing as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except SourceUnavailable as e:
        raise HTTPException(status_code=502, detail=f"FPL API unavailable: {e}") from e
    except Exception as e:
        logger.exception(f"Full stats sync failed: {e}")
        raise HTTPException(
            status_code=500, detail="Internal server error while syncing stats"
        ) from e
    return asdict(result)


@router.post("/live-gameweek", response_model=StatsSyncResponse)
async def sync_live_gameweek(ctx: PipelineContext = Depends(get_context)) -> dict:
    """
    Sync the in-progress gameweek's rows for every roster player.

    Meant for a cron every few minutes on match days; returns an empty run
    once the current gameweek is finished.
    """
    settings = ctx.settings
    try:
        result = await ctx.stats_sync().sync_live(
            delay_per_player=settings.live_sync_delay_seconds,
            budget_seconds=settings.live_sync_budget_seconds,
        )
    except ConfigMissing as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except SourceUnavailable as e:
        raise HTTPException(status_code=502, detail=f"FPL API unavailable: {e}") from e
    except Exception as e:
        logger.exception(f"Live gameweek sync failed: {e}")
        raise HTTPException(
            status_code=500, detail="Internal server error while syncing stats"
        ) from e
    return asdict(result)


@router.post("/trigger", response_model=TriggerResponse)
async def trigger(
    force: bool = Query(default=False, description="Bypass the FDR freshness check"),
    ctx: PipelineContext = Depends(get_context),
) -> dict:
    """
    Roster sync, quick stats sync, then one FDR cycle.

    FPL API failures in the roster or stats step are reported and the run
    continues: the FDR cycle only needs what the store already holds. A missing
    gameweek, season or roster aborts the request.
    """
    started = time.monotonic()
    settings = ctx.settings
    service = ctx.stats_sync()

    roster = None
    roster_error = None
    try:
        roster = asdict(await service.sync_roster())
    except SourceUnavailable as e:
        roster_error = str(e)
        logger.warning(f"Players sync failed, continuing with known roster: {e}")

    stats = None
    stats_error = None
    try:
        stats = await service.sync_recent(
            delay_per_player=settings.quick_sync_delay_seconds,
            budget_seconds=settings.quick_sync_budget_seconds,
            window=settings.recent_sync_gameweeks,
        )
    except SourceUnavailable as e:
        stats_error = str(e)
        logger.warning(f"Stats sync failed, calculating from stored stats: {e}")
    except ConfigMissing as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except Exception as e:
        logger.exception(f"Sync trigger failed: {e}")
        raise HTTPException(
            status_code=500, detail="Internal server error during sync trigger"
        ) from e

    try:
        summary = await ctx.pipeline().run_cycle(force=force)
    except ConfigMissing as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except Exception as e:
        logger.exception(f"Sync trigger failed: {e}")
        raise HTTPException(
            status_code=500, detail="Internal server error during sync trigger"
        ) from e

    step_errors = sum(1 for error in (roster_error, stats_error) if error)
    return {
        "roster": roster,
        "roster_error": roster_error,
        "stats": asdict(stats) if stats else None,
        "stats_error": stats_error,
        "fdr": asdict(summary),
        "errors": (stats.errors if stats else 0) + summary.errors + step_errors,
        "duration_seconds": round(time.monotonic() - started, 2),
    }
