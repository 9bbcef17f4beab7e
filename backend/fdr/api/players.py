"""Player API routes - gameweek history and gameweek-range aggregates."""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from fdr.context import PipelineContext
from fdr.dependencies import get_context
from fdr.services.models import Player
from fdr.services.player_stats import aggregate_range, summarize_history
from fdr.services.sync_tiering import FIRST_GAMEWEEK, LAST_GAMEWEEK

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/players", tags=["players"])

MAX_RANGE_PLAYERS = 100


# =============================================================================
# Pydantic Response Models
# =============================================================================


class PlayerInfo(BaseModel):
    id: int
    web_name: str | None
    first_name: str | None
    second_name: str | None
    element_type: int | None
    team_id: int
    team_name: str | None
    team_short_name: str | None


class GameweekStats(BaseModel):
    total_points: int
    minutes: int
    goals_scored: int
    assists: int
    clean_sheets: int
    goals_conceded: int
    bonus: int
    bps: int
    own_goals: int
    penalties_saved: int
    penalties_missed: int
    yellow_cards: int
    red_cards: int
    saves: int
    expected_goals: float
    expected_assists: float
    expected_goal_involvements: float
    expected_goals_conceded: float
    influence: float
    creativity: float
    threat: float
    ict_index: float


class Ownership(BaseModel):
    value: int = Field(description="Price x 10")
    selected: int
    transfers_in: int
    transfers_out: int


class HistoryEntry(BaseModel):
    gameweek_id: int
    opponent_team_id: int
    opponent_team_name: str | None
    opponent_team_short_name: str | None
    was_home: bool
    kickoff_time: datetime | None
    stats: GameweekStats
    ownership: Ownership


class HistorySummary(BaseModel):
    total_gameweeks: int = Field(ge=0)
    total_points: int
    total_minutes: int = Field(ge=0)
    total_goals: int = Field(ge=0)
    total_assists: int = Field(ge=0)
    total_clean_sheets: int = Field(ge=0)
    total_bonus: int = Field(ge=0)
    average_points: float


class PlayerHistoryResponse(BaseModel):
    """Response for GET /{player_id}/history."""

    player: PlayerInfo
    summary: HistorySummary
    history: list[HistoryEntry]


class RangeTotals(BaseModel):
    player_id: int
    web_name: str | None
    element_type: int | None
    team_id: int
    team_short_name: str | None
    games_played: int = Field(ge=0)
    points_per_game: float
    minutes: int
    total_points: int
    goals_scored: int
    assists: int
    clean_sheets: int
    goals_conceded: int
    own_goals: int
    penalties_saved: int
    penalties_missed: int
    yellow_cards: int
    red_cards: int
    saves: int
    bonus: int
    bps: int
    expected_goals: float
    expected_assists: float
    expected_goal_involvements: float
    expected_goals_conceded: float
    influence: float
    creativity: float
    threat: float
    ict_index: float


class GameweekRange(BaseModel):
    start: int
    end: int
    total_gameweeks: int = Field(ge=1)


class GameweekRangeResponse(BaseModel):
    """Response for GET /gameweek-range."""

    data: list[RangeTotals]
    player_count: int = Field(ge=0)
    gameweek_range: GameweekRange


PlayerIdPath = Annotated[int, Path(ge=1, description="FPL player (element) ID")]
GameweekQuery = Annotated[int, Query(ge=FIRST_GAMEWEEK, le=LAST_GAMEWEEK)]


def parse_player_ids(raw: str) -> list[int]:
    """Parse "1,2,3" into sorted, deduplicated ids.

    Raises:
        ValueError: On a non-integer or non-positive id, or too many ids
    """
    ids = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        player_id = int(part)  # ValueError on junk
        if player_id < 1:
            raise ValueError(f"Invalid player ID: {part}")
        ids.add(player_id)
    if not ids:
        raise ValueError("player_ids must list at least one player")
    if len(ids) > MAX_RANGE_PLAYERS:
        raise ValueError(f"At most {MAX_RANGE_PLAYERS} players per request")
    return sorted(ids)


def _player_info(player: Player) -> dict:
    return {
        "id": player.id,
        "web_name": player.web_name,
        "first_name": player.first_name,
        "second_name": player.second_name,
        "element_type": player.element_type,
        "team_id": player.team_id,
        "team_name": player.team_name,
        "team_short_name": player.team_short_name,
    }


# =============================================================================
# Routes
# =============================================================================


@router.get("/gameweek-range", response_model=GameweekRangeResponse)
async def get_gameweek_range(
    player_ids: Annotated[str, Query(description="Comma-separated player IDs, e.g. 1,2,3")],
    start_gw: GameweekQuery,
    end_gw: GameweekQuery,
    ctx: PipelineContext = Depends(get_context),
) -> dict:
    """
    Get each player's summed stats over a gameweek range (inclusive).

    Requested players without rows in the range report zero totals; unknown
    player IDs are left out.
    """
    if start_gw > end_gw:
        raise HTTPException(
            status_code=400, detail="start_gw must be less than or equal to end_gw"
        )
    try:
        ids = parse_player_ids(player_ids)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    try:
        players = await ctx.store.get_players(ids)
        rows = await ctx.store.get_player_stats_in_range(ids, start_gw, end_gw)
    except Exception as e:
        logger.exception(f"Failed to get gameweek range stats: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while fetching player stats",
        ) from e

    totals = aggregate_range([p.id for p in players], rows)
    data = [
        {
            **totals[player.id],
            "web_name": player.web_name,
            "element_type": player.element_type,
            "team_id": player.team_id,
            "team_short_name": player.team_short_name,
        }
        for player in players
    ]
    return {
        "data": data,
        "player_count": len(data),
        "gameweek_range": {
            "start": start_gw,
            "end": end_gw,
            "total_gameweeks": end_gw - start_gw + 1,
        },
    }


@router.get("/{player_id}/history", response_model=PlayerHistoryResponse)
async def get_player_history(
    player_id: PlayerIdPath,
    limit: int | None = Query(
        default=None, ge=1, le=LAST_GAMEWEEK, description="Max gameweeks to return"
    ),
    ctx: PipelineContext = Depends(get_context),
) -> dict:
    """
    Get a player's gameweek-by-gameweek stats with opponent names and a summary.

    Rows are in gameweek order; limit keeps the earliest ones.
    """
    try:
        player = await ctx.store.get_player(player_id)
        rows = await ctx.store.get_player_history(player_id, limit=limit) if player else []
        teams = {t.id: t for t in await ctx.store.list_teams()} if player else {}
    except Exception as e:
        logger.exception(f"Failed to get history for player {player_id}: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while fetching player history",
        ) from e

    if player is None:
        raise HTTPException(status_code=404, detail=f"Player {player_id} not found")

    history = []
    for row in rows:
        opponent = teams.get(row.opponent_team)
        history.append(
            {
                "gameweek_id": row.gameweek_id,
                "opponent_team_id": row.opponent_team,
                "opponent_team_name": opponent.name if opponent else None,
                "opponent_team_short_name": opponent.short_name if opponent else None,
                "was_home": row.was_home,
                "kickoff_time": row.kickoff_time,
                "stats": {name: getattr(row, name) for name in GameweekStats.model_fields},
                "ownership": {name: getattr(row, name) for name in Ownership.model_fields},
            }
        )

    return {
        "player": _player_info(player),
        "summary": summarize_history(rows),
        "history": history,
    }
