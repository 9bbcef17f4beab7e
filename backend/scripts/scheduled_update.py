#!/usr/bin/env python
"""
Scheduled stats sync and FDR recalculation.

Run hourly (quick tier), weekly (full tier) and every few minutes on match
days (live tier) via cron.

Steps:
1. Roster - teams, players and current gameweek from bootstrap (~2 sec)
2. Stats - quick tier: players from finished fixtures of the last 3 GWs
           full tier: every player, every GW up to the current one
           live tier: every player, current GW only while it is in progress
           --gameweek N: every player, GW N only, no time budget
3. FDR - one recalculation cycle, skipped while the last one is fresh

An FPL API outage in step 1 or 2 is logged and step 3 still runs on the
stats already stored.

Usage:
    python -m scripts.scheduled_update                # Quick tier + FDR
    python -m scripts.scheduled_update --tier full    # Full tier + FDR
    python -m scripts.scheduled_update --tier live    # Live tier + FDR
    python -m scripts.scheduled_update --gameweek 22  # Backfill GW22 + FDR
    python -m scripts.scheduled_update --force        # Recalculate even if fresh
    python -m scripts.scheduled_update --skip-sync    # FDR cycle only
    python -m scripts.scheduled_update --status       # Show current state
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fdr.config import Settings, get_settings
from fdr.context import PipelineContext
from fdr.db import close_pool, init_pool
from fdr.services.errors import SourceUnavailable
from fdr.services.pipeline import CycleSummary, resolve_current_gameweek
from fdr.services.stats_sync import SyncResult
from fdr.services.sync_tiering import FIRST_GAMEWEEK, LAST_GAMEWEEK

# Load environment
load_dotenv(".env.local")
load_dotenv(".env")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

TIER_QUICK = "quick"
TIER_FULL = "full"
TIER_LIVE = "live"

# Headroom on top of the stats budget for roster sync and the FDR cycle
RUNTIME_MARGIN_SECONDS = 120


def runtime_budget(
    settings: Settings, tier: str, skip_sync: bool, gameweek: int | None = None
) -> float | None:
    """Overall asyncio.wait_for timeout for one invocation (None = unbounded)."""
    if skip_sync:
        return RUNTIME_MARGIN_SECONDS
    if gameweek is not None:
        return None
    if tier == TIER_FULL:
        return settings.full_sync_budget_seconds + RUNTIME_MARGIN_SECONDS
    if tier == TIER_LIVE:
        return settings.live_sync_budget_seconds + RUNTIME_MARGIN_SECONDS
    return settings.quick_sync_budget_seconds + RUNTIME_MARGIN_SECONDS


def gameweek_arg(value: str) -> int:
    """argparse type for --gameweek: an integer within the season."""
    try:
        gameweek = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid gameweek: {value!r}") from e
    if not FIRST_GAMEWEEK <= gameweek <= LAST_GAMEWEEK:
        raise argparse.ArgumentTypeError(
            f"gameweek must be between {FIRST_GAMEWEEK} and {LAST_GAMEWEEK}"
        )
    return gameweek


async def run_stats_sync(
    context: PipelineContext, tier: str, gameweek: int | None = None
) -> SyncResult:
    """Roster sync followed by the selected stats tier (or a one-gameweek backfill)."""
    settings = context.settings
    service = context.stats_sync()

    try:
        await service.sync_roster()
    except SourceUnavailable as e:
        # Most players already exist; stats for unknown players will fail per row
        logger.warning(f"Roster sync failed, continuing with known roster: {e}")

    if gameweek is not None:
        return await service.sync_gameweek(
            gameweek, delay_per_player=settings.backfill_sync_delay_seconds
        )
    if tier == TIER_FULL:
        return await service.sync_full(
            delay_per_player=settings.full_sync_delay_seconds,
            budget_seconds=settings.full_sync_budget_seconds,
        )
    if tier == TIER_LIVE:
        return await service.sync_live(
            delay_per_player=settings.live_sync_delay_seconds,
            budget_seconds=settings.live_sync_budget_seconds,
        )
    return await service.sync_recent(
        delay_per_player=settings.quick_sync_delay_seconds,
        budget_seconds=settings.quick_sync_budget_seconds,
        window=settings.recent_sync_gameweeks,
    )


def print_summary(stats: SyncResult | None, summary: CycleSummary) -> None:
    print("\nScheduled Update Summary")
    print("-" * 40)
    if stats is not None:
        print(f"Stats tier:          {stats.tier}")
        print(f"Gameweeks:           {stats.gameweeks}")
        print(f"Players synced:      {stats.players_synced}/{stats.players_planned}")
        print(f"Rows upserted:       {stats.stats_updated}")
        print(f"Sync errors:         {stats.errors}")
        print(f"Truncated:           {stats.truncated}")
    print(f"FDR status:          {summary.status} ({summary.reason})")
    print(f"Gameweek:            {summary.gameweek}")
    print(f"Teams updated:       {summary.teams_updated}")
    print(f"FDR errors:          {summary.errors}")
    for rating in summary.sample_ratings:
        print(
            f"  {rating['team'] or rating['team_id']}: "
            f"H{rating['home_difficulty']} A{rating['away_difficulty']}"
        )
    print("-" * 40)


async def run_update(
    context: PipelineContext,
    tier: str,
    force: bool,
    skip_sync: bool,
    gameweek: int | None = None,
) -> CycleSummary:
    """Sync (unless skipped) then one FDR cycle against an open context."""
    stats = None
    if not skip_sync:
        try:
            stats = await run_stats_sync(context, tier, gameweek)
        except SourceUnavailable as e:
            logger.warning(f"Stats sync failed, calculating from stored stats: {e}")
    summary = await context.pipeline().run_cycle(force=force)
    print_summary(stats, summary)
    return summary


async def run_scheduled_update(
    tier: str, force: bool, skip_sync: bool, gameweek: int | None = None
) -> CycleSummary:
    """Run one scheduled invocation. Returns the FDR cycle summary."""
    settings = get_settings()
    pool = await init_pool()
    context = PipelineContext.from_pool(pool, settings)

    try:
        return await run_update(context, tier, force, skip_sync, gameweek)
    except Exception as e:
        logger.error(f"Scheduled update failed: {e}", exc_info=True)
        raise
    finally:
        await context.close()
        await close_pool()


async def show_status() -> None:
    """Show current gameweek, season and last calculation."""
    settings = get_settings()
    pool = await init_pool()
    context = PipelineContext.from_pool(pool, settings)

    try:
        store = context.store
        season_id = await store.get_current_season_id()
        gameweek = await resolve_current_gameweek(store)
        last = await store.get_last_calculation(season_id) if season_id else None
        teams = await store.list_teams()

        print("\nFDR Status")
        print("-" * 40)
        print(f"Season ID:           {season_id}")
        print(f"Current Gameweek:    {gameweek}")
        if last:
            print(f"Last calculation:    GW{last.gameweek} at {last.calculated_at}")
        else:
            print("No FDR calculation has run yet for this season")
        print(f"Teams:               {len(teams)}")
        print("-" * 40)
    finally:
        await context.close()
        await close_pool()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scheduled stats sync and FDR update")
    parser.add_argument(
        "--tier",
        choices=[TIER_QUICK, TIER_FULL, TIER_LIVE],
        default=TIER_QUICK,
        help="Stats sync tier (quick: recent players, full: every player, "
        "live: current gameweek only)",
    )
    parser.add_argument(
        "--gameweek",
        type=gameweek_arg,
        default=None,
        help="Backfill one gameweek for every player (ignores --tier, no time limit)",
    )
    parser.add_argument(
        "--force", action="store_true", help="Recalculate FDR even if still fresh"
    )
    parser.add_argument(
        "--skip-sync", action="store_true", help="Skip roster/stats sync, run FDR only"
    )
    parser.add_argument(
        "--status", action="store_true", help="Show current update status"
    )
    return parser


async def main() -> None:
    """Main entry point with argument parsing."""
    args = build_parser().parse_args()

    if args.status:
        await show_status()
        return

    update = run_scheduled_update(args.tier, args.force, args.skip_sync, args.gameweek)
    timeout = runtime_budget(get_settings(), args.tier, args.skip_sync, args.gameweek)
    if timeout is None:
        await update
        return

    try:
        await asyncio.wait_for(update, timeout=timeout)
    except TimeoutError as e:
        logger.error(
            f"Scheduled update timed out after {timeout}s. "
            "Check FPL API responsiveness and database performance."
        )
        raise RuntimeError(f"Update timed out after {timeout}s") from e


if __name__ == "__main__":
    asyncio.run(main())
