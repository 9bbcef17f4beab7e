"""Per-invocation pipeline context.

Each API request or CLI run builds one PipelineContext holding the settings,
the store, the FPL client and the clock, and passes it down explicitly.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import asyncpg

from fdr.config import Settings
from fdr.services.fpl_client import FplApiClient
from fdr.services.pipeline import FdrPipeline, utc_now
from fdr.services.stats_sync import StatsSyncService
from fdr.services.store import FdrStore


@dataclass
class PipelineContext:
    settings: Settings
    store: FdrStore
    source: FplApiClient
    clock: Callable[[], datetime] = field(default=utc_now)

    @classmethod
    def from_pool(cls, pool: asyncpg.Pool, settings: Settings) -> "PipelineContext":
        return cls(
            settings=settings,
            store=FdrStore(pool),
            source=FplApiClient(
                requests_per_second=settings.fpl_requests_per_second,
                max_concurrent=settings.fpl_max_concurrent,
                base_url=settings.fpl_api_base_url,
            ),
        )

    def pipeline(self) -> FdrPipeline:
        return FdrPipeline(
            self.store,
            clock=self.clock,
            freshness_window=timedelta(minutes=self.settings.fdr_freshness_minutes),
        )

    def stats_sync(self) -> StatsSyncService:
        return StatsSyncService(
            self.store, self.source, batch_size=self.settings.sync_batch_size
        )

    async def close(self) -> None:
        await self.source.close()
