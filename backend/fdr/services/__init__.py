"""Service layer for the FDR pipeline."""

from fdr.services.fpl_client import FplApiClient
from fdr.services.pipeline import FdrPipeline
from fdr.services.stats_sync import StatsSyncService
from fdr.services.store import FdrStore

__all__ = ["FdrPipeline", "FdrStore", "FplApiClient", "StatsSyncService"]
