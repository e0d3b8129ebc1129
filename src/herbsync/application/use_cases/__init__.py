"""Application use cases for HerbSync."""

from herbsync.application.use_cases.admin import ProviderAdminService
from herbsync.application.use_cases.enrichment_sync import (
    EnrichmentRunResult,
    EnrichmentSyncUseCase,
)
from herbsync.application.use_cases.progressive_import import (
    ImportRunResult,
    ItemOutcome,
    PageStats,
    ProgressiveImportUseCase,
)
from herbsync.application.use_cases.run_history import RunStatus, record_run, run_log_status
from herbsync.application.use_cases.state_keeper import ProviderStateKeeper
from herbsync.application.use_cases.sync_engine import SyncEngine

__all__ = [
    # Bulk import
    "ImportRunResult",
    "ItemOutcome",
    "PageStats",
    "ProgressiveImportUseCase",
    "RunStatus",
    # Enrichment
    "EnrichmentRunResult",
    "EnrichmentSyncUseCase",
    # Run history
    "record_run",
    "run_log_status",
    # Durable provider state
    "ProviderStateKeeper",
    # Facades
    "ProviderAdminService",
    "SyncEngine",
]
