"""Admin operations behind the CLI.

Read operations return best-effort snapshots and never raise: a provider
that cannot be inspected reports zeroed defaults plus the reason.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from herbsync.domain.entities import SyncCheckpoint
from herbsync.domain.services import score_health
from herbsync.domain.value_objects import CircuitState, RequestStats, SyncCoverage
from herbsync.infrastructure.clock import utc_now

if TYPE_CHECKING:
    from herbsync.application.ports import CheckpointStorePort, ContentStorePort, RunLogPort
    from herbsync.application.use_cases.enrichment_sync import EnrichmentRunResult
    from herbsync.application.use_cases.progressive_import import ImportRunResult
    from herbsync.application.use_cases.sync_engine import SyncEngine
    from herbsync.infrastructure.clock import Clock

logger = structlog.get_logger(__name__)

# Catalogue sizes used to estimate how much of an import is left
DEFAULT_ESTIMATED_TOTALS = {"trefle": 1_000_000, "perenual": 10_000}


def _zeroed_stats(
    provider_id: str, *, configured: bool, error: str | None = None
) -> dict[str, Any]:
    health = score_health(RequestStats())
    return {
        "provider": provider_id,
        "configured": configured,
        "circuit_state": CircuitState.CLOSED.value,
        "stats": RequestStats().to_dict(),
        "health": {"score": health.score, "status": health.status, "issues": health.issues},
        "error": error,
    }


class ProviderAdminService:
    """Stats, health, progress, run history and manual triggers per provider."""

    def __init__(
        self,
        engine: SyncEngine,
        checkpoints: CheckpointStorePort,
        *,
        content: ContentStorePort | None = None,
        run_log: RunLogPort | None = None,
        page_size: int = 20,
        staleness_days: int = 30,
        estimated_totals: Mapping[str, int] | None = None,
        clock: Clock | None = None,
    ):
        self._engine = engine
        self._checkpoints = checkpoints
        self._content = content
        self._run_log = run_log
        self._page_size = page_size
        self._staleness = timedelta(days=staleness_days)
        self._estimated_totals = dict(
            DEFAULT_ESTIMATED_TOTALS if estimated_totals is None else estimated_totals
        )
        self._clock = clock or utc_now

    @property
    def provider_ids(self) -> list[str]:
        return self._engine.provider_ids

    def provider_stats(self, provider_id: str) -> dict[str, Any]:
        """Request statistics, circuit state and health for one provider."""
        try:
            client = self._engine.client(provider_id)
            if not client.is_configured():
                return _zeroed_stats(provider_id, configured=False, error="not_configured")

            stats = client.get_stats()
            health = score_health(stats)
            return {
                "provider": provider_id,
                "configured": True,
                "circuit_state": client.get_circuit_state().value,
                "stats": stats.to_dict(),
                "health": {"score": health.score, "status": health.status, "issues": health.issues},
                "error": None,
            }
        except Exception as e:
            logger.warning("admin_stats_failed", provider=provider_id, error=str(e))
            return _zeroed_stats(provider_id, configured=False, error=str(e))

    def health_report(self) -> dict[str, Any]:
        """Health for every provider plus the worst status across them."""
        providers = {pid: self.provider_stats(pid) for pid in self.provider_ids}
        configured = [p for p in providers.values() if p["configured"]]
        scores = [p["health"]["score"] for p in configured]
        if not configured:
            overall = "unknown"
        elif any(p["health"]["status"] == "unhealthy" for p in configured):
            overall = "unhealthy"
        elif any(p["health"]["status"] == "degraded" for p in configured):
            overall = "degraded"
        else:
            overall = "healthy"
        return {
            "overall_status": overall,
            "lowest_score": min(scores) if scores else None,
            "providers": providers,
        }

    async def checkpoint(self, provider_id: str) -> dict[str, Any]:
        """Current checkpoint, or the initial one if the provider never ran."""
        try:
            checkpoint = await self._checkpoints.get(provider_id)
            exists = checkpoint is not None
            checkpoint = checkpoint or SyncCheckpoint.initial(provider_id)
            return {
                "exists": exists,
                "running": self._engine.is_running(provider_id),
                **checkpoint.model_dump(mode="json"),
            }
        except Exception as e:
            logger.warning("admin_checkpoint_failed", provider=provider_id, error=str(e))
            return {
                "exists": False,
                "running": False,
                **SyncCheckpoint.initial(provider_id).model_dump(mode="json"),
                "error": str(e),
            }

    async def import_progress(self, provider_id: str) -> dict[str, Any]:
        """Checkpoint position plus an estimate of how much of the catalogue is left.

        The estimate assumes every page before ``current_page`` was full. It
        is None for providers without a known catalogue size, and 0 once the
        import is complete.
        """
        api = self.provider_stats(provider_id)
        base = {
            "provider": provider_id,
            "circuit_state": api["circuit_state"],
            "api_stats": api["stats"],
        }
        try:
            checkpoint = await self._checkpoints.get(provider_id) or SyncCheckpoint.initial(
                provider_id
            )
        except Exception as e:
            logger.warning("admin_progress_failed", provider=provider_id, error=str(e))
            checkpoint = SyncCheckpoint.initial(provider_id)
            base["error"] = str(e)

        estimated_total = self._estimated_totals.get(provider_id)
        if checkpoint.is_complete:
            remaining: int | None = 0
        elif estimated_total is None:
            remaining = None
        else:
            remaining = max(0, estimated_total - (checkpoint.current_page - 1) * self._page_size)

        return {
            **base,
            "current_page": checkpoint.current_page,
            "is_complete": checkpoint.is_complete,
            "items_created": checkpoint.items_created,
            "items_updated": checkpoint.items_updated,
            "items_skipped": checkpoint.items_skipped,
            "errors": checkpoint.errors,
            "last_run_at": checkpoint.last_run_at.isoformat() if checkpoint.last_run_at else None,
            "estimated_total": estimated_total,
            "estimated_remaining": remaining,
            "running": self._engine.is_running(provider_id),
        }

    async def sync_progress(self, provider_id: str) -> dict[str, Any]:
        """Enrichment coverage of the catalogue and the latest enrichment run."""
        api = self.provider_stats(provider_id)
        report: dict[str, Any] = {
            "provider": provider_id,
            "circuit_state": api["circuit_state"],
            "api_stats": api["stats"],
            "total_records": 0,
            "synced_records": 0,
            "needing_sync": 0,
            "last_sync_at": None,
            "last_sync_status": None,
        }
        try:
            if self._content is not None:
                coverage = await self._content.sync_coverage(
                    provider_id, self._clock() - self._staleness
                )
            else:
                coverage = SyncCoverage()
            report.update(
                total_records=coverage.total,
                synced_records=coverage.synced,
                needing_sync=coverage.needing_sync,
            )
            if self._run_log is not None:
                latest = await self._run_log.recent(provider_id, "enrichment", limit=1)
                if latest:
                    finished = latest[0].completed_at or latest[0].started_at
                    report["last_sync_at"] = finished.isoformat()
                    report["last_sync_status"] = latest[0].status
        except Exception as e:
            logger.warning("admin_progress_failed", provider=provider_id, error=str(e))
            report["error"] = str(e)
        return report

    async def recent_runs(
        self, provider_id: str | None = None, *, limit: int = 20
    ) -> list[dict[str, Any]]:
        """Newest run-log entries first; empty without a run log."""
        if self._run_log is None:
            return []
        entries = await self._run_log.recent(provider_id, limit=limit)
        return [entry.model_dump(mode="json") for entry in entries]

    async def reset_checkpoint(self, provider_id: str) -> bool:
        """Delete the checkpoint so the next import starts from page 1.

        Returns:
            True if a checkpoint was removed
        """
        removed = await self._checkpoints.delete(provider_id)
        logger.info("checkpoint_reset", provider=provider_id, removed=removed)
        return removed

    def reset_provider(self, provider_id: str) -> dict[str, Any]:
        """Zero request statistics and force the circuit closed."""
        self._engine.client(provider_id).reset()
        logger.info("provider_reset", provider=provider_id)
        return self.provider_stats(provider_id)

    async def trigger_import(self, provider_id: str) -> ImportRunResult:
        return await self._engine.run_import(provider_id)

    async def trigger_enrichment(self, provider_id: str) -> EnrichmentRunResult:
        return await self._engine.run_enrichment(provider_id)


__all__ = ["ProviderAdminService"]
