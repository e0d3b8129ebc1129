"""Durable run history shared by the import and enrichment use cases."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from herbsync.domain.entities import RunKind, RunLogEntry, RunLogStatus

if TYPE_CHECKING:
    from herbsync.application.ports import ProviderClientPort, RunLogPort

logger = structlog.get_logger(__name__)


class RunStatus(Enum):
    """How a sync run ended."""

    PARTIAL = "partial"  # page budget used, more pages remain
    COMPLETED = "completed"  # upstream exhausted during this run
    ALREADY_COMPLETE = "already_complete"
    STOPPED = "stopped"  # a provider failure ended the run early
    ALREADY_RUNNING = "already_running"
    NOT_CONFIGURED = "not_configured"


def run_log_status(status: RunStatus, *, failed: int, progressed: bool) -> RunLogStatus:
    """Collapse a run outcome into success, partial or error.

    A run stopped by a provider failure is an error if it got nothing done,
    partial otherwise. Item failures also make a finished run partial.
    """
    if status is RunStatus.STOPPED:
        return "partial" if progressed else "error"
    return "partial" if failed else "success"


def provider_summary(client: ProviderClientPort) -> str:
    stats = client.get_stats()
    return (
        f"Circuit: {client.get_circuit_state().value}. "
        f"Success rate: {stats.success_rate:.1f}%"
    )


async def record_run(
    run_log: RunLogPort | None,
    client: ProviderClientPort,
    kind: RunKind,
    *,
    status: RunLogStatus,
    started_at: datetime,
    completed_at: datetime,
    processed: int = 0,
    imported: int = 0,
    failed: int = 0,
    details: str = "",
    error_message: str | None = None,
) -> None:
    """Append one run-log entry. A failing run log is logged, never raised."""
    if run_log is None:
        return
    try:
        summary = provider_summary(client)
        await run_log.append(
            RunLogEntry(
                provider_id=client.provider_id,
                kind=kind,
                status=status,
                records_processed=processed,
                records_imported=imported,
                records_failed=failed,
                started_at=started_at,
                completed_at=completed_at,
                details=f"{details} {summary}".strip(),
                error_message=error_message,
            )
        )
    except Exception as e:
        logger.error("run_log_write_failed", provider=client.provider_id, kind=kind, error=str(e))


__all__ = ["RunStatus", "provider_summary", "record_run", "run_log_status"]
