"""Enrichment Sync Use Case.

Refreshes existing herb records with provider detail data:
1. Select records never synced with the provider, then the stalest
2. Look each one up by scientific name (title as fallback)
3. Merge non-empty upstream fields, or file a discrepancy on no match
4. Fold the run's counters into the provider checkpoint
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from herbsync.application.use_cases.run_history import RunStatus, record_run, run_log_status
from herbsync.domain.entities import DiscrepancyReport, SyncCheckpoint
from herbsync.domain.exceptions import (
    CircuitOpenError,
    ItemError,
    ProviderNotConfiguredError,
    RateLimitedError,
)
from herbsync.domain.services import merge_enrichment
from herbsync.domain.value_objects import Provenance
from herbsync.infrastructure.clock import utc_now

if TYPE_CHECKING:
    from herbsync.application.ports import (
        CheckpointStorePort,
        ContentStorePort,
        ProviderClientPort,
        RunLogPort,
    )
    from herbsync.domain.entities import ContentRecord
    from herbsync.infrastructure.clock import Clock

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EnrichmentRunResult:
    """Result of one enrichment batch."""

    provider_id: str
    status: RunStatus
    selected: int = 0
    updated: int = 0
    not_found: int = 0
    errors: int = 0
    error: str | None = None

    @property
    def processed(self) -> int:
        return self.updated + self.not_found + self.errors

    def to_dict(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "status": self.status.value,
            "selected": self.selected,
            "updated": self.updated,
            "not_found": self.not_found,
            "errors": self.errors,
            "error": self.error,
        }


class EnrichmentSyncUseCase:
    """Use case for refreshing stale records from one provider."""

    def __init__(
        self,
        client: ProviderClientPort,
        checkpoints: CheckpointStorePort,
        content: ContentStorePort,
        *,
        batch_size: int = 100,
        staleness_days: int = 30,
        item_delay_seconds: float = 0.6,
        run_log: RunLogPort | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Clock | None = None,
    ):
        self._client = client
        self._checkpoints = checkpoints
        self._content = content
        self._batch_size = batch_size
        self._staleness = timedelta(days=staleness_days)
        self._item_delay = item_delay_seconds
        self._run_log = run_log
        self._sleep = sleep
        self._clock = clock or utc_now

    @property
    def provider_id(self) -> str:
        return self._client.provider_id

    async def run_batch(self) -> EnrichmentRunResult:
        """Enrich up to ``batch_size`` records and log the run.

        Returns:
            EnrichmentRunResult; an open circuit or exhausted quota ends the
            batch early with status ``stopped``

        Raises:
            ProviderNotConfiguredError: Before any record is selected
        """
        if not self._client.is_configured():
            raise ProviderNotConfiguredError(self.provider_id)

        started_at = self._clock()
        try:
            result = await self._enrich_batch()
        except Exception as e:
            await record_run(
                self._run_log,
                self._client,
                "enrichment",
                status="error",
                started_at=started_at,
                completed_at=self._clock(),
                error_message=str(e),
            )
            raise

        await record_run(
            self._run_log,
            self._client,
            "enrichment",
            status=run_log_status(
                result.status, failed=result.errors, progressed=result.processed > 0
            ),
            started_at=started_at,
            completed_at=self._clock(),
            processed=result.processed,
            imported=result.updated,
            failed=result.errors,
            details=(
                f"Selected {result.selected} records, {result.not_found} without a match."
            ),
            error_message=result.error,
        )
        return result

    async def _enrich_batch(self) -> EnrichmentRunResult:
        provider_id = self.provider_id

        stale_before = self._clock() - self._staleness
        records = await self._content.find_needing_sync(
            provider_id, stale_before, self._batch_size
        )
        logger.info("enrichment_started", provider=provider_id, selected=len(records))

        updated = not_found = errors = 0
        status = RunStatus.COMPLETED
        error: str | None = None

        for index, record in enumerate(records):
            if index > 0:
                await self._sleep(self._item_delay)

            try:
                matched = await self._sync_record(record)
            except (CircuitOpenError, RateLimitedError) as e:
                # Later lookups in this batch cannot succeed either
                logger.warning(
                    "enrichment_stopped",
                    provider=provider_id,
                    record_id=record.id,
                    reason=type(e).__name__,
                )
                status = RunStatus.STOPPED
                error = str(e)
                break
            except Exception as e:
                errors += 1
                logger.error(
                    "enrichment_record_failed",
                    provider=provider_id,
                    record_id=record.id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue

            if matched:
                updated += 1
            else:
                not_found += 1

        await self._fold_checkpoint(updated=updated, errors=errors)

        result = EnrichmentRunResult(
            provider_id=provider_id,
            status=status,
            selected=len(records),
            updated=updated,
            not_found=not_found,
            errors=errors,
            error=error,
        )
        logger.info("enrichment_finished", **result.to_dict())
        return result

    async def _sync_record(self, record: ContentRecord) -> bool:
        """Enrich one record.

        Returns:
            True if upstream matched and the record was updated
        """
        provider_id = self.provider_id
        if record.id is None:
            raise ItemError("Record has no id", details={"provider_id": provider_id})

        enriched = await self._client.enrich(record.lookup_key)
        if enriched is None:
            await self._record_no_match(record)
            return False

        patch = merge_enrichment(record, enriched)
        await self._content.update_fields(record.id, patch)
        logger.debug(
            "enrichment_record_updated",
            provider=provider_id,
            record_id=record.id,
            external_id=enriched.external_id,
            fields=len(enriched.fields),
        )
        return True

    async def _record_no_match(self, record: ContentRecord) -> None:
        """File a discrepancy and stamp the attempt so the record rotates to the back."""
        provider_id = self.provider_id
        now = self._clock()
        await self._content.record_discrepancy(
            DiscrepancyReport(
                record_id=record.id,
                provider_id=provider_id,
                field="scientific_name",
                current_value=record.lookup_key,
                severity="warning",
                message=f"No {provider_id} match found for '{record.lookup_key}'",
                created_at=now,
            )
        )

        existing = record.provenance_for(provider_id)
        provenance = dict(record.provenance)
        provenance[provider_id] = Provenance(
            provider_id=provider_id,
            external_id=existing.external_id if existing else None,
            last_synced_at=now,
        )
        await self._content.update_fields(record.id, {"provenance": provenance})
        logger.info(
            "enrichment_no_match",
            provider=provider_id,
            record_id=record.id,
            lookup=record.lookup_key,
        )

    async def _fold_checkpoint(self, *, updated: int, errors: int) -> None:
        provider_id = self.provider_id
        checkpoint = await self._checkpoints.get(provider_id) or SyncCheckpoint.initial(provider_id)
        checkpoint = checkpoint.apply(
            {
                "items_updated": checkpoint.items_updated + updated,
                "errors": checkpoint.errors + errors,
                "last_run_at": self._clock(),
            }
        )
        await self._checkpoints.upsert(checkpoint)


__all__ = ["EnrichmentRunResult", "EnrichmentSyncUseCase"]
