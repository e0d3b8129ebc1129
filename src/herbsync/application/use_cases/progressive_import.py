"""Progressive Import Use Case.

Walks a provider's paginated plant listing a few pages per run, resuming from
a durable checkpoint:
1. Load (or create) the provider checkpoint; stop if the catalogue is done
2. Fetch up to ``pages_per_run`` pages starting at ``current_page``
3. Filter each item through the candidate heuristic and skip duplicates
4. Create drafts for the rest, then persist the checkpoint after every page

A crash mid-page re-fetches that page on the next run; duplicates are then
skipped by external id, so the import is at-least-once and idempotent.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from herbsync.application.use_cases.run_history import RunStatus, record_run, run_log_status
from herbsync.domain.entities import ContentRecord, SyncCheckpoint
from herbsync.domain.exceptions import ProviderError, ProviderNotConfiguredError
from herbsync.domain.services import (
    CandidateVerdict,
    draft_fields_from_plant,
    evaluate_candidate,
    slugify,
)
from herbsync.domain.value_objects import Provenance
from herbsync.infrastructure.clock import utc_now

if TYPE_CHECKING:
    from herbsync.application.ports import (
        CheckpointStorePort,
        ContentStorePort,
        ProviderClientPort,
        RunLogPort,
    )
    from herbsync.domain.value_objects import Page, PlantRecord
    from herbsync.infrastructure.clock import Clock

logger = structlog.get_logger(__name__)


class ItemOutcome(Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass(frozen=True)
class PageStats:
    """Per-page item counts."""

    created: int = 0
    duplicates: int = 0
    rejected: int = 0
    errors: int = 0

    def add(self, outcome: ItemOutcome) -> PageStats:
        return PageStats(
            created=self.created + (outcome is ItemOutcome.CREATED),
            duplicates=self.duplicates + (outcome is ItemOutcome.DUPLICATE),
            rejected=self.rejected + (outcome is ItemOutcome.REJECTED),
            errors=self.errors + (outcome is ItemOutcome.ERROR),
        )


@dataclass(frozen=True)
class ImportRunResult:
    """Result of one progressive import run."""

    provider_id: str
    status: RunStatus
    pages_processed: int = 0
    created: int = 0
    duplicates: int = 0
    rejected: int = 0
    errors: int = 0
    next_page: int | None = None
    is_complete: bool = False
    error: str | None = None

    @property
    def skipped(self) -> int:
        return self.duplicates + self.rejected

    def to_dict(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "status": self.status.value,
            "pages_processed": self.pages_processed,
            "created": self.created,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
            "errors": self.errors,
            "next_page": self.next_page,
            "is_complete": self.is_complete,
            "error": self.error,
        }


class ProgressiveImportUseCase:
    """Use case for resumable bulk import from one provider."""

    def __init__(
        self,
        client: ProviderClientPort,
        checkpoints: CheckpointStorePort,
        content: ContentStorePort,
        *,
        pages_per_run: int = 5,
        page_size: int = 20,
        page_delay_seconds: float = 0.5,
        run_log: RunLogPort | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Clock | None = None,
    ):
        """Initialize import use case.

        Args:
            client: Provider client to page through
            checkpoints: Durable checkpoint store
            content: Content store that receives drafts
            pages_per_run: Page budget per run
            page_size: Items requested per page
            page_delay_seconds: Politeness delay between pages
            run_log: Optional durable run history
            sleep: Awaitable used for the politeness delay
            clock: Time source for checkpoint stamps
        """
        self._client = client
        self._checkpoints = checkpoints
        self._content = content
        self._pages_per_run = pages_per_run
        self._page_size = page_size
        self._page_delay = page_delay_seconds
        self._run_log = run_log
        self._sleep = sleep
        self._clock = clock or utc_now

    @property
    def provider_id(self) -> str:
        return self._client.provider_id

    async def run_batch(self) -> ImportRunResult:
        """Import up to ``pages_per_run`` pages and log the run.

        Returns:
            ImportRunResult; a failed page stops the run without raising

        Raises:
            ProviderNotConfiguredError: Before any quota is used or state touched
        """
        if not self._client.is_configured():
            raise ProviderNotConfiguredError(self.provider_id)

        started_at = self._clock()
        try:
            result = await self._import_pages()
        except Exception as e:
            await record_run(
                self._run_log,
                self._client,
                "import",
                status="error",
                started_at=started_at,
                completed_at=self._clock(),
                error_message=str(e),
            )
            raise

        if result.status is not RunStatus.ALREADY_COMPLETE:
            last_page = (result.next_page or 1) - 1
            if result.pages_processed:
                details = f"Processed pages {last_page - result.pages_processed + 1}-{last_page}."
            else:
                details = f"No pages processed at page {result.next_page}."
            await record_run(
                self._run_log,
                self._client,
                "import",
                status=run_log_status(
                    result.status, failed=result.errors, progressed=result.pages_processed > 0
                ),
                started_at=started_at,
                completed_at=self._clock(),
                processed=result.created + result.skipped + result.errors,
                imported=result.created,
                failed=result.errors,
                details=details,
                error_message=result.error,
            )
        return result

    async def _import_pages(self) -> ImportRunResult:
        provider_id = self.provider_id

        checkpoint = await self._checkpoints.get(provider_id) or SyncCheckpoint.initial(provider_id)
        if checkpoint.is_complete:
            logger.info("import_already_complete", provider=provider_id)
            return ImportRunResult(
                provider_id=provider_id,
                status=RunStatus.ALREADY_COMPLETE,
                next_page=checkpoint.current_page,
                is_complete=True,
            )

        logger.info("import_started", provider=provider_id, page=checkpoint.current_page)

        totals = PageStats()
        pages = 0
        status = RunStatus.PARTIAL
        error: str | None = None

        for i in range(self._pages_per_run):
            page_number = checkpoint.current_page
            try:
                page = await self._client.fetch_page(page_number, self._page_size)
            except ProviderError as e:
                logger.warning(
                    "import_page_failed",
                    provider=provider_id,
                    page=page_number,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                status = RunStatus.STOPPED
                error = str(e)
                break

            if page.is_empty:
                checkpoint = checkpoint.apply({"is_complete": True, "last_run_at": self._clock()})
                await self._checkpoints.upsert(checkpoint)
                logger.info("import_complete", provider=provider_id, page=page_number)
                status = RunStatus.COMPLETED
                break

            page_stats = await self._process_page(page)
            totals = PageStats(
                created=totals.created + page_stats.created,
                duplicates=totals.duplicates + page_stats.duplicates,
                rejected=totals.rejected + page_stats.rejected,
                errors=totals.errors + page_stats.errors,
            )
            pages += 1

            checkpoint = checkpoint.apply(
                {
                    "current_page": page_number + 1,
                    "items_created": checkpoint.items_created + page_stats.created,
                    "items_skipped": checkpoint.items_skipped
                    + page_stats.duplicates
                    + page_stats.rejected,
                    "errors": checkpoint.errors + page_stats.errors,
                    "last_run_at": self._clock(),
                    "is_complete": checkpoint.is_complete or page.is_last,
                }
            )
            await self._checkpoints.upsert(checkpoint)

            logger.info(
                "import_page_committed",
                provider=provider_id,
                page=page_number,
                created=page_stats.created,
                duplicates=page_stats.duplicates,
                rejected=page_stats.rejected,
                errors=page_stats.errors,
            )

            if page.is_last:
                logger.info("import_complete", provider=provider_id, page=page_number)
                status = RunStatus.COMPLETED
                break

            if i < self._pages_per_run - 1:
                await self._sleep(self._page_delay)

        result = ImportRunResult(
            provider_id=provider_id,
            status=status,
            pages_processed=pages,
            created=totals.created,
            duplicates=totals.duplicates,
            rejected=totals.rejected,
            errors=totals.errors,
            next_page=checkpoint.current_page,
            is_complete=checkpoint.is_complete,
            error=error,
        )
        logger.info("import_finished", **result.to_dict())
        return result

    async def _process_page(self, page: Page) -> PageStats:
        stats = PageStats()
        for plant in page.items:
            stats = stats.add(await self._process_item(plant))
        return stats

    async def _process_item(self, plant: PlantRecord) -> ItemOutcome:
        """Filter, dedupe and store one listing item. Never raises."""
        provider_id = self.provider_id
        try:
            decision = evaluate_candidate(plant)
            if not decision.accepted:
                logger.debug(
                    "import_item_rejected",
                    provider=provider_id,
                    external_id=plant.external_id,
                    rule=decision.rule,
                )
                return ItemOutcome.REJECTED

            if await self._content.exists(provider_id, plant.external_id):
                return ItemOutcome.DUPLICATE

            fields = draft_fields_from_plant(plant)
            fields["import_rule"] = decision.rule
            if decision.verdict is CandidateVerdict.REVIEW:
                fields["needs_review"] = True

            # Fresh drafts carry no sync stamp so enrichment picks them up first
            await self._content.create_draft(
                ContentRecord(
                    title=plant.display_name,
                    slug=slugify(plant.scientific_name or plant.display_name) or None,
                    scientific_name=plant.scientific_name,
                    status="draft",
                    fields=fields,
                    provenance={
                        provider_id: Provenance(
                            provider_id=provider_id, external_id=plant.external_id
                        )
                    },
                    created_at=self._clock(),
                )
            )
            return ItemOutcome.CREATED

        except Exception as e:
            logger.error(
                "import_item_failed",
                provider=provider_id,
                external_id=plant.external_id,
                error=str(e),
            )
            return ItemOutcome.ERROR


__all__ = [
    "ImportRunResult",
    "ItemOutcome",
    "PageStats",
    "ProgressiveImportUseCase",
    "RunStatus",
]
