"""Domain entities for HerbSync."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from herbsync.domain.exceptions import CheckpointError
from herbsync.domain.value_objects import Provenance

ContentStatus = Literal["draft", "published"]
RunKind = Literal["import", "enrichment"]
RunLogStatus = Literal["success", "partial", "error"]

_CHECKPOINT_FIELDS = frozenset(
    {
        "current_page",
        "items_created",
        "items_updated",
        "items_skipped",
        "errors",
        "last_run_at",
        "is_complete",
    }
)


class SyncCheckpoint(BaseModel):
    """Durable ingestion progress for one provider.

    ``current_page`` is the next page to fetch. It never moves backwards and
    ``is_complete`` only latches from False to True; both are enforced by
    :meth:`apply`. Only an admin reset (deleting the row) starts over.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(..., min_length=1)
    current_page: int = Field(default=1, ge=1)
    items_created: int = Field(default=0, ge=0)
    items_updated: int = Field(default=0, ge=0)
    items_skipped: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    last_run_at: datetime | None = None
    is_complete: bool = False

    @classmethod
    def initial(cls, provider_id: str) -> SyncCheckpoint:
        return cls(provider_id=provider_id)

    def apply(self, patch: dict[str, Any]) -> SyncCheckpoint:
        """Return a copy with ``patch`` applied, enforcing checkpoint invariants.

        Raises:
            CheckpointError: On unknown fields, a decreasing page or un-latching completion
        """
        unknown = set(patch) - _CHECKPOINT_FIELDS
        if unknown:
            raise CheckpointError(
                "Unknown checkpoint fields",
                details={"provider_id": self.provider_id, "fields": sorted(unknown)},
            )

        new_page = patch.get("current_page", self.current_page)
        if new_page < self.current_page:
            raise CheckpointError(
                "Checkpoint page cannot move backwards",
                details={
                    "provider_id": self.provider_id,
                    "current_page": self.current_page,
                    "requested_page": new_page,
                },
            )

        if self.is_complete and patch.get("is_complete") is False:
            raise CheckpointError(
                "Completed checkpoint cannot be reopened",
                details={"provider_id": self.provider_id},
            )

        data = self.model_dump()
        data.update(patch)
        return SyncCheckpoint.model_validate(data)


class ContentRecord(BaseModel):
    """A herb record in the content store.

    Imported records are created as drafts for manual review. Provider
    provenance is tracked per provider so both integrations can enrich the
    same record independently.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    title: str = Field(..., min_length=1)
    slug: str | None = None
    scientific_name: str | None = None
    status: ContentStatus = "draft"
    fields: dict[str, Any] = Field(default_factory=dict)
    provenance: dict[str, Provenance] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def provenance_for(self, provider_id: str) -> Provenance | None:
        return self.provenance.get(provider_id)

    def last_synced_at(self, provider_id: str) -> datetime | None:
        prov = self.provenance.get(provider_id)
        return prov.last_synced_at if prov else None

    @property
    def lookup_key(self) -> str:
        """Name used for provider enrichment lookups."""
        return self.scientific_name or self.title


class DiscrepancyReport(BaseModel):
    """Reviewable note written when enrichment finds no upstream match."""

    model_config = ConfigDict(frozen=True)

    record_id: str
    provider_id: str
    field: str = "scientific_name"
    current_value: str | None = None
    suggested_value: str | None = None
    severity: Literal["info", "warning"] = "warning"
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class RunLogEntry(BaseModel):
    """One durable line of run history.

    Written once per finished import or enrichment run, and once per run
    that died with an unexpected error.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    provider_id: str = Field(..., min_length=1)
    kind: RunKind
    status: RunLogStatus
    records_processed: int = Field(default=0, ge=0)
    records_imported: int = Field(default=0, ge=0)
    records_failed: int = Field(default=0, ge=0)
    started_at: datetime
    completed_at: datetime | None = None
    details: str = ""
    error_message: str | None = None


__all__ = [
    "ContentRecord",
    "ContentStatus",
    "DiscrepancyReport",
    "RunKind",
    "RunLogEntry",
    "RunLogStatus",
    "SyncCheckpoint",
]
