"""Port interfaces for durable sync state.

Implementations live in adapters/persistence/.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from herbsync.domain.entities import (
        ContentRecord,
        DiscrepancyReport,
        RunKind,
        RunLogEntry,
        SyncCheckpoint,
    )
    from herbsync.domain.value_objects import Alert, ProviderState, SyncCoverage


class CheckpointStorePort(ABC):
    """One checkpoint row per provider."""

    @abstractmethod
    async def get(self, provider_id: str) -> SyncCheckpoint | None:
        ...

    @abstractmethod
    async def upsert(self, checkpoint: SyncCheckpoint) -> None:
        """Insert or replace the provider's checkpoint."""
        ...

    @abstractmethod
    async def delete(self, provider_id: str) -> bool:
        """Remove the checkpoint so the next import starts from page 1.

        Returns:
            True if a checkpoint existed
        """
        ...


class ContentStorePort(ABC):
    """The herb content store that imports create drafts in and enrichment updates."""

    @abstractmethod
    async def exists(self, provider_id: str, external_id: str) -> bool:
        """True if a record already carries this provider's external id."""
        ...

    @abstractmethod
    async def create_draft(self, record: ContentRecord) -> ContentRecord:
        """Persist a new draft record.

        Returns:
            The stored record with its assigned id
        """
        ...

    @abstractmethod
    async def update_fields(self, record_id: str, patch: dict[str, Any]) -> ContentRecord:
        """Apply a partial update to a record.

        Raises:
            ItemError: If the record does not exist
        """
        ...

    @abstractmethod
    async def get(self, record_id: str) -> ContentRecord | None:
        ...

    @abstractmethod
    async def find_needing_sync(
        self, provider_id: str, stale_before: datetime, limit: int
    ) -> list[ContentRecord]:
        """Records never synced with this provider first, then oldest sync first.

        Args:
            provider_id: Provider doing the enrichment
            stale_before: Records synced at or after this instant are fresh
            limit: Maximum records to return
        """
        ...

    @abstractmethod
    async def sync_coverage(self, provider_id: str, stale_before: datetime) -> SyncCoverage:
        """Count all records, those linked to the provider, and those due for a sync.

        A record is due when it was never synced with this provider or its
        last sync is older than ``stale_before``; the same rule as
        :meth:`find_needing_sync`.
        """
        ...

    @abstractmethod
    async def record_discrepancy(self, report: DiscrepancyReport) -> None:
        ...


class AlertLogPort(ABC):
    """Append-only durable log of fired alerts."""

    @abstractmethod
    async def append(self, alert: Alert) -> None:
        ...


class RunLogPort(ABC):
    """Append-only durable history of sync runs."""

    @abstractmethod
    async def append(self, entry: RunLogEntry) -> RunLogEntry:
        """Persist an entry.

        Returns:
            The stored entry with its assigned id
        """
        ...

    @abstractmethod
    async def recent(
        self,
        provider_id: str | None = None,
        kind: RunKind | None = None,
        limit: int = 20,
    ) -> list[RunLogEntry]:
        """Newest entries first, optionally filtered by provider and run kind."""
        ...


class ProviderStateStorePort(ABC):
    """One versioned provider state row per provider.

    Saves are compare-and-set on ``version`` so that concurrent writers
    cannot silently overwrite each other.
    """

    @abstractmethod
    async def load(self, provider_id: str) -> ProviderState | None:
        ...

    @abstractmethod
    async def save(self, state: ProviderState) -> ProviderState:
        """Write ``state`` if the stored version still equals ``state.version``.

        A missing row counts as version 0.

        Returns:
            The stored state, with its version bumped

        Raises:
            StateConflictError: If another writer saved in between
        """
        ...


class RunLeasePort(ABC):
    """Cross-process single-flight: at most one live lease per provider."""

    @abstractmethod
    async def acquire(self, provider_id: str, owner: str, ttl_seconds: float) -> bool:
        """Take or renew the lease.

        Succeeds when nobody holds it, the holder's lease expired, or
        ``owner`` already holds it.
        """
        ...

    @abstractmethod
    async def release(self, provider_id: str, owner: str) -> None:
        """Drop the lease if ``owner`` holds it."""
        ...
