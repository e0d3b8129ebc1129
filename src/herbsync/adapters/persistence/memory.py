"""In-memory implementations of the storage ports for tests and dry runs."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from herbsync.application.ports import (
    AlertLogPort,
    CheckpointStorePort,
    ContentStorePort,
    ProviderStateStorePort,
    RunLeasePort,
    RunLogPort,
)
from herbsync.domain.entities import (
    ContentRecord,
    DiscrepancyReport,
    RunKind,
    RunLogEntry,
    SyncCheckpoint,
)
from herbsync.domain.exceptions import ItemError, StateConflictError
from herbsync.domain.value_objects import Alert, ProviderState, SyncCoverage
from herbsync.infrastructure.clock import Clock, utc_now

_UPDATABLE = frozenset({"title", "slug", "scientific_name", "status", "fields", "provenance"})


class InMemoryCheckpointStore(CheckpointStorePort):
    def __init__(self) -> None:
        self._rows: dict[str, SyncCheckpoint] = {}

    async def get(self, provider_id: str) -> SyncCheckpoint | None:
        return self._rows.get(provider_id)

    async def upsert(self, checkpoint: SyncCheckpoint) -> None:
        self._rows[checkpoint.provider_id] = checkpoint

    async def delete(self, provider_id: str) -> bool:
        return self._rows.pop(provider_id, None) is not None


class InMemoryContentStore(ContentStorePort):
    def __init__(self, records: list[ContentRecord] | None = None) -> None:
        self.records: dict[str, ContentRecord] = {}
        self.discrepancies: list[DiscrepancyReport] = []
        for record in records or []:
            record_id = record.id or uuid.uuid4().hex
            self.records[record_id] = record.model_copy(update={"id": record_id})

    async def exists(self, provider_id: str, external_id: str) -> bool:
        for record in self.records.values():
            prov = record.provenance_for(provider_id)
            if prov is not None and prov.external_id == external_id:
                return True
        return False

    async def create_draft(self, record: ContentRecord) -> ContentRecord:
        stored = record.model_copy(update={"id": record.id or uuid.uuid4().hex})
        self.records[stored.id] = stored
        return stored

    async def update_fields(self, record_id: str, patch: dict[str, Any]) -> ContentRecord:
        record = self.records.get(record_id)
        if record is None:
            raise ItemError(f"Content record {record_id} not found", external_id=record_id)
        update = {key: value for key, value in patch.items() if key in _UPDATABLE}
        if "provenance" in update:
            update["provenance"] = {**record.provenance, **update["provenance"]}
        updated = record.model_copy(update=update)
        self.records[record_id] = updated
        return updated

    async def get(self, record_id: str) -> ContentRecord | None:
        return self.records.get(record_id)

    async def find_needing_sync(
        self, provider_id: str, stale_before: datetime, limit: int
    ) -> list[ContentRecord]:
        never: list[ContentRecord] = []
        stale: list[ContentRecord] = []
        for record in self.records.values():
            synced_at = record.last_synced_at(provider_id)
            if synced_at is None:
                never.append(record)
            elif synced_at < stale_before:
                stale.append(record)
        never.sort(key=lambda r: r.created_at)
        stale.sort(key=lambda r: (r.last_synced_at(provider_id), r.created_at))
        return (never + stale)[:limit]

    async def sync_coverage(self, provider_id: str, stale_before: datetime) -> SyncCoverage:
        synced = needing = 0
        for record in self.records.values():
            prov = record.provenance_for(provider_id)
            if prov is not None and prov.external_id is not None:
                synced += 1
            synced_at = record.last_synced_at(provider_id)
            if synced_at is None or synced_at < stale_before:
                needing += 1
        return SyncCoverage(total=len(self.records), synced=synced, needing_sync=needing)

    async def record_discrepancy(self, report: DiscrepancyReport) -> None:
        self.discrepancies.append(report)


class InMemoryAlertLog(AlertLogPort):
    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    async def append(self, alert: Alert) -> None:
        self.alerts.append(alert)


class InMemoryRunLog(RunLogPort):
    def __init__(self) -> None:
        self.entries: list[RunLogEntry] = []

    async def append(self, entry: RunLogEntry) -> RunLogEntry:
        stored = entry.model_copy(update={"id": len(self.entries) + 1})
        self.entries.append(stored)
        return stored

    async def recent(
        self,
        provider_id: str | None = None,
        kind: RunKind | None = None,
        limit: int = 20,
    ) -> list[RunLogEntry]:
        matching = [
            e
            for e in self.entries
            if (provider_id is None or e.provider_id == provider_id)
            and (kind is None or e.kind == kind)
        ]
        matching.sort(key=lambda e: (e.started_at, e.id), reverse=True)
        return matching[:limit]


class InMemoryProviderStateStore(ProviderStateStorePort):
    def __init__(self) -> None:
        self.rows: dict[str, ProviderState] = {}

    async def load(self, provider_id: str) -> ProviderState | None:
        return self.rows.get(provider_id)

    async def save(self, state: ProviderState) -> ProviderState:
        current = self.rows.get(state.provider_id)
        current_version = current.version if current else 0
        if state.version != current_version:
            raise StateConflictError(state.provider_id, state.version)
        stored = state.model_copy(
            update={"version": current_version + 1, "updated_at": datetime.now(UTC)}
        )
        self.rows[state.provider_id] = stored
        return stored


class InMemoryRunLease(RunLeasePort):
    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock or utc_now
        self.leases: dict[str, tuple[str, datetime]] = {}

    async def acquire(self, provider_id: str, owner: str, ttl_seconds: float) -> bool:
        now = self._clock()
        held = self.leases.get(provider_id)
        if held is not None and held[0] != owner and held[1] > now:
            return False
        self.leases[provider_id] = (owner, now + timedelta(seconds=ttl_seconds))
        return True

    async def release(self, provider_id: str, owner: str) -> None:
        held = self.leases.get(provider_id)
        if held is not None and held[0] == owner:
            del self.leases[provider_id]
