"""SQLAlchemy async implementations of the storage ports."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herbsync.adapters.persistence.database import (
    AlertLogRow,
    CheckpointRow,
    ContentRow,
    DiscrepancyRow,
    ProvenanceRow,
    ProviderStateRow,
    RunLeaseRow,
    RunLogRow,
    as_utc,
)
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
from herbsync.domain.value_objects import Alert, Provenance, ProviderState, SyncCoverage
from herbsync.infrastructure.clock import Clock, utc_now

logger = structlog.get_logger(__name__)

_CONTENT_COLUMNS = ("title", "slug", "scientific_name", "status", "fields")


def _checkpoint_from_row(row: CheckpointRow) -> SyncCheckpoint:
    return SyncCheckpoint(
        provider_id=row.provider_id,
        current_page=row.current_page,
        items_created=row.items_created,
        items_updated=row.items_updated,
        items_skipped=row.items_skipped,
        errors=row.errors,
        last_run_at=as_utc(row.last_run_at),
        is_complete=row.is_complete,
    )


def _record_from_rows(row: ContentRow, provenance: list[ProvenanceRow]) -> ContentRecord:
    return ContentRecord(
        id=row.id,
        title=row.title,
        slug=row.slug,
        scientific_name=row.scientific_name,
        status=row.status,
        fields=dict(row.fields or {}),
        provenance={
            p.provider_id: Provenance(
                provider_id=p.provider_id,
                external_id=p.external_id,
                last_synced_at=as_utc(p.last_synced_at),
            )
            for p in provenance
        },
        created_at=as_utc(row.created_at),
    )


class SqlCheckpointStore(CheckpointStorePort):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, provider_id: str) -> SyncCheckpoint | None:
        async with self._session_factory() as session:
            row = await session.get(CheckpointRow, provider_id)
            return _checkpoint_from_row(row) if row else None

    async def upsert(self, checkpoint: SyncCheckpoint) -> None:
        async with self._session_factory() as session, session.begin():
            row = await session.get(CheckpointRow, checkpoint.provider_id)
            if row is None:
                row = CheckpointRow(provider_id=checkpoint.provider_id)
                session.add(row)
            row.current_page = checkpoint.current_page
            row.items_created = checkpoint.items_created
            row.items_updated = checkpoint.items_updated
            row.items_skipped = checkpoint.items_skipped
            row.errors = checkpoint.errors
            row.last_run_at = as_utc(checkpoint.last_run_at)
            row.is_complete = checkpoint.is_complete

    async def delete(self, provider_id: str) -> bool:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(CheckpointRow).where(CheckpointRow.provider_id == provider_id)
            )
            return result.rowcount > 0


class SqlContentStore(ContentStorePort):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _load(self, session: AsyncSession, record_id: str) -> ContentRecord | None:
        row = await session.get(ContentRow, record_id)
        if row is None:
            return None
        provenance = (
            await session.scalars(
                select(ProvenanceRow).where(ProvenanceRow.record_id == record_id)
            )
        ).all()
        return _record_from_rows(row, list(provenance))

    async def exists(self, provider_id: str, external_id: str) -> bool:
        async with self._session_factory() as session:
            found = await session.scalar(
                select(ProvenanceRow.record_id)
                .where(
                    ProvenanceRow.provider_id == provider_id,
                    ProvenanceRow.external_id == external_id,
                )
                .limit(1)
            )
            return found is not None

    async def create_draft(self, record: ContentRecord) -> ContentRecord:
        record_id = record.id or uuid.uuid4().hex
        async with self._session_factory() as session, session.begin():
            session.add(
                ContentRow(
                    id=record_id,
                    title=record.title,
                    slug=record.slug,
                    scientific_name=record.scientific_name,
                    status=record.status,
                    fields=dict(record.fields),
                    created_at=as_utc(record.created_at),
                )
            )
            await session.flush()
            for prov in record.provenance.values():
                session.add(
                    ProvenanceRow(
                        record_id=record_id,
                        provider_id=prov.provider_id,
                        external_id=prov.external_id,
                        last_synced_at=as_utc(prov.last_synced_at),
                    )
                )
        return record.model_copy(update={"id": record_id})

    async def update_fields(self, record_id: str, patch: dict[str, Any]) -> ContentRecord:
        async with self._session_factory() as session, session.begin():
            row = await session.get(ContentRow, record_id)
            if row is None:
                raise ItemError(f"Content record {record_id} not found", external_id=record_id)

            for column in _CONTENT_COLUMNS:
                if column in patch:
                    setattr(row, column, patch[column])

            for provider_id, prov in (patch.get("provenance") or {}).items():
                prov_row = await session.get(ProvenanceRow, (record_id, provider_id))
                if prov_row is None:
                    prov_row = ProvenanceRow(record_id=record_id, provider_id=provider_id)
                    session.add(prov_row)
                prov_row.external_id = prov.external_id
                prov_row.last_synced_at = as_utc(prov.last_synced_at)

            await session.flush()
            provenance = (
                await session.scalars(
                    select(ProvenanceRow).where(ProvenanceRow.record_id == record_id)
                )
            ).all()
            return _record_from_rows(row, list(provenance))

    async def get(self, record_id: str) -> ContentRecord | None:
        async with self._session_factory() as session:
            return await self._load(session, record_id)

    async def find_needing_sync(
        self, provider_id: str, stale_before: datetime, limit: int
    ) -> list[ContentRecord]:
        stale_before = as_utc(stale_before) or datetime.now(UTC)
        prov = ProvenanceRow
        never_synced = or_(prov.record_id.is_(None), prov.last_synced_at.is_(None))

        stmt = (
            select(ContentRow)
            .outerjoin(
                prov,
                (prov.record_id == ContentRow.id) & (prov.provider_id == provider_id),
            )
            .where(or_(never_synced, prov.last_synced_at < stale_before))
            .order_by(
                case((never_synced, 0), else_=1),
                prov.last_synced_at,
                ContentRow.created_at,
            )
            .limit(limit)
        )

        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
            records = []
            for row in rows:
                provenance = (
                    await session.scalars(
                        select(ProvenanceRow).where(ProvenanceRow.record_id == row.id)
                    )
                ).all()
                records.append(_record_from_rows(row, list(provenance)))
            return records

    async def sync_coverage(self, provider_id: str, stale_before: datetime) -> SyncCoverage:
        stale_before = as_utc(stale_before) or datetime.now(UTC)
        prov = ProvenanceRow
        linked = (prov.record_id == ContentRow.id) & (prov.provider_id == provider_id)
        never_synced = or_(prov.record_id.is_(None), prov.last_synced_at.is_(None))

        async with self._session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(ContentRow))
            synced = await session.scalar(
                select(func.count())
                .select_from(prov)
                .where(prov.provider_id == provider_id, prov.external_id.is_not(None))
            )
            needing = await session.scalar(
                select(func.count())
                .select_from(ContentRow)
                .outerjoin(prov, linked)
                .where(or_(never_synced, prov.last_synced_at < stale_before))
            )
        return SyncCoverage(total=total or 0, synced=synced or 0, needing_sync=needing or 0)

    async def record_discrepancy(self, report: DiscrepancyReport) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                DiscrepancyRow(
                    record_id=report.record_id,
                    provider_id=report.provider_id,
                    field=report.field,
                    current_value=report.current_value,
                    suggested_value=report.suggested_value,
                    severity=report.severity,
                    message=report.message,
                    created_at=as_utc(report.created_at),
                )
            )

    async def list_discrepancies(self, record_id: str | None = None) -> list[DiscrepancyReport]:
        stmt = select(DiscrepancyRow).order_by(DiscrepancyRow.id)
        if record_id:
            stmt = stmt.where(DiscrepancyRow.record_id == record_id)
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [
            DiscrepancyReport(
                record_id=r.record_id,
                provider_id=r.provider_id,
                field=r.field,
                current_value=r.current_value,
                suggested_value=r.suggested_value,
                severity=r.severity,
                message=r.message,
                created_at=as_utc(r.created_at),
            )
            for r in rows
        ]


class SqlAlertLog(AlertLogPort):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, alert: Alert) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                AlertLogRow(
                    id=alert.id,
                    provider=alert.provider,
                    severity=alert.severity.value,
                    event=alert.event.value,
                    circuit_state=alert.circuit_state.value,
                    health_score=alert.health_score,
                    stats_snapshot=dict(alert.stats_snapshot),
                    message=alert.message,
                    channels_notified=list(alert.channels_notified),
                    timestamp=as_utc(alert.timestamp),
                )
            )
        logger.debug("alert_logged", alert_id=alert.id, provider=alert.provider)

    async def recent(self, provider: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        stmt = select(AlertLogRow).order_by(AlertLogRow.timestamp.desc()).limit(limit)
        if provider:
            stmt = stmt.where(AlertLogRow.provider == provider)
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [
            {
                "id": r.id,
                "provider": r.provider,
                "severity": r.severity,
                "event": r.event,
                "circuit_state": r.circuit_state,
                "health_score": r.health_score,
                "message": r.message,
                "channels_notified": r.channels_notified,
                "timestamp": as_utc(r.timestamp).isoformat(),
            }
            for r in rows
        ]


def _run_from_row(row: RunLogRow) -> RunLogEntry:
    return RunLogEntry(
        id=row.id,
        provider_id=row.provider_id,
        kind=row.kind,
        status=row.status,
        records_processed=row.records_processed,
        records_imported=row.records_imported,
        records_failed=row.records_failed,
        started_at=as_utc(row.started_at),
        completed_at=as_utc(row.completed_at),
        details=row.details or "",
        error_message=row.error_message,
    )


class SqlRunLog(RunLogPort):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, entry: RunLogEntry) -> RunLogEntry:
        async with self._session_factory() as session, session.begin():
            row = RunLogRow(
                provider_id=entry.provider_id,
                kind=entry.kind,
                status=entry.status,
                records_processed=entry.records_processed,
                records_imported=entry.records_imported,
                records_failed=entry.records_failed,
                started_at=as_utc(entry.started_at),
                completed_at=as_utc(entry.completed_at),
                details=entry.details,
                error_message=entry.error_message,
            )
            session.add(row)
            await session.flush()
            stored = entry.model_copy(update={"id": row.id})
        logger.debug("run_logged", provider=entry.provider_id, kind=entry.kind, status=entry.status)
        return stored

    async def recent(
        self,
        provider_id: str | None = None,
        kind: RunKind | None = None,
        limit: int = 20,
    ) -> list[RunLogEntry]:
        stmt = select(RunLogRow).order_by(RunLogRow.started_at.desc(), RunLogRow.id.desc())
        if provider_id:
            stmt = stmt.where(RunLogRow.provider_id == provider_id)
        if kind:
            stmt = stmt.where(RunLogRow.kind == kind)
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt.limit(limit))).all()
        return [_run_from_row(r) for r in rows]


class SqlProviderStateStore(ProviderStateStorePort):
    """Provider state as a versioned JSON payload, saved with compare-and-set."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], *, clock: Clock | None = None
    ):
        self._session_factory = session_factory
        self._clock = clock or utc_now

    async def load(self, provider_id: str) -> ProviderState | None:
        async with self._session_factory() as session:
            row = await session.get(ProviderStateRow, provider_id)
            if row is None:
                return None
            return ProviderState.model_validate(
                {
                    **row.payload,
                    "provider_id": row.provider_id,
                    "version": row.version,
                    "updated_at": as_utc(row.updated_at),
                }
            )

    async def save(self, state: ProviderState) -> ProviderState:
        now = self._clock()
        payload = state.model_dump(mode="json", exclude={"provider_id", "version", "updated_at"})
        new_version = state.version + 1

        try:
            async with self._session_factory() as session, session.begin():
                if state.version == 0:
                    session.add(
                        ProviderStateRow(
                            provider_id=state.provider_id,
                            version=new_version,
                            payload=payload,
                            updated_at=now,
                        )
                    )
                    updated = 1
                else:
                    result = await session.execute(
                        update(ProviderStateRow)
                        .where(
                            ProviderStateRow.provider_id == state.provider_id,
                            ProviderStateRow.version == state.version,
                        )
                        .values(version=new_version, payload=payload, updated_at=now)
                    )
                    updated = result.rowcount
        except IntegrityError as e:
            # Someone inserted the first row concurrently
            raise StateConflictError(state.provider_id, state.version) from e

        if not updated:
            raise StateConflictError(state.provider_id, state.version)
        return state.model_copy(update={"version": new_version, "updated_at": now})


class SqlRunLease(RunLeasePort):
    """Lease rows taken with a conditional UPDATE, or an INSERT for a new provider."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], *, clock: Clock | None = None
    ):
        self._session_factory = session_factory
        self._clock = clock or utc_now

    async def acquire(self, provider_id: str, owner: str, ttl_seconds: float) -> bool:
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds)
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(RunLeaseRow)
                    .where(
                        RunLeaseRow.provider_id == provider_id,
                        or_(RunLeaseRow.owner == owner, RunLeaseRow.expires_at <= now),
                    )
                    .values(owner=owner, expires_at=expires_at)
                )
                if result.rowcount:
                    return True
                if await session.get(RunLeaseRow, provider_id) is not None:
                    logger.info("run_lease_held", provider=provider_id, owner=owner)
                    return False
                session.add(
                    RunLeaseRow(provider_id=provider_id, owner=owner, expires_at=expires_at)
                )
        except IntegrityError:
            logger.info("run_lease_held", provider=provider_id, owner=owner)
            return False
        return True

    async def release(self, provider_id: str, owner: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(RunLeaseRow).where(
                    RunLeaseRow.provider_id == provider_id, RunLeaseRow.owner == owner
                )
            )


__all__ = [
    "SqlAlertLog",
    "SqlCheckpointStore",
    "SqlContentStore",
    "SqlProviderStateStore",
    "SqlRunLease",
    "SqlRunLog",
]
