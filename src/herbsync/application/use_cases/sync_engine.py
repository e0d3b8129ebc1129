"""Per-provider facade over the import and enrichment use cases.

Holds one single-flight lock per provider. A trigger that arrives while a run
for the same provider is in progress returns ``already_running`` at once
instead of queueing behind it. With a lease store the same holds across
processes: a run first takes the provider's lease and gives it back when done.
"""

from __future__ import annotations

import asyncio
import os
import socket
import uuid
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, TypeVar

import structlog

from herbsync.application.use_cases.enrichment_sync import (
    EnrichmentRunResult,
    EnrichmentSyncUseCase,
)
from herbsync.application.use_cases.progressive_import import (
    ImportRunResult,
    ProgressiveImportUseCase,
)
from herbsync.application.use_cases.run_history import RunStatus
from herbsync.domain.exceptions import ConfigurationError, ProviderNotConfiguredError
from herbsync.infrastructure.logging.setup import bind_run_context, clear_run_context

if TYPE_CHECKING:
    from herbsync.application.ports import (
        CheckpointStorePort,
        ContentStorePort,
        ProviderClientPort,
        RunLeasePort,
        RunLogPort,
    )
    from herbsync.infrastructure.clock import Clock
    from herbsync.infrastructure.config import Settings

logger = structlog.get_logger(__name__)

ResultT = TypeVar("ResultT", ImportRunResult, EnrichmentRunResult)


class SyncEngine:
    """Entry point for sync triggers (CLI, scheduler, admin service)."""

    def __init__(
        self,
        clients: Mapping[str, ProviderClientPort],
        checkpoints: CheckpointStorePort,
        content: ContentStorePort,
        settings: Settings,
        *,
        run_log: RunLogPort | None = None,
        lease: RunLeasePort | None = None,
        lease_owner: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Clock | None = None,
    ):
        """Initialize the engine.

        Args:
            clients: Provider clients keyed by provider id
            checkpoints: Durable checkpoint store shared by all providers
            content: Content store shared by all providers
            settings: Source of batch sizes, delays and the lease TTL
            run_log: Optional durable run history
            lease: Optional cross-process single-flight lease store
            lease_owner: Name this process holds leases under
            sleep: Awaitable used for politeness delays
            clock: Time source for checkpoint and provenance stamps
        """
        self._clients = dict(clients)
        self._checkpoints = checkpoints
        self._content = content
        self._settings = settings
        self._run_log = run_log
        self._lease = lease
        self.lease_owner = (
            lease_owner or f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        )
        self._sleep = sleep
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {pid: asyncio.Lock() for pid in self._clients}

    @property
    def provider_ids(self) -> list[str]:
        return list(self._clients)

    def client(self, provider_id: str) -> ProviderClientPort:
        """Get the client for a provider.

        Raises:
            ConfigurationError: If the provider id is unknown
        """
        try:
            return self._clients[provider_id]
        except KeyError:
            raise ConfigurationError(
                f"Unknown provider: {provider_id}",
                details={"known": self.provider_ids},
            ) from None

    def is_running(self, provider_id: str) -> bool:
        lock = self._locks.get(provider_id)
        return lock is not None and lock.locked()

    def import_use_case(self, provider_id: str) -> ProgressiveImportUseCase:
        s = self._settings
        return ProgressiveImportUseCase(
            self.client(provider_id),
            self._checkpoints,
            self._content,
            pages_per_run=s.import_pages_per_run,
            page_size=s.import_page_size,
            page_delay_seconds=s.import_page_delay_seconds,
            run_log=self._run_log,
            sleep=self._sleep,
            clock=self._clock,
        )

    def enrichment_use_case(self, provider_id: str) -> EnrichmentSyncUseCase:
        s = self._settings
        return EnrichmentSyncUseCase(
            self.client(provider_id),
            self._checkpoints,
            self._content,
            batch_size=s.sync_batch_size,
            staleness_days=s.sync_staleness_days,
            item_delay_seconds=s.sync_item_delay_seconds,
            run_log=self._run_log,
            sleep=self._sleep,
            clock=self._clock,
        )

    async def run_import(self, provider_id: str) -> ImportRunResult:
        """Run one progressive import batch for a provider."""
        use_case = self.import_use_case(provider_id)
        return await self._single_flight(
            provider_id,
            "import",
            use_case.run_batch,
            lambda status, error=None: ImportRunResult(
                provider_id=provider_id, status=status, error=error
            ),
        )

    async def run_enrichment(self, provider_id: str) -> EnrichmentRunResult:
        """Run one enrichment batch for a provider."""
        use_case = self.enrichment_use_case(provider_id)
        return await self._single_flight(
            provider_id,
            "enrichment",
            use_case.run_batch,
            lambda status, error=None: EnrichmentRunResult(
                provider_id=provider_id, status=status, error=error
            ),
        )

    async def _take_lease(self, provider_id: str) -> bool:
        # Unconfigured providers fail inside the run without touching storage
        if self._lease is None or not self.client(provider_id).is_configured():
            return True
        acquired = await self._lease.acquire(
            provider_id, self.lease_owner, self._settings.run_lease_ttl_seconds
        )
        if not acquired:
            logger.info("sync_already_running_elsewhere", provider=provider_id)
        return acquired

    async def _single_flight(
        self,
        provider_id: str,
        run_kind: str,
        run: Callable[[], Awaitable[ResultT]],
        placeholder: Callable[..., ResultT],
    ) -> ResultT:
        lock = self._locks[provider_id]
        if lock.locked():
            logger.info("sync_already_running", provider=provider_id)
            return placeholder(RunStatus.ALREADY_RUNNING)

        async with lock:
            bind_run_context(provider_id, run_kind)
            try:
                if not await self._take_lease(provider_id):
                    return placeholder(RunStatus.ALREADY_RUNNING)
                try:
                    return await run()
                finally:
                    if self._lease is not None:
                        await self._lease.release(provider_id, self.lease_owner)
            except ProviderNotConfiguredError as e:
                logger.warning("sync_provider_not_configured", provider=provider_id)
                return placeholder(RunStatus.NOT_CONFIGURED, str(e))
            finally:
                clear_run_context()


__all__ = ["SyncEngine"]
