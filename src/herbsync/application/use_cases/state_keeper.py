"""Keeps in-memory provider state and the durable provider state store in step.

Every process (a long-running ``serve``, a one-shot CLI command) restores
breaker, quota and counter state on start and writes it back when done, so
the daily quota, an open circuit and the statistics survive between runs.
Writers are reconciled with a three-way merge and a versioned save, retried
on conflict.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from herbsync.domain.exceptions import StateConflictError
from herbsync.domain.services import merge_provider_state
from herbsync.domain.value_objects import ProviderState

if TYPE_CHECKING:
    from herbsync.application.ports import ProviderClientPort, ProviderStateStorePort
    from herbsync.domain.value_objects import AlertingState

logger = structlog.get_logger(__name__)


class AlertingStateHolder(Protocol):
    """Anything that keeps per-provider alert edge-detection memory."""

    def export_state(self, provider_id: str) -> AlertingState | None: ...

    def restore_state(self, provider_id: str, snapshot: AlertingState) -> None: ...


class ProviderStateKeeper:
    """Synchronizes each provider's live state with the state store.

    Example:
        keeper = ProviderStateKeeper(clients, store, alerting=dispatcher)
        await keeper.sync_all()  # on start: adopts what other processes saved
        ...
        await keeper.sync_all()  # on exit: publishes this process's changes
    """

    def __init__(
        self,
        clients: Mapping[str, ProviderClientPort],
        store: ProviderStateStorePort,
        *,
        alerting: AlertingStateHolder | None = None,
        max_attempts: int = 3,
    ):
        self._clients = dict(clients)
        self._store = store
        self._alerting = alerting
        self._max_attempts = max_attempts
        # Stored state each provider's memory was last reconciled against
        self._base: dict[str, ProviderState] = {
            pid: ProviderState.initial(pid) for pid in self._clients
        }

    @property
    def provider_ids(self) -> list[str]:
        return list(self._clients)

    def _capture(self, provider_id: str) -> ProviderState:
        state = self._clients[provider_id].export_state()
        alerting = self._alerting.export_state(provider_id) if self._alerting else None
        return state.model_copy(update={"alerting": alerting})

    def _apply(self, provider_id: str, state: ProviderState) -> None:
        self._clients[provider_id].restore_state(state)
        if self._alerting is not None and state.alerting is not None:
            self._alerting.restore_state(provider_id, state.alerting)

    async def _sync_once(self, provider_id: str) -> ProviderState:
        theirs = await self._store.load(provider_id)
        # No awaits from capture to apply, so no local change slips in between
        mine = self._capture(provider_id)
        merged = merge_provider_state(self._base[provider_id], mine, theirs)
        self._apply(provider_id, merged)
        reference = theirs or ProviderState.initial(provider_id)
        self._base[provider_id] = reference

        if merged.same_content(reference):
            return reference

        saved = await self._store.save(merged)
        self._base[provider_id] = saved
        logger.debug("provider_state_saved", provider=provider_id, version=saved.version)
        return saved

    async def sync(self, provider_id: str) -> ProviderState:
        """Merge stored and live state for one provider, then publish the result.

        Raises:
            StateConflictError: If every attempt lost the race to another writer
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StateConflictError),
            stop=stop_after_attempt(self._max_attempts),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "provider_state_conflict_retry",
                        provider=provider_id,
                        attempt=attempt.retry_state.attempt_number,
                    )
                state = await self._sync_once(provider_id)
        return state

    async def sync_all(self) -> dict[str, ProviderState]:
        return {pid: await self.sync(pid) for pid in self._clients}


__all__ = ["AlertingStateHolder", "ProviderStateKeeper"]
