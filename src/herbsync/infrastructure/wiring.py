"""Composition root.

Builds one client per provider (each with its own breaker, limiter and
stats), the stores, the sync engine and the alert dispatcher from Settings.
Provider state saved by earlier processes is restored before the container
is handed out, and published again by ``close()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from herbsync.adapters.external_apis import PerenualClient, TrefleClient
from herbsync.adapters.notifications import HttpNotifier
from herbsync.adapters.persistence import (
    SqlAlertLog,
    SqlCheckpointStore,
    SqlContentStore,
    SqlProviderStateStore,
    SqlRunLease,
    SqlRunLog,
    create_engine,
    create_session_factory,
    init_models,
)
from herbsync.application.use_cases import ProviderAdminService, ProviderStateKeeper, SyncEngine
from herbsync.infrastructure.monitoring import AlertDispatcher, AlertMonitor, SyncScheduler

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from herbsync.adapters.external_apis import ResilientProviderClient
    from herbsync.infrastructure.config import Settings

logger = structlog.get_logger(__name__)


@dataclass
class Container:
    """Long-lived application objects for one process."""

    settings: Settings
    db_engine: AsyncEngine
    clients: dict[str, ResilientProviderClient]
    checkpoints: SqlCheckpointStore
    content: SqlContentStore
    alert_log: SqlAlertLog
    run_log: SqlRunLog
    state_store: SqlProviderStateStore
    lease: SqlRunLease
    notifier: HttpNotifier
    engine: SyncEngine
    admin: ProviderAdminService
    dispatcher: AlertDispatcher
    keeper: ProviderStateKeeper

    def alert_monitor(self) -> AlertMonitor:
        return AlertMonitor(
            self.dispatcher,
            interval_seconds=self.settings.alert_check_interval_seconds,
            recent_size=self.settings.alert_history_size,
            after_check=self.keeper.sync_all,
        )

    def scheduler(self) -> SyncScheduler:
        """Tickers for ``herbsync serve``, all sharing this container's clients."""
        monitor = self.alert_monitor() if self.settings.monitor_enabled else None
        return SyncScheduler(self.engine, self.keeper, self.settings, monitor=monitor)

    async def close(self, *, persist: bool = True) -> None:
        """Publish provider state, close HTTP clients and dispose of the database engine.

        Args:
            persist: False for read-only commands that changed nothing worth saving
        """
        if persist:
            try:
                await self.keeper.sync_all()
            except Exception as e:
                logger.error("provider_state_save_failed", error=str(e))
        for client in self.clients.values():
            await client.close()
        await self.notifier.close()
        await self.db_engine.dispose()


async def build_container(settings: Settings) -> Container:
    """Wire every component, create missing tables and restore provider state.

    Args:
        settings: Application settings

    Returns:
        Container; call ``close()`` when done
    """
    db_engine = create_engine(settings.database_url, echo=settings.debug)
    await init_models(db_engine)
    session_factory = create_session_factory(db_engine)

    clients: dict[str, ResilientProviderClient] = {
        "trefle": TrefleClient(settings),
        "perenual": PerenualClient(settings),
    }
    checkpoints = SqlCheckpointStore(session_factory)
    content = SqlContentStore(session_factory)
    alert_log = SqlAlertLog(session_factory)
    run_log = SqlRunLog(session_factory)
    state_store = SqlProviderStateStore(session_factory)
    lease = SqlRunLease(session_factory)
    notifier = HttpNotifier(settings)

    engine = SyncEngine(
        clients, checkpoints, content, settings, run_log=run_log, lease=lease
    )
    dispatcher = AlertDispatcher.from_settings(settings, clients, notifier, alert_log=alert_log)
    keeper = ProviderStateKeeper(clients, state_store, alerting=dispatcher)
    admin = ProviderAdminService(
        engine,
        checkpoints,
        content=content,
        run_log=run_log,
        page_size=settings.import_page_size,
        staleness_days=settings.sync_staleness_days,
        estimated_totals=settings.estimated_totals(),
    )

    await keeper.sync_all()

    logger.info(
        "container_built",
        providers={pid: c.is_configured() for pid, c in clients.items()},
        database=db_engine.url.render_as_string(hide_password=True),
        lease_owner=engine.lease_owner,
    )
    return Container(
        settings=settings,
        db_engine=db_engine,
        clients=clients,
        checkpoints=checkpoints,
        content=content,
        alert_log=alert_log,
        run_log=run_log,
        state_store=state_store,
        lease=lease,
        notifier=notifier,
        engine=engine,
        admin=admin,
        dispatcher=dispatcher,
        keeper=keeper,
    )


__all__ = ["Container", "build_container"]
