"""Cancellable periodic ticker, the alert monitor and the sync scheduler built on it.

The sleep callable is injectable, so tests drive ticks with ``tick()`` or a
ManualClock-backed sleep instead of waiting on the wall clock.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from herbsync.application.use_cases import ProviderStateKeeper, SyncEngine
    from herbsync.domain.value_objects import Alert
    from herbsync.infrastructure.config import Settings
    from herbsync.infrastructure.monitoring.alerts import AlertDispatcher

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class PeriodicTicker:
    """Run an async job every ``interval`` seconds until cancelled.

    A failing job is logged and the loop keeps ticking.
    """

    def __init__(
        self,
        interval: float,
        job: Callable[[], Awaitable[object]],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "ticker",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._job = job
        self._sleep = sleep
        self._name = name
        self._cancelled = False
        self.ticks = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def tick(self) -> None:
        """Run the job once."""
        self.ticks += 1
        try:
            await self._job()
        except Exception as e:
            logger.exception("ticker_job_failed", ticker=self._name, tick=self.ticks, error=str(e))

    async def run(self, *, max_ticks: int | None = None) -> None:
        """Tick, then sleep, until cancelled or ``max_ticks`` is reached."""
        logger.info("ticker_started", ticker=self._name, interval=self._interval)
        count = 0
        while not self._cancelled:
            await self.tick()
            count += 1
            if max_ticks is not None and count >= max_ticks:
                break
            await self._sleep(self._interval)
        logger.info("ticker_stopped", ticker=self._name, ticks=self.ticks)

    def cancel(self) -> None:
        """Stop before the next tick; a tick in progress finishes."""
        self._cancelled = True


class AlertMonitor:
    """Checks every provider through the dispatcher on a fixed interval.

    Keeps a running count of fired alerts and only the most recent ones.
    """

    def __init__(
        self,
        dispatcher: AlertDispatcher,
        *,
        interval_seconds: float = 30,
        recent_size: int = 50,
        after_check: Callable[[], Awaitable[object]] | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._dispatcher = dispatcher
        self._after_check = after_check
        self.fired_count = 0
        self.recent: deque[Alert] = deque(maxlen=recent_size)
        self.ticker = PeriodicTicker(
            interval_seconds, self._check, sleep=sleep, name="alert_monitor"
        )

    async def _check(self) -> None:
        alerts = await self._dispatcher.check_all()
        self.fired_count += len(alerts)
        self.recent.extend(alerts)
        if self._after_check is not None:
            await self._after_check()

    async def run(self, *, max_ticks: int | None = None) -> None:
        await self.ticker.run(max_ticks=max_ticks)

    def cancel(self) -> None:
        self.ticker.cancel()


class SyncScheduler:
    """Everything ``herbsync serve`` runs, sharing one set of clients.

    Per provider, an import ticker and an enrichment ticker when enabled in
    Settings; the alert monitor; and a ticker that publishes provider state
    so other processes see this one's quota use and circuit state.
    """

    def __init__(
        self,
        engine: SyncEngine,
        keeper: ProviderStateKeeper,
        settings: Settings,
        *,
        monitor: AlertMonitor | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._engine = engine
        self._keeper = keeper
        self.monitor = monitor
        self.tickers: list[PeriodicTicker] = []

        for pid in engine.provider_ids:
            if settings.import_enabled(pid):
                self.tickers.append(
                    PeriodicTicker(
                        settings.import_interval_seconds,
                        self._import_job(pid),
                        sleep=sleep,
                        name=f"{pid}_import",
                    )
                )
            if settings.sync_enabled(pid):
                self.tickers.append(
                    PeriodicTicker(
                        settings.sync_interval_seconds,
                        self._enrichment_job(pid),
                        sleep=sleep,
                        name=f"{pid}_sync",
                    )
                )
        if monitor is not None:
            self.tickers.append(monitor.ticker)
        self.tickers.append(
            PeriodicTicker(
                settings.state_sync_interval_seconds,
                keeper.sync_all,
                sleep=sleep,
                name="provider_state",
            )
        )

    @property
    def names(self) -> list[str]:
        return [t.name for t in self.tickers]

    def _import_job(self, provider_id: str) -> Callable[[], Awaitable[None]]:
        async def job() -> None:
            result = await self._engine.run_import(provider_id)
            logger.info(
                "scheduled_import_finished", provider=provider_id, status=result.status.value
            )
            await self._keeper.sync(provider_id)

        return job

    def _enrichment_job(self, provider_id: str) -> Callable[[], Awaitable[None]]:
        async def job() -> None:
            result = await self._engine.run_enrichment(provider_id)
            logger.info(
                "scheduled_sync_finished", provider=provider_id, status=result.status.value
            )
            await self._keeper.sync(provider_id)

        return job

    async def run(self, *, max_ticks: int | None = None) -> None:
        """Run every ticker concurrently until cancelled or each reaches ``max_ticks``."""
        logger.info("scheduler_started", tickers=self.names)
        await asyncio.gather(*(t.run(max_ticks=max_ticks) for t in self.tickers))
        logger.info("scheduler_stopped")

    def cancel(self) -> None:
        for ticker in self.tickers:
            ticker.cancel()


__all__ = ["AlertMonitor", "PeriodicTicker", "SyncScheduler"]
