"""Tests for PeriodicTicker, AlertMonitor and SyncScheduler."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from herbsync.domain.value_objects import CircuitState, RequestStats
from herbsync.infrastructure.clock import ManualClock
from herbsync.application.use_cases import RunStatus
from herbsync.infrastructure.config.settings import Settings
from herbsync.infrastructure.monitoring import (
    AlertDispatcher,
    AlertMonitor,
    PeriodicTicker,
    SyncScheduler,
)


class TestPeriodicTicker:
    """Ticker loop with an injected sleep."""

    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValueError, match="interval must be positive"):
            PeriodicTicker(0, AsyncMock())

    @pytest.mark.asyncio
    async def test_runs_until_max_ticks(self) -> None:
        clock = ManualClock()
        start = clock()
        job = AsyncMock()
        ticker = PeriodicTicker(30, job, sleep=clock.sleep)

        await ticker.run(max_ticks=3)

        assert job.await_count == 3
        assert ticker.ticks == 3
        # No sleep after the final tick
        assert (clock() - start).total_seconds() == 60

    @pytest.mark.asyncio
    async def test_job_failure_does_not_stop_loop(self) -> None:
        job = AsyncMock(side_effect=[RuntimeError("boom"), None])
        ticker = PeriodicTicker(1, job, sleep=AsyncMock())

        await ticker.run(max_ticks=2)

        assert job.await_count == 2

    @pytest.mark.asyncio
    async def test_cancel_stops_loop(self) -> None:
        ticker: PeriodicTicker

        async def job() -> None:
            if ticker.ticks == 2:
                ticker.cancel()

        ticker = PeriodicTicker(5, job, sleep=AsyncMock())

        await ticker.run()

        assert ticker.cancelled is True
        assert ticker.ticks == 2

    @pytest.mark.asyncio
    async def test_cancel_before_run(self) -> None:
        job = AsyncMock()
        ticker = PeriodicTicker(5, job, sleep=AsyncMock())
        ticker.cancel()

        await ticker.run()

        job.assert_not_awaited()


class TestAlertMonitor:
    @pytest.mark.asyncio
    async def test_collects_fired_alerts(self) -> None:
        clock = ManualClock()
        client = MagicMock()
        client.is_configured.return_value = True
        client.get_stats.return_value = RequestStats()
        client.get_circuit_state.side_effect = [
            CircuitState.CLOSED,
            CircuitState.OPEN,
            CircuitState.OPEN,
        ]
        dispatcher = AlertDispatcher({"trefle": client}, clock=clock)
        monitor = AlertMonitor(dispatcher, interval_seconds=30, sleep=clock.sleep)

        await monitor.run(max_ticks=3)

        assert monitor.fired_count == 1
        assert [a.event.value for a in monitor.recent] == ["opened"]
        assert monitor.ticker.interval == 30

    def test_cancel_delegates_to_ticker(self) -> None:
        monitor = AlertMonitor(MagicMock(), interval_seconds=10)

        monitor.cancel()

        assert monitor.ticker.cancelled is True

    @pytest.mark.asyncio
    async def test_keeps_count_but_only_recent_alerts(self) -> None:
        dispatcher = MagicMock()
        dispatcher.check_all = AsyncMock(side_effect=[[MagicMock()] * 4, [MagicMock()] * 3])
        monitor = AlertMonitor(dispatcher, recent_size=5, sleep=AsyncMock())

        await monitor.run(max_ticks=2)

        assert monitor.fired_count == 7
        assert len(monitor.recent) == 5

    @pytest.mark.asyncio
    async def test_after_check_runs_every_tick(self) -> None:
        dispatcher = MagicMock()
        dispatcher.check_all = AsyncMock(return_value=[])
        after_check = AsyncMock()
        monitor = AlertMonitor(dispatcher, after_check=after_check, sleep=AsyncMock())

        await monitor.run(max_ticks=2)

        assert after_check.await_count == 2


def _engine(*provider_ids: str) -> MagicMock:
    engine = MagicMock()
    engine.provider_ids = list(provider_ids)
    engine.run_import = AsyncMock(return_value=MagicMock(status=RunStatus.PARTIAL))
    engine.run_enrichment = AsyncMock(return_value=MagicMock(status=RunStatus.COMPLETED))
    return engine


def _keeper() -> MagicMock:
    keeper = MagicMock()
    keeper.sync = AsyncMock()
    keeper.sync_all = AsyncMock()
    return keeper


class TestSyncScheduler:
    """Jobs for ``herbsync serve``."""

    def test_builds_only_enabled_jobs(self) -> None:
        settings = Settings(
            _env_file=None, perenual_import_enabled=True, trefle_sync_enabled=True
        )

        scheduler = SyncScheduler(_engine("trefle", "perenual"), _keeper(), settings)

        assert scheduler.names == ["trefle_sync", "perenual_import", "provider_state"]

    def test_includes_monitor_ticker(self) -> None:
        settings = Settings(_env_file=None, trefle_sync_enabled=False)
        monitor = AlertMonitor(MagicMock(), interval_seconds=30)

        scheduler = SyncScheduler(_engine("trefle"), _keeper(), settings, monitor=monitor)

        assert scheduler.names == ["alert_monitor", "provider_state"]
        assert scheduler.tickers[0] is monitor.ticker

    @pytest.mark.asyncio
    async def test_jobs_run_engine_then_publish_state(self) -> None:
        settings = Settings(
            _env_file=None, trefle_import_enabled=True, trefle_sync_enabled=True
        )
        engine = _engine("trefle")
        keeper = _keeper()
        scheduler = SyncScheduler(engine, keeper, settings, sleep=AsyncMock())

        await scheduler.run(max_ticks=2)

        assert engine.run_import.await_count == 2
        assert engine.run_enrichment.await_count == 2
        # One publish per job run
        assert keeper.sync.await_count == 4
        keeper.sync.assert_awaited_with("trefle")
        assert keeper.sync_all.await_count == 2

    @pytest.mark.asyncio
    async def test_failing_job_keeps_other_tickers_running(self) -> None:
        settings = Settings(_env_file=None, trefle_import_enabled=True)
        engine = _engine("trefle")
        engine.run_import.side_effect = RuntimeError("db locked")
        keeper = _keeper()
        scheduler = SyncScheduler(engine, keeper, settings, sleep=AsyncMock())

        await scheduler.run(max_ticks=3)

        assert engine.run_import.await_count == 3
        assert engine.run_enrichment.await_count == 3
        assert keeper.sync_all.await_count == 3

    def test_cancel_stops_every_ticker(self) -> None:
        settings = Settings(_env_file=None)
        scheduler = SyncScheduler(_engine("trefle"), _keeper(), settings)

        scheduler.cancel()

        assert all(t.cancelled for t in scheduler.tickers)
