"""Unit tests for ProviderStateKeeper.

Two keepers over one state store stand in for two processes sharing a
database: what one process spends, trips or resets, the other sees after
its next sync.
"""

from datetime import UTC, datetime

import httpx
import pytest

from herbsync.adapters.external_apis import PerenualClient
from herbsync.adapters.persistence import InMemoryProviderStateStore
from herbsync.application.use_cases import ProviderStateKeeper
from herbsync.domain.exceptions import StateConflictError, UpstreamServerError
from herbsync.domain.value_objects import AlertingState, CircuitState, ProviderState
from herbsync.infrastructure.clock import ManualClock
from herbsync.infrastructure.config.settings import Settings


def failing_perenual(clock: ManualClock) -> PerenualClient:
    settings = Settings(
        _env_file=None,
        perenual_api_key="test-key",
        perenual_requests_per_day=2,
        retry_max_attempts=1,
        circuit_breaker_failure_threshold=2,
        circuit_breaker_recovery_timeout=60,
    )
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={}))
    return PerenualClient(settings, client=httpx.AsyncClient(transport=transport), clock=clock)


async def burn_quota_and_trip(client: PerenualClient) -> None:
    for _ in range(2):
        with pytest.raises(UpstreamServerError):
            await client.fetch_page(1, 20)


class FakeClient:
    """Holds a ProviderState as its whole live state."""

    def __init__(self, provider_id: str = "trefle", **state) -> None:
        self.provider_id = provider_id
        self.state = ProviderState(provider_id=provider_id, **state)

    def export_state(self) -> ProviderState:
        return self.state

    def restore_state(self, state: ProviderState) -> None:
        self.state = state.model_copy(update={"alerting": None})


class FakeAlerting:
    def __init__(self) -> None:
        self.states: dict[str, AlertingState] = {}

    def export_state(self, provider_id: str) -> AlertingState | None:
        return self.states.get(provider_id, AlertingState())

    def restore_state(self, provider_id: str, snapshot: AlertingState) -> None:
        self.states[provider_id] = snapshot


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2024, 6, 1, 12, tzinfo=UTC))


@pytest.fixture
def store() -> InMemoryProviderStateStore:
    return InMemoryProviderStateStore()


class TestSharedState:
    """State crosses from one keeper's clients to another's."""

    @pytest.mark.asyncio
    async def test_spent_quota_and_open_circuit_carry_over(self, clock, store) -> None:
        first = failing_perenual(clock)
        await ProviderStateKeeper({"perenual": first}, store).sync_all()
        await burn_quota_and_trip(first)
        assert first.get_circuit_state() is CircuitState.OPEN

        await ProviderStateKeeper({"perenual": first}, store).sync("perenual")
        second = failing_perenual(clock)
        await ProviderStateKeeper({"perenual": second}, store).sync_all()

        assert second.get_circuit_state() is CircuitState.OPEN
        assert second._rate_limiter.allow() is False
        assert second.get_stats().failed_requests == 2

    @pytest.mark.asyncio
    async def test_admin_reset_reaches_other_process(self, clock, store) -> None:
        first, second = failing_perenual(clock), failing_perenual(clock)
        keeper_a = ProviderStateKeeper({"perenual": first}, store)
        keeper_b = ProviderStateKeeper({"perenual": second}, store)
        await keeper_a.sync_all()
        await burn_quota_and_trip(first)
        await keeper_a.sync_all()
        await keeper_b.sync_all()
        assert second.get_circuit_state() is CircuitState.OPEN

        second.reset()
        await keeper_b.sync_all()
        await keeper_a.sync_all()

        assert first.get_circuit_state() is CircuitState.CLOSED
        assert first.get_stats().total_requests == 0
        # A reset clears statistics, not the provider's quota
        assert first._rate_limiter.allow() is False

    @pytest.mark.asyncio
    async def test_usage_from_both_processes_adds_up(self, clock, store) -> None:
        first, second = failing_perenual(clock), failing_perenual(clock)
        keeper_a = ProviderStateKeeper({"perenual": first}, store)
        keeper_b = ProviderStateKeeper({"perenual": second}, store)
        await keeper_a.sync_all()
        await keeper_b.sync_all()

        assert first._rate_limiter.allow() is True
        assert second._rate_limiter.allow() is True
        await keeper_a.sync_all()
        await keeper_b.sync_all()
        await keeper_a.sync_all()

        assert first._rate_limiter.allow() is False
        assert second._rate_limiter.allow() is False


class TestSyncMechanics:
    @pytest.mark.asyncio
    async def test_unchanged_state_is_not_rewritten(self, store) -> None:
        keeper = ProviderStateKeeper({"trefle": FakeClient()}, store)

        first = await keeper.sync("trefle")
        second = await keeper.sync("trefle")

        assert first.version == 1
        assert second.version == 1

    @pytest.mark.asyncio
    async def test_alerting_memory_is_saved_and_restored(self, store) -> None:
        alerting = FakeAlerting()
        alerting.states["trefle"] = AlertingState(
            last_circuit_state=CircuitState.OPEN, alert_count=2
        )
        await ProviderStateKeeper({"trefle": FakeClient()}, store, alerting=alerting).sync_all()

        successor = FakeAlerting()
        await ProviderStateKeeper({"trefle": FakeClient()}, store, alerting=successor).sync_all()

        assert successor.states["trefle"].last_circuit_state is CircuitState.OPEN
        assert successor.states["trefle"].alert_count == 2

    @pytest.mark.asyncio
    async def test_conflict_is_retried_against_fresh_state(self) -> None:
        class RacingStore(InMemoryProviderStateStore):
            """Another writer saves just before our first save lands."""

            def __init__(self) -> None:
                super().__init__()
                self.raced = False

            async def save(self, state: ProviderState) -> ProviderState:
                if not self.raced:
                    self.raced = True
                    await super().save(
                        ProviderState(provider_id="trefle", stats={"total_requests": 10})
                    )
                return await super().save(state)

        client = FakeClient(stats={"total_requests": 2})
        store = RacingStore()

        saved = await ProviderStateKeeper({"trefle": client}, store).sync("trefle")

        assert saved.version == 2
        assert saved.stats == {"total_requests": 12}
        assert client.state.stats == {"total_requests": 12}

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        class AlwaysConflicting(InMemoryProviderStateStore):
            def __init__(self) -> None:
                super().__init__()
                self.attempts = 0

            async def save(self, state: ProviderState) -> ProviderState:
                self.attempts += 1
                raise StateConflictError(state.provider_id, state.version)

        store = AlwaysConflicting()
        keeper = ProviderStateKeeper(
            {"trefle": FakeClient(stats={"total_requests": 1})}, store, max_attempts=3
        )

        with pytest.raises(StateConflictError):
            await keeper.sync("trefle")

        assert store.attempts == 3
