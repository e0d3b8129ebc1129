"""Tests for the three-way provider state merge."""

from datetime import UTC, datetime

from herbsync.domain.services import merge_counters, merge_provider_state, merge_quotas
from herbsync.domain.value_objects import (
    AlertingState,
    CircuitBreakerState,
    CircuitState,
    ProviderState,
    QuotaUsage,
)

OPENED_AT = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)
DAY = 86_400.0


def day(index: int, used: int) -> QuotaUsage:
    return QuotaUsage(window_seconds=DAY, window_index=index, used=used)


def state(**overrides) -> ProviderState:
    data = {"provider_id": "perenual", "alerting": AlertingState()}
    data.update(overrides)
    return ProviderState(**data)


class TestMergeQuotas:
    def test_adds_my_usage_onto_theirs(self) -> None:
        merged = merge_quotas([day(10, 20)], [day(10, 25)], [day(10, 60)])

        assert merged == [day(10, 65)]

    def test_their_older_window_counts_as_empty(self) -> None:
        """After rollover, usage from yesterday does not leak into today."""
        merged = merge_quotas([day(9, 40)], [day(10, 3)], [day(9, 90)])

        assert merged == [day(10, 3)]

    def test_their_newer_window_is_dropped_for_my_current_one(self) -> None:
        merged = merge_quotas([], [day(10, 3)], [day(11, 7)])

        assert merged == [day(10, 3)]

    def test_never_negative(self) -> None:
        # Theirs was reset below what I last saw
        merged = merge_quotas([day(10, 50)], [day(10, 50)], [day(10, 0)])

        assert merged == [day(10, 0)]


class TestMergeCounters:
    def test_sums_increments_from_both_writers(self) -> None:
        merged = merge_counters(
            {"total_requests": 10, "failed_requests": 1},
            {"total_requests": 14, "failed_requests": 3},
            {"total_requests": 30, "failed_requests": 1},
        )

        assert merged == {"total_requests": 34, "failed_requests": 3}

    def test_reset_elsewhere_keeps_only_my_new_increments(self) -> None:
        merged = merge_counters(
            {"total_requests": 10}, {"total_requests": 12}, {"total_requests": 0}
        )

        assert merged == {"total_requests": 2}

    def test_my_reset_clamps_at_zero(self) -> None:
        merged = merge_counters(
            {"total_requests": 10}, {"total_requests": 0}, {"total_requests": 4}
        )

        assert merged == {"total_requests": 0}


class TestMergeProviderState:
    def test_first_save_is_mine_at_version_zero(self) -> None:
        mine = state(stats={"total_requests": 3}, version=5)

        merged = merge_provider_state(ProviderState.initial("perenual"), mine, None)

        assert merged.version == 0
        assert merged.stats == {"total_requests": 3}

    def test_adopts_their_open_circuit_when_mine_is_unchanged(self) -> None:
        base = state()
        theirs = state(
            circuit=CircuitBreakerState(
                state=CircuitState.OPEN, consecutive_failures=5, opened_at=OPENED_AT
            ),
            version=4,
        )

        merged = merge_provider_state(base, state(), theirs)

        assert merged.circuit.state == CircuitState.OPEN
        assert merged.circuit.opened_at == OPENED_AT
        assert merged.version == 4

    def test_my_circuit_change_wins(self) -> None:
        """A reset in this process beats the open circuit it last saw."""
        opened = CircuitBreakerState(state=CircuitState.OPEN, opened_at=OPENED_AT)
        base = state(circuit=opened, version=2)
        theirs = state(circuit=opened, version=3)

        merged = merge_provider_state(base, state(), theirs)

        assert merged.circuit.state == CircuitState.CLOSED
        assert merged.version == 3

    def test_alerting_adopted_unless_changed_here(self) -> None:
        theirs = state(alerting=AlertingState(alert_count=3), version=1)

        unchanged = merge_provider_state(state(), state(), theirs)
        changed = merge_provider_state(
            state(), state(alerting=AlertingState(alert_count=1)), theirs
        )

        assert unchanged.alerting.alert_count == 3
        assert changed.alerting.alert_count == 1

    def test_writer_without_dispatcher_keeps_their_alerting(self) -> None:
        theirs = state(alerting=AlertingState(consecutive_opens=2), version=1)

        merged = merge_provider_state(state(), state(alerting=None), theirs)

        assert merged.alerting.consecutive_opens == 2

    def test_result_has_same_content_as_theirs_when_nothing_changed(self) -> None:
        theirs = state(quotas=[day(10, 4)], stats={"total_requests": 4}, version=7)

        merged = merge_provider_state(theirs, theirs.model_copy(update={"version": 0}), theirs)

        assert merged.same_content(theirs)
