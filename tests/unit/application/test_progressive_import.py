"""Unit tests for ProgressiveImportUseCase.

Tests the resumable import workflow with a mocked provider client and the
in-memory stores.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from herbsync.adapters.persistence import (
    InMemoryCheckpointStore,
    InMemoryContentStore,
    InMemoryRunLog,
)
from herbsync.application.use_cases.progressive_import import (
    ImportRunResult,
    ProgressiveImportUseCase,
    RunStatus,
)
from herbsync.domain.entities import ContentRecord, SyncCheckpoint
from herbsync.domain.exceptions import (
    CircuitOpenError,
    ProviderNotConfiguredError,
    UpstreamServerError,
)
from herbsync.domain.value_objects import CircuitState, Page, PlantRecord, Provenance, RequestStats
from herbsync.infrastructure.clock import ManualClock

# === Fixtures ===


def make_plant(external_id: str, **overrides) -> PlantRecord:
    data = {
        "provider_id": "trefle",
        "external_id": external_id,
        "scientific_name": f"Herba number{external_id}",
        "common_name": f"Herb {external_id}",
        "edible": True,
    }
    data.update(overrides)
    return PlantRecord(**data)


def make_page(page_number: int, count: int = 3, *, start: int = 0, is_last: bool = False) -> Page:
    items = [make_plant(str(page_number * 100 + start + i)) for i in range(count)]
    return Page(provider_id="trefle", page_number=page_number, items=items, is_last=is_last)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2024, 6, 1, tzinfo=UTC))


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.provider_id = "trefle"
    client.is_configured.return_value = True
    client.fetch_page = AsyncMock()
    return client


@pytest.fixture
def checkpoints() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture
def content() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def use_case(client, checkpoints, content, sleep, clock) -> ProgressiveImportUseCase:
    return ProgressiveImportUseCase(
        client,
        checkpoints,
        content,
        pages_per_run=3,
        page_size=20,
        page_delay_seconds=0.5,
        sleep=sleep,
        clock=clock,
    )


# === Tests ===


class TestProgressiveImport:
    """Tests for run_batch."""

    @pytest.mark.asyncio
    async def test_first_run_uses_page_budget(
        self, use_case, client, checkpoints, content, sleep
    ) -> None:
        client.fetch_page.side_effect = [make_page(1), make_page(2), make_page(3)]

        result = await use_case.run_batch()

        assert isinstance(result, ImportRunResult)
        assert result.status is RunStatus.PARTIAL
        assert result.pages_processed == 3
        assert result.created == 9
        assert result.next_page == 4
        assert [c.args for c in client.fetch_page.await_args_list] == [(1, 20), (2, 20), (3, 20)]
        # Delay between pages, not after the last
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

        checkpoint = await checkpoints.get("trefle")
        assert checkpoint.current_page == 4
        assert checkpoint.items_created == 9
        assert len(content.records) == 9

    @pytest.mark.asyncio
    async def test_resumes_from_checkpoint(self, use_case, client, checkpoints) -> None:
        await checkpoints.upsert(SyncCheckpoint(provider_id="trefle", current_page=7))
        client.fetch_page.side_effect = [make_page(7), make_page(8), make_page(9)]

        await use_case.run_batch()

        assert client.fetch_page.await_args_list[0].args == (7, 20)

    @pytest.mark.asyncio
    async def test_filters_rejects_and_duplicates(self, client, checkpoints, sleep, clock) -> None:
        """20 items, 3 rejected, 2 already imported: 15 drafts created."""
        existing = [
            ContentRecord(
                title=f"Existing {i}",
                provenance={"trefle": Provenance(provider_id="trefle", external_id=str(i))},
            )
            for i in ("18", "19")
        ]
        content = InMemoryContentStore(existing)
        items = [make_plant(str(i)) for i in range(15)]
        items += [make_plant(str(i), growth_habit="Graminoid") for i in range(15, 18)]
        items += [make_plant("18"), make_plant("19")]
        client.fetch_page.side_effect = [
            Page(provider_id="trefle", page_number=1, items=items),
            Page(provider_id="trefle", page_number=2),
        ]
        use_case = ProgressiveImportUseCase(
            client, checkpoints, content, pages_per_run=5, sleep=sleep, clock=clock
        )

        result = await use_case.run_batch()

        assert result.created == 15
        assert result.rejected == 3
        assert result.duplicates == 2
        assert result.skipped == 5
        checkpoint = await checkpoints.get("trefle")
        assert checkpoint.items_created == 15
        assert checkpoint.items_skipped == 5
        assert len(content.records) == 17

    @pytest.mark.asyncio
    async def test_empty_page_completes_and_next_run_does_not_fetch(
        self, use_case, client, checkpoints
    ) -> None:
        await checkpoints.upsert(SyncCheckpoint(provider_id="trefle", current_page=42))
        client.fetch_page.side_effect = [Page(provider_id="trefle", page_number=42)]

        first = await use_case.run_batch()
        second = await use_case.run_batch()

        assert first.status is RunStatus.COMPLETED
        assert first.is_complete is True
        assert first.pages_processed == 0
        assert second.status is RunStatus.ALREADY_COMPLETE
        assert client.fetch_page.await_count == 1
        checkpoint = await checkpoints.get("trefle")
        assert checkpoint.is_complete is True
        assert checkpoint.current_page == 42

    @pytest.mark.asyncio
    async def test_last_page_flag_completes(self, use_case, client, checkpoints, sleep) -> None:
        client.fetch_page.side_effect = [make_page(1), make_page(2, is_last=True)]

        result = await use_case.run_batch()

        assert result.status is RunStatus.COMPLETED
        assert result.pages_processed == 2
        assert client.fetch_page.await_count == 2
        assert sleep.await_count == 1
        checkpoint = await checkpoints.get("trefle")
        assert checkpoint.is_complete is True
        assert checkpoint.current_page == 3

    @pytest.mark.asyncio
    async def test_provider_failure_stops_and_keeps_progress(
        self, use_case, client, checkpoints
    ) -> None:
        client.fetch_page.side_effect = [
            make_page(1),
            UpstreamServerError("HTTP 503", provider_id="trefle", status_code=503),
        ]

        result = await use_case.run_batch()

        assert result.status is RunStatus.STOPPED
        assert result.pages_processed == 1
        assert "503" in result.error
        checkpoint = await checkpoints.get("trefle")
        assert checkpoint.current_page == 2
        assert checkpoint.items_created == 3

    @pytest.mark.asyncio
    async def test_resume_after_failure_is_idempotent(
        self, use_case, client, checkpoints, content
    ) -> None:
        """A retried page skips the drafts it already created."""
        client.fetch_page.side_effect = [
            make_page(1),
            CircuitOpenError("trefle", time_until_retry=30),
        ]
        await use_case.run_batch()

        # Simulate a crash after drafts were written but before the checkpoint moved
        await checkpoints.upsert(SyncCheckpoint(provider_id="trefle", current_page=1))
        client.fetch_page.side_effect = [make_page(1), make_page(2, is_last=True)]

        result = await use_case.run_batch()

        assert result.duplicates == 3
        assert result.created == 3
        assert len(content.records) == 6

    @pytest.mark.asyncio
    async def test_not_configured_raises_before_touching_state(
        self, use_case, client, checkpoints
    ) -> None:
        client.is_configured.return_value = False

        with pytest.raises(ProviderNotConfiguredError):
            await use_case.run_batch()

        client.fetch_page.assert_not_awaited()
        assert await checkpoints.get("trefle") is None

    @pytest.mark.asyncio
    async def test_item_store_failure_counts_as_error(
        self, client, checkpoints, sleep, clock
    ) -> None:
        content = InMemoryContentStore()
        content.create_draft = AsyncMock(side_effect=[RuntimeError("disk full"), None, None])
        client.fetch_page.side_effect = [make_page(1, is_last=True)]
        use_case = ProgressiveImportUseCase(
            client, checkpoints, content, sleep=sleep, clock=clock
        )

        result = await use_case.run_batch()

        assert result.errors == 1
        assert result.created == 2
        checkpoint = await checkpoints.get("trefle")
        assert checkpoint.errors == 1

    @pytest.mark.asyncio
    async def test_draft_shape(self, use_case, client, content, clock) -> None:
        client.fetch_page.side_effect = [
            Page(
                provider_id="trefle",
                page_number=1,
                items=[
                    make_plant(
                        "77",
                        scientific_name="Geranium maculatum",
                        common_name="Spotted Cranesbill",
                        edible=None,
                        family="Geraniaceae",
                    )
                ],
                is_last=True,
            )
        ]

        await use_case.run_batch()

        (draft,) = content.records.values()
        assert draft.title == "Spotted Cranesbill"
        assert draft.slug == "geranium-maculatum"
        assert draft.status == "draft"
        assert draft.created_at == clock()
        assert draft.fields == {
            "family": "Geraniaceae",
            "import_rule": "ambiguous",
            "needs_review": True,
        }
        prov = draft.provenance_for("trefle")
        assert prov.external_id == "77"
        assert prov.last_synced_at is None

    @pytest.mark.asyncio
    async def test_result_to_dict(self, use_case, client) -> None:
        client.fetch_page.side_effect = [make_page(1, is_last=True)]

        data = (await use_case.run_batch()).to_dict()

        assert data["status"] == "completed"
        assert data["provider_id"] == "trefle"
        assert data["next_page"] == 2


class TestImportRunLog:
    """One run-log entry per run, including runs that die."""

    @pytest.fixture
    def run_log(self) -> InMemoryRunLog:
        return InMemoryRunLog()

    @pytest.fixture
    def logged_use_case(self, client, checkpoints, content, sleep, clock, run_log):
        client.get_stats.return_value = RequestStats(total_requests=4, successful_requests=3)
        client.get_circuit_state.return_value = CircuitState.CLOSED
        return ProgressiveImportUseCase(
            client,
            checkpoints,
            content,
            pages_per_run=3,
            run_log=run_log,
            sleep=sleep,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_successful_run_is_logged(self, logged_use_case, client, run_log, clock) -> None:
        client.fetch_page.side_effect = [make_page(1), make_page(2, is_last=True)]

        await logged_use_case.run_batch()

        (entry,) = run_log.entries
        assert entry.provider_id == "trefle"
        assert entry.kind == "import"
        assert entry.status == "success"
        assert entry.records_processed == 6
        assert entry.records_imported == 6
        assert entry.records_failed == 0
        assert entry.started_at == clock()
        assert entry.details == "Processed pages 1-2. Circuit: CLOSED. Success rate: 75.0%"

    @pytest.mark.asyncio
    async def test_stopped_run_with_progress_is_partial(
        self, logged_use_case, client, run_log
    ) -> None:
        client.fetch_page.side_effect = [
            make_page(1),
            UpstreamServerError("HTTP 503", provider_id="trefle", status_code=503),
        ]

        await logged_use_case.run_batch()

        (entry,) = run_log.entries
        assert entry.status == "partial"
        assert "503" in entry.error_message

    @pytest.mark.asyncio
    async def test_stopped_run_without_progress_is_error(
        self, logged_use_case, client, run_log
    ) -> None:
        client.fetch_page.side_effect = [CircuitOpenError("trefle", time_until_retry=30)]

        await logged_use_case.run_batch()

        (entry,) = run_log.entries
        assert entry.status == "error"
        assert entry.details.startswith("No pages processed at page 1.")

    @pytest.mark.asyncio
    async def test_crashed_run_is_logged_then_raised(
        self, logged_use_case, checkpoints, run_log
    ) -> None:
        checkpoints.get = AsyncMock(side_effect=RuntimeError("database is locked"))

        with pytest.raises(RuntimeError):
            await logged_use_case.run_batch()

        (entry,) = run_log.entries
        assert entry.status == "error"
        assert entry.error_message == "database is locked"

    @pytest.mark.asyncio
    async def test_already_complete_is_not_logged(
        self, logged_use_case, checkpoints, run_log
    ) -> None:
        await checkpoints.upsert(
            SyncCheckpoint(provider_id="trefle", current_page=9, is_complete=True)
        )

        await logged_use_case.run_batch()

        assert run_log.entries == []

    @pytest.mark.asyncio
    async def test_run_log_failure_does_not_fail_run(
        self, logged_use_case, client, run_log
    ) -> None:
        run_log.append = AsyncMock(side_effect=RuntimeError("disk full"))
        client.fetch_page.side_effect = [make_page(1, is_last=True)]

        result = await logged_use_case.run_batch()

        assert result.status is RunStatus.COMPLETED
