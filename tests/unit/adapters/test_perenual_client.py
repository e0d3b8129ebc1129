"""Unit tests for PerenualClient request shapes, quotas and response mapping."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import httpx
import pytest

from herbsync.adapters.external_apis.perenual_client import (
    PerenualClient,
    PerenualSpeciesDetail,
    enrichment_from_perenual,
)
from herbsync.domain.exceptions import RateLimitedError
from herbsync.infrastructure.clock import ManualClock
from herbsync.infrastructure.config.settings import Settings

NOW = datetime(2024, 6, 1, tzinfo=UTC)

MINT = {
    "id": 2345,
    "common_name": "peppermint",
    "scientific_name": ["Mentha x piperita"],
    "other_name": None,
    "family": "Lamiaceae",
    "cycle": "Herbaceous Perennial",
    "watering": "Frequent",
    "sunlight": "part shade",
    "default_image": {"regular_url": "https://perenual.com/storage/mint.jpg"},
}


def listing(data, *, current_page=1, last_page=337):
    return httpx.Response(
        200,
        json={
            "data": data,
            "current_page": current_page,
            "last_page": last_page,
            "per_page": 30,
            "total": 10102,
        },
    )


def build(handler, **overrides) -> tuple[PerenualClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    values = {"perenual_api_key": "sk-perenual", "retry_max_attempts": 1}
    values.update(overrides)
    client = PerenualClient(
        Settings(_env_file=None, **values),
        client=httpx.AsyncClient(transport=httpx.MockTransport(record)),
        sleep=AsyncMock(),
        clock=ManualClock(NOW),
    )
    return client, requests


class TestFetchPage:
    @pytest.mark.asyncio
    async def test_request_shape_and_mapping(self) -> None:
        client, requests = build(lambda request: listing([MINT]))

        page = await client.fetch_page(1, 30)

        assert requests[0].url.path == "/api/species-list"
        params = requests[0].url.params
        assert params["key"] == "sk-perenual"
        assert params["per_page"] == "30"
        (plant,) = page.items
        assert plant.external_id == "2345"
        assert plant.scientific_name == "Mentha x piperita"
        assert plant.other_names == []
        assert plant.image_url == "https://perenual.com/storage/mint.jpg"
        assert page.is_last is False
        assert page.total == 10102

    @pytest.mark.asyncio
    async def test_last_page(self) -> None:
        client, _ = build(lambda request: listing([MINT], current_page=337, last_page=337))

        page = await client.fetch_page(337, 30)

        assert page.is_last is True

    @pytest.mark.asyncio
    async def test_past_the_end_is_empty(self) -> None:
        client, _ = build(lambda request: listing([], current_page=338, last_page=337))

        page = await client.fetch_page(338, 30)

        assert page.is_empty is True


class TestQuotas:
    @pytest.mark.asyncio
    async def test_free_tier_daily_cap(self) -> None:
        client, requests = build(
            lambda request: listing([MINT]), perenual_requests_per_day=2
        )

        await client.fetch_page(1, 30)
        await client.fetch_page(2, 30)
        with pytest.raises(RateLimitedError):
            await client.fetch_page(3, 30)

        assert len(requests) == 2
        windows = client.get_rate_limit_stats()["windows"]
        assert [w["window_seconds"] for w in windows] == [60.0, 86_400.0]

    def test_premium_has_no_daily_window(self) -> None:
        client, _ = build(lambda request: listing([]), perenual_requests_per_day=None)

        windows = client.get_rate_limit_stats()["windows"]

        assert [w["limit"] for w in windows] == [60]


class TestEnrich:
    @pytest.mark.asyncio
    async def test_search_then_detail(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/species-list":
                return listing([MINT])
            if request.url.path == "/api/species/details/2345":
                return httpx.Response(
                    200,
                    json={
                        **MINT,
                        "type": "herb",
                        "medicinal": True,
                        "cuisine": True,
                        "edible_leaf": True,
                        "poisonous_to_pets": 1,
                        "care_level": "Medium",
                        "soil": None,
                    },
                )
            return httpx.Response(404)

        client, requests = build(handler)

        enriched = await client.enrich("Mentha x piperita")

        assert requests[0].url.params["q"] == "Mentha x piperita"
        assert enriched.external_id == "2345"
        assert enriched.scientific_name == "Mentha x piperita"
        assert enriched.fields["medicinal"] is True
        assert enriched.fields["culinary"] is True
        assert enriched.fields["edible"] is True
        assert enriched.fields["poisonous"] == {"to_pets": True}
        assert enriched.fields["cultivation"]["care_level"] == "Medium"
        assert enriched.fields["cultivation"]["sunlight"] == ["part shade"]
        assert enriched.synced_at == NOW


class TestEnrichmentMapping:
    def test_sparse_detail(self) -> None:
        species = PerenualSpeciesDetail.model_validate({"id": 9, "scientific_name": "Thymus"})

        enriched = enrichment_from_perenual(species, synced_at=NOW)

        assert enriched.scientific_name == "Thymus"
        assert "edible" not in enriched.fields
        assert "poisonous" not in enriched.fields
        assert enriched.fields["perenual_id"] == 9
        # Empty lists survive mapping; the merge step drops them later
        assert enriched.fields["cultivation"] == {"sunlight": [], "soil": [], "propagation": []}
