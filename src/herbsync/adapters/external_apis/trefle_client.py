"""Trefle API client adapter.

Implements ProviderClientPort for the Trefle plant database.
Listing pages feed the progressive import; search plus detail lookups feed
enrichment of existing herb records.

API Documentation: https://docs.trefle.io/
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from herbsync.adapters.external_apis.base import (
    ResilientProviderClient,
    breaker_from_settings,
    retry_policy_from_settings,
)
from herbsync.domain.value_objects import EnrichedData, Page, PlantRecord
from herbsync.infrastructure.resilience import create_trefle_rate_limiter

if TYPE_CHECKING:
    from herbsync.infrastructure.clock import Clock
    from herbsync.infrastructure.config import Settings

logger = structlog.get_logger(__name__)

PROVIDER_ID = "trefle"


# === Response schemas ===


class _TrefleModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TreflePlant(_TrefleModel):
    id: int
    common_name: str | None = None
    slug: str | None = None
    scientific_name: str | None = None
    status: str | None = None
    rank: str | None = None
    family: str | None = None
    family_common_name: str | None = None
    genus: str | None = None
    image_url: str | None = None
    author: str | None = None
    year: int | None = None
    bibliography: str | None = None
    synonyms: list[Any] = Field(default_factory=list)


class TrefleLinks(_TrefleModel):
    next: str | None = None
    last: str | None = None


class TrefleMeta(_TrefleModel):
    total: int | None = None


class TrefleListResponse(_TrefleModel):
    data: list[TreflePlant]
    links: TrefleLinks | None = None
    meta: TrefleMeta | None = None


class TrefleMainSpecies(_TrefleModel):
    edible: bool | None = None
    edible_part: list[str] | None = None
    vegetable: bool | None = None
    observations: str | None = None
    distribution: dict[str, Any] | None = None
    specifications: dict[str, Any] | None = None
    flower: dict[str, Any] | None = None
    foliage: dict[str, Any] | None = None
    fruit_or_seed: dict[str, Any] | None = None
    synonyms: list[Any] = Field(default_factory=list)


class TreflePlantDetail(TreflePlant):
    main_species: TrefleMainSpecies | None = None
    sources: list[dict[str, Any]] = Field(default_factory=list)


class TrefleDetailResponse(_TrefleModel):
    data: TreflePlantDetail


# === Mapping ===


def _synonym_names(raw: list[Any]) -> list[str]:
    """Synonyms arrive as plain strings or as objects with a ``name`` key."""
    names = []
    for item in raw:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, dict) and item.get("name"):
            names.append(str(item["name"]))
    return names


def _colors(section: dict[str, Any] | None) -> list[str]:
    if not section:
        return []
    return list(section.get("color") or [])


def plant_from_trefle(item: TreflePlant) -> PlantRecord:
    return PlantRecord(
        provider_id=PROVIDER_ID,
        external_id=str(item.id),
        scientific_name=item.scientific_name,
        common_name=item.common_name,
        slug=item.slug,
        family=item.family,
        genus=item.genus,
        rank=item.rank,
        taxonomic_status=item.status,
        image_url=item.image_url,
        other_names=_synonym_names(item.synonyms),
    )


def enrichment_from_trefle(plant: TreflePlantDetail, *, synced_at: datetime) -> EnrichedData:
    """Extract enrichment fields from a Trefle plant detail record."""
    species = plant.main_species or TrefleMainSpecies()
    specs = species.specifications or {}

    fields: dict[str, Any] = {
        "trefle_id": plant.id,
        "trefle_slug": plant.slug,
        "author": plant.author,
        "year": plant.year,
        "bibliography": plant.bibliography,
        "family": plant.family,
        "family_common_name": plant.family_common_name,
        "genus": plant.genus,
        "common_name": plant.common_name,
        "synonyms": _synonym_names(species.synonyms or plant.synonyms),
        "distributions": species.distribution,
        "edible": species.edible,
        "edible_part": species.edible_part,
        "vegetable": species.vegetable,
        "toxicity": specs.get("toxicity"),
        "growth_habit": specs.get("growth_habit"),
        "growth_form": specs.get("growth_form"),
        "growth_rate": specs.get("growth_rate"),
        "average_height": specs.get("average_height"),
        "maximum_height": specs.get("maximum_height"),
        "flower_color": _colors(species.flower),
        "foliage_color": _colors(species.foliage),
        "fruit_color": _colors(species.fruit_or_seed),
        "image_url": plant.image_url,
        "sources": plant.sources,
    }
    return EnrichedData(
        provider_id=PROVIDER_ID,
        external_id=str(plant.id),
        scientific_name=plant.scientific_name,
        fields={key: value for key, value in fields.items() if value is not None},
        synced_at=synced_at,
    )


class TrefleClient(ResilientProviderClient):
    """Trefle API v1 client.

    Quota: 120 requests/minute per token. The token travels as the ``token``
    query parameter.
    """

    auth_param = "token"

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        """Initialize Trefle client.

        Args:
            settings: Application settings with Trefle configuration
            client: Optional pre-configured httpx client (for testing)
            sleep: Awaitable used between retry attempts
            clock: Optional time source shared by breaker and limiter
            rng: Optional random source for retry jitter
        """
        api_key = settings.trefle_api_key.get_secret_value() if settings.trefle_api_key else None
        super().__init__(
            PROVIDER_ID,
            base_url=settings.trefle_base_url,
            api_key=api_key,
            rate_limiter=create_trefle_rate_limiter(
                requests_per_minute=settings.trefle_requests_per_minute, clock=clock
            ),
            circuit_breaker=breaker_from_settings(PROVIDER_ID, settings, clock=clock),
            retry_policy=retry_policy_from_settings(settings, rng=rng),
            timeout_seconds=settings.request_timeout_seconds,
            client=client,
            sleep=sleep,
            clock=clock,
        )

    async def fetch_page(self, page: int, page_size: int) -> Page:
        """Fetch one page of ``/plants``.

        A response without a ``links.next`` URL is the last page.
        """
        response = await self._fetch(
            "/plants", {"page": page, "limit": page_size}, schema=TrefleListResponse
        )
        items = [plant_from_trefle(item) for item in response.data]
        is_last = bool(items) and response.links is not None and not response.links.next

        logger.debug("trefle_page_fetched", page=page, items=len(items), is_last=is_last)
        return Page(
            provider_id=PROVIDER_ID,
            page_number=page,
            items=items,
            is_last=is_last,
            total=response.meta.total if response.meta else None,
        )

    async def _search(self, query: str) -> list[PlantRecord]:
        response = await self._fetch("/plants/search", {"q": query}, schema=TrefleListResponse)
        return [plant_from_trefle(item) for item in response.data]

    async def _fetch_detail(self, external_id: str) -> EnrichedData | None:
        response = await self._request(
            f"/plants/{external_id}", schema=TrefleDetailResponse, allow_not_found=True
        )
        if response is None:
            return None
        return enrichment_from_trefle(response.data, synced_at=self._clock())


__all__ = [
    "PROVIDER_ID",
    "TrefleClient",
    "TrefleDetailResponse",
    "TrefleListResponse",
    "enrichment_from_trefle",
    "plant_from_trefle",
]
