"""Perenual API client adapter.

Implements ProviderClientPort for the Perenual species database.
Species pages feed the progressive import; species search plus detail
lookups feed cultivation and safety enrichment.

API Documentation: https://perenual.com/docs/api
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from herbsync.adapters.external_apis.base import (
    ResilientProviderClient,
    breaker_from_settings,
    retry_policy_from_settings,
)
from herbsync.domain.value_objects import EnrichedData, Page, PlantRecord
from herbsync.infrastructure.resilience import create_perenual_rate_limiter

if TYPE_CHECKING:
    from herbsync.infrastructure.clock import Clock
    from herbsync.infrastructure.config import Settings

logger = structlog.get_logger(__name__)

PROVIDER_ID = "perenual"


# === Response schemas ===


class _PerenualModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PerenualImage(_PerenualModel):
    original_url: str | None = None
    regular_url: str | None = None
    medium_url: str | None = None
    thumbnail: str | None = None


class PerenualSpecies(_PerenualModel):
    id: int
    common_name: str | None = None
    scientific_name: list[str] = Field(default_factory=list)
    other_name: list[str] = Field(default_factory=list)
    family: str | None = None
    genus: str | None = None
    cycle: str | None = None
    watering: str | None = None
    sunlight: list[str] = Field(default_factory=list)
    default_image: PerenualImage | None = None

    @field_validator("scientific_name", "other_name", "sunlight", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> Any:
        """Perenual sends null, a bare string or a list for these fields."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class PerenualListResponse(_PerenualModel):
    data: list[PerenualSpecies]
    current_page: int | None = None
    last_page: int | None = None
    per_page: int | None = None
    total: int | None = None


class PerenualSpeciesDetail(PerenualSpecies):
    type: str | None = None
    origin: list[str] = Field(default_factory=list)
    attracts: list[str] = Field(default_factory=list)
    propagation: list[str] = Field(default_factory=list)
    soil: list[str] = Field(default_factory=list)
    hardiness: dict[str, Any] | None = None
    watering_period: str | None = None
    maintenance: str | None = None
    care_level: str | None = None
    growth_rate: str | None = None
    medicinal: bool | None = None
    cuisine: bool | None = None
    edible_fruit: bool | None = None
    edible_leaf: bool | None = None
    poisonous_to_humans: int | bool | None = None
    poisonous_to_pets: int | bool | None = None
    indoor: bool | None = None
    drought_tolerant: bool | None = None
    salt_tolerant: bool | None = None
    description: str | None = None

    @field_validator("origin", "attracts", "propagation", "soil", mode="before")
    @classmethod
    def coerce_detail_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


# === Mapping ===


def _image_url(image: PerenualImage | None) -> str | None:
    if image is None:
        return None
    return image.regular_url or image.original_url or image.medium_url


def plant_from_perenual(item: PerenualSpecies) -> PlantRecord:
    return PlantRecord(
        provider_id=PROVIDER_ID,
        external_id=str(item.id),
        scientific_name=item.scientific_name[0] if item.scientific_name else None,
        common_name=item.common_name,
        family=item.family,
        genus=item.genus,
        image_url=_image_url(item.default_image),
        other_names=item.other_name,
    )


def enrichment_from_perenual(
    species: PerenualSpeciesDetail, *, synced_at: datetime
) -> EnrichedData:
    """Extract cultivation and safety fields from a Perenual species detail record."""
    edible = None
    if species.edible_fruit is not None or species.edible_leaf is not None:
        edible = bool(species.edible_fruit or species.edible_leaf)

    cultivation = {
        "cycle": species.cycle,
        "watering": species.watering,
        "watering_period": species.watering_period,
        "sunlight": species.sunlight,
        "soil": species.soil,
        "hardiness": species.hardiness,
        "maintenance": species.maintenance,
        "care_level": species.care_level,
        "growth_rate": species.growth_rate,
        "indoor": species.indoor,
        "drought_tolerant": species.drought_tolerant,
        "salt_tolerant": species.salt_tolerant,
        "propagation": species.propagation,
    }
    poisonous = {
        "to_humans": bool(species.poisonous_to_humans)
        if species.poisonous_to_humans is not None
        else None,
        "to_pets": bool(species.poisonous_to_pets)
        if species.poisonous_to_pets is not None
        else None,
    }

    fields: dict[str, Any] = {
        "perenual_id": species.id,
        "family": species.family,
        "plant_type": species.type,
        "origin": species.origin,
        "medicinal": species.medicinal,
        "edible": edible,
        "culinary": species.cuisine,
        "attracts": species.attracts,
        "description": species.description,
        "cultivation": {k: v for k, v in cultivation.items() if v is not None} or None,
        "poisonous": {k: v for k, v in poisonous.items() if v is not None} or None,
        "image_url": _image_url(species.default_image),
    }
    return EnrichedData(
        provider_id=PROVIDER_ID,
        external_id=str(species.id),
        scientific_name=species.scientific_name[0] if species.scientific_name else None,
        fields={key: value for key, value in fields.items() if value is not None},
        synced_at=synced_at,
    )


class PerenualClient(ResilientProviderClient):
    """Perenual API v2 client.

    Quota: 60 requests/minute, plus 100 requests/day on the free tier
    (``perenual_requests_per_day=None`` for premium keys). The key travels as
    the ``key`` query parameter.
    """

    auth_param = "key"

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        api_key = (
            settings.perenual_api_key.get_secret_value() if settings.perenual_api_key else None
        )
        super().__init__(
            PROVIDER_ID,
            base_url=settings.perenual_base_url,
            api_key=api_key,
            rate_limiter=create_perenual_rate_limiter(
                premium=settings.perenual_requests_per_day is None,
                requests_per_minute=settings.perenual_requests_per_minute,
                requests_per_day=settings.perenual_requests_per_day,
                clock=clock,
            ),
            circuit_breaker=breaker_from_settings(PROVIDER_ID, settings, clock=clock),
            retry_policy=retry_policy_from_settings(settings, rng=rng),
            timeout_seconds=settings.request_timeout_seconds,
            client=client,
            sleep=sleep,
            clock=clock,
        )

    async def fetch_page(self, page: int, page_size: int) -> Page:
        """Fetch one page of ``/species-list``.

        ``current_page >= last_page`` marks the last page.
        """
        response = await self._fetch(
            "/species-list", {"page": page, "per_page": page_size}, schema=PerenualListResponse
        )
        items = [plant_from_perenual(item) for item in response.data]
        is_last = (
            bool(items)
            and response.last_page is not None
            and (response.current_page or page) >= response.last_page
        )

        logger.debug("perenual_page_fetched", page=page, items=len(items), is_last=is_last)
        return Page(
            provider_id=PROVIDER_ID,
            page_number=page,
            items=items,
            is_last=is_last,
            total=response.total,
        )

    async def _search(self, query: str) -> list[PlantRecord]:
        response = await self._fetch("/species-list", {"q": query}, schema=PerenualListResponse)
        return [plant_from_perenual(item) for item in response.data]

    async def _fetch_detail(self, external_id: str) -> EnrichedData | None:
        species = await self._request(
            f"/species/details/{external_id}",
            schema=PerenualSpeciesDetail,
            allow_not_found=True,
        )
        if species is None:
            return None
        return enrichment_from_perenual(species, synced_at=self._clock())


__all__ = [
    "PROVIDER_ID",
    "PerenualClient",
    "PerenualListResponse",
    "PerenualSpeciesDetail",
    "enrichment_from_perenual",
    "plant_from_perenual",
]
