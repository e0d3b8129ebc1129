"""Value objects for upstream botanical records.

Provider adapters validate their own response schemas and map them into these
provider-neutral shapes before anything reaches the sync engine.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlantRecord(BaseModel):
    """One item from a provider's paginated plant listing."""

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(..., min_length=1)
    external_id: str = Field(..., min_length=1, description="Stable provider identifier")
    scientific_name: str | None = None
    common_name: str | None = None
    slug: str | None = None
    family: str | None = None
    genus: str | None = None
    rank: str | None = Field(default=None, description="Taxonomic rank, e.g. species")
    taxonomic_status: str | None = Field(default=None, description="accepted, unknown, ...")
    growth_habit: str | None = None
    plant_type: str | None = Field(default=None, description="Provider 'type' (herb, tree...)")
    edible: bool | None = None
    medicinal: bool | None = None
    vegetable: bool | None = None
    image_url: str | None = None
    other_names: Annotated[list[str], Field(default_factory=list)]

    @field_validator("scientific_name", "common_name", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treat blank strings as missing."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def display_name(self) -> str:
        return self.common_name or self.scientific_name or self.external_id


class Page(BaseModel):
    """A page of plant records. An empty page marks the end of upstream data."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    page_number: Annotated[int, Field(ge=1)]
    items: list[PlantRecord] = Field(default_factory=list)
    is_last: bool = Field(default=False, description="Provider metadata says no further pages")
    total: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.items

    def __len__(self) -> int:
        return len(self.items)


class EnrichedData(BaseModel):
    """Detail data returned by a provider lookup for one existing record.

    ``fields`` carries only what the provider actually supplied; absent values
    are omitted rather than set to empty placeholders.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str
    external_id: str
    scientific_name: str | None = None
    fields: dict[str, Any] = Field(default_factory=dict)
    synced_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


__all__ = ["EnrichedData", "Page", "PlantRecord"]
