"""Merging provider enrichment into existing content records."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from herbsync.domain.value_objects import Provenance

if TYPE_CHECKING:
    from herbsync.domain.entities import ContentRecord
    from herbsync.domain.value_objects import EnrichedData, PlantRecord


def is_empty_value(value: Any) -> bool:
    """True for None, blank strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def merge_enrichment(record: ContentRecord, enriched: EnrichedData) -> dict[str, Any]:
    """Build an update patch from provider enrichment.

    Only fields the provider actually supplied are merged. An empty upstream
    value never replaces existing data, so curated fields survive sparse
    provider responses.

    Args:
        record: Existing content record
        enriched: Data returned by the provider lookup

    Returns:
        Patch with ``fields`` (merged field dict), ``provenance`` and, when the
        provider validated a scientific name, ``scientific_name``
    """
    merged_fields = dict(record.fields)
    for key, value in enriched.fields.items():
        if is_empty_value(value):
            continue
        merged_fields[key] = value

    provenance = dict(record.provenance)
    provenance[enriched.provider_id] = Provenance(
        provider_id=enriched.provider_id,
        external_id=enriched.external_id,
        last_synced_at=enriched.synced_at,
    )

    patch: dict[str, Any] = {"fields": merged_fields, "provenance": provenance}
    if not is_empty_value(enriched.scientific_name):
        patch["scientific_name"] = enriched.scientific_name
    return patch


def slugify(value: str) -> str:
    """Lowercase, hyphen-separated slug."""
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def draft_fields_from_plant(plant: PlantRecord) -> dict[str, Any]:
    """Non-empty descriptive fields carried from a listing item into a draft."""
    candidates = {
        "family": plant.family,
        "genus": plant.genus,
        "growth_habit": plant.growth_habit,
        "plant_type": plant.plant_type,
        "edible": plant.edible,
        "medicinal": plant.medicinal,
        "vegetable": plant.vegetable,
        "image_url": plant.image_url,
        "other_names": plant.other_names,
    }
    return {key: value for key, value in candidates.items() if not is_empty_value(value)}


__all__ = ["draft_fields_from_plant", "is_empty_value", "merge_enrichment", "slugify"]
