"""Candidate heuristic for imported plant records.

Decides whether an upstream plant is worth creating as a draft herb. Rules are
evaluated in order and the first one that matches wins. Anything no rule
claims is accepted for manual review.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from herbsync.domain.value_objects import PlantRecord


class CandidateVerdict(Enum):
    """Outcome of the candidate heuristic."""

    ACCEPT = "accept"
    REVIEW = "review"
    REJECT = "reject"

    @property
    def is_accepted(self) -> bool:
        return self is not CandidateVerdict.REJECT


@dataclass(frozen=True)
class CandidateDecision:
    """Verdict plus the name of the rule that produced it."""

    verdict: CandidateVerdict
    rule: str

    @property
    def accepted(self) -> bool:
        return self.verdict.is_accepted


@dataclass(frozen=True)
class CandidateRule:
    """A named predicate paired with the verdict it yields when it matches."""

    name: str
    verdict: CandidateVerdict
    matches: Callable[[PlantRecord], bool]


# Growth habits, ranks and types that are never useful as herb entries
EXCLUDED_CATEGORIES = frozenset(
    {
        "graminoid",
        "grass",
        "moss",
        "lichen",
        "liverwort",
        "hornwort",
        "fungus",
        "fungi",
        "alga",
        "algae",
        "nonvascular",
    }
)

EXCLUDED_TAXONOMIC_STATUS = frozenset({"invalid", "misapplied", "illegitimate"})

# Common-name fragments that suggest culinary or medicinal use
HUMAN_USE_KEYWORDS = (
    "herb",
    "tea",
    "mint",
    "basil",
    "sage",
    "thyme",
    "ginseng",
    "root",
    "berry",
    "pepper",
    "balm",
    "wort",
    "vegetable",
)

_CULTIVAR_MARKER = re.compile(r"['\"‘’]")


def _tokens(value: str | None) -> set[str]:
    if not value:
        return set()
    return set(re.split(r"[^a-z]+", value.lower())) - {""}


def _is_excluded_category(plant: PlantRecord) -> bool:
    tokens = _tokens(plant.growth_habit) | _tokens(plant.plant_type) | _tokens(plant.rank)
    return bool(tokens & EXCLUDED_CATEGORIES)


def _has_invalid_status(plant: PlantRecord) -> bool:
    status = (plant.taxonomic_status or "").lower()
    return status in EXCLUDED_TAXONOMIC_STATUS


def _is_named_cultivar(plant: PlantRecord) -> bool:
    return bool(plant.scientific_name and _CULTIVAR_MARKER.search(plant.scientific_name))


def _missing_scientific_name(plant: PlantRecord) -> bool:
    return not plant.scientific_name


def _has_use_flag(plant: PlantRecord) -> bool:
    return bool(plant.edible or plant.medicinal or plant.vegetable)


def _has_use_keyword(plant: PlantRecord) -> bool:
    name = (plant.common_name or "").lower()
    return any(keyword in name for keyword in HUMAN_USE_KEYWORDS)


DEFAULT_RULES: tuple[CandidateRule, ...] = (
    CandidateRule("excluded_category", CandidateVerdict.REJECT, _is_excluded_category),
    CandidateRule("invalid_taxonomic_status", CandidateVerdict.REJECT, _has_invalid_status),
    CandidateRule("named_cultivar", CandidateVerdict.REJECT, _is_named_cultivar),
    CandidateRule("missing_scientific_name", CandidateVerdict.REJECT, _missing_scientific_name),
    CandidateRule("human_use_flag", CandidateVerdict.ACCEPT, _has_use_flag),
    CandidateRule("human_use_keyword", CandidateVerdict.ACCEPT, _has_use_keyword),
)


def evaluate_candidate(
    plant: PlantRecord,
    rules: tuple[CandidateRule, ...] = DEFAULT_RULES,
) -> CandidateDecision:
    """Classify a plant as accept, review or reject.

    Args:
        plant: Provider-neutral plant record
        rules: Ordered rules; the first match decides

    Returns:
        CandidateDecision naming the deciding rule, or ``ambiguous`` for
        the accept-for-review default
    """
    for rule in rules:
        if rule.matches(plant):
            return CandidateDecision(verdict=rule.verdict, rule=rule.name)
    return CandidateDecision(verdict=CandidateVerdict.REVIEW, rule="ambiguous")


__all__ = [
    "DEFAULT_RULES",
    "CandidateDecision",
    "CandidateRule",
    "CandidateVerdict",
    "evaluate_candidate",
]
