"""Domain services for HerbSync.

Pure business logic functions with no external dependencies.
"""

from herbsync.domain.services.candidates import (
    DEFAULT_RULES,
    CandidateDecision,
    CandidateRule,
    CandidateVerdict,
    evaluate_candidate,
)
from herbsync.domain.services.health import (
    DEGRADED_THRESHOLD,
    HEALTHY_THRESHOLD,
    score_health,
    status_for_score,
)
from herbsync.domain.services.merge import (
    draft_fields_from_plant,
    is_empty_value,
    merge_enrichment,
    slugify,
)
from herbsync.domain.services.state_merge import (
    merge_counters,
    merge_provider_state,
    merge_quotas,
)

__all__ = [
    # Candidate heuristic
    "DEFAULT_RULES",
    "CandidateDecision",
    "CandidateRule",
    "CandidateVerdict",
    "evaluate_candidate",
    # Health scoring
    "DEGRADED_THRESHOLD",
    "HEALTHY_THRESHOLD",
    "score_health",
    "status_for_score",
    # Enrichment merge
    "draft_fields_from_plant",
    "is_empty_value",
    "merge_enrichment",
    "slugify",
    # Provider state merge
    "merge_counters",
    "merge_provider_state",
    "merge_quotas",
]
