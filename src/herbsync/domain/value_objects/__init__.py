"""Domain value objects for HerbSync."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Health status bands as produced by the health scorer
HealthStatus = Literal["healthy", "degraded", "unhealthy"]


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class AlertSeverity(Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertEvent(Enum):
    """Edges the alert dispatcher reacts to."""

    OPENED = "opened"
    CLOSED = "closed"
    HALF_OPEN = "half_open"
    DEGRADED = "degraded"
    RECOVERED = "recovered"


class HealthScore(BaseModel):
    """Derived 0-100 reliability summary for one provider."""

    model_config = ConfigDict(frozen=True)

    score: Annotated[int, Field(ge=0, le=100)]
    status: HealthStatus
    issues: list[str] = Field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy"


class Provenance(BaseModel):
    """Where a content record came from and when it was last refreshed."""

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(..., min_length=1)
    external_id: str | None = Field(
        default=None, min_length=1, description="None when lookups found no match"
    )
    last_synced_at: datetime | None = None


class Alert(BaseModel):
    """A fired alert, kept in history and optionally logged durably."""

    model_config = ConfigDict(frozen=True)

    id: str
    provider: str
    severity: AlertSeverity
    event: AlertEvent
    circuit_state: CircuitState
    health_score: int
    stats_snapshot: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    channels_notified: list[str] = Field(default_factory=list)

    @property
    def is_critical(self) -> bool:
        return self.severity is AlertSeverity.CRITICAL


class SyncCoverage(BaseModel):
    """How much of the catalogue carries fresh data from one provider."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(default=0, ge=0)
    synced: int = Field(default=0, ge=0, description="Records with a provider external id")
    needing_sync: int = Field(
        default=0, ge=0, description="Never synced, or last synced before the cutoff"
    )


from herbsync.domain.value_objects.plants import (  # noqa: E402
    EnrichedData,
    Page,
    PlantRecord,
)
from herbsync.domain.value_objects.provider_state import (  # noqa: E402
    AlertingState,
    CircuitBreakerState,
    ProviderState,
    QuotaUsage,
)
from herbsync.domain.value_objects.stats import RequestStats  # noqa: E402

__all__ = [
    # Resilience
    "CircuitState",
    "HealthScore",
    "HealthStatus",
    "RequestStats",
    # Durable provider state
    "AlertingState",
    "CircuitBreakerState",
    "ProviderState",
    "QuotaUsage",
    # Alerting
    "Alert",
    "AlertEvent",
    "AlertSeverity",
    # Content
    "EnrichedData",
    "Page",
    "PlantRecord",
    "Provenance",
    "SyncCoverage",
]
