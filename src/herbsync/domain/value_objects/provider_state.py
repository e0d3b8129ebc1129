"""Durable snapshot of one provider's resilience and alerting state.

Every process that talks to a provider keeps its breaker, quota windows and
counters in memory. The snapshot is what gets written to storage so that a
later process (the next cron tick, an admin command, a restarted service)
continues from the same numbers instead of from zero.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from herbsync.domain.value_objects import CircuitState


class CircuitBreakerState(BaseModel):
    """Point-in-time view of a breaker."""

    model_config = ConfigDict(frozen=True)

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: Annotated[int, Field(ge=0)] = 0
    opened_at: datetime | None = None
    last_probe_result: bool | None = None


class QuotaUsage(BaseModel):
    """Slots used in one fixed window, identified by its length and index."""

    model_config = ConfigDict(frozen=True)

    window_seconds: float = Field(..., gt=0)
    window_index: int
    used: Annotated[int, Field(ge=0)] = 0


class AlertingState(BaseModel):
    """Edge-detection memory of the alert dispatcher for one provider."""

    model_config = ConfigDict(frozen=True)

    last_circuit_state: CircuitState = CircuitState.CLOSED
    last_health_score: int = 100
    last_alert_at: datetime | None = None
    alert_count: Annotated[int, Field(ge=0)] = 0
    consecutive_opens: Annotated[int, Field(ge=0)] = 0


class ProviderState(BaseModel):
    """Everything about a provider that must outlive a single process.

    ``version`` is owned by the state store and bumps on every save. ``alerting``
    is None when the writer does not run an alert dispatcher.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(..., min_length=1)
    circuit: CircuitBreakerState = Field(default_factory=CircuitBreakerState)
    quotas: list[QuotaUsage] = Field(default_factory=list)
    stats: dict[str, int | float] = Field(default_factory=dict)
    alerting: AlertingState | None = None
    version: int = 0
    updated_at: datetime | None = None

    @classmethod
    def initial(cls, provider_id: str) -> ProviderState:
        """State of a provider nobody has called yet."""
        return cls(provider_id=provider_id, alerting=AlertingState())

    def same_content(self, other: ProviderState) -> bool:
        """Equal ignoring the store-owned ``version`` and ``updated_at``."""
        skip = {"version", "updated_at"}
        return self.model_dump(exclude=skip) == other.model_dump(exclude=skip)


__all__ = ["AlertingState", "CircuitBreakerState", "ProviderState", "QuotaUsage"]
