"""Port interface for botanical data provider clients.

Implementations live in adapters/external_apis/.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from herbsync.domain.value_objects import (
        CircuitState,
        EnrichedData,
        Page,
        ProviderState,
        RequestStats,
    )


class ProviderClientPort(ABC):
    """Port interface for a resilient provider API client.

    Implementations must handle:
    - Local rate limiting against the provider's documented quota
    - Retry with backoff for transient failures
    - Circuit breaker for sustained failures
    - Request statistics for health scoring
    """

    provider_id: str

    @abstractmethod
    async def fetch_page(self, page: int, page_size: int) -> Page:
        """Fetch one page of the provider's plant listing.

        Args:
            page: 1-based page number
            page_size: Requested items per page (providers may ignore it)

        Returns:
            Page of PlantRecord items; an empty page marks the end of data

        Raises:
            ProviderNotConfiguredError: If credentials are missing
            ProviderError: On API errors after retries exhausted
        """
        ...

    @abstractmethod
    async def enrich(self, item_key: str) -> EnrichedData | None:
        """Look up detail data for a record by scientific name or title.

        Returns:
            EnrichedData for the best match, or None if nothing matched
        """
        ...

    @abstractmethod
    def get_stats(self) -> RequestStats:
        """Return a snapshot of request statistics."""
        ...

    @abstractmethod
    def get_circuit_state(self) -> CircuitState:
        ...

    @abstractmethod
    def reset(self) -> None:
        """Reset statistics and close the circuit breaker (admin operation)."""
        ...

    @abstractmethod
    def export_state(self) -> ProviderState:
        """Breaker, quota windows and counters as a storable snapshot."""
        ...

    @abstractmethod
    def restore_state(self, state: ProviderState) -> None:
        """Adopt a snapshot written by this or another process."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the provider API is reachable.

        Returns:
            True if API responds, False otherwise
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
