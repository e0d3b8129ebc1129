"""Domain exceptions for HerbSync.

All business logic exceptions inherit from HerbSyncError.
"""

from typing import Any


class HerbSyncError(Exception):
    """Base exception for all HerbSync errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# === Configuration Errors ===


class ConfigurationError(HerbSyncError):
    """Fatal configuration problem. Aborts a run before any quota is used."""


class ProviderNotConfiguredError(ConfigurationError):
    """Provider credentials are missing."""

    def __init__(self, provider_id: str, details: dict[str, Any] | None = None) -> None:
        self.provider_id = provider_id
        super().__init__(f"Provider {provider_id} is not configured", details)


# === Provider Errors ===


class ProviderError(HerbSyncError):
    """Base error for provider API operations."""

    def __init__(
        self,
        message: str,
        provider_id: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.status_code = status_code
        super().__init__(message, details)


class RateLimitedError(ProviderError):
    """Local quota exhausted. No request was sent."""

    def __init__(
        self,
        provider_id: str,
        wait_time: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.wait_time = wait_time
        msg = f"Local rate limit reached for {provider_id}"
        if wait_time:
            msg += f" (available in {wait_time:.1f}s)"
        super().__init__(msg, provider_id=provider_id, details=details)


class CircuitOpenError(ProviderError):
    """Circuit breaker is open, request short-circuited without network I/O."""

    def __init__(
        self,
        provider_id: str,
        time_until_retry: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.time_until_retry = time_until_retry
        msg = f"Circuit breaker open for {provider_id}"
        if time_until_retry:
            msg += f" (retry in {time_until_retry:.0f}s)"
        super().__init__(msg, provider_id=provider_id, details=details)


class TransientProviderError(ProviderError):
    """Timeout or connection failure. Retried per policy."""


class ProviderTimeoutError(TransientProviderError):
    """Request exceeded its timeout."""


class ProviderNetworkError(TransientProviderError):
    """Connection-level failure (DNS, refused, reset)."""


class UpstreamRateLimitedError(ProviderError):
    """Provider answered HTTP 429."""

    def __init__(
        self,
        provider_id: str,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded upstream for {provider_id}",
            provider_id=provider_id,
            status_code=429,
            details=details,
        )


class UpstreamServerError(ProviderError):
    """Provider answered with a 5xx status."""


class UpstreamClientError(ProviderError):
    """Provider answered with a non-429 4xx status or an unexpected payload shape."""


# === Sync Errors ===


class SyncError(HerbSyncError):
    """Error in the progressive sync engine."""


class CheckpointError(SyncError):
    """Checkpoint update would violate its invariants."""


class ItemError(SyncError):
    """A single record failed during a batch."""

    def __init__(
        self,
        message: str,
        external_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.external_id = external_id
        super().__init__(message, details)


# === Alerting Errors ===


class AlertDeliveryError(HerbSyncError):
    """A notification channel failed to deliver an alert."""


class InvalidTransitionError(HerbSyncError):
    """Circuit breaker asked to take an edge that does not exist."""


# === State Errors ===


class StateConflictError(SyncError):
    """Stored provider state changed between load and save."""

    def __init__(self, provider_id: str, expected_version: int | None) -> None:
        self.provider_id = provider_id
        self.expected_version = expected_version
        super().__init__(
            f"Provider state for {provider_id} was modified concurrently",
            details={"provider_id": provider_id, "expected_version": expected_version},
        )
