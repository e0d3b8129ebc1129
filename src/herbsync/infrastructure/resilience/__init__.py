"""Resilience infrastructure for provider API calls.

Implements Circuit Breaker, Rate Limiter and Retry Policy patterns for fault tolerance.
"""

from herbsync.infrastructure.resilience.circuit_breaker import (
    ALLOWED_TRANSITIONS,
    CircuitBreaker,
    CircuitBreakerState,
    CircuitState,
)
from herbsync.infrastructure.resilience.rate_limiter import (
    RateLimiter,
    WindowQuota,
    create_perenual_rate_limiter,
    create_trefle_rate_limiter,
)
from herbsync.infrastructure.resilience.retry import (
    RETRYABLE_ERRORS,
    RetryDecision,
    RetryPolicy,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "RETRYABLE_ERRORS",
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitState",
    "RateLimiter",
    "RetryDecision",
    "RetryPolicy",
    "WindowQuota",
    "create_perenual_rate_limiter",
    "create_trefle_rate_limiter",
]
