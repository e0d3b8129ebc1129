"""Health scoring for provider request statistics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from herbsync.domain.value_objects import HealthScore, HealthStatus

if TYPE_CHECKING:
    from herbsync.domain.value_objects import RequestStats

HEALTHY_THRESHOLD = 80
DEGRADED_THRESHOLD = 50

# Penalty weights
LOW_SUCCESS_PENALTY = 20  # success rate below 90%
CRITICAL_SUCCESS_PENALTY = 20  # additional, success rate at or below 70%
HIGH_RETRY_PENALTY = 15  # retry rate above 30%
HIGH_TIMEOUT_PENALTY = 15  # timeout rate above 10%
NETWORK_ERROR_PENALTY = 15  # network error rate above 5%
RATE_LIMIT_PENALTY = 10  # any rate limit errors
CIRCUIT_TRIP_PENALTY = 20  # any circuit breaker trips


def status_for_score(score: int) -> HealthStatus:
    """Map a 0-100 score to its status band."""
    if score >= HEALTHY_THRESHOLD:
        return "healthy"
    if score >= DEGRADED_THRESHOLD:
        return "degraded"
    return "unhealthy"


def score_health(stats: RequestStats) -> HealthScore:
    """Derive a health score and issue list from request statistics.

    Starts at 100 and subtracts fixed penalties per rule. With no traffic the
    provider is reported healthy with a "no requests" issue so it cannot be
    mistaken for a provider that is healthy under load.

    Args:
        stats: Snapshot of a provider's RequestStats

    Returns:
        HealthScore with score clamped to [0, 100]
    """
    total = stats.total_requests
    if total == 0:
        return HealthScore(score=100, status="healthy", issues=["No requests made yet"])

    score = 100
    issues: list[str] = []

    success_rate = stats.successful_requests / total * 100
    if success_rate < 90:
        score -= LOW_SUCCESS_PENALTY
        issues.append(f"Low success rate: {success_rate:.1f}%")
    if success_rate <= 70:
        score -= CRITICAL_SUCCESS_PENALTY
        issues.append("Critical: Success rate at or below 70%")

    retry_rate = stats.retried_requests / total * 100
    if retry_rate > 30:
        score -= HIGH_RETRY_PENALTY
        issues.append(f"High retry rate: {retry_rate:.1f}%")

    timeout_rate = stats.timeout_errors / total * 100
    if timeout_rate > 10:
        score -= HIGH_TIMEOUT_PENALTY
        issues.append(f"High timeout rate: {timeout_rate:.1f}%")

    network_rate = stats.network_errors / total * 100
    if network_rate > 5:
        score -= NETWORK_ERROR_PENALTY
        issues.append(f"Network issues: {network_rate:.1f}%")

    if stats.rate_limit_errors > 0:
        score -= RATE_LIMIT_PENALTY
        issues.append(f"Rate limit errors: {stats.rate_limit_errors}")

    if stats.circuit_breaker_trips > 0:
        score -= CIRCUIT_TRIP_PENALTY
        issues.append(f"Circuit breaker trips: {stats.circuit_breaker_trips}")

    score = max(0, score)
    return HealthScore(score=score, status=status_for_score(score), issues=issues)


__all__ = ["DEGRADED_THRESHOLD", "HEALTHY_THRESHOLD", "score_health", "status_for_score"]
