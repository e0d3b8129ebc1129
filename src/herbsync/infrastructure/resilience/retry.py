"""Retry policy for provider calls.

Decides which failures are worth another attempt and how long to back off,
and exposes both decisions as tenacity strategies:

    policy = RetryPolicy(max_attempts=3)
    async for attempt in AsyncRetrying(
        retry=policy.retry_condition(),
        wait=policy.wait_strategy(),
        stop=stop_after_attempt(policy.max_attempts),
        reraise=True,
    ):
        with attempt:
            ...
"""

from __future__ import annotations

import random
from enum import Enum

from tenacity import RetryCallState, retry_if_exception

from herbsync.domain.exceptions import (
    TransientProviderError,
    UpstreamRateLimitedError,
    UpstreamServerError,
)


class RetryDecision(Enum):
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"


# Everything else (4xx, bad payloads, config, local quota, open circuit) fails fast
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    TransientProviderError,
    UpstreamRateLimitedError,
    UpstreamServerError,
)


class RetryPolicy:
    """Exponential backoff with jitter, honouring upstream Retry-After hints."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 1.0,
        max_retry_after: float = 60.0,
        rng: random.Random | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.max_retry_after = max_retry_after
        self._rng = rng or random.Random()

    def classify(self, error: BaseException) -> RetryDecision:
        if isinstance(error, RETRYABLE_ERRORS):
            return RetryDecision.RETRYABLE
        return RetryDecision.NON_RETRYABLE

    def is_retryable(self, error: BaseException) -> bool:
        return self.classify(error) is RetryDecision.RETRYABLE

    def next_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Seconds to wait after the given 1-based failed attempt.

        A 429 with a Retry-After hint waits for the hint (capped); anything
        else backs off exponentially with uniform jitter.
        """
        if isinstance(error, UpstreamRateLimitedError) and error.retry_after is not None:
            return min(max(error.retry_after, 0.0), self.max_retry_after)

        backoff = min(self.max_delay, self.base_delay * 2 ** (max(attempt, 1) - 1))
        return backoff + self._rng.uniform(0, self.jitter)

    def retry_condition(self) -> retry_if_exception:
        """tenacity ``retry=`` strategy."""
        return retry_if_exception(self.is_retryable)

    def wait_strategy(self):
        """tenacity ``wait=`` strategy."""

        def _wait(retry_state: RetryCallState) -> float:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            return self.next_delay(retry_state.attempt_number, error)

        return _wait


__all__ = ["RETRYABLE_ERRORS", "RetryDecision", "RetryPolicy"]
