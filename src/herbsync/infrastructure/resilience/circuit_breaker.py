"""Circuit Breaker pattern implementation.

Provides fault tolerance for provider API calls following the pattern:
- CLOSED: Normal operation, requests flow to the API
- OPEN: After N consecutive failures, requests fail fast without network I/O
- HALF_OPEN: After the cooldown, exactly one probe request is let through

The only edges are CLOSED->OPEN, OPEN->HALF_OPEN, HALF_OPEN->CLOSED and
HALF_OPEN->OPEN. Each entry into OPEN is one trip.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from herbsync.domain.exceptions import CircuitOpenError, InvalidTransitionError
from herbsync.domain.value_objects import CircuitBreakerState, CircuitState
from herbsync.infrastructure.clock import Clock, utc_now

logger = structlog.get_logger(__name__)

TransitionListener = Callable[[CircuitState, CircuitState], None]

ALLOWED_TRANSITIONS: frozenset[tuple[CircuitState, CircuitState]] = frozenset(
    {
        (CircuitState.CLOSED, CircuitState.OPEN),
        (CircuitState.OPEN, CircuitState.HALF_OPEN),
        (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        (CircuitState.HALF_OPEN, CircuitState.OPEN),
    }
)


class _BreakerCall:
    """Async context manager for one guarded call.

    Remembers whether this particular call is the half-open probe so that
    only the probe's outcome can close or reopen the circuit.
    """

    def __init__(self, breaker: CircuitBreaker) -> None:
        self._breaker = breaker
        self.is_probe = False

    async def __aenter__(self) -> _BreakerCall:
        self.is_probe = await self._breaker.before_call()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        if exc_val is None:
            await self._breaker.record_success(probe=self.is_probe)
        elif isinstance(exc_val, self._breaker.ignored_exceptions) or not isinstance(
            exc_val, Exception
        ):
            # No verdict on provider health (cancellation or excluded error)
            await self._breaker.release_probe(probe=self.is_probe)
        else:
            await self._breaker.record_failure(exc_val, probe=self.is_probe)
        return False  # Don't suppress exceptions


class CircuitBreaker:
    """Circuit breaker for one provider.

    Usage:
        breaker = CircuitBreaker("trefle", failure_threshold=5, recovery_timeout=60)

        async with breaker.guard() as call:
            response = await client.get(url)
    """

    def __init__(
        self,
        service_name: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 1,
        ignored_exceptions: tuple[type[BaseException], ...] = (),
        clock: Clock | None = None,
    ):
        """Initialize circuit breaker.

        Args:
            service_name: Provider name for logging and error messages
            failure_threshold: Consecutive failures before opening circuit
            recovery_timeout: Seconds to wait before admitting a probe
            half_open_max_calls: Probes allowed in flight while half-open
            ignored_exceptions: Errors that say nothing about provider health
            clock: Time source (defaults to UTC wall clock)
        """
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = timedelta(seconds=recovery_timeout)
        self.half_open_max_calls = half_open_max_calls
        self.ignored_exceptions = (CircuitOpenError, *ignored_exceptions)
        self._clock = clock or utc_now

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: datetime | None = None
        self._last_probe_result: bool | None = None
        self._half_open_calls = 0
        self._listeners: list[TransitionListener] = []
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Get current circuit state, reporting HALF_OPEN once the cooldown elapsed."""
        if self._state == CircuitState.OPEN and self._cooldown_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def consecutive_failures(self) -> int:
        return self._failure_count

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            state=self.state,
            consecutive_failures=self._failure_count,
            opened_at=self._opened_at,
            last_probe_result=self._last_probe_result,
        )

    def export_state(self) -> CircuitBreakerState:
        """Stored state, without the cooldown-based HALF_OPEN reporting of :meth:`snapshot`."""
        return CircuitBreakerState(
            state=self._state,
            consecutive_failures=self._failure_count,
            opened_at=self._opened_at,
            last_probe_result=self._last_probe_result,
        )

    def restore_state(self, saved: CircuitBreakerState) -> None:
        """Adopt state saved by another process.

        Not a transition: no listener fires and no trip is counted. A saved
        HALF_OPEN means the probe belonged to someone else, so it comes back
        as OPEN with the same ``opened_at`` and the next caller may probe.
        """
        state = saved.state
        if state == CircuitState.HALF_OPEN:
            state = CircuitState.OPEN
        self._state = state
        self._failure_count = saved.consecutive_failures
        self._opened_at = saved.opened_at
        if state == CircuitState.OPEN and self._opened_at is None:
            self._opened_at = self._clock()
        self._last_probe_result = saved.last_probe_result
        self._half_open_calls = 0

    def add_listener(self, listener: TransitionListener) -> None:
        """Register a callback invoked as ``listener(old, new)`` on every transition."""
        self._listeners.append(listener)

    def _cooldown_elapsed(self) -> bool:
        if self._opened_at is None:
            return False
        return self._clock() - self._opened_at >= self.recovery_timeout

    def _time_until_retry(self) -> timedelta | None:
        """Calculate time remaining until a probe is allowed."""
        if self._opened_at is None:
            return None
        remaining = self.recovery_timeout - (self._clock() - self._opened_at)
        return remaining if remaining.total_seconds() > 0 else None

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if (old_state, new_state) not in ALLOWED_TRANSITIONS:
            raise InvalidTransitionError(
                f"Illegal circuit transition {old_state.value} -> {new_state.value}",
                details={"service": self.service_name},
            )
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()

        logger.info(
            "circuit_breaker_transition",
            service=self.service_name,
            from_state=old_state.value,
            to_state=new_state.value,
            consecutive_failures=self._failure_count,
        )
        for listener in self._listeners:
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception("circuit_breaker_listener_failed", service=self.service_name)

    def _open_error(self) -> CircuitOpenError:
        remaining = self._time_until_retry()
        return CircuitOpenError(
            self.service_name,
            time_until_retry=remaining.total_seconds() if remaining else None,
        )

    async def before_call(self) -> bool:
        """Admit or reject a call.

        Returns:
            True if the admitted call is the half-open probe

        Raises:
            CircuitOpenError: While open, or while half-open with the probe in flight
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._cooldown_elapsed():
                    raise self._open_error()
                self._transition(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    raise CircuitOpenError(self.service_name)
                self._half_open_calls += 1
                logger.info("circuit_breaker_probe_admitted", service=self.service_name)
                return True

            return False

    async def record_success(self, *, probe: bool = False) -> None:
        """Record successful call, closing the circuit if it was the probe."""
        async with self._lock:
            if probe and self._state == CircuitState.HALF_OPEN:
                self._half_open_calls = max(0, self._half_open_calls - 1)
                self._last_probe_result = True
                self._failure_count = 0
                self._transition(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def record_failure(self, error: Exception, *, probe: bool = False) -> None:
        """Record failed call, opening the circuit at the threshold or on a failed probe."""
        async with self._lock:
            self._failure_count += 1

            if probe and self._state == CircuitState.HALF_OPEN:
                self._half_open_calls = max(0, self._half_open_calls - 1)
                self._last_probe_result = False
                logger.warning(
                    "circuit_breaker_reopened",
                    service=self.service_name,
                    error=str(error),
                )
                self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                logger.warning(
                    "circuit_breaker_opened",
                    service=self.service_name,
                    failure_count=self._failure_count,
                    error=str(error),
                )
                self._transition(CircuitState.OPEN)

    async def release_probe(self, *, probe: bool = False) -> None:
        """Free the probe slot without a verdict."""
        if not probe:
            return
        async with self._lock:
            self._half_open_calls = max(0, self._half_open_calls - 1)

    def guard(self) -> _BreakerCall:
        """Context manager that admits, then records the outcome of, one call."""
        return _BreakerCall(self)

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state (admin operation)."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._last_probe_result = None
        self._half_open_calls = 0
        logger.info("circuit_breaker_reset", service=self.service_name)

    def get_stats(self) -> dict:
        """Get circuit breaker statistics."""
        remaining = self._time_until_retry()
        return {
            "service": self.service_name,
            "state": self.state.value,
            "consecutive_failures": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "opened_at": self._opened_at.isoformat() if self._opened_at else None,
            "last_probe_result": self._last_probe_result,
            "time_until_retry": remaining.total_seconds() if remaining else None,
        }


__all__ = [
    "ALLOWED_TRANSITIONS",
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitState",
]
