"""Shared resilient HTTP core for provider API clients.

Every logical provider call goes through ``ResilientProviderClient._request``,
which layers, in order: configuration check, request accounting, local rate
limiting, circuit breaker, and a tenacity retry loop around the HTTP attempt.
Subclasses only describe endpoints, response schemas and the mapping into
domain value objects.
"""

from __future__ import annotations

import asyncio
import random
import time
from abc import abstractmethod
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from herbsync.application.ports import ProviderClientPort
from herbsync.domain.exceptions import (
    CircuitOpenError,
    ProviderError,
    ProviderNetworkError,
    ProviderNotConfiguredError,
    ProviderTimeoutError,
    RateLimitedError,
    UpstreamClientError,
    UpstreamRateLimitedError,
    UpstreamServerError,
)
from herbsync.domain.value_objects import (
    CircuitState,
    EnrichedData,
    Page,
    PlantRecord,
    ProviderState,
    RequestStats,
)
from herbsync.infrastructure.clock import Clock, utc_now
from herbsync.infrastructure.resilience import CircuitBreaker, RateLimiter, RetryPolicy

if TYPE_CHECKING:
    from herbsync.infrastructure.config import Settings

logger = structlog.get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

USER_AGENT = "HerbSync/0.1"


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header given either as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - (now or datetime.now(UTC))).total_seconds())


def find_best_match(candidates: list[PlantRecord], query: str) -> PlantRecord | None:
    """Prefer an exact (case-insensitive) scientific name match, else the first result."""
    if not candidates:
        return None
    wanted = query.strip().lower()
    for plant in candidates:
        if plant.scientific_name and plant.scientific_name.lower() == wanted:
            return plant
    return candidates[0]


def breaker_from_settings(
    provider_id: str, settings: Settings, *, clock: Clock | None = None
) -> CircuitBreaker:
    return CircuitBreaker(
        provider_id,
        failure_threshold=settings.circuit_breaker_failure_threshold,
        recovery_timeout=settings.circuit_breaker_recovery_timeout,
        clock=clock,
    )


def retry_policy_from_settings(
    settings: Settings, *, rng: random.Random | None = None
) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
        jitter=settings.retry_jitter,
        max_retry_after=settings.retry_max_retry_after,
        rng=rng,
    )


def _error_message(response: httpx.Response) -> str:
    default = f"HTTP {response.status_code}: {response.reason_phrase}"
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or default)
    return default


class ResilientProviderClient(ProviderClientPort):
    """Base provider client with rate limiting, retries, circuit breaking and stats.

    Features:
    - Async HTTP with httpx
    - Fixed-window local rate limiting (fail fast, never queue)
    - Retry with exponential backoff and Retry-After support (tenacity)
    - Circuit breaker, one outcome per logical request
    - Request statistics for health scoring and alerting
    """

    #: Query parameter that carries the API key
    auth_param: str = "key"

    def __init__(
        self,
        provider_id: str,
        *,
        base_url: str,
        api_key: str | None,
        rate_limiter: RateLimiter,
        circuit_breaker: CircuitBreaker,
        retry_policy: RetryPolicy,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Clock | None = None,
    ):
        """Initialize provider client.

        Args:
            provider_id: Stable provider name ("trefle", "perenual")
            base_url: API root without trailing slash
            api_key: Provider credential; None leaves the client unconfigured
            rate_limiter: Local quota guard
            circuit_breaker: Breaker shared by every call to this provider
            retry_policy: Backoff and retryability decisions
            timeout_seconds: Per-attempt timeout
            client: Optional pre-configured httpx client (for testing)
            sleep: Awaitable used between retry attempts
            clock: Time source for Retry-After dates and sync stamps
        """
        self.provider_id = provider_id
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._rate_limiter = rate_limiter
        self._circuit_breaker = circuit_breaker
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._clock = clock or utc_now

        self._stats = RequestStats()
        self._circuit_breaker.add_listener(self._on_circuit_transition)

        self._timeout = httpx.Timeout(timeout_seconds)
        self._external_client = client
        self._owned_client: httpx.AsyncClient | None = None

        if not api_key:
            logger.warning("provider_not_configured", provider=provider_id)
        else:
            logger.info("provider_client_initialized", provider=provider_id, base_url=base_url)

    # === HTTP plumbing ===

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._external_client:
            return self._external_client

        if self._owned_client is None:
            self._owned_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                follow_redirects=True,
            )

        return self._owned_client

    async def close(self) -> None:
        """Close HTTP client if owned."""
        if self._owned_client:
            await self._owned_client.aclose()
            self._owned_client = None

    def _on_circuit_transition(self, old: CircuitState, new: CircuitState) -> None:
        if new is CircuitState.OPEN:
            self._stats.circuit_breaker_trips += 1

    async def _attempt(
        self,
        path: str,
        params: dict[str, Any],
        schema: type[SchemaT],
        allow_not_found: bool,
    ) -> SchemaT | None:
        """One HTTP attempt, mapping every failure into the provider error taxonomy."""
        client = await self._get_client()
        query = {**params, self.auth_param: self._api_key}

        logger.debug("provider_api_request", provider=self.provider_id, path=path)

        try:
            response = await client.get(f"{self._base_url}{path}", params=query)
        except httpx.TimeoutException as e:
            self._stats.timeout_errors += 1
            raise ProviderTimeoutError(
                f"Request to {path} timed out", provider_id=self.provider_id
            ) from e
        except httpx.TransportError as e:
            self._stats.network_errors += 1
            raise ProviderNetworkError(
                f"Network error calling {path}: {e}", provider_id=self.provider_id
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamClientError(
                f"Request to {path} could not be sent: {e}", provider_id=self.provider_id
            ) from e

        status = response.status_code
        if status == 404 and allow_not_found:
            return None
        if status == 429:
            self._stats.rate_limit_errors += 1
            retry_after = parse_retry_after(
                response.headers.get("Retry-After"), now=self._clock()
            )
            raise UpstreamRateLimitedError(self.provider_id, retry_after=retry_after)
        if status >= 500:
            raise UpstreamServerError(
                _error_message(response), provider_id=self.provider_id, status_code=status
            )
        if status >= 400:
            raise UpstreamClientError(
                _error_message(response), provider_id=self.provider_id, status_code=status
            )

        try:
            return schema.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            # ValidationError is a ValueError; JSON decode errors are too
            raise UpstreamClientError(
                f"Unexpected payload from {path}",
                provider_id=self.provider_id,
                status_code=status,
                details={"error": str(e)[:500]},
            ) from e

    async def _request(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        schema: type[SchemaT],
        allow_not_found: bool = False,
    ) -> SchemaT | None:
        """Run one logical provider call through the full resilience stack.

        Args:
            path: Endpoint path relative to the base URL
            params: Query parameters (the API key is added automatically)
            schema: Pydantic model the JSON body must validate against
            allow_not_found: Return None on 404 instead of failing

        Returns:
            Parsed response, or None for an allowed 404

        Raises:
            ProviderNotConfiguredError: Before any accounting or I/O
            RateLimitedError: Local quota exhausted, nothing sent
            CircuitOpenError: Breaker open, nothing sent
            ProviderError: Last error after retries are exhausted
        """
        if not self.is_configured():
            raise ProviderNotConfiguredError(self.provider_id)

        self._stats.total_requests += 1

        if not self._rate_limiter.allow():
            self._stats.rate_limit_errors += 1
            self._stats.failed_requests += 1
            wait_time = self._rate_limiter.time_until_available()
            logger.warning(
                "provider_rate_limited_locally",
                provider=self.provider_id,
                path=path,
                wait_time=wait_time,
            )
            raise RateLimitedError(self.provider_id, wait_time=wait_time)

        retries = 0

        def _before_sleep(retry_state: RetryCallState) -> None:
            nonlocal retries
            retries += 1
            self._stats.total_retries += 1
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.info(
                "provider_request_retry",
                provider=self.provider_id,
                path=path,
                attempt=retry_state.attempt_number,
                delay=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(error),
            )

        started = time.perf_counter()
        result: SchemaT | None = None
        try:
            async with self._circuit_breaker.guard():
                async for attempt in AsyncRetrying(
                    retry=self._retry_policy.retry_condition(),
                    wait=self._retry_policy.wait_strategy(),
                    stop=stop_after_attempt(self._retry_policy.max_attempts),
                    sleep=self._sleep,
                    before_sleep=_before_sleep,
                    reraise=True,
                ):
                    with attempt:
                        result = await self._attempt(
                            path, params or {}, schema, allow_not_found
                        )
        except CircuitOpenError:
            self._stats.failed_requests += 1
            logger.warning("provider_circuit_open", provider=self.provider_id, path=path)
            raise
        except ProviderError as e:
            self._stats.failed_requests += 1
            logger.error(
                "provider_request_failed",
                provider=self.provider_id,
                path=path,
                error_type=type(e).__name__,
                status_code=e.status_code,
                error=str(e),
            )
            raise
        finally:
            if retries:
                self._stats.retried_requests += 1

        self._stats.successful_requests += 1
        self._stats.total_response_time_ms += (time.perf_counter() - started) * 1000
        return result

    async def _fetch(
        self, path: str, params: dict[str, Any] | None = None, *, schema: type[SchemaT]
    ) -> SchemaT:
        """Like _request, for endpoints where a 404 is an error."""
        result = await self._request(path, params, schema=schema)
        if result is None:
            raise UpstreamClientError(f"Empty response from {path}", provider_id=self.provider_id)
        return result

    # === ProviderClientPort ===

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def get_stats(self) -> RequestStats:
        return self._stats.snapshot()

    def get_circuit_state(self) -> CircuitState:
        return self._circuit_breaker.state

    def get_circuit_stats(self) -> dict:
        return self._circuit_breaker.get_stats()

    def get_rate_limit_stats(self) -> dict:
        return self._rate_limiter.get_stats()

    def export_state(self) -> ProviderState:
        return ProviderState(
            provider_id=self.provider_id,
            circuit=self._circuit_breaker.export_state(),
            quotas=self._rate_limiter.export_usage(),
            stats=self._stats.counters(),
        )

    def restore_state(self, state: ProviderState) -> None:
        # Leave the breaker alone when nothing changed, an in-flight probe keeps its slot
        if state.circuit != self._circuit_breaker.export_state():
            self._circuit_breaker.restore_state(state.circuit)
        self._rate_limiter.restore_usage(state.quotas)
        self._stats.load_counters(state.stats)

    def reset(self) -> None:
        """Reset circuit breaker and statistics."""
        self._circuit_breaker.reset()
        self._stats.reset()
        logger.info("provider_client_reset", provider=self.provider_id)

    async def health_check(self) -> bool:
        """Check if the provider API is reachable with a one-item listing call."""
        if not self.is_configured():
            return False
        try:
            await self.fetch_page(1, 1)
            return True
        except ProviderError as e:
            logger.warning("provider_health_check_failed", provider=self.provider_id, error=str(e))
            return False

    async def enrich(self, item_key: str) -> EnrichedData | None:
        """Search by name, pick the best match, then fetch its detail record."""
        query = item_key.strip()
        if not query:
            return None

        candidates = await self._search(query)
        match = find_best_match(candidates, query)
        if match is None:
            logger.debug("provider_no_match", provider=self.provider_id, query=query)
            return None

        enriched = await self._fetch_detail(match.external_id)
        if enriched is None:
            logger.debug(
                "provider_detail_not_found",
                provider=self.provider_id,
                external_id=match.external_id,
            )
        return enriched

    # === Provider-specific hooks ===

    @abstractmethod
    async def fetch_page(self, page: int, page_size: int) -> Page:
        ...

    @abstractmethod
    async def _search(self, query: str) -> list[PlantRecord]:
        """Name search used for enrichment lookups."""
        ...

    @abstractmethod
    async def _fetch_detail(self, external_id: str) -> EnrichedData | None:
        """Detail lookup; None when the provider has no such record."""
        ...


__all__ = [
    "USER_AGENT",
    "ResilientProviderClient",
    "breaker_from_settings",
    "find_best_match",
    "parse_retry_after",
    "retry_policy_from_settings",
]
