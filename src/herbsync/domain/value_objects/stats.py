"""Request statistics for a single provider.

Counters only grow until an explicit reset. The provider client that owns an
instance is the only writer.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace


@dataclass
class RequestStats:
    """Per-provider request counters."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retried_requests: int = 0
    total_retries: int = 0
    timeout_errors: int = 0
    network_errors: int = 0
    rate_limit_errors: int = 0
    circuit_breaker_trips: int = 0
    total_response_time_ms: float = 0.0

    @property
    def avg_response_time_ms(self) -> float:
        """Average response time over successful requests."""
        if self.successful_requests == 0:
            return 0.0
        return self.total_response_time_ms / self.successful_requests

    @property
    def success_rate(self) -> float:
        """Percentage of requests that succeeded (0-100)."""
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests * 100

    def snapshot(self) -> RequestStats:
        """Return an independent copy."""
        return replace(self)

    def reset(self) -> None:
        """Zero every counter."""
        for f in fields(self):
            setattr(self, f.name, f.default)

    def counters(self) -> dict[str, int | float]:
        """Raw counters only, without the derived rates."""
        return asdict(self)

    def load_counters(self, data: dict[str, int | float]) -> None:
        """Overwrite counters from ``data``; unknown keys are ignored, missing ones zeroed."""
        for f in fields(self):
            setattr(self, f.name, type(f.default)(max(0, data.get(f.name, f.default))))

    def to_dict(self) -> dict[str, float]:
        data = asdict(self)
        data["avg_response_time_ms"] = round(self.avg_response_time_ms, 1)
        data["success_rate"] = round(self.success_rate, 1)
        return data
