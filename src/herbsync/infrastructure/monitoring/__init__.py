"""Alerting and periodic monitoring."""

from herbsync.infrastructure.monitoring.alerts import (
    AlertDispatcher,
    EmailContent,
    MonitoringState,
    format_email,
    format_webhook,
)
from herbsync.infrastructure.monitoring.scheduler import (
    AlertMonitor,
    PeriodicTicker,
    SyncScheduler,
)

__all__ = [
    "AlertDispatcher",
    "AlertMonitor",
    "EmailContent",
    "MonitoringState",
    "PeriodicTicker",
    "SyncScheduler",
    "format_email",
    "format_webhook",
]
