"""Circuit breaker and health alerting.

Polls each provider's circuit state and request statistics, detects edges
(not levels) against the last-known state, and fans fired alerts out to the
log, an in-memory ring buffer, an optional durable log, email and webhook.

Edges, in priority order (one alert per check at most):
- circuit entered OPEN (critical, bypasses the cooldown)
- circuit entered CLOSED (info, or warning after repeated trips)
- circuit entered HALF_OPEN (warning)
- health score dropped below 80 (warning)
- health score climbed back to 80 or more (info)
"""

from __future__ import annotations

import random
import string
from collections import deque
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import timedelta
from html import escape
from typing import TYPE_CHECKING, Any, NamedTuple

import structlog

from herbsync.domain.services import HEALTHY_THRESHOLD, score_health
from herbsync.domain.value_objects import (
    Alert,
    AlertEvent,
    AlertingState,
    AlertSeverity,
    CircuitState,
)
from herbsync.infrastructure.clock import utc_now

if TYPE_CHECKING:
    from datetime import datetime

    from herbsync.application.ports import AlertLogPort, NotifierPort, ProviderClientPort
    from herbsync.domain.value_objects import RequestStats
    from herbsync.infrastructure.clock import Clock
    from herbsync.infrastructure.config import Settings

logger = structlog.get_logger(__name__)

SEVERITY_EMOJI = {
    AlertSeverity.CRITICAL: "🚨",
    AlertSeverity.WARNING: "⚠️",
    AlertSeverity.INFO: "ℹ️",
}

SEVERITY_COLOR = {
    AlertSeverity.CRITICAL: "#dc2626",
    AlertSeverity.WARNING: "#f59e0b",
    AlertSeverity.INFO: "#3b82f6",
}

WEBHOOK_USERNAME = "Circuit Breaker Monitor"
WEBHOOK_FOOTER = "HerbSync Monitoring"
EMAIL_FOOTER = "This is an automated alert from the HerbSync circuit breaker monitor."

_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class MonitoringState:
    """Last-known view of one provider, used for edge detection."""

    last_circuit_state: CircuitState = CircuitState.CLOSED
    last_health_score: int = 100
    last_alert_at: datetime | None = None
    alert_count: int = 0
    consecutive_opens: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_circuit_state"] = self.last_circuit_state.value
        data["last_alert_at"] = self.last_alert_at.isoformat() if self.last_alert_at else None
        return data

    def to_snapshot(self) -> AlertingState:
        return AlertingState(**asdict(self))

    @classmethod
    def from_snapshot(cls, snapshot: AlertingState) -> MonitoringState:
        return cls(**snapshot.model_dump())


def _success_rate_text(stats: dict[str, Any]) -> str:
    total = stats.get("total_requests") or 0
    if total <= 0:
        return "0.0%"
    return f"{stats.get('successful_requests', 0) / total * 100:.1f}%"


def action_recommendation(event: AlertEvent, *, recovery_timeout_seconds: int = 60) -> str:
    """Operator guidance included in alert emails."""
    if event is AlertEvent.OPENED:
        return (
            "The circuit breaker has opened to prevent cascading failures. "
            f"Wait {recovery_timeout_seconds} seconds for automatic recovery attempt. "
            "If issues persist, check API status and rate limits."
        )
    if event is AlertEvent.DEGRADED:
        return (
            "Monitor API health closely. Consider reducing request frequency "
            "or investigating error patterns."
        )
    if event is AlertEvent.HALF_OPEN:
        return (
            "Circuit breaker is testing recovery. "
            "Avoid high-volume operations until fully recovered."
        )
    if event is AlertEvent.CLOSED:
        return (
            "Service has recovered. Monitor for stability. "
            "If failures recur frequently, investigate root cause."
        )
    return "Health has improved. Continue normal operations."


class EmailContent(NamedTuple):
    subject: str
    text: str
    html: str


_CELL_STYLE = "padding: 8px; border-bottom: 1px solid #e5e7eb;"


def _html_table(rows: list[tuple[str, Any]]) -> str:
    cells = "".join(
        f'<tr><td style="{_CELL_STYLE}"><strong>{escape(label)}:</strong></td>'
        f'<td style="{_CELL_STYLE}">{escape(str(value))}</td></tr>'
        for label, value in rows
    )
    return f'<table style="width: 100%; border-collapse: collapse;">{cells}</table>'


def _text_table(rows: list[tuple[str, Any]]) -> list[str]:
    width = max(len(label) for label, _ in rows) + 2
    return [f"  {label + ':':<{width}}{value}" for label, value in rows]


def format_email(alert: Alert, *, recovery_timeout_seconds: int = 60) -> EmailContent:
    """Build the subject plus plain-text and HTML bodies for an alert email."""
    api = alert.provider.upper()
    event = alert.event.value.upper()
    stats = alert.stats_snapshot
    subject = f"{SEVERITY_EMOJI[alert.severity]} {api} API {event}"
    action = action_recommendation(alert.event, recovery_timeout_seconds=recovery_timeout_seconds)

    details = [
        ("API", api),
        ("Severity", alert.severity.value.upper()),
        ("Event", event),
        ("Circuit State", alert.circuit_state.value),
        ("Health Score", f"{alert.health_score}/100"),
        ("Timestamp", alert.timestamp.isoformat()),
    ]
    statistics = [
        ("Total Requests", stats.get("total_requests", 0)),
        ("Success Rate", _success_rate_text(stats)),
        ("Failed Requests", stats.get("failed_requests", 0)),
        ("Timeout Errors", stats.get("timeout_errors", 0)),
        ("Network Errors", stats.get("network_errors", 0)),
        ("Circuit Breaker Trips", stats.get("circuit_breaker_trips", 0)),
    ]

    text = "\n".join(
        [
            alert.message,
            "",
            "Details",
            *_text_table(details),
            "",
            "Statistics",
            *_text_table(statistics),
            "",
            "Action Required:",
            action,
            "",
            EMAIL_FOOTER,
        ]
    )

    html = f"""<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: {SEVERITY_COLOR[alert.severity]};">{escape(alert.message)}</h2>
  <h3>Details</h3>
  {_html_table(details)}
  <h3>Statistics</h3>
  {_html_table(statistics)}
  <p style="margin-top: 20px; padding: 16px; background-color: #f3f4f6; border-radius: 8px;">
    <strong>Action Required:</strong><br>{escape(action)}
  </p>
  <p style="margin-top: 20px; font-size: 12px; color: #6b7280;">{EMAIL_FOOTER}</p>
</div>"""

    return EmailContent(subject, text, html)


def format_webhook(alert: Alert) -> dict[str, Any]:
    """Slack-compatible incoming webhook payload."""
    return {
        "username": WEBHOOK_USERNAME,
        "icon_emoji": ":warning:",
        "attachments": [
            {
                "color": SEVERITY_COLOR[alert.severity],
                "title": f"{alert.provider.upper()} API {alert.event.value.upper()}",
                "text": alert.message,
                "fields": [
                    {"title": "Severity", "value": alert.severity.value.upper(), "short": True},
                    {"title": "Circuit State", "value": alert.circuit_state.value, "short": True},
                    {"title": "Health Score", "value": f"{alert.health_score}/100", "short": True},
                    {
                        "title": "Success Rate",
                        "value": _success_rate_text(alert.stats_snapshot),
                        "short": True,
                    },
                ],
                "footer": WEBHOOK_FOOTER,
                "ts": int(alert.timestamp.timestamp()),
            }
        ],
    }


class AlertDispatcher:
    """Edge-triggered alerting over a set of provider clients.

    Example:
        dispatcher = AlertDispatcher({"trefle": trefle}, notifier, admin_email="ops@example.com")
        await dispatcher.check_and_alert("trefle")
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderClientPort],
        notifier: NotifierPort | None = None,
        *,
        admin_email: str | None = None,
        webhook_url: str | None = None,
        cooldown_seconds: float = 300,
        history_size: int = 200,
        closed_warning_trip_threshold: int = 3,
        recovery_timeout_seconds: int = 60,
        alert_log: AlertLogPort | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        """Initialize dispatcher.

        Args:
            providers: Clients to monitor, keyed by provider id
            notifier: Email and webhook transport
            admin_email: Recipient for critical and warning alerts
            webhook_url: Slack-compatible incoming webhook
            cooldown_seconds: Minimum gap between non-critical alerts per provider
            history_size: Ring buffer capacity across all providers
            closed_warning_trip_threshold: Trips above which a CLOSED alert is a warning
            recovery_timeout_seconds: Breaker cooldown quoted in the OPENED guidance
            alert_log: Optional durable append-only alert log
            clock: Time source for cooldowns and alert timestamps
            rng: Random source for alert id suffixes
        """
        self._providers = dict(providers)
        self._notifier = notifier
        self._admin_email = admin_email
        self._webhook_url = webhook_url
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._closed_warning_trip_threshold = closed_warning_trip_threshold
        self._recovery_timeout = recovery_timeout_seconds
        self._alert_log = alert_log
        self._clock = clock or utc_now
        self._rng = rng or random.Random()

        self._history: deque[Alert] = deque(maxlen=history_size)
        self._states: dict[str, MonitoringState] = {
            pid: MonitoringState() for pid in self._providers
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        providers: Mapping[str, ProviderClientPort],
        notifier: NotifierPort | None = None,
        *,
        alert_log: AlertLogPort | None = None,
        clock: Clock | None = None,
    ) -> AlertDispatcher:
        return cls(
            providers,
            notifier,
            admin_email=settings.admin_email,
            webhook_url=settings.alert_webhook_url,
            cooldown_seconds=settings.alert_cooldown_seconds,
            history_size=settings.alert_history_size,
            closed_warning_trip_threshold=settings.alert_closed_warning_trip_threshold,
            recovery_timeout_seconds=settings.circuit_breaker_recovery_timeout,
            alert_log=alert_log,
            clock=clock,
        )

    @property
    def provider_ids(self) -> list[str]:
        return list(self._providers)

    def _state_for(self, provider_id: str) -> MonitoringState:
        return self._states.setdefault(provider_id, MonitoringState())

    # === Edge detection ===

    async def check_and_alert(self, provider_id: str) -> Alert | None:
        """Poll one provider and fire at most one alert for any new edge.

        Unconfigured and unknown providers are skipped. Never raises.

        Returns:
            The delivered alert, or None if nothing fired or it was suppressed
        """
        try:
            client = self._providers.get(provider_id)
            if client is None or not client.is_configured():
                return None

            current = client.get_circuit_state()
            stats = client.get_stats()
            score = score_health(stats).score
            state = self._state_for(provider_id)
            api = provider_id.upper()

            changed = current is not state.last_circuit_state
            degraded = score < HEALTHY_THRESHOLD <= state.last_health_score
            recovered = state.last_health_score < HEALTHY_THRESHOLD <= score

            alert: Alert | None = None
            if changed and current is CircuitState.OPEN:
                state.consecutive_opens += 1
                alert = await self.send_alert(
                    provider_id,
                    severity=AlertSeverity.CRITICAL,
                    event=AlertEvent.OPENED,
                    circuit_state=current,
                    health_score=score,
                    stats=stats,
                    message=(
                        f"🚨 CRITICAL: {api} API circuit breaker has OPENED. "
                        "All requests are being blocked."
                    ),
                )
            elif changed and current is CircuitState.CLOSED:
                frequent = stats.circuit_breaker_trips > self._closed_warning_trip_threshold
                suffix = (
                    " (Frequent failures detected - investigate root cause)" if frequent else ""
                )
                alert = await self.send_alert(
                    provider_id,
                    severity=AlertSeverity.WARNING if frequent else AlertSeverity.INFO,
                    event=AlertEvent.CLOSED,
                    circuit_state=current,
                    health_score=score,
                    stats=stats,
                    message=f"✅ {api} API circuit breaker has CLOSED. Service restored.{suffix}",
                )
                state.consecutive_opens = 0
            elif changed and current is CircuitState.HALF_OPEN:
                alert = await self.send_alert(
                    provider_id,
                    severity=AlertSeverity.WARNING,
                    event=AlertEvent.HALF_OPEN,
                    circuit_state=current,
                    health_score=score,
                    stats=stats,
                    message=f"⚠️ {api} API circuit breaker is HALF_OPEN. Testing recovery...",
                )
            elif degraded:
                alert = await self.send_alert(
                    provider_id,
                    severity=AlertSeverity.WARNING,
                    event=AlertEvent.DEGRADED,
                    circuit_state=current,
                    health_score=score,
                    stats=stats,
                    message=(
                        f"⚠️ {api} API health is DEGRADED (score: {score}/100). Monitor closely."
                    ),
                )
            elif recovered:
                alert = await self.send_alert(
                    provider_id,
                    severity=AlertSeverity.INFO,
                    event=AlertEvent.RECOVERED,
                    circuit_state=current,
                    health_score=score,
                    stats=stats,
                    message=f"✅ {api} API health RECOVERED (score: {score}/100).",
                )

            state.last_circuit_state = current
            state.last_health_score = score
            return alert

        except Exception as e:
            logger.exception("alert_check_failed", provider=provider_id, error=str(e))
            return None

    async def check_all(self) -> list[Alert]:
        """Check every monitored provider in turn."""
        fired = []
        for provider_id in self._providers:
            alert = await self.check_and_alert(provider_id)
            if alert is not None:
                fired.append(alert)
        return fired

    # === Delivery ===

    def _in_cooldown(self, state: MonitoringState, now: datetime) -> bool:
        return state.last_alert_at is not None and now - state.last_alert_at < self._cooldown

    def _new_alert_id(self, provider_id: str, now: datetime) -> str:
        suffix = "".join(self._rng.choices(_ID_ALPHABET, k=9))
        return f"{provider_id}-{int(now.timestamp() * 1000)}-{suffix}"

    async def send_alert(
        self,
        provider_id: str,
        *,
        severity: AlertSeverity,
        event: AlertEvent,
        circuit_state: CircuitState,
        health_score: int,
        stats: RequestStats | dict[str, Any],
        message: str,
    ) -> Alert | None:
        """Fire an alert through every configured channel.

        Non-critical alerts inside the provider's cooldown window are
        suppressed. Channel failures are logged and never propagate.

        Returns:
            The recorded alert, or None if suppressed by the cooldown
        """
        state = self._state_for(provider_id)
        now = self._clock()

        if severity is not AlertSeverity.CRITICAL and self._in_cooldown(state, now):
            logger.info(
                "alert_suppressed",
                provider=provider_id,
                event_type=event.value,
                since_last_seconds=round((now - state.last_alert_at).total_seconds()),
                cooldown_seconds=self._cooldown.total_seconds(),
            )
            return None

        snapshot = stats if isinstance(stats, dict) else stats.to_dict()
        alert = Alert(
            id=self._new_alert_id(provider_id, now),
            provider=provider_id,
            severity=severity,
            event=event,
            circuit_state=circuit_state,
            health_score=health_score,
            stats_snapshot=snapshot,
            message=message,
            timestamp=now,
        )

        log = logger.error if severity is AlertSeverity.CRITICAL else logger.warning
        log(
            "circuit_breaker_alert",
            alert_id=alert.id,
            provider=provider_id,
            severity=severity.value,
            event_type=event.value,
            circuit_state=circuit_state.value,
            health_score=health_score,
            message=message,
        )
        channels = ["console"]

        if await self._deliver_email(alert):
            channels.append("email")
        if await self._deliver_webhook(alert):
            channels.append("webhook")

        alert = alert.model_copy(update={"channels_notified": list(channels)})
        if self._alert_log is not None:
            try:
                await self._alert_log.append(
                    alert.model_copy(update={"channels_notified": [*channels, "database"]})
                )
                channels.append("database")
            except Exception as e:
                logger.error("alert_log_failed", provider=provider_id, error=str(e))
            alert = alert.model_copy(update={"channels_notified": list(channels)})

        self._history.append(alert)
        state.last_alert_at = now
        state.alert_count += 1
        return alert

    async def _deliver_email(self, alert: Alert) -> bool:
        if alert.severity is AlertSeverity.INFO:
            return False
        if not self._admin_email or self._notifier is None:
            logger.debug("alert_email_skipped", provider=alert.provider, reason="not_configured")
            return False

        content = format_email(alert, recovery_timeout_seconds=self._recovery_timeout)
        try:
            await self._notifier.send_email(
                self._admin_email, content.subject, content.text, html=content.html
            )
        except Exception as e:
            logger.error("alert_email_failed", provider=alert.provider, error=str(e))
            return False
        return True

    async def _deliver_webhook(self, alert: Alert) -> bool:
        if not self._webhook_url or self._notifier is None:
            return False

        try:
            await self._notifier.send_webhook(self._webhook_url, format_webhook(alert))
        except Exception as e:
            logger.error("alert_webhook_failed", provider=alert.provider, error=str(e))
            return False
        return True

    # === Introspection ===

    def get_alert_history(self, provider_id: str | None = None, limit: int = 50) -> list[Alert]:
        """Most recent alerts first."""
        history = [a for a in self._history if provider_id is None or a.provider == provider_id]
        return list(reversed(history[-limit:])) if limit > 0 else []

    def get_monitoring_state(self, provider_id: str) -> MonitoringState | None:
        return self._states.get(provider_id)

    def export_state(self, provider_id: str) -> AlertingState | None:
        """Edge-detection memory for ``provider_id``, None if it is not monitored."""
        if provider_id not in self._providers:
            return None
        return self._state_for(provider_id).to_snapshot()

    def restore_state(self, provider_id: str, snapshot: AlertingState) -> None:
        """Continue edge detection from where another process left off."""
        if provider_id in self._providers:
            self._states[provider_id] = MonitoringState.from_snapshot(snapshot)

    def reset_alert_history(self, provider_id: str | None = None) -> None:
        if provider_id is None:
            self._history.clear()
            return
        kept = [a for a in self._history if a.provider != provider_id]
        self._history.clear()
        self._history.extend(kept)

    def set_alert_cooldown(self, seconds: float) -> None:
        self._cooldown = timedelta(seconds=seconds)


__all__ = [
    "AlertDispatcher",
    "EmailContent",
    "MonitoringState",
    "action_recommendation",
    "format_email",
    "format_webhook",
]
