"""Alert delivery over SMTP and HTTP webhooks.

Email goes through smtplib (STARTTLS with certifi's CA bundle) in a worker
thread so the event loop never blocks on SMTP. Webhooks are plain JSON POSTs,
compatible with Slack and Discord incoming webhooks.
"""

from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Any

import certifi
import httpx
import structlog

from herbsync.application.ports import NotifierPort
from herbsync.domain.exceptions import AlertDeliveryError

if TYPE_CHECKING:
    from herbsync.infrastructure.config import Settings

logger = structlog.get_logger(__name__)


class HttpNotifier(NotifierPort):
    """SMTP email plus webhook notifier.

    Both channels raise AlertDeliveryError on failure and never retry.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ):
        """Initialize notifier.

        Args:
            settings: Application settings with SMTP configuration
            client: Optional pre-configured httpx client (for testing)
            timeout_seconds: Timeout for SMTP sessions and webhook posts
        """
        self._smtp_host = settings.smtp_host
        self._smtp_port = settings.smtp_port
        self._smtp_user = settings.smtp_user
        self._smtp_password = (
            settings.smtp_password.get_secret_value() if settings.smtp_password else None
        )
        self._email_from = settings.email_from
        self._smtp_configured = settings.smtp_configured
        self._timeout = timeout_seconds

        self._external_client = client
        self._owned_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._external_client:
            return self._external_client

        if self._owned_client is None:
            self._owned_client = httpx.AsyncClient(timeout=self._timeout)

        return self._owned_client

    async def close(self) -> None:
        """Close HTTP client if owned."""
        if self._owned_client:
            await self._owned_client.aclose()
            self._owned_client = None

    def _send_smtp(self, to: str, subject: str, body: str, html: str | None) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._email_from or ""
        msg["To"] = to
        # Plain part first, clients render the last alternative they support
        msg.attach(MIMEText(body, "plain", "utf-8"))
        if html:
            msg.attach(MIMEText(html, "html", "utf-8"))

        context = ssl.create_default_context(cafile=certifi.where())
        with smtplib.SMTP(self._smtp_host or "", self._smtp_port, timeout=self._timeout) as server:
            server.starttls(context=context)
            if self._smtp_user and self._smtp_password:
                server.login(self._smtp_user, self._smtp_password)
            recipients = [r.strip() for r in to.split(",") if r.strip()]
            server.sendmail(self._email_from or "", recipients, msg.as_string())

    async def send_email(
        self, to: str, subject: str, body: str, *, html: str | None = None
    ) -> None:
        """Send a plain-text email, with an HTML alternative part when given.

        Raises:
            AlertDeliveryError: If SMTP is not configured or the send fails
        """
        if not self._smtp_configured:
            raise AlertDeliveryError("SMTP is not configured", details={"channel": "email"})

        try:
            await asyncio.to_thread(self._send_smtp, to, subject, body, html)
        except (smtplib.SMTPException, OSError) as e:
            raise AlertDeliveryError(
                f"Email delivery failed: {e}", details={"channel": "email", "to": to}
            ) from e

        logger.info("alert_email_sent", to=to, subject=subject)

    async def send_webhook(self, url: str, payload: dict[str, Any]) -> None:
        """POST a JSON payload.

        Raises:
            AlertDeliveryError: On transport errors or a non-2xx response
        """
        client = await self._get_client()
        try:
            response = await client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AlertDeliveryError(
                f"Webhook delivery failed: {e}", details={"channel": "webhook"}
            ) from e

        logger.info("alert_webhook_sent", status_code=response.status_code)
