"""Unit tests for HttpNotifier email and webhook delivery."""

import email
import json
import smtplib
from unittest.mock import MagicMock, patch

import httpx
import pytest

from herbsync.adapters.notifications import HttpNotifier
from herbsync.domain.exceptions import AlertDeliveryError
from herbsync.infrastructure.config.settings import Settings


def smtp_settings(**overrides) -> Settings:
    values = {
        "smtp_host": "smtp.example.com",
        "smtp_port": 2525,
        "smtp_user": "alerts",
        "smtp_password": "hunter2",
        "email_from": "alerts@example.com",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def notifier_with(handler) -> HttpNotifier:
    return HttpNotifier(
        Settings(_env_file=None),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestWebhook:
    @pytest.mark.asyncio
    async def test_posts_json(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="ok")

        await notifier_with(handler).send_webhook(
            "https://hooks.example.com/T000/B000", {"text": "circuit opened"}
        )

        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"text": "circuit opened"}

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self) -> None:
        notifier = notifier_with(lambda request: httpx.Response(500))

        with pytest.raises(AlertDeliveryError, match="Webhook delivery failed"):
            await notifier.send_webhook("https://hooks.example.com/x", {})

    @pytest.mark.asyncio
    async def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AlertDeliveryError) as exc_info:
            await notifier_with(handler).send_webhook("https://hooks.example.com/x", {})

        assert exc_info.value.details == {"channel": "webhook"}


class TestEmail:
    @pytest.mark.asyncio
    async def test_unconfigured_smtp_raises(self) -> None:
        notifier = HttpNotifier(Settings(_env_file=None))

        with pytest.raises(AlertDeliveryError, match="SMTP is not configured"):
            await notifier.send_email("ops@example.com", "subject", "body")

    @pytest.mark.asyncio
    async def test_sends_via_starttls(self) -> None:
        notifier = HttpNotifier(smtp_settings())

        with patch("herbsync.adapters.notifications.http_notifier.smtplib.SMTP") as smtp_cls:
            server = MagicMock()
            smtp_cls.return_value.__enter__.return_value = server

            await notifier.send_email("ops@example.com, oncall@example.com", "🚨 TREFLE", "body")

        smtp_cls.assert_called_once_with("smtp.example.com", 2525, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("alerts", "hunter2")
        from_addr, recipients, message = server.sendmail.call_args.args
        assert from_addr == "alerts@example.com"
        assert recipients == ["ops@example.com", "oncall@example.com"]
        assert "Subject:" in message

    @pytest.mark.asyncio
    async def test_smtp_failure_wrapped(self) -> None:
        notifier = HttpNotifier(smtp_settings(smtp_user=None, smtp_password=None))

        with patch("herbsync.adapters.notifications.http_notifier.smtplib.SMTP") as smtp_cls:
            server = MagicMock()
            server.sendmail.side_effect = smtplib.SMTPRecipientsRefused({})
            smtp_cls.return_value.__enter__.return_value = server

            with pytest.raises(AlertDeliveryError, match="Email delivery failed"):
                await notifier.send_email("ops@example.com", "subject", "body")

        server.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_html_alternative_follows_plain_text(self) -> None:
        notifier = HttpNotifier(smtp_settings())

        with patch("herbsync.adapters.notifications.http_notifier.smtplib.SMTP") as smtp_cls:
            server = MagicMock()
            smtp_cls.return_value.__enter__.return_value = server

            await notifier.send_email(
                "ops@example.com", "subject", "plain body", html="<h2>Circuit OPEN</h2>"
            )

        message = email.message_from_string(server.sendmail.call_args.args[2])
        parts = [part.get_content_type() for part in message.walk() if not part.is_multipart()]
        assert parts == ["text/plain", "text/html"]
        assert "<h2>Circuit OPEN</h2>" in message.get_payload()[1].get_payload(decode=True).decode()

    @pytest.mark.asyncio
    async def test_plain_text_only_without_html(self) -> None:
        notifier = HttpNotifier(smtp_settings())

        with patch("herbsync.adapters.notifications.http_notifier.smtplib.SMTP") as smtp_cls:
            server = MagicMock()
            smtp_cls.return_value.__enter__.return_value = server

            await notifier.send_email("ops@example.com", "subject", "plain body")

        message = email.message_from_string(server.sendmail.call_args.args[2])
        parts = [part.get_content_type() for part in message.walk() if not part.is_multipart()]
        assert parts == ["text/plain"]
