"""Port interface for alert delivery channels."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class NotifierPort(ABC):
    """Outbound notification transport.

    Implementations raise AlertDeliveryError on failure; the alert
    dispatcher decides whether that matters.
    """

    @abstractmethod
    async def send_email(
        self, to: str, subject: str, body: str, *, html: str | None = None
    ) -> None:
        """Send a plain-text email, with an HTML alternative when ``html`` is given."""
        ...

    @abstractmethod
    async def send_webhook(self, url: str, payload: dict[str, Any]) -> None:
        ...
