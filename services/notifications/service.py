"""Outbound chat notifications through an Evolution-style messaging API.

Delivery is best-effort: failures are logged and reported as ``False`` but
never raised, and an unconfigured endpoint turns every send into a log line.
"""

import logging

import httpx

from services.api import metrics
from services.db.models import normalize_phone
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class NotificationService:
    """Sends plain-text messages to a client's chat number."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize notification service.

        Args:
            settings: Application settings with messaging configuration
            client: Optional preconfigured HTTP client
        """
        self.settings = settings
        self._client = client or httpx.Client(timeout=10.0)

    def is_configured(self) -> bool:
        return bool(self.settings.messaging_api_url and self.settings.messaging_api_key)

    def send_text(self, to: str | None, message: str) -> bool:
        """Send a text message.

        Args:
            to: Destination number in any format
            message: Plain-text body

        Returns:
            True if delivered (or logged because messaging is unconfigured)
        """
        number = normalize_phone(to)
        if not number:
            logger.warning("Notification skipped: no destination number")
            metrics.notifications_total.labels(status="skipped").inc()
            return False

        if not self.is_configured():
            logger.info(f"Messaging not configured; message to {number}: {message}")
            metrics.notifications_total.labels(status="logged").inc()
            return True

        url = (
            f"{self.settings.messaging_api_url.rstrip('/')}"
            f"/message/sendText/{self.settings.messaging_instance_name}"
        )
        try:
            response = self._client.post(
                url,
                json={"number": number, "text": message},
                headers={
                    "Content-Type": "application/json",
                    "apikey": self.settings.messaging_api_key,
                },
            )
            response.raise_for_status()
        except Exception as e:
            logger.error(f"Failed to send message to {number}: {e}")
            metrics.notifications_total.labels(status="failed").inc()
            return False

        metrics.notifications_total.labels(status="sent").inc()
        return True

    def close(self) -> None:
        self._client.close()
