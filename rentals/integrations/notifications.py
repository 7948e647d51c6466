"""
Transactional email through the Resend HTTP API.

Delivery is best effort: failures are logged and never reach the caller,
so a payment webhook is not retried because an email bounced.
"""
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Dict, Optional

import httpx
import structlog

from rentals.config import get_settings

logger = structlog.get_logger(__name__)

TEMPLATES: Dict[str, tuple[str, str]] = {
    "booking_received": (
        "Reservation Received - Under Review",
        "<p>Hi {customer_name},</p>"
        "<p>We received your payment for booking <strong>{booking_number}</strong> "
        "({vehicle_name}). Pickup: {pickup_date}. Return: {return_date}.</p>"
        "<p>Our team will confirm your reservation shortly.</p>",
    ),
    "extension_confirmed": (
        "Rental Extension Confirmed - {vehicle_name}",
        "<p>Hi {customer_name},</p>"
        "<p>Your rental of {vehicle_name} has been extended by {additional_days} days. "
        "New return date: <strong>{return_date}</strong>. Amount paid: ${amount}.</p>",
    ),
}


def _format(value: object) -> str:
    if isinstance(value, datetime):
        return value.strftime("%b %d, %Y")
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return escape(str(value)) if value is not None else ""


class NotificationClient:
    """Renders a fixed template and posts it to the email provider."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = get_settings()
        self._client = http_client

    async def send(self, template: str, to: Optional[str], **variables: object) -> bool:
        """
        Send one templated email.

        Returns:
            bool: True if the provider accepted the message
        """
        log = logger.bind(template=template, to=to)
        if not to:
            log.info("notification_skipped", reason="no_recipient")
            return False
        if not self.settings.notification_api_key:
            log.info("notification_skipped", reason="not_configured")
            return False

        subject_template, body_template = TEMPLATES[template]
        values = {name: _format(value) for name, value in variables.items()}
        payload = {
            "from": self.settings.notification_sender,
            "to": [to],
            "subject": subject_template.format(**values),
            "html": body_template.format(**values),
        }
        headers = {"Authorization": f"Bearer {self.settings.notification_api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.settings.notification_api_url, json=payload, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self.settings.notification_timeout) as client:
                    response = await client.post(
                        self.settings.notification_api_url, json=payload, headers=headers
                    )
            response.raise_for_status()
        except httpx.HTTPError as e:
            log.warning("notification_failed", error=str(e))
            return False

        log.info("notification_sent")
        return True
