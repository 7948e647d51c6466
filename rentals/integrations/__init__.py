"""Payment gateway, email and webhook integrations."""
from .stripe_client import StripeClient, StripeError, StripeErrorType
from .notifications import NotificationClient
from .webhook_handler import (
    WebhookEventType,
    WebhookProcessingError,
    WebhookProcessor,
    WebhookSignatureError,
)

__all__ = [
    "StripeClient",
    "StripeError",
    "StripeErrorType",
    "NotificationClient",
    "WebhookEventType",
    "WebhookProcessingError",
    "WebhookProcessor",
    "WebhookSignatureError",
]
