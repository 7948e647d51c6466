"""Database package for the rental booking service."""
from .connection import close_db, get_db, get_session_factory, init_db
from .models import (
    AdditionalDriver,
    Base,
    Booking,
    DeliveryLocation,
    DriverVerification,
    PendingPOSVerification,
    POSTransaction,
    PrimaryDriver,
    ProcessedWebhookEvent,
    TerminalReader,
    Vehicle,
)

__all__ = [
    "Base",
    "Vehicle",
    "DeliveryLocation",
    "Booking",
    "PrimaryDriver",
    "AdditionalDriver",
    "ProcessedWebhookEvent",
    "DriverVerification",
    "PendingPOSVerification",
    "TerminalReader",
    "POSTransaction",
    "get_db",
    "get_session_factory",
    "init_db",
    "close_db",
]
