"""Domain errors raised by the booking orchestrators and services."""
from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base class for booking errors surfaced to API callers."""

    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class BookingValidationError(BookingError):
    """Malformed or rule-violating input. Raised before any write."""

    code = "validation_error"


class BookingNotFoundError(BookingError):
    """Referenced entity does not exist or is not visible to the caller."""

    status_code = 404
    code = "not_found"


class BookingConflictError(BookingError):
    """Overlapping booking or unavailable vehicle."""

    status_code = 409
    code = "conflict"


class InvalidTransitionError(BookingError):
    """Entity is not in a state that permits the requested operation."""

    code = "invalid_state"


class BookingDependencyError(BookingError):
    """A downstream call failed. Local writes have already been compensated."""

    status_code = 500
    code = "dependency_error"
