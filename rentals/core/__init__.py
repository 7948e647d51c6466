"""Booking, payment and verification logic."""
from .checkout import CheckoutOrchestrator, CheckoutRequest, CheckoutResult, DriverInput
from .exceptions import (
    BookingConflictError,
    BookingDependencyError,
    BookingError,
    BookingNotFoundError,
    BookingValidationError,
    InvalidTransitionError,
)
from .extension import ExtensionOrchestrator, ExtensionResult
from .idempotency import ProcessedEventLedger
from .saga import CompensationStack
from .terminal import TerminalPaymentService
from .verification import VerificationService

__all__ = [
    "CheckoutOrchestrator",
    "CheckoutRequest",
    "CheckoutResult",
    "DriverInput",
    "BookingConflictError",
    "BookingDependencyError",
    "BookingError",
    "BookingNotFoundError",
    "BookingValidationError",
    "InvalidTransitionError",
    "ExtensionOrchestrator",
    "ExtensionResult",
    "ProcessedEventLedger",
    "CompensationStack",
    "TerminalPaymentService",
    "VerificationService",
]
