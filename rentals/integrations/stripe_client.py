"""
Stripe API client with retry logic and error classification.

Covers the gateway surfaces the booking service uses:
- Checkout sessions for bookings and extensions
- Card-present payment intents and Terminal readers
- Identity verification sessions
"""
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar

import stripe
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from rentals.config import get_settings
from rentals.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Gateway error codes mapped to the stable codes returned to POS clients
TERMINAL_ERROR_CODES = {
    "terminal_reader_offline": "reader_offline",
    "terminal_reader_busy": "reader_busy",
    "terminal_reader_timeout": "reader_timeout",
}


class StripeErrorType(Enum):
    """Classification of Stripe errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class StripeError(Exception):
    """Classified Stripe failure with a stable error code."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        original_error: Optional[Exception] = None,
        code: Optional[str] = None,
    ):
        """
        Initialize Stripe error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Original Stripe exception
            code: Stable error code (e.g. reader_offline)
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error
        self.code = code or error_type.value


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, StripeError) and error.error_type != StripeErrorType.PERMANENT


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Stops sending requests for `timeout` seconds once `failure_threshold`
    consecutive calls have failed.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Execute function with circuit breaker protection.

        Raises:
            StripeError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
            else:
                raise StripeError(
                    "Circuit breaker is open",
                    StripeErrorType.TRANSIENT,
                    code="circuit_open",
                )

        try:
            result = func(*args, **kwargs)
        except stripe.CardError:
            # A declined card says nothing about gateway health
            raise
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)
        logger.info("circuit_breaker_state_changed", state=state)

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold and self.state != "open":
            logger.warning("circuit_breaker_opened", failure_count=self.failure_count)
            self._set_state("open")


class StripeClient:
    """
    Wrapper for the Stripe SDK.

    Every call goes through the circuit breaker, is timed into Prometheus,
    and has SDK exceptions converted into a classified StripeError.
    Methods decorated with @retry back off on transient and rate-limit
    errors; calls with side effects that are unsafe to repeat are not retried.
    """

    def __init__(self) -> None:
        settings = get_settings()
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.circuit_breaker = CircuitBreaker()

        logger.info(
            "stripe_client_initialized",
            api_version=stripe.api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> StripeErrorType:
        """Classify a Stripe SDK error for retry logic."""
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.CardError,
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
                stripe.PermissionError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _handle_stripe_error(self, error: stripe.StripeError) -> StripeError:
        """Log and convert a Stripe SDK error into a StripeError."""
        error_type = self._classify_error(error)
        raw_code = getattr(error, "code", None)
        code = TERMINAL_ERROR_CODES.get(raw_code or "", raw_code)

        metrics.record_stripe_api_error(error_type.value)
        logger.error(
            "stripe_api_error",
            error_type=error_type.value,
            error_code=raw_code,
            error_message=str(error),
        )

        return StripeError(
            message=getattr(error, "user_message", None) or str(error),
            error_type=error_type,
            original_error=error,
            code=code,
        )

    def _call(self, operation: str, func: Callable[[], T]) -> T:
        start = time.perf_counter()
        try:
            result = self.circuit_breaker.call(func)
        except stripe.StripeError as e:
            metrics.record_stripe_api_call(operation, "error", time.perf_counter() - start)
            raise self._handle_stripe_error(e) from e
        metrics.record_stripe_api_call(operation, "success", time.perf_counter() - start)
        return result

    # Checkout

    async def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        expires_at: int,
        customer_email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.checkout.Session:
        """
        Create a hosted Checkout session in payment mode.

        Args:
            line_items: Checkout line items with inline price_data
            metadata: Metadata echoed back on the completion webhook
            success_url: Redirect after payment
            cancel_url: Redirect when the customer abandons checkout
            expires_at: Unix timestamp after which the session expires
            customer_email: Prefilled customer email
            idempotency_key: Optional idempotency key

        Returns:
            stripe.checkout.Session: Created session (has .id and .url)

        Raises:
            StripeError: If session creation fails
        """
        logger.info("creating_checkout_session", booking_id=metadata.get("bookingId"))

        def _create() -> stripe.checkout.Session:
            kwargs: Dict[str, Any] = {
                "mode": "payment",
                "payment_method_types": ["card"],
                "line_items": line_items,
                "metadata": metadata,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "expires_at": expires_at,
            }
            if customer_email:
                kwargs["customer_email"] = customer_email
            if idempotency_key:
                kwargs["idempotency_key"] = idempotency_key
            return stripe.checkout.Session.create(**kwargs)

        session = self._call("create_checkout_session", _create)
        logger.info("checkout_session_created", session_id=session.id)
        return session

    async def expire_checkout_session(self, session_id: str) -> stripe.checkout.Session:
        """Expire an open Checkout session so it can no longer be paid."""
        logger.info("expiring_checkout_session", session_id=session_id)
        return self._call(
            "expire_checkout_session",
            lambda: stripe.checkout.Session.expire(session_id),
        )

    # Payment intents

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=16),
        reraise=True,
    )
    async def create_terminal_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
        receipt_email: Optional[str] = None,
    ) -> stripe.PaymentIntent:
        """
        Create a card-present PaymentIntent for a Terminal reader.

        Args:
            amount_cents: Amount in cents
            currency: Currency code
            idempotency_key: Idempotency key, makes retries safe
            metadata: Optional metadata
            description: Optional description
            receipt_email: Email the receipt is sent to

        Returns:
            stripe.PaymentIntent: Created payment intent

        Raises:
            StripeError: If creation fails
        """
        logger.info("creating_terminal_payment_intent", amount_cents=amount_cents)

        def _create() -> stripe.PaymentIntent:
            kwargs: Dict[str, Any] = {
                "amount": amount_cents,
                "currency": currency.lower(),
                "payment_method_types": ["card_present"],
                "capture_method": "automatic",
                "metadata": metadata or {},
                "idempotency_key": idempotency_key,
            }
            if description:
                kwargs["description"] = description
            if receipt_email:
                kwargs["receipt_email"] = receipt_email
            return stripe.PaymentIntent.create(**kwargs)

        payment_intent = self._call("create_payment_intent", _create)
        logger.info(
            "payment_intent_created",
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )
        return payment_intent

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        """
        Retrieve a PaymentIntent by ID.

        Raises:
            StripeError: If retrieval fails
        """
        return self._call(
            "retrieve_payment_intent",
            lambda: stripe.PaymentIntent.retrieve(payment_intent_id),
        )

    async def cancel_payment_intent(
        self, payment_intent_id: str, cancellation_reason: str = "requested_by_customer"
    ) -> stripe.PaymentIntent:
        """
        Cancel a PaymentIntent that has not succeeded.

        Raises:
            StripeError: If cancellation fails
        """
        logger.info("canceling_payment_intent", payment_intent_id=payment_intent_id)
        return self._call(
            "cancel_payment_intent",
            lambda: stripe.PaymentIntent.cancel(
                payment_intent_id, cancellation_reason=cancellation_reason
            ),
        )

    # Terminal readers

    async def process_payment_intent_on_reader(
        self, stripe_reader_id: str, payment_intent_id: str
    ) -> stripe.terminal.Reader:
        """
        Hand a PaymentIntent to a reader so the customer can tap or insert a card.

        Raises:
            StripeError: With code reader_offline / reader_busy when the reader
                cannot take the action
        """
        logger.info(
            "processing_on_reader",
            reader_id=stripe_reader_id,
            payment_intent_id=payment_intent_id,
        )
        return self._call(
            "reader_process_payment_intent",
            lambda: stripe.terminal.Reader.process_payment_intent(
                stripe_reader_id, payment_intent=payment_intent_id
            ),
        )

    async def cancel_reader_action(self, stripe_reader_id: str) -> stripe.terminal.Reader:
        """Cancel the reader's in-flight action."""
        return self._call(
            "reader_cancel_action",
            lambda: stripe.terminal.Reader.cancel_action(stripe_reader_id),
        )

    # Identity

    async def create_verification_session(
        self,
        metadata: Dict[str, str],
        email: Optional[str] = None,
        return_url: Optional[str] = None,
    ) -> stripe.identity.VerificationSession:
        """
        Create an identity verification session against the configured flow.

        Without a configured flow the session falls back to a document check
        with a matching selfie.

        Raises:
            StripeError: If creation fails
        """

        def _create() -> stripe.identity.VerificationSession:
            kwargs: Dict[str, Any] = {"metadata": metadata}
            if self.settings.stripe_verification_flow_id:
                kwargs["verification_flow"] = self.settings.stripe_verification_flow_id
            else:
                kwargs["type"] = "document"
                kwargs["options"] = {"document": {"require_matching_selfie": True}}
            if email:
                kwargs["provided_details"] = {"email": email}
            if return_url:
                kwargs["return_url"] = return_url
            return stripe.identity.VerificationSession.create(**kwargs)

        session = self._call("create_verification_session", _create)
        logger.info("verification_session_created", session_id=session.id)
        return session

    async def retrieve_verification_session(
        self, session_id: str
    ) -> stripe.identity.VerificationSession:
        return self._call(
            "retrieve_verification_session",
            lambda: stripe.identity.VerificationSession.retrieve(session_id),
        )

    async def cancel_verification_session(
        self, session_id: str
    ) -> stripe.identity.VerificationSession:
        return self._call(
            "cancel_verification_session",
            lambda: stripe.identity.VerificationSession.cancel(session_id),
        )
