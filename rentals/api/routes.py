"""
API routes for bookings, payments, point of sale and monitoring.

Domain exceptions propagate to the handlers registered in main.py, which
map them to status codes.
"""
import secrets
import uuid
from functools import lru_cache
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.config import get_settings
from rentals.core.checkout import CheckoutOrchestrator
from rentals.core.extension import ExtensionOrchestrator
from rentals.core.pricing import PricingEngine, SqlPricingEngine
from rentals.core.terminal import TerminalPaymentService
from rentals.core.verification import VerificationService
from rentals.database.connection import get_db
from rentals.infrastructure.cache import CacheAside
from rentals.infrastructure.rate_limiter import LimitClass, RateLimiter
from rentals.infrastructure.redis_client import get_redis
from rentals.integrations.notifications import NotificationClient
from rentals.integrations.stripe_client import StripeClient
from rentals.integrations.webhook_handler import WebhookProcessor
from rentals.monitoring.health import HealthCheck

from .schemas import (
    CacheInvalidateRequest,
    CashPaymentRequest,
    CheckoutRequestSchema,
    CheckoutResponse,
    DriverVerificationRequest,
    ExtendRequest,
    ExtendResponse,
    HealthCheckResponse,
    POSVerificationRequest,
    TerminalCancelRequest,
    TerminalIntentRequest,
    TerminalProcessRequest,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

booking_router = APIRouter(prefix="/bookings", tags=["bookings"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
pos_router = APIRouter(prefix="/pos", tags=["pos"])
verification_router = APIRouter(prefix="/verifications", tags=["verifications"])
admin_router = APIRouter(tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()


# Dependencies


@lru_cache
def get_stripe_client() -> StripeClient:
    """One client per process so the circuit breaker state is shared."""
    return StripeClient()


def get_pricing_engine(db: AsyncSession = Depends(get_db)) -> PricingEngine:
    return SqlPricingEngine(db)


def get_cache() -> CacheAside:
    return CacheAside(get_redis())


def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_redis())


def get_notifier() -> NotificationClient:
    return NotificationClient()


def _parse_identity(value: Optional[str], header: str) -> uuid.UUID:
    try:
        return uuid.UUID(value or "")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing or invalid {header} header",
        )


def current_user(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> uuid.UUID:
    """Authenticated customer id forwarded by the gateway."""
    return _parse_identity(x_user_id, "X-User-Id")


def current_worker(
    x_worker_id: Optional[str] = Header(default=None, alias="X-Worker-Id"),
) -> uuid.UUID:
    """Authenticated staff id forwarded by the gateway."""
    return _parse_identity(x_worker_id, "X-Worker-Id")


def require_internal_key(
    x_internal_api_key: Optional[str] = Header(default=None, alias="X-Internal-API-Key"),
) -> None:
    expected = get_settings().internal_api_key
    if not expected or not x_internal_api_key or not secrets.compare_digest(
        x_internal_api_key, expected
    ):
        logger.warning("internal_api_key_rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


# Bookings


@booking_router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start checkout",
    description="Create a pending booking and the Stripe Checkout session that pays for it",
)
async def create_checkout(
    request: CheckoutRequestSchema,
    user_id: uuid.UUID = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
    pricing: PricingEngine = Depends(get_pricing_engine),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    await limiter.enforce(LimitClass.BOOKING_CREATE, str(user_id))

    logger.info("api_checkout_request", user_id=str(user_id), vehicle_id=str(request.vehicle_id))
    orchestrator = CheckoutOrchestrator(db, stripe_client, pricing)
    result = await orchestrator.create_checkout(user_id, request.to_request())
    return result.to_dict()


@booking_router.post(
    "/{booking_id}/extend",
    response_model=ExtendResponse,
    summary="Extend a booking",
    description="Price an extension and open its payment session",
)
async def extend_booking(
    booking_id: uuid.UUID,
    request: ExtendRequest,
    user_id: uuid.UUID = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
    pricing: PricingEngine = Depends(get_pricing_engine),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    await limiter.enforce(LimitClass.BOOKING_EXTEND, str(user_id))

    orchestrator = ExtensionOrchestrator(db, stripe_client, pricing)
    result = await orchestrator.create_extension(
        user_id=user_id,
        booking_id=booking_id,
        new_return_date=request.parsed_return_date,
        user_email=request.user_email,
    )
    return result.to_dict()


# Webhooks


@webhook_router.post(
    "/stripe",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
    summary="Stripe webhook endpoint",
    description="Verify, deduplicate and apply Stripe events",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    cache: CacheAside = Depends(get_cache),
    notifier: NotificationClient = Depends(get_notifier),
) -> Dict[str, Any]:
    """
    Handle Stripe webhook events.

    Returns 400 for a bad signature and 500 when a handler fails so the
    gateway redelivers.
    """
    body = await request.body()
    processor = WebhookProcessor(db, cache=cache, notifier=notifier)
    event = processor.verify_signature(body, stripe_signature)
    return await processor.process_event(event)


# Admin


@admin_router.post(
    "/cache/invalidate",
    summary="Invalidate cache",
    description="Drop cached entries for a domain or an exact key",
    dependencies=[Depends(require_internal_key)],
)
async def invalidate_cache(
    request: CacheInvalidateRequest,
    cache: CacheAside = Depends(get_cache),
) -> Dict[str, Any]:
    await cache.invalidate_target(request.target)
    return {"success": True, "invalidated": request.target}


# Point of sale


@pos_router.post(
    "/terminal/payment-intents",
    status_code=status.HTTP_201_CREATED,
    summary="Create terminal payment intent",
)
async def create_terminal_intent(
    request: TerminalIntentRequest,
    worker_id: uuid.UUID = Depends(current_worker),
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    await limiter.enforce(LimitClass.POS_TRANSACTION, str(worker_id))

    service = TerminalPaymentService(db, stripe_client)
    return await service.create_intent(
        worker_id=worker_id,
        amount_cents=request.amount_cents,
        pos_session_id=request.pos_session_id,
        description=request.description,
        customer_email=request.customer_email,
        metadata=request.metadata,
    )


@pos_router.post("/terminal/process", summary="Send a payment to a reader")
async def process_terminal_payment(
    request: TerminalProcessRequest,
    worker_id: uuid.UUID = Depends(current_worker),
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    await limiter.enforce(LimitClass.POS_TRANSACTION, str(worker_id))

    service = TerminalPaymentService(db, stripe_client)
    return await service.process_on_reader(
        worker_id=worker_id,
        payment_intent_id=request.payment_intent_id,
        reader_id=request.reader_id,
    )


@pos_router.post("/terminal/cancel", summary="Cancel a terminal payment")
async def cancel_terminal_payment(
    request: TerminalCancelRequest,
    worker_id: uuid.UUID = Depends(current_worker),
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
) -> Dict[str, Any]:
    logger.info(
        "api_terminal_cancel_request",
        worker_id=str(worker_id),
        payment_intent_id=request.payment_intent_id,
    )
    service = TerminalPaymentService(db, stripe_client)
    return await service.cancel(request.payment_intent_id, request.reason)


@pos_router.post(
    "/cash",
    status_code=status.HTTP_201_CREATED,
    summary="Record a cash payment",
)
async def record_cash_payment(
    request: CashPaymentRequest,
    worker_id: uuid.UUID = Depends(current_worker),
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    await limiter.enforce(LimitClass.POS_TRANSACTION, str(worker_id))

    service = TerminalPaymentService(db, stripe_client)
    payment = await service.record_cash(
        worker_id=worker_id,
        amount_cents=request.amount_cents,
        cash_tendered_cents=request.cash_tendered_cents,
        description=request.description,
        notes=request.notes,
        customer_name=request.customer_name,
        customer_email=request.customer_email,
    )
    return payment.to_dict()


@pos_router.post(
    "/verifications",
    summary="Verify a walk-in customer",
    description="Open an identity verification session before a booking exists",
)
async def create_pos_verification(
    request: POSVerificationRequest,
    worker_id: uuid.UUID = Depends(current_worker),
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    await limiter.enforce(LimitClass.VERIFICATION, str(worker_id))

    service = VerificationService(db, stripe_client)
    return await service.create_pos_session(
        worker_id=worker_id,
        pos_session_id=request.pos_session_id,
        driver_role=request.driver_role,
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        date_of_birth=request.date_of_birth,
        license_number=request.license_number,
    )


# Verifications


@verification_router.post(
    "",
    summary="Verify a booking driver",
    description="Open (or reuse) an identity verification session for a driver",
)
async def create_driver_verification(
    request: DriverVerificationRequest,
    worker_id: uuid.UUID = Depends(current_worker),
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    await limiter.enforce(LimitClass.VERIFICATION, str(worker_id))

    service = VerificationService(db, stripe_client)
    return await service.create_driver_session(
        worker_id=worker_id,
        booking_id=request.booking_id,
        driver_type=request.driver_type,
        driver_id=request.driver_id,
    )


# Monitoring


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness() -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness() -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
