"""
Main FastAPI application.

Rental booking API with:
- CORS configuration
- Domain error mapping
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rentals import __version__
from rentals.config import get_settings
from rentals.core.exceptions import BookingError
from rentals.database.connection import close_db, init_db
from rentals.infrastructure.rate_limiter import RateLimitExceededError
from rentals.infrastructure.redis_client import close_redis
from rentals.integrations.stripe_client import StripeError, StripeErrorType
from rentals.integrations.webhook_handler import WebhookProcessingError, WebhookSignatureError
from rentals.monitoring.logging import setup_logging

from .routes import (
    admin_router,
    booking_router,
    monitoring_router,
    pos_router,
    verification_router,
    webhook_router,
)

setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """Create tables on startup; release database and Redis connections on shutdown."""
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        test_mode=settings.is_test_mode,
    )

    try:
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    yield

    logger.info("application_shutdown")
    try:
        await close_db()
        await close_redis()
        logger.info("connections_closed")
    except Exception as e:
        logger.error("shutdown_error", error=str(e))


app = FastAPI(
    title="Vehicle Rental Booking API",
    description=(
        "Booking checkout and extensions paid through Stripe, idempotent webhook "
        "processing, point-of-sale terminal payments and driver identity verification."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """Bind a request ID into the log context and echo it in X-Request-ID."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response
    except Exception as e:
        logger.error("request_failed", error=str(e), duration_seconds=time.time() - start_time)
        raise
    finally:
        structlog.contextvars.clear_contextvars()


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log("booking_error", code=exc.code, error=exc.message, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RateLimitExceededError)
async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=exc.to_dict(),
        headers=exc.headers(),
    )


@app.exception_handler(StripeError)
async def stripe_error_handler(request: Request, exc: StripeError) -> JSONResponse:
    if exc.error_type == StripeErrorType.PERMANENT:
        status_code = status.HTTP_400_BAD_REQUEST
    elif exc.error_type == StripeErrorType.RATE_LIMIT:
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
    else:
        status_code = status.HTTP_502_BAD_GATEWAY
    logger.warning("stripe_error_response", code=exc.code, error=str(exc), status_code=status_code)
    return JSONResponse(status_code=status_code, content={"error": str(exc), "code": exc.code})


@app.exception_handler(WebhookSignatureError)
async def webhook_signature_handler(request: Request, exc: WebhookSignatureError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})


@app.exception_handler(WebhookProcessingError)
async def webhook_processing_handler(
    request: Request, exc: WebhookProcessingError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Webhook handler failed"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


app.include_router(booking_router)
app.include_router(webhook_router)
app.include_router(pos_router)
app.include_router(verification_router)
app.include_router(admin_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": "rentals",
        "version": __version__,
        "status": "operational",
        "environment": settings.app_env,
        "test_mode": settings.is_test_mode,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


def run() -> None:
    """Serve the API with uvicorn using the configured host, port and workers."""
    import uvicorn

    uvicorn.run(
        "rentals.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
