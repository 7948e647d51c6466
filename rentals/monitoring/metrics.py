"""
Prometheus metrics for the booking service.

Tracks:
- Checkout and extension outcomes
- Paid extensions awaiting a refund
- Webhook events by type and outcome
- Stripe API calls and errors
- Cache hits and misses
- Rate-limit decisions
- Compensating actions
"""
from prometheus_client import Counter, Gauge, Histogram

# Booking metrics
checkout_requests_total = Counter(
    "checkout_requests_total",
    "Total checkout session requests",
    ["status"],  # created, rejected, failed
)

extension_requests_total = Counter(
    "extension_requests_total",
    "Total booking extension requests",
    ["status"],
)

extension_payments_unapplied_total = Counter(
    "extension_payments_unapplied_total",
    "Paid extension sessions that could not be applied and need a refund",
    ["reason"],  # booking_missing, return_date_changed
)

checkout_amount_cents = Histogram(
    "checkout_amount_cents",
    "Server-computed checkout totals in cents",
    buckets=(5000, 10000, 25000, 50000, 100000, 250000, 500000, 1000000),
)

compensations_total = Counter(
    "compensations_total",
    "Compensating actions executed",
    ["saga", "step", "status"],
)

# Stripe API metrics
stripe_api_requests_total = Counter(
    "stripe_api_requests_total",
    "Total Stripe API requests",
    ["operation", "status"],
)

stripe_api_errors_total = Counter(
    "stripe_api_errors_total",
    "Total Stripe API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

stripe_api_duration_seconds = Histogram(
    "stripe_api_duration_seconds",
    "Stripe API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

stripe_circuit_breaker_state = Gauge(
    "stripe_circuit_breaker_state",
    "Stripe circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],  # processed, duplicate, unhandled, failed
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Cache metrics
cache_requests_total = Counter(
    "cache_requests_total",
    "Cache-aside lookups",
    ["result"],  # hit, miss, error
)

# Rate limit metrics
rate_limit_decisions_total = Counter(
    "rate_limit_decisions_total",
    "Rate limiter decisions",
    ["limit_class", "decision"],  # allowed, limited, fail_open
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_checkout(status: str, amount_cents: int = 0) -> None:
        """Record a checkout request outcome."""
        checkout_requests_total.labels(status=status).inc()
        if amount_cents > 0:
            checkout_amount_cents.observe(amount_cents)

    @staticmethod
    def record_extension(status: str) -> None:
        extension_requests_total.labels(status=status).inc()

    @staticmethod
    def record_unapplied_extension(reason: str) -> None:
        extension_payments_unapplied_total.labels(reason=reason).inc()

    @staticmethod
    def record_compensation(saga: str, step: str, status: str) -> None:
        compensations_total.labels(saga=saga, step=step, status=status).inc()

    @staticmethod
    def record_stripe_api_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record Stripe API call."""
        stripe_api_requests_total.labels(operation=operation, status=status).inc()
        stripe_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_stripe_api_error(error_type: str) -> None:
        """Record Stripe API error."""
        stripe_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        stripe_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(event_type=event_type).inc()
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_cache_lookup(result: str) -> None:
        cache_requests_total.labels(result=result).inc()

    @staticmethod
    def record_rate_limit(limit_class: str, decision: str) -> None:
        rate_limit_decisions_total.labels(limit_class=limit_class, decision=decision).inc()


# Export singleton instance
metrics = MetricsCollector()
