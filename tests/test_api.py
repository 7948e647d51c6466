"""
API tests through the ASGI app with external services overridden.
"""
import hashlib
import hmac
import json
import time
import uuid
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rentals.api import routes
from rentals.api.main import app
from rentals.database.connection import get_db
from rentals.database.models import TerminalReader
from rentals.infrastructure.cache import CacheAside
from rentals.infrastructure.rate_limiter import RateLimitExceededError, RateLimitResult
from rentals.integrations.notifications import NotificationClient
from rentals.integrations.stripe_client import StripeError, StripeErrorType

from conftest import future

WEBHOOK_SECRET = "whsec_test_fake_secret"


def signed_headers(payload: bytes) -> dict[str, str]:
    timestamp = int(time.time())
    digest = hmac.new(
        WEBHOOK_SECRET.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256
    ).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={digest}", "Content-Type": "application/json"}


@pytest.fixture
def limiter() -> MagicMock:
    limiter = MagicMock()
    limiter.enforce = AsyncMock()
    return limiter


@pytest.fixture
def cache() -> MagicMock:
    cache = MagicMock(spec=CacheAside)
    cache.invalidate_target = AsyncMock()
    cache.invalidate_booking_caches = AsyncMock()
    cache.invalidate_vehicle_caches = AsyncMock()
    return cache


@pytest_asyncio.fixture
async def client(
    test_db, stripe_client, pricing, limiter, cache
) -> AsyncGenerator[AsyncClient, Any]:
    """HTTP client against the app with database, Redis and Stripe replaced."""

    async def override_db() -> AsyncGenerator[Any, Any]:
        yield test_db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[routes.get_stripe_client] = lambda: stripe_client
    app.dependency_overrides[routes.get_pricing_engine] = lambda: pricing
    app.dependency_overrides[routes.get_rate_limiter] = lambda: limiter
    app.dependency_overrides[routes.get_cache] = lambda: cache
    app.dependency_overrides[routes.get_notifier] = lambda: AsyncMock(spec=NotificationClient)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class TestWebhookEndpoint:
    """POST /webhooks/stripe"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_signature(self, client: AsyncClient) -> None:
        response = await client.post("/webhooks/stripe", content=b"{}")

        assert response.status_code == 400
        assert response.json() == {"error": "Missing stripe-signature header"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_bad_signature(self, client: AsyncClient) -> None:
        response = await client.post(
            "/webhooks/stripe",
            content=b'{"id": "evt_1"}',
            headers={"Stripe-Signature": "t=1,v1=deadbeef"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid webhook signature"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_signed_event_then_replay(self, client: AsyncClient) -> None:
        payload = json.dumps(
            {"id": "evt_api_1", "type": "customer.created", "data": {"object": {"id": "cus_1"}}}
        ).encode()

        first = await client.post(
            "/webhooks/stripe", content=payload, headers=signed_headers(payload)
        )
        replay = await client.post(
            "/webhooks/stripe", content=payload, headers=signed_headers(payload)
        )

        assert first.status_code == 200
        assert first.json() == {"received": True, "eventType": "customer.created"}
        assert replay.status_code == 200
        assert replay.json() == {"received": True, "status": "already_processed"}


class TestCacheEndpoint:
    """POST /cache/invalidate"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_requires_internal_key(self, client: AsyncClient, cache: MagicMock) -> None:
        response = await client.post(
            "/cache/invalidate",
            json={"target": "vehicles"},
            headers={"X-Internal-API-Key": "wrong"},
        )

        assert response.status_code == 401
        cache.invalidate_target.assert_not_awaited()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalidates_target(self, client: AsyncClient, cache: MagicMock) -> None:
        response = await client.post(
            "/cache/invalidate",
            json={"target": "vehicles"},
            headers={"X-Internal-API-Key": "internal-test-key"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "invalidated": "vehicles"}
        cache.invalidate_target.assert_awaited_once_with("vehicles")


class TestBookingEndpoints:
    """Checkout and extension routes."""

    @staticmethod
    def checkout_body(vehicle_id: uuid.UUID, days_ahead: int = 10) -> dict[str, Any]:
        return {
            "vehicleId": str(vehicle_id),
            "pickupDate": future(days_ahead).isoformat(),
            "returnDate": future(days_ahead + 30).isoformat(),
            "pickupType": "store",
            "primaryDriver": {
                "firstName": "Jane",
                "lastName": "Doe",
                "email": "jane@example.com",
                "phone": "555-123-4567",
            },
        }

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_requires_user(self, client: AsyncClient, vehicle) -> None:
        response = await client.post("/bookings/checkout", json=self.checkout_body(vehicle.id))

        assert response.status_code == 401

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_validation_error(self, client: AsyncClient, vehicle) -> None:
        response = await client.post(
            "/bookings/checkout",
            json=self.checkout_body(vehicle.id, days_ahead=-3),
            headers={"X-User-Id": str(uuid.uuid4())},
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "Pickup date cannot be in the past",
            "code": "validation_error",
        }

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_client_supplied_amount_is_ignored(
        self, client: AsyncClient, stripe_client, vehicle
    ) -> None:
        body = self.checkout_body(vehicle.id)
        body["totalPrice"] = 1.00
        body["amount"] = 100

        response = await client.post(
            "/bookings/checkout", json=body, headers={"X-User-Id": str(uuid.uuid4())}
        )

        assert response.status_code == 201
        kwargs = stripe_client.create_checkout_session.call_args.kwargs
        assert [item["price_data"]["unit_amount"] for item in kwargs["line_items"]] == [
            100000,
            25000,
        ]
        assert kwargs["metadata"]["serverTotalAmount"] == "1250.00"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_rate_limited(
        self, client: AsyncClient, limiter: MagicMock, vehicle
    ) -> None:
        limiter.enforce.side_effect = RateLimitExceededError(
            RateLimitResult(
                allowed=False,
                limit=10,
                remaining=0,
                reset_ms=int(time.time() * 1000) + 60_000,
                retry_after=60,
            )
        )

        response = await client.post(
            "/bookings/checkout",
            json=self.checkout_body(vehicle.id),
            headers={"X-User-Id": str(uuid.uuid4())},
        )

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.json()["code"] == "RATE_LIMITED"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_extend_unknown_booking(self, client: AsyncClient) -> None:
        response = await client.post(
            f"/bookings/{uuid.uuid4()}/extend",
            json={"newReturnDate": future(30).date().isoformat()},
            headers={"X-User-Id": str(uuid.uuid4())},
        )

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_extend_rejects_malformed_date(self, client: AsyncClient) -> None:
        response = await client.post(
            f"/bookings/{uuid.uuid4()}/extend",
            json={"newReturnDate": "next tuesday"},
            headers={"X-User-Id": str(uuid.uuid4())},
        )

        assert response.status_code == 422


class TestPOSEndpoints:
    """Point-of-sale routes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cash_payment(self, client: AsyncClient) -> None:
        response = await client.post(
            "/pos/cash",
            json={"amountCents": 4250, "cashTenderedCents": 5000},
            headers={"X-Worker-Id": str(uuid.uuid4())},
        )

        assert response.status_code == 201
        assert response.json()["changeCents"] == 750

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reader_offline_maps_to_bad_request(
        self, client: AsyncClient, stripe_client, test_db
    ) -> None:
        reader = TerminalReader(id=uuid.uuid4(), stripe_reader_id="tmr_1", label="Desk")
        test_db.add(reader)
        await test_db.commit()
        stripe_client.retrieve_payment_intent.return_value = MagicMock(
            status="requires_payment_method"
        )
        stripe_client.process_payment_intent_on_reader.side_effect = StripeError(
            "Reader is offline", StripeErrorType.PERMANENT, code="reader_offline"
        )

        response = await client.post(
            "/pos/terminal/process",
            json={"paymentIntentId": "pi_1", "readerId": str(reader.id)},
            headers={"X-Worker-Id": str(uuid.uuid4())},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Reader is offline", "code": "reader_offline"}


class TestMonitoring:
    """Health and metrics."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_readiness_unhealthy(self, client: AsyncClient, monkeypatch) -> None:
        monkeypatch.setattr(
            routes.health_check,
            "readiness",
            AsyncMock(return_value={"status": "unhealthy", "checks": {}}),
        )

        response = await client.get("/health/ready")

        assert response.status_code == 503

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient) -> None:
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "checkout_requests_total" in response.text
