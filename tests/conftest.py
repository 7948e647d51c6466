"""
Pytest configuration and fixtures.

Tests run against an in-memory SQLite database (aiosqlite) with the Stripe
client replaced by mocks; no network services are needed.
"""
import os

os.environ["STRIPE_SECRET_KEY"] = "sk_test_fake_key_for_testing"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_fake_secret"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["APP_ENV"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["INTERNAL_API_KEY"] = "internal-test-key"
os.environ["NOTIFICATION_API_KEY"] = ""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Dict, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rentals.core.checkout import CheckoutRequest, DriverInput
from rentals.core.pricing import BookingQuote, ExtensionQuote
from rentals.database.models import Base, Booking, PrimaryDriver, Vehicle
from rentals.integrations.stripe_client import StripeClient


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests touching the database or the API")


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[Any, Any]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: Any) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def test_db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def vehicle(test_db: AsyncSession) -> Vehicle:
    vehicle = Vehicle(
        id=uuid.uuid4(),
        name="2022 Toyota Camry",
        image="https://cdn.example.com/camry.jpg",
        status="available",
    )
    test_db.add(vehicle)
    await test_db.commit()
    return vehicle


def future(days: int, hour: int = 10) -> datetime:
    base = datetime.now(timezone.utc).replace(hour=hour, minute=0, second=0, microsecond=0)
    return base + timedelta(days=days)


@pytest.fixture
def driver_input() -> DriverInput:
    return DriverInput(
        first_name="Jane",
        last_name="Doe",
        email="Jane.Doe@Example.com",
        phone="(555) 123-4567",
        drivers_license="D123-456-789",
        date_of_birth=date(1990, 4, 12),
        street_address="1 Main St",
        city="Springfield",
        state="IL",
        zip_code="62701",
        is_account_holder=True,
    )


@pytest.fixture
def checkout_request(vehicle: Vehicle, driver_input: DriverInput) -> CheckoutRequest:
    return CheckoutRequest(
        vehicle_id=vehicle.id,
        pickup_date=future(10),
        return_date=future(40),
        primary_driver=driver_input,
        pickup_type="store",
        pickup_location="Main Street",
    )


class FakePricingEngine:
    """In-memory stand-in for the calculate_* database functions."""

    def __init__(
        self,
        booking_quote: Optional[BookingQuote] = None,
        extension_quote: Optional[ExtensionQuote] = None,
    ):
        self.booking_quote = booking_quote or BookingQuote(
            rental_type="monthly",
            rental_days=30,
            pricing_method="monthly_rate",
            daily_rate=Decimal("45.00"),
            weekly_rate=Decimal("280.00"),
            monthly_rate=Decimal("1000.00"),
            rental_amount=Decimal("1000.00"),
            security_deposit=Decimal("250.00"),
            additional_driver_fee=Decimal("0.00"),
        )
        self.extension_quote = extension_quote or ExtensionQuote(
            rental_amount=Decimal("135.50"),
            extension_days=3,
            pricing_method="daily_rate",
        )
        self.booking_calls: list[Dict[str, Any]] = []
        self.extension_calls: list[Dict[str, Any]] = []

    async def quote_booking(self, **kwargs: Any) -> BookingQuote:
        self.booking_calls.append(kwargs)
        return self.booking_quote

    async def quote_extension(self, **kwargs: Any) -> ExtensionQuote:
        self.extension_calls.append(kwargs)
        return self.extension_quote


@pytest.fixture
def pricing() -> FakePricingEngine:
    return FakePricingEngine()


@pytest.fixture
def stripe_client() -> AsyncMock:
    """StripeClient mock returning a checkout session by default."""
    client = AsyncMock(spec=StripeClient)
    client.create_checkout_session.return_value = SimpleNamespace(
        id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123"
    )
    return client


@pytest_asyncio.fixture
async def confirmed_booking(test_db: AsyncSession, vehicle: Vehicle) -> Booking:
    """A paid monthly booking returning in 20 days."""
    booking = Booking(
        id=uuid.uuid4(),
        booking_number="BK-20260101-ABC123",
        user_id=uuid.uuid4(),
        vehicle_id=vehicle.id,
        pickup_date=future(-10),
        return_date=future(20),
        pickup_type="store",
        pickup_location="Main Street",
        rental_type="monthly",
        rental_days=30,
        rental_amount=Decimal("1000.00"),
        security_deposit=Decimal("250.00"),
        additional_driver_fee=Decimal("0.00"),
        delivery_fee=Decimal("0.00"),
        total_price=Decimal("1250.00"),
        status="confirmed",
        payment_status="paid",
        extension_count=0,
        customer_info={"firstName": "Jane", "lastName": "Doe", "email": "jane@example.com"},
    )
    test_db.add(booking)
    await test_db.commit()
    return booking


@pytest_asyncio.fixture
async def primary_driver(test_db: AsyncSession, confirmed_booking: Booking) -> PrimaryDriver:
    driver = PrimaryDriver(
        id=uuid.uuid4(),
        booking_id=confirmed_booking.id,
        user_id=confirmed_booking.user_id,
        first_name="Jane",
        last_name="Doe",
        email="jane@example.com",
        phone="5551234567",
        drivers_license="D123-456-789",
        date_of_birth=date(1990, 4, 12),
        is_account_holder=True,
    )
    test_db.add(driver)
    await test_db.commit()
    return driver
