"""
Tests for opening identity verification sessions.
"""
import uuid
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy import select

from rentals.core.exceptions import (
    BookingDependencyError,
    BookingNotFoundError,
    BookingValidationError,
)
from rentals.core.verification import VerificationService
from rentals.database.models import DriverVerification, PendingPOSVerification, PrimaryDriver
from rentals.integrations.stripe_client import StripeError, StripeErrorType


@pytest.fixture
def worker_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def identity_stripe(stripe_client):
    stripe_client.create_verification_session.return_value = SimpleNamespace(
        id="vs_new", client_secret="vs_new_secret", status="requires_input"
    )
    return stripe_client


@pytest_asyncio.fixture
async def earlier_verification(test_db) -> DriverVerification:
    """A verified document for the same license on another booking."""
    record = DriverVerification(
        id=uuid.uuid4(),
        booking_id=uuid.uuid4(),
        driver_type="primary",
        primary_driver_id=uuid.uuid4(),
        stripe_session_id="vs_earlier",
        status="verified",
        verified_first_name="JANE",
        verified_last_name="DOE",
        verified_dob="1990-04-12",
        verified_license_number="d123 456 789",
        name_match=True,
        dob_match=True,
        license_number_match=True,
        match_warnings=[],
        verified_at=datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc),
    )
    test_db.add(record)
    await test_db.commit()
    return record


class TestDriverSessions:
    """Verification for drivers already on a booking."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_opens_session_and_records_attempt(
        self, test_db, identity_stripe, primary_driver, worker_id
    ) -> None:
        service = VerificationService(test_db, identity_stripe)

        result = await service.create_driver_session(
            worker_id, primary_driver.booking_id, "primary", primary_driver.id
        )

        assert result["sessionId"] == "vs_new"
        assert result["clientSecret"] == "vs_new_secret"
        kwargs = identity_stripe.create_verification_session.call_args.kwargs
        assert kwargs["metadata"]["driver_id"] == str(primary_driver.id)
        assert kwargs["metadata"]["driver_type"] == "primary"
        assert kwargs["email"] == "jane@example.com"

        record = await test_db.get(DriverVerification, uuid.UUID(result["verificationId"]))
        assert record.status == "pending"
        assert record.provided_dob == "1990-04-12"
        assert record.provided_license_number == "D123-456-789"
        assert record.created_by == worker_id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_license_verified_before_is_reused(
        self, test_db, identity_stripe, primary_driver, earlier_verification, worker_id
    ) -> None:
        service = VerificationService(test_db, identity_stripe)

        result = await service.create_driver_session(
            worker_id, primary_driver.booking_id, "primary", primary_driver.id
        )

        assert result["alreadyVerified"] is True
        assert result["verificationId"] == str(earlier_verification.id)
        identity_stripe.create_verification_session.assert_not_awaited()
        driver = await test_db.get(PrimaryDriver, primary_driver.id, populate_existing=True)
        assert driver.is_verified is True
        assert driver.verification_status == "verified"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_open_session_awaiting_input_is_reused(
        self, test_db, identity_stripe, primary_driver, worker_id
    ) -> None:
        pending = DriverVerification(
            id=uuid.uuid4(),
            booking_id=primary_driver.booking_id,
            driver_type="primary",
            primary_driver_id=primary_driver.id,
            stripe_session_id="vs_open",
            status="pending",
        )
        test_db.add(pending)
        await test_db.commit()
        identity_stripe.retrieve_verification_session.return_value = SimpleNamespace(
            id="vs_open", client_secret="vs_open_secret", status="requires_input"
        )

        result = await VerificationService(test_db, identity_stripe).create_driver_session(
            worker_id, primary_driver.booking_id, "primary", primary_driver.id
        )

        assert result == {
            "clientSecret": "vs_open_secret",
            "sessionId": "vs_open",
            "verificationId": str(pending.id),
        }
        identity_stripe.create_verification_session.assert_not_awaited()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unreachable_open_session_starts_a_new_one(
        self, test_db, identity_stripe, primary_driver, worker_id
    ) -> None:
        test_db.add(
            DriverVerification(
                id=uuid.uuid4(),
                booking_id=primary_driver.booking_id,
                driver_type="primary",
                primary_driver_id=primary_driver.id,
                stripe_session_id="vs_gone",
                status="pending",
            )
        )
        await test_db.commit()
        identity_stripe.retrieve_verification_session.side_effect = StripeError(
            "No such session", StripeErrorType.PERMANENT
        )

        result = await VerificationService(test_db, identity_stripe).create_driver_session(
            worker_id, primary_driver.booking_id, "primary", primary_driver.id
        )

        assert result["sessionId"] == "vs_new"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_driver_must_belong_to_booking(
        self, test_db, identity_stripe, primary_driver, worker_id
    ) -> None:
        service = VerificationService(test_db, identity_stripe)

        with pytest.raises(BookingNotFoundError, match="Driver not found"):
            await service.create_driver_session(
                worker_id, uuid.uuid4(), "primary", primary_driver.id
            )
        with pytest.raises(BookingValidationError):
            await service.create_driver_session(
                worker_id, primary_driver.booking_id, "owner", primary_driver.id
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_insert_failure_cancels_session(
        self, test_db, identity_stripe, primary_driver, worker_id
    ) -> None:
        # A failed attempt already holds the session id returned by the gateway
        test_db.add(
            DriverVerification(
                id=uuid.uuid4(),
                booking_id=uuid.uuid4(),
                driver_type="primary",
                stripe_session_id="vs_new",
                status="failed",
            )
        )
        await test_db.commit()

        with pytest.raises(BookingDependencyError):
            await VerificationService(test_db, identity_stripe).create_driver_session(
                worker_id, primary_driver.booking_id, "primary", primary_driver.id
            )

        identity_stripe.cancel_verification_session.assert_awaited_once_with("vs_new")


class TestPOSSessions:
    """Verification for walk-in customers."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_opens_flagged_session(self, test_db, identity_stripe, worker_id) -> None:
        result = await VerificationService(test_db, identity_stripe).create_pos_session(
            worker_id,
            "pos_1",
            "primary",
            "John",
            "Smith",
            "john@example.com",
            date(1985, 1, 1),
            "S123-4567",
        )

        assert result["sessionId"] == "vs_new"
        metadata = identity_stripe.create_verification_session.call_args.kwargs["metadata"]
        assert metadata["is_pos_verification"] == "true"
        assert metadata["pos_session_id"] == "pos_1"
        record = (
            await test_db.execute(
                select(PendingPOSVerification).where(
                    PendingPOSVerification.stripe_verification_session_id == "vs_new"
                )
            )
        ).scalar_one()
        assert record.verification_status == "pending"
        assert record.provided_dob == "1985-01-01"
        assert record.provided_email == "john@example.com"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_prior_verification_creates_verified_row(
        self, test_db, identity_stripe, earlier_verification, worker_id
    ) -> None:
        result = await VerificationService(test_db, identity_stripe).create_pos_session(
            worker_id, "pos_2", "additional", "Jane", "Doe", None, None, "D123456789"
        )

        assert result["alreadyVerified"] is True
        assert result["nameMatch"] is True
        identity_stripe.create_verification_session.assert_not_awaited()
        record = await test_db.get(PendingPOSVerification, uuid.UUID(result["verificationId"]))
        assert record.verification_status == "verified"
        assert record.stripe_verification_session_id is None
        assert record.verified_license_number == "d123 456 789"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_input_validation(self, identity_stripe, worker_id) -> None:
        service = VerificationService(None, identity_stripe)

        with pytest.raises(BookingValidationError, match="POS session"):
            await service.create_pos_session(
                worker_id, "", "primary", "A", "B", None, None, "X1234"
            )
        with pytest.raises(BookingValidationError, match="role"):
            await service.create_pos_session(
                worker_id, "p", "owner", "A", "B", None, None, "X1234"
            )
        with pytest.raises(BookingValidationError, match="license"):
            await service.create_pos_session(worker_id, "p", "primary", "A", "B", None, None, "X1")
