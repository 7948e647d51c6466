"""
Tests for paid booking extensions.
"""
import uuid
from datetime import datetime
from decimal import Decimal

import pytest

from rentals.core.exceptions import (
    BookingConflictError,
    BookingNotFoundError,
    BookingValidationError,
    InvalidTransitionError,
)
from rentals.core.extension import EXTENSION_SESSION_TYPE, ExtensionOrchestrator
from rentals.core.pricing import ExtensionQuote
from rentals.database.models import Booking

from conftest import FakePricingEngine, future


class TestCreateExtension:
    """Session creation for extra rental days."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_opens_session_without_touching_booking(
        self, test_db, stripe_client, pricing, confirmed_booking
    ) -> None:
        orchestrator = ExtensionOrchestrator(test_db, stripe_client, pricing)
        original_return = confirmed_booking.return_date

        result = await orchestrator.create_extension(
            confirmed_booking.user_id, confirmed_booking.id, future(23).date()
        )

        assert result.session_id == "cs_test_123"
        assert result.amount == Decimal("135.50")
        assert result.days == 3
        assert result.to_dict()["amount"] == 135.5

        kwargs = stripe_client.create_checkout_session.call_args.kwargs
        metadata = kwargs["metadata"]
        assert metadata["type"] == EXTENSION_SESSION_TYPE
        assert metadata["booking_id"] == str(confirmed_booking.id)
        assert metadata["additional_days"] == "3"
        assert metadata["extension_amount"] == "135.50"
        # A bare date keeps the current return time of day
        assert datetime.fromisoformat(metadata["new_return_date"]) == future(23)
        assert datetime.fromisoformat(metadata["original_return_date"]) == future(20)
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 13550
        assert kwargs["customer_email"] == "jane@example.com"

        await test_db.refresh(confirmed_booking)
        assert confirmed_booking.extension_count == 0
        assert confirmed_booking.return_date.replace(tzinfo=None) == original_return.replace(
            tzinfo=None
        )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_small_amount_is_raised_to_minimum_charge(
        self, test_db, stripe_client, confirmed_booking
    ) -> None:
        pricing = FakePricingEngine(
            extension_quote=ExtensionQuote(
                rental_amount=Decimal("0.25"), extension_days=1, pricing_method="daily_rate"
            )
        )

        await ExtensionOrchestrator(test_db, stripe_client, pricing).create_extension(
            confirmed_booking.user_id, confirmed_booking.id, future(21), user_email="a@b.co"
        )

        kwargs = stripe_client.create_checkout_session.call_args.kwargs
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 50
        assert kwargs["customer_email"] == "a@b.co"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_foreign_booking_is_not_found(
        self, test_db, stripe_client, pricing, confirmed_booking
    ) -> None:
        with pytest.raises(BookingNotFoundError):
            await ExtensionOrchestrator(test_db, stripe_client, pricing).create_extension(
                uuid.uuid4(), confirmed_booking.id, future(23)
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_weekly_rentals_cannot_be_extended(
        self, test_db, stripe_client, pricing, confirmed_booking
    ) -> None:
        confirmed_booking.rental_type = "weekly"
        await test_db.commit()

        with pytest.raises(InvalidTransitionError, match="rental type"):
            await ExtensionOrchestrator(test_db, stripe_client, pricing).create_extension(
                confirmed_booking.user_id, confirmed_booking.id, future(23)
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_pending_booking_cannot_be_extended(
        self, test_db, stripe_client, pricing, confirmed_booking
    ) -> None:
        confirmed_booking.status = "pending"
        await test_db.commit()

        with pytest.raises(InvalidTransitionError):
            await ExtensionOrchestrator(test_db, stripe_client, pricing).create_extension(
                confirmed_booking.user_id, confirmed_booking.id, future(23)
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_extension_limit(
        self, test_db, stripe_client, pricing, confirmed_booking
    ) -> None:
        confirmed_booking.extension_count = 5
        await test_db.commit()

        with pytest.raises(InvalidTransitionError, match="Maximum number"):
            await ExtensionOrchestrator(test_db, stripe_client, pricing).create_extension(
                confirmed_booking.user_id, confirmed_booking.id, future(23)
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_new_date_must_be_after_current_return(
        self, test_db, stripe_client, pricing, confirmed_booking
    ) -> None:
        with pytest.raises(BookingValidationError, match="after the current return"):
            await ExtensionOrchestrator(test_db, stripe_client, pricing).create_extension(
                confirmed_booking.user_id, confirmed_booking.id, future(15)
            )
        stripe_client.create_checkout_session.assert_not_awaited()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_next_booking_blocks_extension(
        self, test_db, stripe_client, pricing, confirmed_booking
    ) -> None:
        test_db.add(
            Booking(
                id=uuid.uuid4(),
                booking_number="BK-20260101-NEXT01",
                user_id=uuid.uuid4(),
                vehicle_id=confirmed_booking.vehicle_id,
                pickup_date=future(22),
                return_date=future(30),
                pickup_location="Main Street",
                rental_type="weekly",
                rental_days=8,
                rental_amount=Decimal("300.00"),
                security_deposit=Decimal("100.00"),
                additional_driver_fee=Decimal("0.00"),
                delivery_fee=Decimal("0.00"),
                total_price=Decimal("400.00"),
                status="confirmed",
                payment_status="paid",
            )
        )
        await test_db.commit()

        with pytest.raises(BookingConflictError):
            await ExtensionOrchestrator(test_db, stripe_client, pricing).create_extension(
                confirmed_booking.user_id, confirmed_booking.id, future(23)
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_zero_day_quote_is_rejected(
        self, test_db, stripe_client, confirmed_booking
    ) -> None:
        pricing = FakePricingEngine(
            extension_quote=ExtensionQuote(
                rental_amount=Decimal("0"), extension_days=0, pricing_method=None
            )
        )

        with pytest.raises(BookingValidationError, match="Invalid extension"):
            await ExtensionOrchestrator(test_db, stripe_client, pricing).create_extension(
                confirmed_booking.user_id, confirmed_booking.id, future(23)
            )
