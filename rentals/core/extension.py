"""Paid extension of an existing booking's return date."""
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.config import get_settings
from rentals.core.dates import as_utc, business_date, business_today, utc_now
from rentals.core.exceptions import (
    BookingConflictError,
    BookingError,
    BookingNotFoundError,
    BookingValidationError,
    InvalidTransitionError,
)
from rentals.core.pricing import PricingEngine, SqlPricingEngine, to_cents
from rentals.database.models import (
    BLOCKING_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    RentalType,
    Vehicle,
)
from rentals.integrations.stripe_client import StripeClient
from rentals.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EXTENSION_SESSION_TYPE = "booking_extension"
EXTENDABLE_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.ACTIVE.value)
NON_EXTENDABLE_RENTAL_TYPES = (RentalType.WEEKLY.value, RentalType.SEMESTER.value)


@dataclass
class ExtensionResult:
    url: str
    session_id: str
    amount: Decimal
    days: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "sessionId": self.session_id,
            "amount": float(self.amount),
            "days": self.days,
        }


class ExtensionOrchestrator:
    """
    Opens a Checkout session for extra rental days.

    Nothing is written locally: the booking only changes when the
    completion webhook arrives, so there is nothing to compensate.
    """

    def __init__(
        self,
        db: AsyncSession,
        stripe_client: StripeClient,
        pricing: Optional[PricingEngine] = None,
    ):
        self.db = db
        self.stripe = stripe_client
        self.pricing = pricing or SqlPricingEngine(db)
        self.settings = get_settings()

    async def create_extension(
        self,
        user_id: uuid.UUID,
        booking_id: uuid.UUID,
        new_return_date: Union[date, datetime],
        user_email: Optional[str] = None,
    ) -> ExtensionResult:
        """
        Price an extension and open its payment session.

        Args:
            user_id: Authenticated customer id; must own the booking
            booking_id: Booking to extend
            new_return_date: Requested return date. A bare date keeps the
                current return time of day.
            user_email: Profile email, falls back to the booking's customer info

        Returns:
            ExtensionResult: Redirect URL, session id, amount and extra days

        Raises:
            BookingNotFoundError: Missing booking or owned by someone else
            InvalidTransitionError: Status, rental type or extension limit
            BookingValidationError: Invalid dates, price or missing email
            BookingConflictError: Another booking holds the new dates
            BookingDependencyError: Pricing engine failure
            StripeError: Session creation failure
        """
        log = logger.bind(user_id=str(user_id), booking_id=str(booking_id))
        try:
            result = await self._create(user_id, booking_id, new_return_date, user_email)
        except BookingError as e:
            metrics.record_extension("rejected")
            log.info("extension_rejected", reason=e.message)
            raise
        metrics.record_extension("created")
        log.info(
            "extension_session_created",
            session_id=result.session_id,
            amount=str(result.amount),
            days=result.days,
        )
        return result

    async def _create(
        self,
        user_id: uuid.UUID,
        booking_id: uuid.UUID,
        new_return_date: Union[date, datetime],
        user_email: Optional[str],
    ) -> ExtensionResult:
        booking = await self._load_owned_booking(user_id, booking_id)

        if booking.status not in EXTENDABLE_STATUSES:
            raise InvalidTransitionError("Only confirmed or active bookings can be extended")
        if booking.rental_type in NON_EXTENDABLE_RENTAL_TYPES:
            raise InvalidTransitionError(
                "This rental type cannot be extended online. Please contact support."
            )
        if booking.extension_count >= self.settings.max_extensions:
            raise InvalidTransitionError(
                "Maximum number of extensions reached. Please contact support."
            )

        current_return = as_utc(booking.return_date)
        new_return = self._resolve_new_return(new_return_date, current_return)
        tz = self.settings.business_timezone
        if business_date(new_return, tz) <= business_today(tz):
            raise BookingValidationError("New return date must be in the future")
        if new_return <= current_return:
            raise BookingValidationError(
                "New return date must be after the current return date"
            )

        await self._ensure_no_conflict(booking, current_return, new_return)

        quote = await self.pricing.quote_extension(
            vehicle_id=booking.vehicle_id,
            current_return_date=current_return.date(),
            new_return_date=new_return.date(),
        )
        if quote.rental_amount <= 0 or quote.extension_days <= 0:
            raise BookingValidationError("Invalid extension parameters")

        charge_cents = max(to_cents(quote.rental_amount), self.settings.min_charge_cents)

        email = user_email or (booking.customer_info or {}).get("email")
        if not email:
            raise BookingValidationError("Customer email is required for payment")

        vehicle = await self.db.get(Vehicle, booking.vehicle_id)
        vehicle_name = vehicle.name if vehicle else "Vehicle"
        image = vehicle.image if vehicle and vehicle.image else ""

        product: Dict[str, Any] = {
            "name": f"Rental Extension - {vehicle_name}",
            "description": (
                f"Extend rental by {quote.extension_days} days "
                f"(New return: {new_return:%b %d, %Y})"
            ),
        }
        if image.startswith("http"):
            product["images"] = [image]

        portal = self.settings.customer_portal_url
        session = await self.stripe.create_checkout_session(
            line_items=[
                {
                    "price_data": {
                        "currency": self.settings.currency,
                        "product_data": product,
                        "unit_amount": charge_cents,
                    },
                    "quantity": 1,
                }
            ],
            metadata={
                "type": EXTENSION_SESSION_TYPE,
                "booking_id": str(booking.id),
                "user_id": str(user_id),
                "new_return_date": new_return.isoformat(),
                "additional_days": str(quote.extension_days),
                "extension_amount": f"{quote.rental_amount:.2f}",
                "original_return_date": current_return.isoformat(),
                "pricing_method": quote.pricing_method or "",
            },
            success_url=f"{portal}/my-bookings?extension=success&booking_id={booking.id}",
            cancel_url=f"{portal}/my-bookings?extension=cancelled&booking_id={booking.id}",
            expires_at=int(
                (
                    utc_now() + timedelta(minutes=self.settings.checkout_session_ttl_minutes)
                ).timestamp()
            ),
            customer_email=email,
        )

        return ExtensionResult(
            url=session.url,
            session_id=session.id,
            amount=quote.rental_amount,
            days=quote.extension_days,
        )

    async def _load_owned_booking(self, user_id: uuid.UUID, booking_id: uuid.UUID) -> Booking:
        result = await self.db.execute(
            select(Booking).where(Booking.id == booking_id, Booking.user_id == user_id)
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            # Missing and foreign bookings are indistinguishable to the caller
            raise BookingNotFoundError("Booking not found or access denied")
        return booking

    @staticmethod
    def _resolve_new_return(
        requested: Union[date, datetime], current_return: datetime
    ) -> datetime:
        if isinstance(requested, datetime):
            return as_utc(requested)
        return datetime.combine(requested, current_return.timetz())

    async def _ensure_no_conflict(
        self, booking: Booking, current_return: datetime, new_return: datetime
    ) -> None:
        """Another holding booking must not start before the new return date."""
        result = await self.db.execute(
            select(Booking.id)
            .where(
                Booking.vehicle_id == booking.vehicle_id,
                Booking.id != booking.id,
                Booking.status.in_(BLOCKING_BOOKING_STATUSES),
                Booking.pickup_date < new_return,
                Booking.return_date > current_return,
            )
            .limit(1)
        )
        if result.scalar_one_or_none() is not None:
            raise BookingConflictError("Vehicle is not available for the requested dates")
