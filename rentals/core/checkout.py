"""
Checkout orchestration for new bookings.

A checkout writes a booking, its drivers and a Stripe Checkout session.
The database and Stripe share no transaction, so each completed step
records an undo action and a failure unwinds them in reverse order.
"""
import re
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.config import get_settings
from rentals.core.dates import as_utc, business_date, business_today, utc_now
from rentals.core.exceptions import (
    BookingConflictError,
    BookingDependencyError,
    BookingError,
    BookingNotFoundError,
    BookingValidationError,
)
from rentals.core.pricing import BookingQuote, PricingEngine, SqlPricingEngine, to_cents
from rentals.core.saga import CompensationStack
from rentals.database.models import (
    BLOCKING_BOOKING_STATUSES,
    AdditionalDriver,
    Booking,
    BookingStatus,
    DeliveryLocation,
    PaymentStatus,
    PrimaryDriver,
    Vehicle,
    VehicleStatus,
)
from rentals.integrations.stripe_client import StripeClient
from rentals.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[\d\s\-\(\)\+]{7,20}$")
PICKUP_TYPES = ("store", "delivery")
MAX_TEXT_LENGTH = 200


def sanitize(value: Optional[str], max_length: int = MAX_TEXT_LENGTH) -> str:
    if not value:
        return ""
    return value.strip().replace("<", "").replace(">", "")[:max_length]


@dataclass
class DriverInput:
    first_name: str
    last_name: str
    email: str
    phone: str
    drivers_license: str = ""
    date_of_birth: Optional[date] = None
    street_address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    is_account_holder: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class CheckoutRequest:
    """
    Customer checkout input.

    There is deliberately no amount field: prices come from the pricing engine.
    """

    vehicle_id: uuid.UUID
    pickup_date: datetime
    return_date: datetime
    primary_driver: DriverInput
    pickup_type: str = "store"
    pickup_location: str = ""
    delivery_location_id: Optional[uuid.UUID] = None
    delivery_time_slot: Optional[str] = None
    is_student_booking: bool = False
    additional_drivers: List[DriverInput] = field(default_factory=list)


@dataclass
class CheckoutResult:
    url: str
    booking_id: uuid.UUID
    booking_number: str
    session_id: str
    total_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "bookingId": str(self.booking_id),
            "bookingNumber": self.booking_number,
            "sessionId": self.session_id,
        }


def generate_booking_number(today: date) -> str:
    return f"BK-{today:%Y%m%d}-{secrets.token_hex(3).upper()}"


class CheckoutOrchestrator:
    """
    Creates a pending booking and the Stripe Checkout session that pays for it.

    Example:
        orchestrator = CheckoutOrchestrator(db, stripe_client)
        result = await orchestrator.create_checkout(user_id, request)
        return result.to_dict()
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

    def validate(self, request: CheckoutRequest) -> None:
        """
        Check the request shape and business rules. Performs no I/O.

        Raises:
            BookingValidationError: On the first violated rule
        """
        tz = self.settings.business_timezone
        pickup = as_utc(request.pickup_date)
        return_ = as_utc(request.return_date)

        if business_date(pickup, tz) < business_today(tz):
            raise BookingValidationError("Pickup date cannot be in the past")
        if return_ <= pickup:
            raise BookingValidationError("Return date must be after pickup date")
        if request.pickup_type not in PICKUP_TYPES:
            raise BookingValidationError("Invalid pickup type")

        driver = request.primary_driver
        if not driver.first_name.strip() or not driver.last_name.strip():
            raise BookingValidationError("Primary driver name is required")
        if not EMAIL_PATTERN.match(driver.email or ""):
            raise BookingValidationError("Valid primary driver email is required")
        if not PHONE_PATTERN.match(driver.phone or ""):
            raise BookingValidationError("Valid primary driver phone is required")

        max_drivers = self.settings.max_additional_drivers
        if len(request.additional_drivers) > max_drivers:
            raise BookingValidationError(f"Maximum {max_drivers} additional drivers allowed")
        for extra in request.additional_drivers:
            if not extra.first_name.strip() or not extra.last_name.strip():
                raise BookingValidationError("Additional driver name is required")
            if not EMAIL_PATTERN.match(extra.email or ""):
                raise BookingValidationError("Valid additional driver email is required")

    async def create_checkout(
        self, user_id: uuid.UUID, request: CheckoutRequest
    ) -> CheckoutResult:
        """
        Validate, price, persist and open a payment session.

        Args:
            user_id: Authenticated customer id
            request: Checkout input

        Returns:
            CheckoutResult: Redirect URL and booking identifiers

        Raises:
            BookingValidationError: Invalid input, nothing written
            BookingNotFoundError: Vehicle does not exist
            BookingConflictError: Vehicle unavailable or dates overlap
            BookingDependencyError: Pricing, database or Stripe failure after
                compensation has run
        """
        log = logger.bind(user_id=str(user_id), vehicle_id=str(request.vehicle_id))

        try:
            self.validate(request)
            vehicle = await self._load_available_vehicle(request)
            await self._ensure_no_overlap(request)
            quote = await self.pricing.quote_booking(
                vehicle_id=request.vehicle_id,
                pickup_date=as_utc(request.pickup_date).date(),
                return_date=as_utc(request.return_date).date(),
                is_student=request.is_student_booking,
                additional_drivers=len(request.additional_drivers),
            )
            delivery_fee = await self._delivery_fee(request)
        except BookingDependencyError as e:
            metrics.record_checkout("failed")
            log.error("checkout_failed", error=e.message, completed_steps=0)
            raise
        except BookingError as e:
            metrics.record_checkout("rejected")
            log.info("checkout_rejected", reason=e.message)
            raise

        total = (
            quote.rental_amount
            + quote.security_deposit
            + delivery_fee
            + quote.additional_driver_fee
        )
        if total < 1:
            metrics.record_checkout("rejected")
            raise BookingValidationError("Invalid booking amount")

        log.info(
            "checkout_priced",
            rental_amount=str(quote.rental_amount),
            security_deposit=str(quote.security_deposit),
            delivery_fee=str(delivery_fee),
            additional_driver_fee=str(quote.additional_driver_fee),
            total=str(total),
        )

        stack = CompensationStack("checkout")
        try:
            booking = await self._insert_booking(user_id, request, quote, delivery_fee, total)
            # Ids are captured up front: rollback expires ORM instances
            booking_id = booking.id
            stack.push("delete_booking", lambda: self._delete_booking(booking_id))

            primary = await self._insert_primary_driver(user_id, booking.id, request.primary_driver)
            primary_id = primary.id
            stack.push("delete_primary_driver", lambda: self._delete_primary_driver(primary_id))

            if request.additional_drivers:
                await self._insert_additional_drivers(booking.id, request.additional_drivers)
                stack.push(
                    "delete_additional_drivers",
                    lambda: self._delete_additional_drivers(booking_id),
                )

            session = await self.stripe.create_checkout_session(
                line_items=self._line_items(vehicle, request, quote, delivery_fee),
                metadata=self._session_metadata(
                    user_id, vehicle, booking, primary, request, quote, total
                ),
                success_url=(
                    f"{self.settings.customer_portal_url}/booking-success"
                    f"?session_id={{CHECKOUT_SESSION_ID}}&booking_id={booking.id}"
                ),
                cancel_url=(
                    f"{self.settings.customer_portal_url}/vehicles/{vehicle.id}?canceled=true"
                ),
                expires_at=int(
                    (
                        utc_now() + timedelta(minutes=self.settings.checkout_session_ttl_minutes)
                    ).timestamp()
                ),
                customer_email=request.primary_driver.email.lower(),
                idempotency_key=f"checkout:{booking.id}",
            )
            stack.push(
                "expire_checkout_session",
                lambda: self._expire_session(session.id),
            )

            await self._attach_session(booking.id, session.id)
        except Exception as e:
            await self.db.rollback()
            log.error("checkout_failed", error=str(e), completed_steps=len(stack))
            await stack.unwind()
            metrics.record_checkout("failed")
            raise BookingDependencyError(
                "Failed to create checkout session. Please try again."
            ) from e

        stack.clear()
        metrics.record_checkout("created", to_cents(total))
        log.info(
            "checkout_session_ready",
            booking_id=str(booking.id),
            booking_number=booking.booking_number,
            session_id=session.id,
        )
        return CheckoutResult(
            url=session.url,
            booking_id=booking.id,
            booking_number=booking.booking_number,
            session_id=session.id,
            total_amount=total,
        )

    async def _load_available_vehicle(self, request: CheckoutRequest) -> Vehicle:
        vehicle = await self.db.get(Vehicle, request.vehicle_id)
        if vehicle is None:
            raise BookingNotFoundError("Vehicle not found")
        if vehicle.status != VehicleStatus.AVAILABLE.value:
            raise BookingConflictError("Vehicle is not available for booking")
        return vehicle

    async def _ensure_no_overlap(self, request: CheckoutRequest) -> None:
        """Reject when any holding booking intersects the requested window (inclusive)."""
        result = await self.db.execute(
            select(Booking.id)
            .where(
                Booking.vehicle_id == request.vehicle_id,
                Booking.status.in_(BLOCKING_BOOKING_STATUSES),
                Booking.pickup_date <= as_utc(request.return_date),
                Booking.return_date >= as_utc(request.pickup_date),
            )
            .limit(1)
        )
        if result.scalar_one_or_none() is not None:
            raise BookingConflictError("Vehicle is not available for the selected dates")

    async def _delivery_fee(self, request: CheckoutRequest) -> Decimal:
        if request.pickup_type != "delivery" or request.delivery_location_id is None:
            return Decimal("0")
        result = await self.db.execute(
            select(DeliveryLocation.fee).where(
                DeliveryLocation.id == request.delivery_location_id,
                DeliveryLocation.is_active.is_(True),
            )
        )
        fee = result.scalar_one_or_none()
        return Decimal(str(fee)) if fee is not None else Decimal("0")

    async def _insert_booking(
        self,
        user_id: uuid.UUID,
        request: CheckoutRequest,
        quote: BookingQuote,
        delivery_fee: Decimal,
        total: Decimal,
    ) -> Booking:
        driver = request.primary_driver
        booking = Booking(
            id=uuid.uuid4(),
            booking_number=generate_booking_number(business_today(self.settings.business_timezone)),
            user_id=user_id,
            vehicle_id=request.vehicle_id,
            pickup_date=as_utc(request.pickup_date),
            return_date=as_utc(request.return_date),
            pickup_type=request.pickup_type,
            pickup_location=sanitize(request.pickup_location) or "Store Pickup",
            delivery_location_id=request.delivery_location_id,
            delivery_time_slot=request.delivery_time_slot,
            rental_type=quote.rental_type,
            rental_days=quote.rental_days,
            pricing_method=quote.pricing_method,
            daily_rate=quote.daily_rate,
            weekly_rate=quote.weekly_rate,
            monthly_rate=quote.monthly_rate,
            rental_amount=quote.rental_amount,
            security_deposit=quote.security_deposit,
            additional_driver_fee=quote.additional_driver_fee,
            delivery_fee=delivery_fee,
            total_price=total,
            is_student_booking=request.is_student_booking,
            status=BookingStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            extension_count=0,
            customer_info={
                "firstName": sanitize(driver.first_name),
                "lastName": sanitize(driver.last_name),
                "email": driver.email.lower(),
                "phone": driver.phone,
            },
        )
        self.db.add(booking)
        await self.db.commit()
        return booking

    async def _insert_primary_driver(
        self, user_id: uuid.UUID, booking_id: uuid.UUID, driver: DriverInput
    ) -> PrimaryDriver:
        record = PrimaryDriver(
            id=uuid.uuid4(),
            booking_id=booking_id,
            user_id=user_id if driver.is_account_holder else None,
            is_account_holder=driver.is_account_holder,
            **self._driver_columns(driver),
        )
        self.db.add(record)
        await self.db.commit()
        return record

    async def _insert_additional_drivers(
        self, booking_id: uuid.UUID, drivers: List[DriverInput]
    ) -> None:
        self.db.add_all(
            AdditionalDriver(id=uuid.uuid4(), booking_id=booking_id, **self._driver_columns(d))
            for d in drivers
        )
        await self.db.commit()

    @staticmethod
    def _driver_columns(driver: DriverInput) -> Dict[str, Any]:
        return {
            "first_name": sanitize(driver.first_name),
            "last_name": sanitize(driver.last_name),
            "email": driver.email.lower(),
            "phone": driver.phone,
            "drivers_license": sanitize(driver.drivers_license),
            "date_of_birth": driver.date_of_birth,
            "street_address": sanitize(driver.street_address),
            "city": sanitize(driver.city),
            "state": sanitize(driver.state),
            "zip_code": sanitize(driver.zip_code),
            "is_verified": False,
        }

    async def _attach_session(self, booking_id: uuid.UUID, session_id: str) -> None:
        await self.db.execute(
            update(Booking).where(Booking.id == booking_id).values(stripe_session_id=session_id)
        )
        await self.db.commit()

    async def _delete_booking(self, booking_id: uuid.UUID) -> None:
        await self.db.execute(delete(Booking).where(Booking.id == booking_id))
        await self.db.commit()

    async def _delete_primary_driver(self, driver_id: uuid.UUID) -> None:
        await self.db.execute(delete(PrimaryDriver).where(PrimaryDriver.id == driver_id))
        await self.db.commit()

    async def _delete_additional_drivers(self, booking_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(AdditionalDriver).where(AdditionalDriver.booking_id == booking_id)
        )
        await self.db.commit()

    async def _expire_session(self, session_id: str) -> None:
        await self.stripe.expire_checkout_session(session_id)

    def _line_items(
        self,
        vehicle: Vehicle,
        request: CheckoutRequest,
        quote: BookingQuote,
        delivery_fee: Decimal,
    ) -> List[Dict[str, Any]]:
        currency = self.settings.currency
        pickup = as_utc(request.pickup_date)
        return_ = as_utc(request.return_date)
        where = (
            "Delivery to your location"
            if request.pickup_type == "delivery"
            else f"Pick up at {request.pickup_location or 'Store'}"
        )
        description = "\n".join(
            line
            for line in (
                f"{quote.rental_days} days",
                f"{pickup:%b %d, %Y} - {return_:%b %d, %Y}",
                where,
                "Student pricing applied" if request.is_student_booking else "",
            )
            if line
        )

        def item(name: str, amount: Decimal, text: str, images: Optional[List[str]] = None):
            product: Dict[str, Any] = {"name": name, "description": text}
            if images:
                product["images"] = images
            return {
                "price_data": {
                    "currency": currency,
                    "product_data": product,
                    "unit_amount": to_cents(amount),
                },
                "quantity": 1,
            }

        image = vehicle.image if vehicle.image and vehicle.image.startswith("http") else None
        items = [
            item(
                f"{vehicle.name} - {quote.rental_type.capitalize()} Rental",
                quote.rental_amount,
                description,
                [image] if image else None,
            )
        ]
        if quote.security_deposit > 0:
            items.append(
                item(
                    "Security Deposit",
                    quote.security_deposit,
                    "Refundable upon vehicle return in good condition",
                )
            )
        if delivery_fee > 0:
            items.append(
                item(
                    "Delivery Fee",
                    delivery_fee,
                    f"Delivery at {request.delivery_time_slot}"
                    if request.delivery_time_slot
                    else "Vehicle delivery",
                )
            )
        count = len(request.additional_drivers)
        if quote.additional_driver_fee > 0 and count:
            items.append(
                item(
                    f"Additional Driver{'s' if count > 1 else ''} ({count})",
                    quote.additional_driver_fee,
                    "Additional authorized drivers",
                )
            )
        return items

    @staticmethod
    def _session_metadata(
        user_id: uuid.UUID,
        vehicle: Vehicle,
        booking: Booking,
        primary: PrimaryDriver,
        request: CheckoutRequest,
        quote: BookingQuote,
        total: Decimal,
    ) -> Dict[str, str]:
        """Everything the completion webhook needs without re-reading volatile state."""
        return {
            "bookingId": str(booking.id),
            "bookingNumber": booking.booking_number,
            "vehicleId": str(vehicle.id),
            "vehicleName": vehicle.name,
            "userId": str(user_id),
            "primaryDriverId": str(primary.id),
            "primaryDriverName": request.primary_driver.full_name,
            "additionalDriversCount": str(len(request.additional_drivers)),
            "rentalType": quote.rental_type,
            "rentalDays": str(quote.rental_days),
            "pricingMethod": quote.pricing_method or "",
            "isStudentBooking": "true" if request.is_student_booking else "false",
            "pickupDate": as_utc(request.pickup_date).isoformat(),
            "returnDate": as_utc(request.return_date).isoformat(),
            "pickupLocation": request.pickup_location or "Store",
            "pickupType": request.pickup_type,
            "serverRentalAmount": str(quote.rental_amount),
            "serverSecurityDeposit": str(quote.security_deposit),
            "serverTotalAmount": str(total),
        }
