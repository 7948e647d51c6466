"""SQLAlchemy database models for the rental booking service."""
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(10, 2, asdecimal=True)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Statuses that hold a vehicle for their date range
BLOCKING_BOOKING_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.ACTIVE.value,
)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class RentalType(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    SEMESTER = "semester"


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    RENTED = "rented"
    MAINTENANCE = "maintenance"


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    CANCELED = "canceled"


class POSTransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class POSPaymentType(str, Enum):
    TERMINAL = "terminal"
    CASH = "cash"


def _in_clause(column: str, enum_cls: type[Enum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class Vehicle(Base):
    """Rentable vehicle. Only status is mutated by the booking core."""

    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=VehicleStatus.AVAILABLE.value, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(_in_clause("status", VehicleStatus), name="valid_vehicle_status"),
    )

    def __repr__(self) -> str:
        return f"<Vehicle(id={self.id}, name={self.name}, status={self.status})>"


class DeliveryLocation(Base):
    """Delivery destination with a flat fee."""

    __tablename__ = "delivery_locations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Booking(Base):
    """
    Rental booking.

    Pricing columns are written only from pricing engine output. At creation
    total_price is the sum of rental_amount, security_deposit,
    additional_driver_fee and delivery_fee; extensions add the same amount to
    rental_amount and total_price.
    """

    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    vehicle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vehicles.id"), nullable=False, index=True
    )
    pickup_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    return_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    pickup_type: Mapped[str] = mapped_column(String(16), nullable=False, default="store")
    pickup_location: Mapped[str] = mapped_column(String(255), nullable=False)
    delivery_location_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    delivery_time_slot: Mapped[str | None] = mapped_column(String(64), nullable=True)

    rental_type: Mapped[str] = mapped_column(String(16), nullable=False)
    rental_days: Mapped[int] = mapped_column(Integer, nullable=False)
    pricing_method: Mapped[str | None] = mapped_column(String(64), nullable=True)
    daily_rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    weekly_rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    monthly_rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    rental_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    security_deposit: Mapped[Decimal] = mapped_column(Money, nullable=False)
    additional_driver_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_student_booking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PaymentStatus.PENDING.value
    )
    extension_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Checkout session of the most recently applied extension
    last_extension_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    customer_info: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(_in_clause("status", BookingStatus), name="valid_booking_status"),
        CheckConstraint(_in_clause("payment_status", PaymentStatus), name="valid_payment_status"),
        CheckConstraint(_in_clause("rental_type", RentalType), name="valid_rental_type"),
        CheckConstraint("return_date > pickup_date", name="return_after_pickup"),
        CheckConstraint("extension_count >= 0", name="non_negative_extension_count"),
        Index("idx_bookings_vehicle_window", "vehicle_id", "pickup_date", "return_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, vehicle_id={self.vehicle_id}, "
            f"status={self.status}, payment_status={self.payment_status})>"
        )


class _DriverColumns:
    """Identity, contact and license columns shared by both driver tables."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(200), nullable=False)
    last_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    drivers_license: Mapped[str] = mapped_column(String(200), nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    street_address: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    city: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    state: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    zip_code: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=VerificationStatus.UNVERIFIED.value
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )


class PrimaryDriver(_DriverColumns, Base):
    __tablename__ = "primary_drivers"

    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    is_account_holder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class AdditionalDriver(_DriverColumns, Base):
    __tablename__ = "additional_drivers"

    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False, index=True
    )


class ProcessedWebhookEvent(Base):
    """
    Idempotency ledger for gateway webhooks.

    Append-only. The unique constraint on stripe_event_id turns concurrent
    deliveries of the same event into an insert failure.
    """

    __tablename__ = "processed_webhook_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    stripe_event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent(event_id={self.stripe_event_id}, type={self.event_type})>"


class _VerifiedIdentityColumns:
    """Provided vs verified identity attributes and match outcome."""

    provided_first_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    provided_last_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    provided_dob: Mapped[str | None] = mapped_column(String(32), nullable=True)
    provided_license_number: Mapped[str | None] = mapped_column(String(200), nullable=True)

    verified_first_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verified_last_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verified_dob: Mapped[str | None] = mapped_column(String(32), nullable=True)
    verified_license_number: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verified_address_line1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verified_address_city: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verified_address_state: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verified_address_postal_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    license_expiration_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    license_issuing_country: Mapped[str | None] = mapped_column(String(8), nullable=True)
    document_type: Mapped[str | None] = mapped_column(String(64), nullable=True)

    name_match: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    dob_match: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    license_number_match: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    match_warnings: Mapped[List[Dict[str, str]] | None] = mapped_column(JSONType, nullable=True)

    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )


class DriverVerification(_VerifiedIdentityColumns, Base):
    """Identity verification attempt for a booking driver."""

    __tablename__ = "driver_verifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    driver_type: Mapped[str] = mapped_column(String(16), nullable=False)
    primary_driver_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    additional_driver_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    stripe_session_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=VerificationStatus.PENDING.value
    )
    is_document_error: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_technical_error: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    document_error_retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    technical_error_retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Webhook event that last changed the counters
    last_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        CheckConstraint("driver_type IN ('primary', 'additional')", name="valid_driver_type"),
        CheckConstraint(
            "status IN ('pending', 'verified', 'failed', 'canceled')",
            name="valid_verification_status",
        ),
    )


class PendingPOSVerification(_VerifiedIdentityColumns, Base):
    """Identity verification started at the point of sale, before a booking exists."""

    __tablename__ = "pending_pos_verifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pos_session_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    worker_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    driver_role: Mapped[str] = mapped_column(String(32), nullable=False, default="primary")
    provided_email: Mapped[str | None] = mapped_column(String(254), nullable=True)
    # Null when an earlier verification of the same license was reused
    stripe_verification_session_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )
    verification_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=VerificationStatus.PENDING.value
    )


class TerminalReader(Base):
    """Registered Stripe Terminal card reader."""

    __tablename__ = "terminal_readers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    stripe_reader_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="offline")
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class POSTransaction(Base):
    """Point-of-sale payment, either on a card reader or in cash."""

    __tablename__ = "pos_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    worker_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    payment_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=POSTransactionStatus.PENDING.value, index=True
    )
    reader_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    stripe_reader_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_brand: Mapped[str | None] = mapped_column(String(32), nullable=True)
    card_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    receipt_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cash_tendered_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cash_change_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="positive_amount"),
        CheckConstraint(_in_clause("status", POSTransactionStatus), name="valid_pos_status"),
        CheckConstraint(_in_clause("payment_type", POSPaymentType), name="valid_payment_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<POSTransaction(id={self.id}, type={self.payment_type}, "
            f"amount={self.amount_cents}, status={self.status})>"
        )
