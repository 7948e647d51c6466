"""
Client for the authoritative pricing engine.

Prices are computed by PostgreSQL functions owned by the pricing team.
The booking core never derives an amount itself; it only sums the
components the engine returns.
"""
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.exceptions import BookingDependencyError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BookingQuote:
    rental_type: str
    rental_days: int
    pricing_method: Optional[str]
    daily_rate: Optional[Decimal]
    weekly_rate: Optional[Decimal]
    monthly_rate: Optional[Decimal]
    rental_amount: Decimal
    security_deposit: Decimal
    additional_driver_fee: Decimal


@dataclass(frozen=True)
class ExtensionQuote:
    rental_amount: Decimal
    extension_days: int
    pricing_method: Optional[str]


class PricingEngine(Protocol):
    async def quote_booking(
        self,
        vehicle_id: uuid.UUID,
        pickup_date: date,
        return_date: date,
        is_student: bool,
        additional_drivers: int,
    ) -> BookingQuote: ...

    async def quote_extension(
        self,
        vehicle_id: uuid.UUID,
        current_return_date: date,
        new_return_date: date,
    ) -> ExtensionQuote: ...


def _decimal(value: object) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


class SqlPricingEngine:
    """PricingEngine backed by the calculate_* database functions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def quote_booking(
        self,
        vehicle_id: uuid.UUID,
        pickup_date: date,
        return_date: date,
        is_student: bool,
        additional_drivers: int,
    ) -> BookingQuote:
        """
        Price a new booking.

        The delivery fee is passed as 0; it is looked up separately from
        the delivery location.

        Raises:
            BookingDependencyError: If the engine fails or returns no row
        """
        try:
            result = await self.db.execute(
                text(
                    "SELECT * FROM calculate_booking_total("
                    ":p_vehicle_id, :p_pickup_date, :p_return_date, "
                    ":p_is_student, :p_delivery_fee, :p_additional_drivers)"
                ),
                {
                    "p_vehicle_id": str(vehicle_id),
                    "p_pickup_date": pickup_date,
                    "p_return_date": return_date,
                    "p_is_student": is_student,
                    "p_delivery_fee": 0,
                    "p_additional_drivers": additional_drivers,
                },
            )
            row = result.mappings().first()
        except SQLAlchemyError as e:
            logger.error("pricing_engine_failed", operation="booking", error=str(e))
            raise BookingDependencyError("Failed to calculate booking price") from e

        if row is None:
            raise BookingDependencyError("Failed to calculate booking price")

        return BookingQuote(
            rental_type=row["rental_type"],
            rental_days=int(row["rental_days"]),
            pricing_method=row.get("pricing_method"),
            daily_rate=_decimal(row.get("daily_rate")),
            weekly_rate=_decimal(row.get("weekly_rate")),
            monthly_rate=_decimal(row.get("monthly_rate")),
            rental_amount=Decimal(str(row["rental_amount"])),
            security_deposit=Decimal(str(row["security_deposit"] or 0)),
            additional_driver_fee=Decimal(str(row["additional_driver_fee"] or 0)),
        )

    async def quote_extension(
        self,
        vehicle_id: uuid.UUID,
        current_return_date: date,
        new_return_date: date,
    ) -> ExtensionQuote:
        """
        Price the extra days between the current and new return dates.

        Raises:
            BookingDependencyError: If the engine fails or returns no row
        """
        try:
            result = await self.db.execute(
                text(
                    "SELECT * FROM calculate_extension_price("
                    ":p_vehicle_id, :p_current_return_date, :p_new_return_date)"
                ),
                {
                    "p_vehicle_id": str(vehicle_id),
                    "p_current_return_date": current_return_date,
                    "p_new_return_date": new_return_date,
                },
            )
            row = result.mappings().first()
        except SQLAlchemyError as e:
            logger.error("pricing_engine_failed", operation="extension", error=str(e))
            raise BookingDependencyError("Failed to calculate extension price") from e

        if row is None:
            raise BookingDependencyError("Failed to calculate extension price")

        return ExtensionQuote(
            rental_amount=Decimal(str(row["rental_amount"])),
            extension_days=int(row["extension_days"]),
            pricing_method=row.get("pricing_method"),
        )


def to_cents(amount: Decimal) -> int:
    """Convert a dollar amount to integer cents, rounding half up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
