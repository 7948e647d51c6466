"""
Pydantic schemas for API request/response models.

Bodies use camelCase on the wire; snake_case field names are also accepted.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from rentals.core.checkout import CheckoutRequest, DriverInput


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DriverSchema(CamelModel):
    """Driver details entered at checkout."""

    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    email: str = Field(..., description="Contact email")
    phone: str = Field(..., description="Contact phone")
    drivers_license: str = Field(default="", description="Driver's license number")
    date_of_birth: Optional[date] = Field(default=None, description="Date of birth")
    street_address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    is_account_holder: bool = False

    def to_input(self) -> DriverInput:
        return DriverInput(**self.model_dump())


class CheckoutRequestSchema(CamelModel):
    """Request schema for starting a booking checkout."""

    vehicle_id: UUID = Field(..., description="Vehicle to book")
    pickup_date: datetime = Field(..., description="Pickup date/time (ISO 8601)")
    return_date: datetime = Field(..., description="Return date/time (ISO 8601)")
    pickup_type: str = Field(default="store", description="store or delivery")
    pickup_location: str = Field(default="", description="Store pickup location")
    delivery_location_id: Optional[UUID] = Field(default=None, description="Delivery location")
    delivery_time_slot: Optional[str] = None
    is_student_booking: bool = False
    primary_driver: DriverSchema
    additional_drivers: List[DriverSchema] = Field(default_factory=list)

    def to_request(self) -> CheckoutRequest:
        return CheckoutRequest(
            vehicle_id=self.vehicle_id,
            pickup_date=self.pickup_date,
            return_date=self.return_date,
            primary_driver=self.primary_driver.to_input(),
            pickup_type=self.pickup_type,
            pickup_location=self.pickup_location,
            delivery_location_id=self.delivery_location_id,
            delivery_time_slot=self.delivery_time_slot,
            is_student_booking=self.is_student_booking,
            additional_drivers=[driver.to_input() for driver in self.additional_drivers],
        )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "vehicleId": "123e4567-e89b-12d3-a456-426614174000",
                    "pickupDate": "2026-06-01T10:00:00Z",
                    "returnDate": "2026-07-01T10:00:00Z",
                    "pickupType": "store",
                    "pickupLocation": "Main Street",
                    "primaryDriver": {
                        "firstName": "Jane",
                        "lastName": "Doe",
                        "email": "jane@example.com",
                        "phone": "555-123-4567",
                        "driversLicense": "D1234567",
                    },
                }
            ]
        },
    )


class CheckoutResponse(CamelModel):
    url: str = Field(..., description="Hosted checkout URL")
    booking_id: str = Field(..., description="Pending booking ID")
    booking_number: str = Field(..., description="Human-readable booking number")
    session_id: str = Field(..., description="Stripe Checkout session ID")


class ExtendRequest(CamelModel):
    """Request schema for extending a booking."""

    new_return_date: str = Field(
        ..., description="New return date (YYYY-MM-DD) or date/time (ISO 8601)"
    )
    user_email: Optional[str] = Field(default=None, description="Receipt email override")

    @field_validator("new_return_date")
    @classmethod
    def validate_new_return_date(cls, v: str) -> str:
        try:
            cls._parse(v)
        except ValueError:
            raise ValueError("newReturnDate must be an ISO 8601 date or date/time")
        return v

    @staticmethod
    def _parse(value: str) -> Union[date, datetime]:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value.replace("Z", "+00:00"))

    @property
    def parsed_return_date(self) -> Union[date, datetime]:
        return self._parse(self.new_return_date)


class ExtendResponse(CamelModel):
    url: str
    session_id: str
    amount: float = Field(..., description="Extension rental amount in dollars")
    days: int = Field(..., description="Additional rental days")


class WebhookResponse(CamelModel):
    """Response schema for webhook processing."""

    received: bool = True
    event_type: Optional[str] = Field(default=None, description="Processed event type")
    status: Optional[str] = Field(default=None, description="already_processed for replays")


class CacheInvalidateRequest(BaseModel):
    target: str = Field(..., min_length=1, description="Domain name or exact cache key")


class TerminalIntentRequest(CamelModel):
    """Request schema for a card-present payment intent."""

    amount_cents: int = Field(..., description="Amount in cents")
    pos_session_id: str = Field(..., description="Worker POS session")
    description: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class TerminalProcessRequest(CamelModel):
    payment_intent_id: str
    reader_id: UUID


class TerminalCancelRequest(CamelModel):
    payment_intent_id: str
    reason: Optional[str] = None


class CashPaymentRequest(CamelModel):
    """Request schema for recording a cash payment."""

    amount_cents: int = Field(..., description="Amount due in cents")
    cash_tendered_cents: int = Field(..., description="Cash handed over in cents")
    description: Optional[str] = None
    notes: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None


class DriverVerificationRequest(CamelModel):
    booking_id: UUID
    driver_type: str = Field(..., description="primary or additional")
    driver_id: UUID


class POSVerificationRequest(CamelModel):
    """Identity verification for a walk-in customer before a booking exists."""

    pos_session_id: str
    driver_role: str = Field(default="primary", description="primary or additional")
    first_name: str
    last_name: str
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    license_number: str


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
