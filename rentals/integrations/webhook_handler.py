"""
Stripe webhook processing with signature verification and durable
deduplication.

Every delivery is verified, checked against the processed-events ledger,
dispatched by event type and recorded in the ledger only after its handler
has committed. Handlers are written so that running one twice leaves the
same state as running it once; the ledger is what keeps side effects such
as emails to a single run.
"""
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Type, Union, assert_never

import stripe
import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.config import get_settings
from rentals.core.dates import as_utc, utc_now
from rentals.core.extension import EXTENSION_SESSION_TYPE
from rentals.core.idempotency import ProcessedEventLedger
from rentals.core.identity_match import IdentityData, compare_identity
from rentals.core.verification import POS_VERIFICATION_FLAG
from rentals.database.models import (
    AdditionalDriver,
    Booking,
    BookingStatus,
    DriverVerification,
    PaymentStatus,
    PendingPOSVerification,
    POSTransaction,
    POSTransactionStatus,
    PrimaryDriver,
    Vehicle,
    VehicleStatus,
    VerificationStatus,
)
from rentals.infrastructure.cache import CacheAside
from rentals.integrations.notifications import NotificationClient
from rentals.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Failures caused by the document or the person rather than the capture flow
DOCUMENT_ERROR_CODES = frozenset(
    {
        "document_expired",
        "document_unverified_other",
        "document_type_not_supported",
        "selfie_face_mismatch",
        "selfie_manipulated",
        "selfie_document_missing_photo",
        "selfie_unverified_other",
        "consent_declined",
        "under_supported_age",
        "country_not_supported",
        "id_number_mismatch",
        "id_number_unverified_other",
        "id_number_insufficient_document_data",
    }
)
CANCELED_ERROR_CODE = "user_canceled"
TERMINAL_PAYMENT_METHOD = "card_present"


class WebhookSignatureError(Exception):
    """Raised when a delivery is unsigned or its signature does not verify."""

    pass


class WebhookProcessingError(Exception):
    """Raised when a handler fails; the gateway will redeliver."""

    pass


class WebhookEventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    CHECKOUT_EXPIRED = "checkout.session.expired"
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    IDENTITY_VERIFIED = "identity.verification_session.verified"
    IDENTITY_REQUIRES_INPUT = "identity.verification_session.requires_input"
    IDENTITY_CANCELED = "identity.verification_session.canceled"
    UNHANDLED = "unhandled"

    @classmethod
    def parse(cls, value: str) -> "WebhookEventType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNHANDLED


def _stripe_date(value: Optional[Dict[str, Any]]) -> Optional[str]:
    """{year, month, day} -> YYYY-MM-DD"""
    if not value or not value.get("year"):
        return None
    return f"{value['year']:04d}-{value.get('month') or 1:02d}-{value.get('day') or 1:02d}"


@dataclass
class VerifiedOutputs:
    """Attributes extracted from a verified identity document."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    dob: Optional[str] = None
    license_number: Optional[str] = None
    expiration_date: Optional[str] = None
    issuing_country: Optional[str] = None
    document_type: Optional[str] = None
    address_line1: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None
    address_postal_code: Optional[str] = None

    @classmethod
    def from_session(cls, session: Dict[str, Any]) -> "VerifiedOutputs":
        outputs = session.get("verified_outputs") or {}
        document = outputs.get("document") or {}
        id_number = outputs.get("id_number") or {}
        address = outputs.get("address") or document.get("address") or {}
        return cls(
            first_name=document.get("first_name") or outputs.get("first_name"),
            last_name=document.get("last_name") or outputs.get("last_name"),
            dob=_stripe_date(document.get("dob") or outputs.get("dob")),
            license_number=id_number.get("id_number") or document.get("document_number"),
            expiration_date=_stripe_date(document.get("expiration_date")),
            issuing_country=document.get("issuing_country"),
            document_type=document.get("type"),
            address_line1=address.get("line1"),
            address_city=address.get("city"),
            address_state=address.get("state"),
            address_postal_code=address.get("postal_code"),
        )

    @property
    def identity(self) -> IdentityData:
        return IdentityData(
            first_name=self.first_name,
            last_name=self.last_name,
            dob=self.dob,
            license_number=self.license_number,
        )


Verification = Union[DriverVerification, PendingPOSVerification]


def _apply_verified(record: Verification, outputs: VerifiedOutputs) -> None:
    provided = IdentityData(
        first_name=record.provided_first_name,
        last_name=record.provided_last_name,
        dob=record.provided_dob,
        license_number=record.provided_license_number,
    )
    match = compare_identity(provided, outputs.identity)

    record.verified_first_name = outputs.first_name
    record.verified_last_name = outputs.last_name
    record.verified_dob = outputs.dob
    record.verified_license_number = outputs.license_number
    record.verified_address_line1 = outputs.address_line1
    record.verified_address_city = outputs.address_city
    record.verified_address_state = outputs.address_state
    record.verified_address_postal_code = outputs.address_postal_code
    record.license_expiration_date = outputs.expiration_date
    record.license_issuing_country = outputs.issuing_country
    record.document_type = outputs.document_type
    record.name_match = match.name_match
    record.dob_match = match.dob_match
    record.license_number_match = match.license_number_match
    record.match_warnings = match.warnings
    record.verified_at = utc_now()
    record.error_code = None
    record.error_reason = None


def _last_error(session: Dict[str, Any]) -> tuple[str, str]:
    last_error = session.get("last_error") or {}
    return (
        last_error.get("code") or "unknown_error",
        last_error.get("reason") or "Verification could not be completed",
    )


def _card_details(payment_intent: Dict[str, Any]) -> Dict[str, Optional[str]]:
    charge = payment_intent.get("latest_charge")
    if not isinstance(charge, dict):
        charges = (payment_intent.get("charges") or {}).get("data") or []
        charge = charges[0] if charges else {}
    card = (charge.get("payment_method_details") or {}).get(TERMINAL_PAYMENT_METHOD) or {}
    return {
        "card_brand": card.get("brand"),
        "card_last4": card.get("last4"),
        "receipt_url": charge.get("receipt_url"),
    }


class WebhookProcessor:
    """
    Applies verified gateway events to local state exactly once.

    Example:
        processor = WebhookProcessor(db, cache=cache, notifier=NotificationClient())
        event = processor.verify_signature(payload, signature)
        result = await processor.process_event(event)
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheAside] = None,
        notifier: Optional[NotificationClient] = None,
    ):
        self.db = db
        self.cache = cache
        self.notifier = notifier
        self.ledger = ProcessedEventLedger(db)
        self.settings = get_settings()

    def verify_signature(
        self, payload: bytes, signature: Optional[str], secret: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Verify the Stripe-Signature header and decode the event.

        Returns:
            Dict[str, Any]: Event as plain JSON data

        Raises:
            WebhookSignatureError: Missing header or bad signature
        """
        if not signature:
            logger.warning("webhook_signature_missing")
            raise WebhookSignatureError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=secret or self.settings.stripe_webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_verification_failed", error=str(e))
            raise WebhookSignatureError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning("webhook_payload_invalid", error=str(e))
            raise WebhookSignatureError("Invalid webhook payload") from e

        event = json.loads(payload)
        logger.info("webhook_signature_verified", event_id=event["id"], event_type=event["type"])
        return event

    async def process_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deduplicate, dispatch and record one event.

        Returns:
            {received, eventType} once processed, or
            {received, status: "already_processed"} for a replay

        Raises:
            WebhookProcessingError: Handler failed; nothing was recorded
        """
        start = time.perf_counter()
        event_id = event["id"]
        event_type = event["type"]
        log = logger.bind(event_id=event_id, event_type=event_type)

        if await self.ledger.is_processed(event_id):
            metrics.record_webhook_event(event_type, "duplicate", time.perf_counter() - start)
            log.info("webhook_event_already_processed")
            return {"received": True, "status": "already_processed"}

        try:
            await self._dispatch(
                WebhookEventType.parse(event_type), event["data"]["object"], event_id
            )
        except Exception as e:
            await self.db.rollback()
            metrics.record_webhook_event(event_type, "failed", time.perf_counter() - start)
            log.error("webhook_event_processing_failed", error=str(e), exc_info=True)
            raise WebhookProcessingError(f"Failed to process event {event_id}") from e

        if not await self.ledger.record(event_id, event_type):
            metrics.record_webhook_event(event_type, "duplicate", time.perf_counter() - start)
            return {"received": True, "status": "already_processed"}

        metrics.record_webhook_event(event_type, "processed", time.perf_counter() - start)
        log.info("webhook_event_processed")
        return {"received": True, "eventType": event_type}

    async def _dispatch(
        self, event_type: WebhookEventType, obj: Dict[str, Any], event_id: str
    ) -> None:
        metadata = obj.get("metadata") or {}
        is_pos = metadata.get(POS_VERIFICATION_FLAG) == "true"

        match event_type:
            case WebhookEventType.CHECKOUT_COMPLETED:
                if metadata.get("type") == EXTENSION_SESSION_TYPE:
                    await self.handle_extension_paid(obj)
                else:
                    await self.handle_booking_paid(obj)
            case WebhookEventType.CHECKOUT_EXPIRED:
                await self.handle_checkout_expired(obj)
            case WebhookEventType.PAYMENT_SUCCEEDED:
                if self._is_terminal_payment(obj):
                    await self.handle_terminal_succeeded(obj)
                else:
                    logger.info("payment_intent_succeeded_ignored", payment_intent_id=obj.get("id"))
            case WebhookEventType.PAYMENT_FAILED:
                if self._is_terminal_payment(obj):
                    await self.handle_terminal_failed(obj)
                else:
                    logger.info("payment_intent_failed", payment_intent_id=obj.get("id"))
            case WebhookEventType.IDENTITY_VERIFIED:
                if is_pos:
                    await self.handle_pos_verified(obj)
                else:
                    await self.handle_driver_verified(obj)
            case WebhookEventType.IDENTITY_REQUIRES_INPUT:
                if is_pos:
                    await self.handle_pos_requires_input(obj)
                else:
                    await self.handle_driver_requires_input(obj, event_id)
            case WebhookEventType.IDENTITY_CANCELED:
                await self.handle_verification_canceled(obj, pos=is_pos)
            case WebhookEventType.UNHANDLED:
                logger.info("webhook_event_unhandled", object_id=obj.get("id"))
            case _:
                assert_never(event_type)

    @staticmethod
    def _is_terminal_payment(payment_intent: Dict[str, Any]) -> bool:
        return TERMINAL_PAYMENT_METHOD in (payment_intent.get("payment_method_types") or [])

    # Checkout

    async def handle_booking_paid(self, session: Dict[str, Any]) -> None:
        """
        Mark a new booking paid and reserve its vehicle.

        The update is guarded on payment_status so a booking is only moved to
        paid once; the vehicle only moves from available to reserved.
        """
        metadata = session.get("metadata") or {}
        booking_id = metadata.get("bookingId")
        vehicle_id = metadata.get("vehicleId")
        log = logger.bind(session_id=session.get("id"), booking_id=booking_id)
        if not booking_id or not vehicle_id:
            log.error("checkout_metadata_missing")
            return

        booking_uuid = uuid.UUID(booking_id)
        result = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_uuid,
                Booking.payment_status != PaymentStatus.PAID.value,
            )
            .values(
                payment_status=PaymentStatus.PAID.value,
                stripe_payment_intent_id=session.get("payment_intent"),
                paid_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            log.info("booking_already_paid_or_missing")
            return

        await self.db.execute(
            update(Vehicle)
            .where(
                Vehicle.id == uuid.UUID(vehicle_id),
                Vehicle.status == VehicleStatus.AVAILABLE.value,
            )
            .values(status=VehicleStatus.RESERVED.value)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        log.info("booking_marked_paid")

        if self.cache is not None:
            await self.cache.invalidate_booking_caches(booking_id)
            await self.cache.invalidate_vehicle_caches(vehicle_id)

        booking = await self._fresh(Booking, booking_uuid)
        customer = (booking.customer_info if booking else None) or {}
        await self._notify(
            "booking_received",
            customer.get("email") or session.get("customer_email"),
            customer_name=self._customer_name(customer),
            booking_number=metadata.get("bookingNumber") or "",
            vehicle_name=metadata.get("vehicleName") or "Vehicle",
            pickup_date=as_utc(booking.pickup_date) if booking else "",
            return_date=as_utc(booking.return_date) if booking else "",
        )

    async def handle_extension_paid(self, session: Dict[str, Any]) -> None:
        """
        Apply a paid extension to its booking.

        The update only matches while the booking still has the return date
        the extension was priced against, so a redelivery cannot add the
        days twice.
        """
        metadata = session.get("metadata") or {}
        booking_id = metadata.get("booking_id")
        new_return = metadata.get("new_return_date")
        original_return = metadata.get("original_return_date")
        log = logger.bind(session_id=session.get("id"), booking_id=booking_id)
        try:
            additional_days = int(metadata.get("additional_days") or 0)
            amount = Decimal(metadata.get("extension_amount") or "0")
        except (ValueError, InvalidOperation):
            log.error("extension_metadata_invalid")
            return
        if not booking_id or not new_return or additional_days <= 0:
            log.error("extension_metadata_missing")
            return

        booking_uuid = uuid.UUID(booking_id)
        new_return_date = as_utc(datetime.fromisoformat(new_return))
        stmt = (
            update(Booking)
            .where(Booking.id == booking_uuid)
            .values(
                return_date=new_return_date,
                rental_days=Booking.rental_days + additional_days,
                rental_amount=Booking.rental_amount + amount,
                total_price=Booking.total_price + amount,
                extension_count=Booking.extension_count + 1,
                last_extension_session_id=session.get("id"),
            )
            .execution_options(synchronize_session=False)
        )
        if original_return:
            stmt = stmt.where(
                Booking.return_date == as_utc(datetime.fromisoformat(original_return))
            )

        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            await self.db.rollback()
            await self._report_unapplied_extension(session, booking_uuid, amount)
            return
        await self.db.commit()
        log.info("booking_extended", new_return_date=new_return, additional_days=additional_days)

        if self.cache is not None:
            await self.cache.invalidate_booking_caches(booking_id)

        booking = await self._fresh(Booking, booking_uuid)
        customer = (booking.customer_info if booking else None) or {}
        vehicle = await self.db.get(Vehicle, booking.vehicle_id) if booking else None
        await self._notify(
            "extension_confirmed",
            customer.get("email") or session.get("customer_email"),
            customer_name=self._customer_name(customer),
            vehicle_name=vehicle.name if vehicle else "Vehicle",
            additional_days=additional_days,
            return_date=new_return_date,
            amount=amount,
        )

    async def _report_unapplied_extension(
        self, session: Dict[str, Any], booking_id: uuid.UUID, amount: Decimal
    ) -> None:
        """
        Flag a paid extension the booking no longer accepts.

        A redelivery of the session already applied is ignored. Anything else
        means the customer paid for days that were not added and needs a refund.
        """
        booking = await self._fresh(Booking, booking_id)
        log = logger.bind(session_id=session.get("id"), booking_id=str(booking_id))
        if booking is not None and booking.last_extension_session_id == session.get("id"):
            log.info("extension_already_applied")
            return

        reason = "booking_missing" if booking is None else "return_date_changed"
        metrics.record_unapplied_extension(reason)
        log.error(
            "extension_payment_unapplied",
            reason=reason,
            payment_intent=session.get("payment_intent"),
            amount=str(amount),
        )

    async def handle_checkout_expired(self, session: Dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        if metadata.get("type") == EXTENSION_SESSION_TYPE:
            logger.info("extension_checkout_expired", session_id=session.get("id"))
            return

        booking_id = metadata.get("bookingId")
        if not booking_id:
            return
        result = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == uuid.UUID(booking_id),
                Booking.payment_status == PaymentStatus.PENDING.value,
            )
            .values(
                # Releases the dates held by the unpaid booking
                status=case(
                    (Booking.status == BookingStatus.PENDING.value, BookingStatus.EXPIRED.value),
                    else_=Booking.status,
                ),
                payment_status=PaymentStatus.EXPIRED.value,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("booking_payment_expired", booking_id=booking_id, updated=result.rowcount)

        if self.cache is not None and result.rowcount:
            await self.cache.invalidate_booking_caches(booking_id)

    # Terminal

    async def handle_terminal_succeeded(self, payment_intent: Dict[str, Any]) -> None:
        details = _card_details(payment_intent)
        result = await self.db.execute(
            update(POSTransaction)
            .where(POSTransaction.payment_intent_id == payment_intent["id"])
            .values(
                status=POSTransactionStatus.SUCCEEDED.value,
                completed_at=utc_now(),
                **details,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 0:
            logger.warning("pos_transaction_not_found", payment_intent_id=payment_intent["id"])
            return
        logger.info(
            "terminal_payment_succeeded",
            payment_intent_id=payment_intent["id"],
            card_brand=details["card_brand"],
        )

    async def handle_terminal_failed(self, payment_intent: Dict[str, Any]) -> None:
        last_error = payment_intent.get("last_payment_error") or {}
        reason = last_error.get("message") or "Payment failed"
        result = await self.db.execute(
            update(POSTransaction)
            .where(POSTransaction.payment_intent_id == payment_intent["id"])
            .values(status=POSTransactionStatus.FAILED.value, failure_reason=reason)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 0:
            logger.warning("pos_transaction_not_found", payment_intent_id=payment_intent["id"])
            return
        logger.info("terminal_payment_failed", payment_intent_id=payment_intent["id"], reason=reason)

    # Identity

    async def handle_driver_verified(self, session: Dict[str, Any]) -> None:
        """
        Store verified document data and mark the driver verified.

        Mismatches between provided and document data are kept as warnings;
        they never block the driver.
        """
        metadata = session.get("metadata") or {}
        driver_type = metadata.get("driver_type")
        driver_id = metadata.get("driver_id")
        log = logger.bind(session_id=session["id"], driver_id=driver_id)
        if driver_type not in ("primary", "additional") or not driver_id:
            log.error("verification_metadata_missing")
            return

        record = await self._driver_verification(session["id"])
        if record is None:
            log.warning("verification_record_not_found")
            return

        _apply_verified(record, VerifiedOutputs.from_session(session))
        record.status = VerificationStatus.VERIFIED.value

        driver_model: Type[Union[PrimaryDriver, AdditionalDriver]] = (
            PrimaryDriver if driver_type == "primary" else AdditionalDriver
        )
        await self.db.execute(
            update(driver_model)
            .where(driver_model.id == uuid.UUID(driver_id))
            .values(
                is_verified=True,
                verification_status=VerificationStatus.VERIFIED.value,
                verified_at=record.verified_at,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        log.info(
            "driver_verified",
            name_match=record.name_match,
            dob_match=record.dob_match,
            license_number_match=record.license_number_match,
        )

    async def handle_driver_requires_input(
        self, session: Dict[str, Any], event_id: Optional[str] = None
    ) -> None:
        """
        Record a failed verification attempt and count it as a document or
        technical retry. Each event id is counted at most once.
        """
        record = await self._driver_verification(session["id"])
        if record is None:
            logger.warning("verification_record_not_found", session_id=session["id"])
            return
        if record.status in (VerificationStatus.VERIFIED.value, VerificationStatus.CANCELED.value):
            logger.info("verification_already_final", session_id=session["id"], status=record.status)
            return

        if event_id is not None and record.last_event_id == event_id:
            logger.info("verification_event_already_counted", session_id=session["id"])
            return

        error_code, error_reason = _last_error(session)
        is_document_error = error_code in DOCUMENT_ERROR_CODES
        record.status = VerificationStatus.FAILED.value
        record.error_code = error_code
        record.error_reason = error_reason
        record.is_document_error = is_document_error
        record.is_technical_error = not is_document_error
        if is_document_error:
            record.document_error_retry_count += 1
        else:
            record.technical_error_retry_count += 1
        record.last_event_id = event_id
        await self.db.commit()
        logger.info(
            "verification_requires_input",
            session_id=session["id"],
            error_code=error_code,
            document_retries=record.document_error_retry_count,
            technical_retries=record.technical_error_retry_count,
        )

    async def handle_pos_verified(self, session: Dict[str, Any]) -> None:
        record = await self._pos_verification(session["id"])
        if record is None:
            logger.warning("pos_verification_not_found", session_id=session["id"])
            return

        _apply_verified(record, VerifiedOutputs.from_session(session))
        record.verification_status = VerificationStatus.VERIFIED.value
        await self.db.commit()
        logger.info(
            "pos_verification_verified",
            session_id=session["id"],
            driver_role=record.driver_role,
            warnings=len(record.match_warnings or []),
        )

    async def handle_pos_requires_input(self, session: Dict[str, Any]) -> None:
        record = await self._pos_verification(session["id"])
        if record is None:
            logger.warning("pos_verification_not_found", session_id=session["id"])
            return
        if record.verification_status in (
            VerificationStatus.VERIFIED.value,
            VerificationStatus.CANCELED.value,
        ):
            return

        record.verification_status = VerificationStatus.FAILED.value
        record.error_code, record.error_reason = _last_error(session)
        await self.db.commit()
        logger.info("pos_verification_failed", session_id=session["id"], error_code=record.error_code)

    async def handle_verification_canceled(self, session: Dict[str, Any], pos: bool = False) -> None:
        values = {
            "error_code": CANCELED_ERROR_CODE,
            "error_reason": "Verification was canceled",
        }
        if pos:
            stmt = (
                update(PendingPOSVerification)
                .where(PendingPOSVerification.stripe_verification_session_id == session["id"])
                .values(verification_status=VerificationStatus.CANCELED.value, **values)
            )
        else:
            stmt = (
                update(DriverVerification)
                .where(DriverVerification.stripe_session_id == session["id"])
                .values(status=VerificationStatus.CANCELED.value, **values)
            )
        await self.db.execute(stmt.execution_options(synchronize_session=False))
        await self.db.commit()
        logger.info("verification_canceled", session_id=session["id"], pos=pos)

    # Helpers

    async def _driver_verification(self, session_id: str) -> Optional[DriverVerification]:
        result = await self.db.execute(
            select(DriverVerification).where(DriverVerification.stripe_session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def _pos_verification(self, session_id: str) -> Optional[PendingPOSVerification]:
        result = await self.db.execute(
            select(PendingPOSVerification).where(
                PendingPOSVerification.stripe_verification_session_id == session_id
            )
        )
        return result.scalar_one_or_none()

    async def _fresh(self, model: Type[Booking], key: uuid.UUID) -> Optional[Booking]:
        return await self.db.get(model, key, populate_existing=True)

    @staticmethod
    def _customer_name(customer: Dict[str, Any]) -> str:
        name = f"{customer.get('firstName') or ''} {customer.get('lastName') or ''}".strip()
        return name or "Valued Customer"

    async def _notify(self, template: str, to: Optional[str], **variables: Any) -> None:
        if self.notifier is None:
            return
        await self.notifier.send(template, to, **variables)
