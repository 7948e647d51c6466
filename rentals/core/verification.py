"""
Identity verification sessions for booking drivers and walk-in POS customers.

Outcomes arrive later through identity.verification_session.* webhooks; this
module only opens (or reuses) sessions and records the pending attempt.
"""
import uuid
from datetime import date
from typing import Any, Dict, Optional, Union

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.dates import utc_now
from rentals.core.exceptions import (
    BookingDependencyError,
    BookingNotFoundError,
    BookingValidationError,
)
from rentals.core.identity_match import normalize_license
from rentals.core.saga import CompensationStack
from rentals.database.models import (
    AdditionalDriver,
    DriverVerification,
    PendingPOSVerification,
    PrimaryDriver,
    VerificationStatus,
)
from rentals.integrations.stripe_client import StripeClient, StripeError

logger = structlog.get_logger(__name__)

DRIVER_TYPES = ("primary", "additional")
REUSABLE_SESSION_STATUS = "requires_input"
MIN_LICENSE_LENGTH = 4
POS_VERIFICATION_FLAG = "is_pos_verification"

Verification = Union[DriverVerification, PendingPOSVerification]


def _normalized_license_column(column):
    return func.upper(func.replace(func.replace(column, " ", ""), "-", ""))


def _already_verified(record: Verification) -> Dict[str, Any]:
    return {
        "alreadyVerified": True,
        "verificationId": str(record.id),
        "verifiedAt": record.verified_at.isoformat() if record.verified_at else None,
        "nameMatch": record.name_match,
        "dobMatch": record.dob_match,
        "licenseNumberMatch": record.license_number_match,
    }


def _session_response(session: Any, verification_id: uuid.UUID) -> Dict[str, Any]:
    return {
        "clientSecret": session.client_secret,
        "sessionId": session.id,
        "verificationId": str(verification_id),
    }


class VerificationService:
    """Opens identity verification sessions and tracks pending attempts."""

    def __init__(self, db: AsyncSession, stripe_client: StripeClient):
        self.db = db
        self.stripe = stripe_client

    async def create_driver_session(
        self,
        worker_id: uuid.UUID,
        booking_id: uuid.UUID,
        driver_type: str,
        driver_id: uuid.UUID,
    ) -> Dict[str, Any]:
        """
        Start identity verification for a driver on a booking.

        Returns:
            Session client secret and ids, or the earlier verification when
            the same license has already been verified

        Raises:
            BookingValidationError: Unknown driver type
            BookingNotFoundError: Driver not on this booking
            StripeError: Session creation failed
            BookingDependencyError: Verification insert failed
        """
        if driver_type not in DRIVER_TYPES:
            raise BookingValidationError("Invalid driver type")

        model = PrimaryDriver if driver_type == "primary" else AdditionalDriver
        result = await self.db.execute(
            select(model).where(model.id == driver_id, model.booking_id == booking_id)
        )
        driver = result.scalar_one_or_none()
        if driver is None:
            raise BookingNotFoundError("Driver not found")

        log = logger.bind(booking_id=str(booking_id), driver_id=str(driver_id))
        first_name = driver.first_name
        last_name = driver.last_name
        license_number = driver.drivers_license
        email = driver.email

        prior = await self.find_verified(license_number)
        if prior is not None:
            await self.db.execute(
                update(model)
                .where(model.id == driver_id)
                .values(
                    is_verified=True,
                    verification_status=VerificationStatus.VERIFIED.value,
                    verified_at=prior.verified_at or utc_now(),
                )
            )
            await self.db.commit()
            log.info("driver_verification_reused", verification_id=str(prior.id))
            return _already_verified(prior)

        driver_column = (
            DriverVerification.primary_driver_id
            if driver_type == "primary"
            else DriverVerification.additional_driver_id
        )
        result = await self.db.execute(
            select(DriverVerification)
            .where(
                driver_column == driver_id,
                DriverVerification.status == VerificationStatus.PENDING.value,
            )
            .order_by(DriverVerification.created_at.desc())
            .limit(1)
        )
        open_attempt = result.scalar_one_or_none()
        if open_attempt is not None:
            reused = await self._reusable_session(open_attempt.stripe_session_id)
            if reused is not None:
                log.info("verification_session_reused", session_id=reused.id)
                return _session_response(reused, open_attempt.id)

        session = await self.stripe.create_verification_session(
            metadata={
                "driver_type": driver_type,
                "driver_id": str(driver_id),
                "booking_id": str(booking_id),
                "worker_id": str(worker_id),
                "provided_first_name": first_name,
                "provided_last_name": last_name,
                "provided_license_number": license_number,
            },
            email=email,
        )
        verification = DriverVerification(
            id=uuid.uuid4(),
            booking_id=booking_id,
            driver_type=driver_type,
            primary_driver_id=driver_id if driver_type == "primary" else None,
            additional_driver_id=driver_id if driver_type == "additional" else None,
            stripe_session_id=session.id,
            status=VerificationStatus.PENDING.value,
            provided_first_name=first_name,
            provided_last_name=last_name,
            provided_dob=driver.date_of_birth.isoformat() if driver.date_of_birth else None,
            provided_license_number=license_number,
            created_by=worker_id,
        )
        await self._insert_or_cancel(verification, session.id)
        log.info("driver_verification_started", session_id=session.id)
        return _session_response(session, verification.id)

    async def create_pos_session(
        self,
        worker_id: uuid.UUID,
        pos_session_id: str,
        driver_role: str,
        first_name: str,
        last_name: str,
        email: Optional[str],
        date_of_birth: Optional[date],
        license_number: str,
    ) -> Dict[str, Any]:
        """
        Start identity verification for a walk-in customer before a booking exists.

        Raises:
            BookingValidationError: Missing POS session, bad role or license
            StripeError: Session creation failed
            BookingDependencyError: Verification insert failed
        """
        if not pos_session_id:
            raise BookingValidationError("POS session ID is required")
        if driver_role not in DRIVER_TYPES:
            raise BookingValidationError("Invalid driver role")
        if not first_name or not last_name:
            raise BookingValidationError("First and last name are required")
        license_number = (license_number or "").strip()
        if len(license_number) < MIN_LICENSE_LENGTH:
            raise BookingValidationError("A valid driver's license number is required")

        log = logger.bind(pos_session_id=pos_session_id, driver_role=driver_role)
        provided_dob = date_of_birth.isoformat() if date_of_birth else None

        prior = await self.find_verified(license_number)
        if prior is not None:
            record = PendingPOSVerification(
                id=uuid.uuid4(),
                pos_session_id=pos_session_id,
                worker_id=worker_id,
                driver_role=driver_role,
                provided_email=email,
                verification_status=VerificationStatus.VERIFIED.value,
                provided_first_name=first_name,
                provided_last_name=last_name,
                provided_dob=provided_dob,
                provided_license_number=license_number,
                verified_first_name=prior.verified_first_name,
                verified_last_name=prior.verified_last_name,
                verified_dob=prior.verified_dob,
                verified_license_number=prior.verified_license_number,
                name_match=prior.name_match,
                dob_match=prior.dob_match,
                license_number_match=prior.license_number_match,
                match_warnings=prior.match_warnings,
                verified_at=prior.verified_at or utc_now(),
            )
            self.db.add(record)
            await self.db.commit()
            log.info("pos_verification_reused", verification_id=str(prior.id))
            return _already_verified(record)

        result = await self.db.execute(
            select(PendingPOSVerification)
            .where(
                PendingPOSVerification.pos_session_id == pos_session_id,
                PendingPOSVerification.driver_role == driver_role,
                PendingPOSVerification.provided_license_number == license_number,
                PendingPOSVerification.verification_status == VerificationStatus.PENDING.value,
                PendingPOSVerification.stripe_verification_session_id.is_not(None),
            )
            .order_by(PendingPOSVerification.created_at.desc())
            .limit(1)
        )
        open_attempt = result.scalar_one_or_none()
        if open_attempt is not None:
            reused = await self._reusable_session(open_attempt.stripe_verification_session_id)
            if reused is not None:
                log.info("verification_session_reused", session_id=reused.id)
                return _session_response(reused, open_attempt.id)

        session = await self.stripe.create_verification_session(
            metadata={
                POS_VERIFICATION_FLAG: "true",
                "pos_session_id": pos_session_id,
                "driver_role": driver_role,
                "worker_id": str(worker_id),
                "provided_first_name": first_name,
                "provided_last_name": last_name,
                "provided_license_number": license_number,
            },
            email=email,
        )
        record = PendingPOSVerification(
            id=uuid.uuid4(),
            pos_session_id=pos_session_id,
            worker_id=worker_id,
            driver_role=driver_role,
            provided_email=email,
            stripe_verification_session_id=session.id,
            verification_status=VerificationStatus.PENDING.value,
            provided_first_name=first_name,
            provided_last_name=last_name,
            provided_dob=provided_dob,
            provided_license_number=license_number,
        )
        await self._insert_or_cancel(record, session.id)
        log.info("pos_verification_started", session_id=session.id)
        return _session_response(session, record.id)

    async def find_verified(self, license_number: str) -> Optional[Verification]:
        """Most recent verified attempt whose document carried this license number."""
        normalized = normalize_license(license_number)
        if not normalized:
            return None
        for model, status_column in (
            (DriverVerification, DriverVerification.status),
            (PendingPOSVerification, PendingPOSVerification.verification_status),
        ):
            result = await self.db.execute(
                select(model)
                .where(
                    status_column == VerificationStatus.VERIFIED.value,
                    _normalized_license_column(model.verified_license_number) == normalized,
                )
                .order_by(model.verified_at.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
            if record is not None:
                return record
        return None

    async def _reusable_session(self, session_id: str) -> Optional[Any]:
        try:
            session = await self.stripe.retrieve_verification_session(session_id)
        except StripeError as e:
            logger.warning("verification_session_lookup_failed", session_id=session_id, error=str(e))
            return None
        if session.status == REUSABLE_SESSION_STATUS and session.client_secret:
            return session
        return None

    async def _insert_or_cancel(self, record: Verification, session_id: str) -> None:
        stack = CompensationStack("verification_session")
        stack.push(
            "cancel_verification_session",
            lambda: self.stripe.cancel_verification_session(session_id),
        )
        try:
            self.db.add(record)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("verification_insert_failed", session_id=session_id, error=str(e))
            await stack.unwind()
            raise BookingDependencyError("Failed to record verification session") from e
