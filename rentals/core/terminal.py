"""
Point-of-sale payments: card-present intents on Stripe Terminal readers,
and cash.

Terminal transaction lifecycle:
    pending -> processing -> succeeded | failed | canceled

succeeded and failed are set by the payment_intent webhooks; this service
drives the pending and processing steps and cancellation.
"""
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.config import get_settings
from rentals.core.dates import utc_now
from rentals.core.exceptions import (
    BookingDependencyError,
    BookingNotFoundError,
    BookingValidationError,
    InvalidTransitionError,
)
from rentals.core.saga import CompensationStack
from rentals.database.models import (
    POSPaymentType,
    POSTransaction,
    POSTransactionStatus,
    TerminalReader,
)
from rentals.integrations.stripe_client import StripeClient, StripeError

logger = structlog.get_logger(__name__)

PROCESSABLE_INTENT_STATUS = "requires_payment_method"
TERMINAL_INTENT_STATUSES = ("succeeded", "canceled")
DEFAULT_CANCEL_REASON = "Canceled by worker"


@dataclass
class CashPayment:
    transaction_id: uuid.UUID
    amount_cents: int
    cash_tendered_cents: int
    change_cents: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "transactionId": str(self.transaction_id),
            "amountCents": self.amount_cents,
            "cashTenderedCents": self.cash_tendered_cents,
            "changeCents": self.change_cents,
            "status": POSTransactionStatus.SUCCEEDED.value,
        }


class TerminalPaymentService:
    """Drives POS transactions against Stripe Terminal and the local ledger."""

    def __init__(self, db: AsyncSession, stripe_client: StripeClient):
        self.db = db
        self.stripe = stripe_client
        self.settings = get_settings()

    def _validate_amount(self, amount_cents: int) -> None:
        if amount_cents <= 0:
            raise BookingValidationError("Invalid amount - must be a positive number in cents")
        if amount_cents > self.settings.pos_max_amount_cents:
            raise BookingValidationError("Amount exceeds maximum allowed")

    async def create_intent(
        self,
        worker_id: uuid.UUID,
        amount_cents: int,
        pos_session_id: str,
        description: Optional[str] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a card-present PaymentIntent and its pending transaction.

        If the transaction row cannot be written the intent is canceled so
        no untracked intent can be charged.

        Raises:
            BookingValidationError: Amount out of range or missing POS session
            StripeError: Intent creation failed
            BookingDependencyError: Transaction insert failed
        """
        self._validate_amount(amount_cents)
        if not pos_session_id:
            raise BookingValidationError("POS session ID is required")

        intent = await self.stripe.create_terminal_payment_intent(
            amount_cents=amount_cents,
            currency=self.settings.currency,
            idempotency_key=f"pos:{pos_session_id}:{uuid.uuid4()}",
            metadata={
                **(metadata or {}),
                "pos_session_id": pos_session_id,
                "worker_id": str(worker_id),
                "payment_source": POSPaymentType.TERMINAL.value,
            },
            description=description or "POS Transaction",
            receipt_email=customer_email,
        )

        stack = CompensationStack("terminal_intent")
        stack.push("cancel_payment_intent", lambda: self._cancel_intent(intent.id))
        transaction = POSTransaction(
            id=uuid.uuid4(),
            worker_id=worker_id,
            payment_intent_id=intent.id,
            amount_cents=amount_cents,
            currency=self.settings.currency,
            payment_type=POSPaymentType.TERMINAL.value,
            status=POSTransactionStatus.PENDING.value,
            notes=description,
        )
        try:
            self.db.add(transaction)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("pos_transaction_insert_failed", payment_intent_id=intent.id, error=str(e))
            await stack.unwind()
            raise BookingDependencyError("Failed to create transaction record") from e

        logger.info(
            "terminal_intent_created",
            payment_intent_id=intent.id,
            transaction_id=str(transaction.id),
            amount_cents=amount_cents,
        )
        return {
            "paymentIntentId": intent.id,
            "clientSecret": intent.client_secret,
            "transactionId": str(transaction.id),
            "amount": amount_cents,
            "status": intent.status,
        }

    async def _cancel_intent(self, payment_intent_id: str) -> None:
        await self.stripe.cancel_payment_intent(payment_intent_id)

    async def process_on_reader(
        self, worker_id: uuid.UUID, payment_intent_id: str, reader_id: uuid.UUID
    ) -> Dict[str, Any]:
        """
        Send a pending intent to a reader and mark the transaction processing.

        Raises:
            BookingNotFoundError: Unknown reader
            InvalidTransitionError: Reader in maintenance, or intent not
                awaiting a payment method
            StripeError: Reader rejected the action (code reader_offline,
                reader_busy, ...)
        """
        reader = await self.db.get(TerminalReader, reader_id)
        if reader is None:
            raise BookingNotFoundError("Reader not found")
        if reader.status == "maintenance":
            raise InvalidTransitionError("Reader is under maintenance")
        reader_label = reader.label
        stripe_reader_id = reader.stripe_reader_id

        intent = await self.stripe.retrieve_payment_intent(payment_intent_id)
        if intent.status != PROCESSABLE_INTENT_STATUS:
            raise InvalidTransitionError(
                "Payment intent is not ready for processing",
                details={"currentStatus": intent.status},
            )

        reader_state = await self.stripe.process_payment_intent_on_reader(
            stripe_reader_id, payment_intent_id
        )
        action = getattr(reader_state, "action", None)

        # The reader already holds the payment, so local write failures are only logged
        try:
            await self.db.execute(
                update(POSTransaction)
                .where(POSTransaction.payment_intent_id == payment_intent_id)
                .values(
                    status=POSTransactionStatus.PROCESSING.value,
                    reader_id=reader_id,
                    stripe_reader_id=stripe_reader_id,
                )
            )
            await self.db.execute(
                update(TerminalReader)
                .where(TerminalReader.id == reader_id)
                .values(status="online", last_seen_at=utc_now())
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "pos_transaction_processing_update_failed",
                payment_intent_id=payment_intent_id,
                error=str(e),
            )

        logger.info(
            "terminal_payment_processing",
            worker_id=str(worker_id),
            payment_intent_id=payment_intent_id,
            reader_id=str(reader_id),
        )
        return {
            "success": True,
            "readerId": str(reader_id),
            "readerLabel": reader_label,
            "paymentIntentId": payment_intent_id,
            "actionType": getattr(action, "type", None),
            "actionStatus": getattr(action, "status", None),
        }

    async def cancel(
        self, payment_intent_id: str, reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Cancel a terminal payment.

        An intent already succeeded or canceled is reported as such and
        nothing is changed. Otherwise the reader's in-flight action is
        canceled (best effort), then the intent, then the transaction row.

        Raises:
            StripeError: Intent retrieval or cancellation failed
        """
        intent = await self.stripe.retrieve_payment_intent(payment_intent_id)
        if intent.status in TERMINAL_INTENT_STATUSES:
            logger.info(
                "terminal_payment_already_terminal",
                payment_intent_id=payment_intent_id,
                status=intent.status,
            )
            return {"success": True, "alreadyTerminal": True, "status": intent.status}

        result = await self.db.execute(
            select(POSTransaction.stripe_reader_id).where(
                POSTransaction.payment_intent_id == payment_intent_id
            )
        )
        stripe_reader_id = result.scalar_one_or_none()
        if stripe_reader_id:
            try:
                await self.stripe.cancel_reader_action(stripe_reader_id)
            except StripeError as e:
                # Usually no action in flight
                logger.info(
                    "reader_cancel_action_skipped", reader_id=stripe_reader_id, error=str(e)
                )

        canceled = await self.stripe.cancel_payment_intent(
            payment_intent_id, cancellation_reason="requested_by_customer"
        )

        try:
            await self.db.execute(
                update(POSTransaction)
                .where(POSTransaction.payment_intent_id == payment_intent_id)
                .values(
                    status=POSTransactionStatus.CANCELED.value,
                    failure_reason=reason or DEFAULT_CANCEL_REASON,
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "pos_transaction_cancel_update_failed",
                payment_intent_id=payment_intent_id,
                error=str(e),
            )

        logger.info("terminal_payment_canceled", payment_intent_id=payment_intent_id)
        return {
            "success": True,
            "alreadyTerminal": False,
            "paymentIntentId": canceled.id,
            "status": canceled.status,
        }

    async def record_cash(
        self,
        worker_id: uuid.UUID,
        amount_cents: int,
        cash_tendered_cents: int,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> CashPayment:
        """
        Record a completed cash payment.

        Raises:
            BookingValidationError: Amount out of range or not enough cash
        """
        self._validate_amount(amount_cents)
        if cash_tendered_cents < amount_cents:
            raise BookingValidationError(
                "Insufficient cash tendered",
                details={"required": amount_cents, "tendered": cash_tendered_cents},
            )

        change_cents = cash_tendered_cents - amount_cents
        transaction_notes = " | ".join(
            part
            for part in (
                description or "Cash payment",
                notes,
                f"Customer: {customer_name}" if customer_name else None,
                f"Email: {customer_email}" if customer_email else None,
            )
            if part
        )
        transaction = POSTransaction(
            id=uuid.uuid4(),
            worker_id=worker_id,
            amount_cents=amount_cents,
            currency=self.settings.currency,
            payment_type=POSPaymentType.CASH.value,
            status=POSTransactionStatus.SUCCEEDED.value,
            cash_tendered_cents=cash_tendered_cents,
            cash_change_cents=change_cents,
            notes=transaction_notes,
            completed_at=utc_now(),
        )
        self.db.add(transaction)
        await self.db.commit()

        logger.info(
            "cash_payment_recorded",
            worker_id=str(worker_id),
            transaction_id=str(transaction.id),
            amount_cents=amount_cents,
            change_cents=change_cents,
        )
        return CashPayment(
            transaction_id=transaction.id,
            amount_cents=amount_cents,
            cash_tendered_cents=cash_tendered_cents,
            change_cents=change_cents,
        )
