"""
Durable idempotency ledger for gateway webhook events.

The gateway delivers events at least once. Each processed event id is
recorded in a uniquely-keyed table, so a replay is detected by a lookup
and a concurrent duplicate is detected by the unique constraint on insert.
"""
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.database.models import ProcessedWebhookEvent

logger = structlog.get_logger(__name__)


class ProcessedEventLedger:
    """Read and append access to the processed-events table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_processed(self, event_id: str) -> bool:
        """
        Check whether an event id has already been handled.

        Args:
            event_id: Gateway event id (evt_...)

        Returns:
            bool: True if a ledger row exists
        """
        result = await self.db.execute(
            select(ProcessedWebhookEvent.id).where(
                ProcessedWebhookEvent.stripe_event_id == event_id
            )
        )
        return result.scalar_one_or_none() is not None

    async def record(self, event_id: str, event_type: str) -> bool:
        """
        Append an event id to the ledger and commit.

        Must be called after the handler's own writes have been committed:
        a unique violation rolls back the session.

        Args:
            event_id: Gateway event id
            event_type: Gateway event type string

        Returns:
            bool: True if inserted, False if another delivery recorded it first
        """
        self.db.add(ProcessedWebhookEvent(stripe_event_id=event_id, event_type=event_type))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("webhook_event_already_recorded", event_id=event_id)
            return False
        return True
