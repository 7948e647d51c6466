"""
Compensation stack for multi-step writes that span the local database and
the payment gateway.

There is no shared transaction between the two systems. Each step that
succeeds pushes an undo record; if a later step fails, the recorded undo
actions run in reverse order. Undo failures are logged and swallowed so the
original error still reaches the caller.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, List

import structlog

from rentals.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class UndoRecord:
    """A named compensating action for one completed step."""

    name: str
    action: Callable[[], Awaitable[None]]


class CompensationStack:
    """
    Ordered list of undo records.

    Example:
        stack = CompensationStack("checkout")
        booking = await insert_booking()
        stack.push("delete_booking", lambda: delete_booking(booking.id))
        try:
            await open_session()
        except StripeError:
            await stack.unwind()
            raise
    """

    def __init__(self, name: str):
        self.name = name
        self._records: List[UndoRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def push(self, name: str, action: Callable[[], Awaitable[None]]) -> None:
        """Record the undo action for a step that just succeeded."""
        self._records.append(UndoRecord(name=name, action=action))
        logger.debug("compensation_recorded", saga=self.name, step=name)

    def clear(self) -> None:
        """Forget all records once the whole sequence has succeeded."""
        self._records.clear()

    async def unwind(self) -> List[str]:
        """
        Run undo actions in reverse order.

        Returns:
            List[str]: Names of undo actions that failed
        """
        failed: List[str] = []
        logger.warning("compensation_started", saga=self.name, steps=len(self._records))

        while self._records:
            record = self._records.pop()
            try:
                await record.action()
                metrics.record_compensation(self.name, record.name, "success")
                logger.info("compensation_step_completed", saga=self.name, step=record.name)
            except Exception as e:
                # May require manual cleanup
                failed.append(record.name)
                metrics.record_compensation(self.name, record.name, "failed")
                logger.error(
                    "compensation_step_failed", saga=self.name, step=record.name, error=str(e)
                )

        logger.info("compensation_finished", saga=self.name, failed=failed)
        return failed
