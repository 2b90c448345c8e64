"""Scheduled maintenance: generation, waitlist expiry and slot completion sweeps."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from .notifications import NotificationOutbox, notification_outbox
from .slot_generator import GenerationSummary, SlotGenerator
from .slot_service import SlotService
from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


@dataclass
class ExpirySweepResult:
    expired_count: int
    affected_slot_ids: list[UUID]
    promoted_count: int


class MaintenanceService:
    """
    Entry points of the periodic sweeps.

    Each sweep is safe to re-run: a second run right after the first finds
    nothing left to do.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        outbox: Optional[NotificationOutbox] = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.outbox = outbox or notification_outbox
        self.generator = SlotGenerator(db, self.clock)
        self.slot_service = SlotService(db, self.clock, self.outbox)
        self.waitlist_service = WaitlistService(db, self.clock, self.outbox)

    async def generate_slots(self, today: Optional[date] = None) -> GenerationSummary:
        """Extend every active rule's slots over its horizon."""
        return await self.generator.generate_for_active_rules(today)

    async def process_waitlist_expiry(self) -> ExpirySweepResult:
        """
        Expire lapsed waitlist offers, then pass the freed offers on.

        Each affected slot's queue is advanced in its own transaction; a
        failure on one slot is logged and does not stop the others.
        """
        expired = await self.waitlist_service.expire_stale()

        promoted_count = 0
        for slot_id in expired.slot_ids:
            try:
                promoted = await self.waitlist_service.advance_queue(slot_id)
            except Exception as e:
                logger.error(
                    "Waitlist re-promotion failed",
                    extra={"slot_id": str(slot_id), "error": str(e)},
                    exc_info=True
                )
                continue
            promoted_count += len(promoted)

        if expired.expired_count:
            logger.info(
                "Waitlist expiry sweep completed",
                extra={
                    "expired_count": expired.expired_count,
                    "slot_count": len(expired.slot_ids),
                    "promoted_count": promoted_count,
                }
            )
        return ExpirySweepResult(
            expired_count=expired.expired_count,
            affected_slot_ids=expired.slot_ids,
            promoted_count=promoted_count,
        )

    async def mark_past_slots_completed(self) -> int:
        """Complete active slots that have ended."""
        return await self.slot_service.complete_past_slots()
