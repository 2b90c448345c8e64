"""Capacity ledger: reserve and release guests on a slot."""

import logging
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.exceptions import (
    CapacityExceededError,
    DeadlinePassedError,
    SlotNotBookableError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.slot import Slot, SlotStatus
from ..models.waitlist import WaitlistEntry
from ..scheduling.capacity import CapacityState, InsufficientCapacity, validate_guests
from .notifications import NotificationOutbox, notification_outbox
from .slot_service import SlotService, bump_version
from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


@dataclass
class ReleaseResult:
    """Slot after a release and the waitlist entries that were offered the freed spots."""

    slot: Slot
    promoted: list[WaitlistEntry] = field(default_factory=list)


def _checked_guests(guests: int) -> int:
    try:
        return validate_guests(guests)
    except ValueError as e:
        raise ValidationError(detail=str(e), errors={"guests": str(e)})


def _apply(slot: Slot, state: CapacityState) -> None:
    slot.booked = state.booked
    slot.available = state.available
    bump_version(slot)


class LedgerService:
    """Service for capacity accounting on slots."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        outbox: Optional[NotificationOutbox] = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.outbox = outbox or notification_outbox
        self.slot_service = SlotService(db, self.clock, self.outbox)
        self.waitlist_service = WaitlistService(db, self.clock, self.outbox)

    def reserve_locked(self, slot: Slot, guests: int) -> None:
        """
        Take ``guests`` spots on a slot already held by ``SlotService.transaction``.

        Raises:
            SlotNotBookableError: If the slot is not active
            DeadlinePassedError: If the booking deadline has passed
            CapacityExceededError: If fewer than ``guests`` spots remain
        """
        guests = _checked_guests(guests)
        slot_id = str(slot.id)

        if slot.status != SlotStatus.ACTIVE:
            metrics_collector.record_reservation("not_bookable")
            raise SlotNotBookableError(slot_id, slot.status)

        if self.clock.now() > slot.booking_deadline:
            metrics_collector.record_reservation("deadline_passed")
            raise DeadlinePassedError(slot_id, slot.booking_deadline)

        state = CapacityState.from_counters(slot.capacity, slot.booked, slot.available)
        try:
            new_state = state.reserve(guests)
        except InsufficientCapacity as e:
            metrics_collector.record_reservation("capacity_exceeded")
            logger.info(
                "Reservation rejected - insufficient capacity",
                extra={"slot_id": slot_id, "requested": guests, "available": e.available}
            )
            raise CapacityExceededError(slot_id, requested=guests, available=e.available)

        _apply(slot, new_state)

    async def release_locked(self, slot: Slot, guests: int) -> list[WaitlistEntry]:
        """
        Give back up to ``guests`` spots on a held slot and advance its waitlist.

        Returns:
            Waitlist entries notified because of the freed capacity
        """
        guests = _checked_guests(guests)
        state = CapacityState.from_counters(slot.capacity, slot.booked, slot.available)
        _apply(slot, state.release(guests))
        return await self.waitlist_service.advance_queue_locked(slot)

    async def reserve(self, slot_id: UUID, guests: int) -> Slot:
        """
        Atomically reserve ``guests`` spots.

        Concurrent reservations on the same slot are serialized, so their
        combined guest count can never exceed the slot's capacity.
        """
        guests = _checked_guests(guests)
        async with self.slot_service.transaction(slot_id) as slot:
            self.reserve_locked(slot, guests)

        metrics_collector.record_reservation("reserved")
        metrics_collector.set_capacity_utilization(str(slot.id), slot.capacity, slot.booked)
        logger.info(
            "Capacity reserved",
            extra={
                "slot_id": str(slot.id),
                "guests": guests,
                "booked": slot.booked,
                "available": slot.available,
                "version": slot.version,
            }
        )
        return slot

    async def release(self, slot_id: UUID, guests: int) -> ReleaseResult:
        """
        Atomically release ``guests`` spots, clamped to the slot's bounds.

        Over-releasing is absorbed: booked never drops below zero and
        available never exceeds capacity. When spots are free afterwards the
        waitlist is advanced and the promoted customers are notified after
        commit.
        """
        guests = _checked_guests(guests)
        async with self.slot_service.transaction(slot_id) as slot:
            promoted = await self.release_locked(slot, guests)

        metrics_collector.record_release()
        metrics_collector.set_capacity_utilization(str(slot.id), slot.capacity, slot.booked)
        self.waitlist_service.notify_promoted(slot, promoted)

        logger.info(
            "Capacity released",
            extra={
                "slot_id": str(slot.id),
                "guests": guests,
                "booked": slot.booked,
                "available": slot.available,
                "promoted_count": len(promoted),
            }
        )
        return ReleaseResult(slot=slot, promoted=promoted)
