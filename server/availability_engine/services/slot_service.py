"""Slot service: lookups, lifecycle transitions and the per-slot transaction."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, delete, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.exceptions import (
    AuthorizationError,
    DuplicateSlotError,
    InvalidSlotTransitionError,
    NotFoundError,
)
from ..core.locks import listing_locks, slot_locks
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus
from ..models.slot import CancellationReason, Slot, SlotStatus
from ..models.waitlist import WaitlistEntry
from ..scheduling.recurrence import compute_booking_deadline, compute_end_time, slot_end
from ..schemas.slot import CreateSlotRequest
from .notifications import NotificationOutbox, notification_outbox

logger = logging.getLogger(__name__)


def parse_uuid(value: str, resource_type: str) -> UUID:
    """Parse an id from a request; malformed ids cannot exist, so they are not found."""
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except (ValueError, TypeError):
        raise NotFoundError(resource_type=resource_type, resource_id=str(value))


def bump_version(slot: Slot) -> None:
    slot.version = (slot.version or 0) + 1


@dataclass
class CancelledSlot:
    """A cancelled slot and the bookings cancelled with it."""

    slot: Slot
    bookings: list[Booking]


class SlotService:
    """Service for slot lookups and lifecycle operations."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        outbox: Optional[NotificationOutbox] = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.outbox = outbox or notification_outbox

    # Lookups

    async def get_slot_by_id(self, slot_id: UUID) -> Slot | None:
        """
        Get slot by ID.

        Args:
            slot_id: Slot ID to search for

        Returns:
            Slot if found, None otherwise
        """
        stmt = select(Slot).where(Slot.id == slot_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_slot_by_id_or_raise(self, slot_id: UUID) -> Slot:
        """
        Get slot by ID or raise NotFoundError.

        Raises:
            NotFoundError: If slot not found
        """
        slot = await self.get_slot_by_id(slot_id)
        if not slot:
            logger.warning("Slot not found", extra={"slot_id": str(slot_id)})
            raise NotFoundError(resource_type="slot", resource_id=str(slot_id))
        return slot

    async def list_slots(
        self,
        listing_id: str,
        start_date: date,
        end_date: date,
        status: Optional[SlotStatus] = None,
    ) -> list[Slot]:
        """Slots of a listing within an inclusive date window, in start order."""
        conditions = [
            Slot.listing_id == listing_id,
            Slot.slot_date >= start_date,
            Slot.slot_date <= end_date,
        ]
        if status is not None:
            conditions.append(Slot.status == status)

        stmt = select(Slot).where(and_(*conditions)).order_by(Slot.slot_date, Slot.start_time)
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def list_bookable_slots(self, listing_id: str, start_date: date, end_date: date) -> list[Slot]:
        """Active slots with spots left whose booking deadline has not passed."""
        stmt = (
            select(Slot)
            .where(
                Slot.listing_id == listing_id,
                Slot.slot_date >= start_date,
                Slot.slot_date <= end_date,
                Slot.status == SlotStatus.ACTIVE,
                Slot.available > 0,
                Slot.booking_deadline >= self.clock.now(),
            )
            .order_by(Slot.slot_date, Slot.start_time)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    # Per-slot transaction

    async def _advisory_lock(self, slot_id: UUID) -> None:
        # Serializes writers across processes; released at transaction end
        if self.db.bind and self.db.bind.dialect.name == "postgresql":
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:slot_id))"),
                {"slot_id": str(slot_id)}
            )

    @asynccontextmanager
    async def transaction(self, slot_id: UUID) -> AsyncIterator[Slot]:
        """
        Run a block as one all-or-nothing unit against a single slot.

        The in-process slot lock is taken before any database access, then
        the row is read with ``SELECT ... FOR UPDATE`` (plus an advisory lock on
        PostgreSQL). The block's changes are committed when it exits normally
        and rolled back on any exception, in both cases before the lock is
        released.

        Raises:
            NotFoundError: If the slot does not exist
        """
        async with slot_locks.hold(slot_id):
            try:
                await self._advisory_lock(slot_id)
                stmt = (
                    select(Slot)
                    .where(Slot.id == slot_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                slot = (await self.db.execute(stmt)).scalar_one_or_none()
                if slot is None:
                    raise NotFoundError(resource_type="slot", resource_id=str(slot_id))

                yield slot
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise

    # Ownership

    @staticmethod
    def check_owner(slot: Slot, caller) -> None:
        if slot.vendor_id != caller.user_id:
            logger.warning(
                "Slot ownership check failed",
                extra={"slot_id": str(slot.id), "vendor_id": slot.vendor_id, "caller_id": caller.user_id}
            )
            raise AuthorizationError(detail="You can only manage slots of your own listings")

    # Manual creation

    async def create_manual_slot(self, request: CreateSlotRequest, caller) -> Slot:
        """
        Create a slot that no rule generated.

        Raises:
            DuplicateSlotError: If the listing already has a slot at that date and time
        """
        async with listing_locks.hold(request.listing_id):
            stmt = select(Slot.id).where(
                Slot.listing_id == request.listing_id,
                Slot.slot_date == request.date,
                Slot.start_time == request.start_time,
            )
            if (await self.db.execute(stmt)).first() is not None:
                raise DuplicateSlotError(request.listing_id, request.date.isoformat(), request.start_time)

            slot = Slot(
                listing_id=request.listing_id,
                vendor_id=caller.user_id,
                rule_id=None,
                slot_date=request.date,
                start_time=request.start_time,
                end_time=compute_end_time(request.start_time, request.duration_minutes),
                capacity=request.capacity,
                booked=0,
                available=request.capacity,
                booking_deadline=compute_booking_deadline(
                    request.date, request.start_time, request.booking_deadline_hours
                ),
                status=SlotStatus.ACTIVE,
                version=1,
            )
            self.db.add(slot)
            try:
                await self.db.commit()
            except IntegrityError:
                # Another process created the same slot
                await self.db.rollback()
                raise DuplicateSlotError(request.listing_id, request.date.isoformat(), request.start_time)

        logger.info(
            "Manual slot created",
            extra={
                "slot_id": str(slot.id),
                "listing_id": slot.listing_id,
                "date": slot.slot_date.isoformat(),
                "start_time": slot.start_time,
                "capacity": slot.capacity,
            }
        )
        return slot

    # Lifecycle transitions

    async def block_slot(self, slot_id: UUID, caller) -> Slot:
        """
        Take an active slot without bookings off sale.

        Raises:
            InvalidSlotTransitionError: If the slot is not active or has bookings
        """
        async with self.transaction(slot_id) as slot:
            self.check_owner(slot, caller)
            if slot.status != SlotStatus.ACTIVE:
                raise InvalidSlotTransitionError(str(slot.id), slot.status, SlotStatus.BLOCKED.value)
            if slot.booked > 0:
                raise InvalidSlotTransitionError(
                    str(slot.id),
                    slot.status,
                    SlotStatus.BLOCKED.value,
                    detail="Cannot block a slot with existing bookings",
                )
            slot.status = SlotStatus.BLOCKED
            bump_version(slot)

        logger.info("Slot blocked", extra={"slot_id": str(slot.id), "vendor_id": caller.user_id})
        return slot

    async def unblock_slot(self, slot_id: UUID, caller) -> Slot:
        """
        Put a blocked slot back on sale.

        Raises:
            InvalidSlotTransitionError: If the slot is not blocked
        """
        async with self.transaction(slot_id) as slot:
            self.check_owner(slot, caller)
            if slot.status != SlotStatus.BLOCKED:
                raise InvalidSlotTransitionError(
                    str(slot.id),
                    slot.status,
                    SlotStatus.ACTIVE.value,
                    detail="Only blocked slots can be unblocked",
                )
            slot.status = SlotStatus.ACTIVE
            bump_version(slot)

        logger.info("Slot unblocked", extra={"slot_id": str(slot.id), "vendor_id": caller.user_id})
        return slot

    async def cancel_slot(
        self,
        slot_id: UUID,
        reason: CancellationReason,
        message: Optional[str],
        caller,
    ) -> CancelledSlot:
        """
        Cancel an active slot and every confirmed booking in it.

        Bookings are cancelled in the same transaction as the slot. Each
        affected customer is notified after commit; a failed notification does
        not affect the others. Waitlist entries are left untouched.

        Raises:
            InvalidSlotTransitionError: If the slot is not active
        """
        reason = CancellationReason(reason)
        async with self.transaction(slot_id) as slot:
            self.check_owner(slot, caller)
            if slot.status != SlotStatus.ACTIVE:
                raise InvalidSlotTransitionError(str(slot.id), slot.status, SlotStatus.CANCELLED.value)

            now = self.clock.now()
            slot.status = SlotStatus.CANCELLED
            slot.cancelled_at = now
            slot.cancellation_reason = reason
            slot.cancellation_message = message
            bump_version(slot)

            stmt = select(Booking).where(
                Booking.slot_id == slot.id,
                Booking.status == BookingStatus.CONFIRMED,
            )
            bookings = list((await self.db.execute(stmt)).scalars())
            for booking in bookings:
                booking.status = BookingStatus.CANCELLED
                booking.cancelled_at = now
                booking.cancellation_reason = f"slot_cancelled:{reason.value}"

        for booking in bookings:
            self.outbox.booking_cancelled(
                booking.customer_id,
                str(slot.id),
                reason.value,
                message,
                customer_email=booking.customer_email,
            )

        logger.info(
            "Slot cancelled",
            extra={
                "slot_id": str(slot.id),
                "reason": reason.value,
                "bookings_cancelled": len(bookings),
                "vendor_id": caller.user_id,
            }
        )
        return CancelledSlot(slot=slot, bookings=bookings)

    async def complete_past_slots(self) -> int:
        """
        Mark active slots whose end instant has passed as completed.

        Returns:
            Number of slots completed
        """
        now = self.clock.now()
        stmt = select(Slot.id, Slot.slot_date, Slot.end_time).where(
            Slot.status == SlotStatus.ACTIVE,
            Slot.slot_date <= now.date(),
        )
        candidates = [
            slot_id
            for slot_id, slot_date, end_time in (await self.db.execute(stmt)).all()
            if slot_end(slot_date, end_time) <= now
        ]
        # Release the read transaction before taking slot locks
        await self.db.commit()

        completed = 0
        for slot_id in candidates:
            async with self.transaction(slot_id) as slot:
                if slot.status == SlotStatus.ACTIVE:
                    slot.status = SlotStatus.COMPLETED
                    bump_version(slot)
                    completed += 1

        metrics_collector.record_slots_completed(completed)
        if completed:
            logger.info("Past slots completed", extra={"completed_count": completed})
        return completed

    async def delete_if_unbooked(self, slot_id: UUID, rule_id: UUID) -> bool:
        """
        Delete a slot of ``rule_id`` that holds no bookings, with its dependents.

        The booked count is re-read under the slot's transaction, so a booking
        committed after the caller picked this slot keeps it alive.
        """
        async with self.transaction(slot_id) as slot:
            if slot.booked != 0 or slot.rule_id != rule_id:
                return False
            await self.db.execute(delete(WaitlistEntry).where(WaitlistEntry.slot_id == slot_id))
            await self.db.execute(delete(Booking).where(Booking.slot_id == slot_id))
            await self.db.execute(delete(Slot).where(Slot.id == slot_id))
        return True

    async def detach_rule(self, rule_id: UUID) -> None:
        """Clear the rule reference of every slot generated by ``rule_id``."""
        await self.db.execute(
            update(Slot).where(Slot.rule_id == rule_id).values(rule_id=None)
        )

