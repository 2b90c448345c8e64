"""Booking service: customer bookings on top of the capacity ledger."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.exceptions import AuthorizationError, NotFoundError
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus
from .ledger_service import LedgerService
from .notifications import NotificationOutbox, notification_outbox
from .slot_service import parse_uuid

logger = logging.getLogger(__name__)


class BookingService:
    """Service for booking-related operations."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        outbox: Optional[NotificationOutbox] = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.outbox = outbox or notification_outbox
        self.ledger = LedgerService(db, self.clock, self.outbox)
        self.waitlist_service = self.ledger.waitlist_service

    async def create_booking(
        self,
        slot_id: str,
        guests: int,
        caller,
        customer_email: Optional[str] = None,
    ) -> Booking:
        """
        Book ``guests`` spots for the caller.

        Capacity is reserved and the booking row written in one transaction.
        If the caller holds an open waitlist entry for the slot it is marked
        booked in the same transaction.

        Raises:
            NotFoundError: If the slot does not exist
            SlotNotBookableError: If the slot is not active
            DeadlinePassedError: If the booking deadline has passed
            CapacityExceededError: If not enough spots remain
        """
        slot_uuid = parse_uuid(slot_id, "slot")

        async with self.ledger.slot_service.transaction(slot_uuid) as slot:
            self.ledger.reserve_locked(slot, guests)

            entry = await self.waitlist_service.find_open_entry(slot.id, caller.user_id)
            if entry is not None:
                self.waitlist_service.mark_booked_locked(entry)

            booking = Booking(
                slot_id=slot.id,
                listing_id=slot.listing_id,
                customer_id=caller.user_id,
                customer_email=customer_email or caller.email,
                guests=guests,
                status=BookingStatus.CONFIRMED,
                waitlist_entry_id=entry.id if entry is not None else None,
            )
            self.db.add(booking)

        metrics_collector.record_reservation("reserved")
        metrics_collector.set_capacity_utilization(str(slot.id), slot.capacity, slot.booked)
        logger.info(
            "Booking confirmed",
            extra={
                "booking_id": str(booking.id),
                "slot_id": str(slot.id),
                "customer_id": caller.user_id,
                "guests": guests,
                "available": slot.available,
                "from_waitlist": booking.waitlist_entry_id is not None,
            }
        )
        return booking

    async def cancel_booking(self, booking_id: str, caller, reason: Optional[str] = None) -> Booking:
        """
        Cancel a booking and give its spots back to the slot.

        Cancelling an already cancelled booking returns it unchanged. Freed
        spots are offered to the slot's waitlist.

        Raises:
            NotFoundError: If the booking does not exist
            AuthorizationError: If the caller is neither the customer, the vendor nor an admin
        """
        booking = await self.get_booking_or_raise(booking_id)
        slot = await self.ledger.slot_service.get_slot_by_id(booking.slot_id)
        self._check_access(booking, caller, slot.vendor_id if slot else None)

        if booking.status == BookingStatus.CANCELLED:
            logger.info("Booking already cancelled", extra={"booking_id": str(booking.id)})
            return booking

        promoted = []
        async with self.ledger.slot_service.transaction(booking.slot_id) as slot:
            booking = await self.get_booking_or_raise(booking_id)
            if booking.status == BookingStatus.CANCELLED:
                return booking

            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = self.clock.now()
            booking.cancellation_reason = reason or "customer_cancelled"
            promoted = await self.ledger.release_locked(slot, booking.guests)

        metrics_collector.record_release()
        metrics_collector.set_capacity_utilization(str(slot.id), slot.capacity, slot.booked)
        self.waitlist_service.notify_promoted(slot, promoted)

        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": str(booking.id),
                "slot_id": str(slot.id),
                "guests": booking.guests,
                "cancelled_by": caller.user_id,
                "promoted_count": len(promoted),
            }
        )
        return booking

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        try:
            booking_uuid = booking_id if isinstance(booking_id, UUID) else UUID(str(booking_id))
        except ValueError:
            return None
        stmt = select(Booking).where(Booking.id == booking_uuid).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_booking_or_raise(self, booking_id: str) -> Booking:
        """
        Get booking by ID or raise NotFoundError.

        Raises:
            NotFoundError: If booking not found
        """
        booking = await self.get_booking(booking_id)
        if not booking:
            logger.warning("Booking not found", extra={"booking_id": str(booking_id)})
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def get_booking_for_caller(self, booking_id: str, caller) -> Booking:
        booking = await self.get_booking_or_raise(booking_id)
        slot = await self.ledger.slot_service.get_slot_by_id(booking.slot_id)
        self._check_access(booking, caller, slot.vendor_id if slot else None)
        return booking

    @staticmethod
    def _check_access(booking: Booking, caller, vendor_id: Optional[str]) -> None:
        if caller.is_admin or booking.customer_id == caller.user_id or vendor_id == caller.user_id:
            return
        logger.warning(
            "Booking access denied",
            extra={"booking_id": str(booking.id), "caller_id": caller.user_id}
        )
        raise AuthorizationError(detail="You can only access your own bookings")
