"""Waitlist service: the per-slot FIFO queue and its notify/expire cycle."""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.exceptions import (
    AlreadyOnWaitlistError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    SlotHasAvailabilityError,
    SlotNotBookableError,
)
from ..core.observability import metrics_collector
from ..models.slot import Slot, SlotStatus
from ..models.waitlist import WaitlistEntry, WaitlistStatus
from .notifications import ListingContext, NotificationOutbox, notification_outbox
from .slot_service import SlotService

logger = logging.getLogger(__name__)

FIFO_ORDER = (WaitlistEntry.joined_at, WaitlistEntry.sequence)


@dataclass
class ExpiryResult:
    """Entries expired by a sweep and the slots whose queues may move."""

    expired_count: int = 0
    slot_ids: list[UUID] = field(default_factory=list)


@dataclass
class QueuePosition:
    entry: WaitlistEntry
    position: Optional[int]
    total_waiting: int


class WaitlistService:
    """Service for waitlist-related operations."""

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

    @property
    def notification_ttl(self) -> timedelta:
        return timedelta(hours=settings.waitlist_notification_ttl_hours)

    # Lookups

    async def get_entry_by_id(self, entry_id: UUID) -> Optional[WaitlistEntry]:
        """Get waitlist entry by ID."""
        stmt = (
            select(WaitlistEntry)
            .where(WaitlistEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_entry_by_id_or_raise(self, entry_id: UUID) -> WaitlistEntry:
        entry = await self.get_entry_by_id(entry_id)
        if not entry:
            logger.warning("Waitlist entry not found", extra={"waitlist_entry_id": str(entry_id)})
            raise NotFoundError(resource_type="waitlist_entry", resource_id=str(entry_id))
        return entry

    async def find_waiting(self, slot_id: UUID, customer_id: str) -> Optional[WaitlistEntry]:
        """The customer's waiting entry for the slot, if any."""
        stmt = select(WaitlistEntry).where(
            WaitlistEntry.slot_id == slot_id,
            WaitlistEntry.customer_id == customer_id,
            WaitlistEntry.status == WaitlistStatus.WAITING,
        ).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_open_entry(self, slot_id: UUID, customer_id: str) -> Optional[WaitlistEntry]:
        """The customer's notified entry for the slot, else their waiting one."""
        stmt = (
            select(WaitlistEntry)
            .where(
                WaitlistEntry.slot_id == slot_id,
                WaitlistEntry.customer_id == customer_id,
                WaitlistEntry.status.in_([WaitlistStatus.NOTIFIED, WaitlistStatus.WAITING]),
            )
            .order_by(WaitlistEntry.notified_at.is_(None), *FIFO_ORDER)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_slot(
        self, slot_id: UUID, status: Optional[WaitlistStatus] = None
    ) -> List[WaitlistEntry]:
        """Entries of a slot in queue order."""
        stmt = select(WaitlistEntry).where(WaitlistEntry.slot_id == slot_id)
        if status is not None:
            stmt = stmt.where(WaitlistEntry.status == status)
        result = await self.db.execute(stmt.order_by(*FIFO_ORDER).execution_options(populate_existing=True))
        return list(result.scalars())

    async def list_for_customer(
        self, customer_id: str, status: Optional[WaitlistStatus] = None
    ) -> List[WaitlistEntry]:
        """A customer's entries, most recent first."""
        stmt = select(WaitlistEntry).where(WaitlistEntry.customer_id == customer_id)
        if status is not None:
            stmt = stmt.where(WaitlistEntry.status == status)
        result = await self.db.execute(
            stmt.order_by(WaitlistEntry.joined_at.desc()).execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def position(self, entry_id: UUID) -> QueuePosition:
        """
        1-based rank of an entry among its slot's waiting entries.

        Rank and total come from a single statement, so both describe the
        same snapshot of the queue. Entries that are no longer waiting have
        no position.
        """
        other = aliased(WaitlistEntry)
        waiting_in_slot = and_(
            other.slot_id == WaitlistEntry.slot_id,
            other.status == WaitlistStatus.WAITING,
        )
        ahead = (
            select(func.count())
            .select_from(other)
            .where(
                waiting_in_slot,
                or_(
                    other.joined_at < WaitlistEntry.joined_at,
                    and_(other.joined_at == WaitlistEntry.joined_at, other.sequence < WaitlistEntry.sequence),
                ),
            )
            .correlate(WaitlistEntry)
            .scalar_subquery()
        )
        total = (
            select(func.count())
            .select_from(other)
            .where(waiting_in_slot)
            .correlate(WaitlistEntry)
            .scalar_subquery()
        )

        stmt = (
            select(WaitlistEntry, ahead, total)
            .where(WaitlistEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            raise NotFoundError(resource_type="waitlist_entry", resource_id=str(entry_id))

        entry, ahead_count, total_waiting = row
        position = ahead_count + 1 if entry.status == WaitlistStatus.WAITING else None
        return QueuePosition(entry=entry, position=position, total_waiting=total_waiting)

    # Queue membership

    async def _next_sequence(self, slot_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(WaitlistEntry.sequence), 0)).where(
            WaitlistEntry.slot_id == slot_id
        )
        return (await self.db.execute(stmt)).scalar_one() + 1

    async def join(
        self, slot_id: UUID, customer_id: str, customer_email: Optional[str] = None
    ) -> WaitlistEntry:
        """
        Queue a customer for a full slot.

        Raises:
            SlotNotBookableError: If the slot is cancelled, blocked or completed
            SlotHasAvailabilityError: If the slot still has spots; book directly instead
            AlreadyOnWaitlistError: If the customer is already waiting for this slot
        """
        try:
            async with self.slot_service.transaction(slot_id) as slot:
                if slot.status != SlotStatus.ACTIVE:
                    raise SlotNotBookableError(str(slot.id), slot.status)
                if slot.available > 0:
                    raise SlotHasAvailabilityError(str(slot.id), slot.available)

                existing = await self.find_waiting(slot.id, customer_id)
                if existing:
                    raise AlreadyOnWaitlistError(str(slot.id), str(existing.id))

                entry = WaitlistEntry(
                    slot_id=slot.id,
                    listing_id=slot.listing_id,
                    customer_id=customer_id,
                    customer_email=customer_email,
                    joined_at=self.clock.now(),
                    sequence=await self._next_sequence(slot.id),
                    status=WaitlistStatus.WAITING,
                )
                self.db.add(entry)
        except IntegrityError:
            # A concurrent join from another process won the unique index
            existing = await self.find_waiting(slot_id, customer_id)
            if existing is None:
                logger.error(
                    "Unexpected integrity error when joining waitlist",
                    extra={"slot_id": str(slot_id), "customer_id": customer_id}
                )
                raise
            raise AlreadyOnWaitlistError(str(slot_id), str(existing.id))

        logger.info(
            "Customer joined waitlist",
            extra={
                "waitlist_entry_id": str(entry.id),
                "slot_id": str(slot_id),
                "customer_id": customer_id,
                "sequence": entry.sequence,
            }
        )
        return entry

    async def leave(self, entry_id: UUID, customer_id: str) -> None:
        """
        Remove the customer's own entry from the queue.

        Waiting entries are deleted. A customer who was already offered a
        spot may also leave; the offer then passes to the next in line.

        Raises:
            AuthorizationError: If the entry belongs to another customer
            ConflictError: If the entry is already booked or expired
        """
        entry = await self.get_entry_by_id_or_raise(entry_id)
        if entry.customer_id != customer_id:
            raise AuthorizationError(detail="You can only leave your own waitlist entries")

        promoted: list[WaitlistEntry] = []
        async with self.slot_service.transaction(entry.slot_id) as slot:
            entry = await self.get_entry_by_id_or_raise(entry_id)
            if entry.status not in (WaitlistStatus.WAITING, WaitlistStatus.NOTIFIED):
                raise ConflictError(
                    detail=f"Cannot leave a waitlist entry that is {entry.status}",
                    conflicting_resource={"waitlist_entry_id": str(entry_id), "status": entry.status},
                    code="WAITLIST_ENTRY_CLOSED",
                )
            was_notified = entry.status == WaitlistStatus.NOTIFIED
            await self.db.delete(entry)
            await self.db.flush()
            if was_notified:
                promoted = await self.advance_queue_locked(slot)

        self.notify_promoted(slot, promoted)
        logger.info(
            "Customer left waitlist",
            extra={"waitlist_entry_id": str(entry_id), "slot_id": str(slot.id), "customer_id": customer_id}
        )

    # Promotion

    def _notify_entry(self, entry: WaitlistEntry) -> None:
        now = self.clock.now()
        entry.status = WaitlistStatus.NOTIFIED
        entry.notified_at = now
        entry.expires_at = now + self.notification_ttl
        metrics_collector.record_waitlist_promotion()

    async def _waiting_head(self, slot_id: UUID, limit: int) -> list[WaitlistEntry]:
        stmt = (
            select(WaitlistEntry)
            .where(WaitlistEntry.slot_id == slot_id, WaitlistEntry.status == WaitlistStatus.WAITING)
            .order_by(*FIFO_ORDER)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list((await self.db.execute(stmt)).scalars())

    async def _unoffered_spots(self, slot: Slot) -> int:
        """Free spots not already held by an open offer; lapsed but unswept offers still count."""
        if slot.status != SlotStatus.ACTIVE or slot.available <= 0:
            return 0
        stmt = select(func.count()).select_from(WaitlistEntry).where(
            WaitlistEntry.slot_id == slot.id,
            WaitlistEntry.status == WaitlistStatus.NOTIFIED,
        )
        outstanding = (await self.db.execute(stmt)).scalar_one()
        return max(0, slot.available - outstanding)

    async def promote_next_locked(self, slot: Slot) -> Optional[WaitlistEntry]:
        """Notify the oldest waiting entry of a held slot; None when nothing to do."""
        promoted = await self._promote_locked(slot, limit=1)
        return promoted[0] if promoted else None

    async def advance_queue_locked(self, slot: Slot) -> list[WaitlistEntry]:
        """Promote waiting entries of a held slot while free spots exceed open offers."""
        return await self._promote_locked(slot)

    async def _promote_locked(self, slot: Slot, limit: Optional[int] = None) -> list[WaitlistEntry]:
        free = await self._unoffered_spots(slot)
        if limit is not None:
            free = min(free, limit)
        if free <= 0:
            return []

        promoted = await self._waiting_head(slot.id, free)
        for entry in promoted:
            self._notify_entry(entry)
        return promoted

    def notify_promoted(self, slot: Slot, entries: list[WaitlistEntry]) -> None:
        """Send spot-available offers for entries promoted in a committed transaction."""
        listing = ListingContext(
            listing_id=slot.listing_id,
            slot_date=slot.slot_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
        )
        for entry in entries:
            self.outbox.spot_available(
                entry.customer_id,
                str(entry.slot_id),
                entry.expires_at,
                listing,
                customer_email=entry.customer_email,
            )
            logger.info(
                "Waitlist entry notified",
                extra={
                    "waitlist_entry_id": str(entry.id),
                    "slot_id": str(entry.slot_id),
                    "customer_id": entry.customer_id,
                    "expires_at": entry.expires_at.isoformat(),
                }
            )

    async def promote_next(self, slot_id: UUID) -> Optional[WaitlistEntry]:
        """
        Offer a free spot to the next customer in line.

        Does not reserve capacity; the customer still has to book. Returns
        None when every free spot already has an open offer or nobody is
        waiting.
        """
        async with self.slot_service.transaction(slot_id) as slot:
            entry = await self.promote_next_locked(slot)

        if entry is None:
            logger.info("No waitlist entry to promote", extra={"slot_id": str(slot_id)})
            return None

        self.notify_promoted(slot, [entry])
        return entry

    async def advance_queue(self, slot_id: UUID) -> list[WaitlistEntry]:
        """Promote as many waiting entries as the slot has unoffered free spots."""
        async with self.slot_service.transaction(slot_id) as slot:
            promoted = await self.advance_queue_locked(slot)
        self.notify_promoted(slot, promoted)
        return promoted

    # Completion and expiry

    def mark_booked_locked(self, entry: WaitlistEntry) -> None:
        if entry.status in (WaitlistStatus.WAITING, WaitlistStatus.NOTIFIED):
            entry.status = WaitlistStatus.BOOKED

    async def mark_booked(self, entry_id: UUID) -> WaitlistEntry:
        """Record that the entry's customer booked; does not trigger promotion."""
        entry = await self.get_entry_by_id_or_raise(entry_id)
        async with self.slot_service.transaction(entry.slot_id):
            entry = await self.get_entry_by_id_or_raise(entry_id)
            self.mark_booked_locked(entry)

        logger.info(
            "Waitlist entry booked",
            extra={"waitlist_entry_id": str(entry.id), "slot_id": str(entry.slot_id)}
        )
        return entry

    async def expire_stale(self) -> ExpiryResult:
        """
        Expire every notified entry whose offer lapsed.

        Re-promotion is left to the caller so it can be batched per slot
        outside this sweep's transaction.
        """
        now = self.clock.now()
        stmt = select(WaitlistEntry.id, WaitlistEntry.slot_id).where(
            WaitlistEntry.status == WaitlistStatus.NOTIFIED,
            WaitlistEntry.expires_at < now,
        )
        rows = (await self.db.execute(stmt)).all()
        if not rows:
            await self.db.commit()
            return ExpiryResult()

        entry_ids = [entry_id for entry_id, _ in rows]
        # Guard on status so entries booked since the read stay booked
        result = await self.db.execute(
            update(WaitlistEntry)
            .where(WaitlistEntry.id.in_(entry_ids), WaitlistEntry.status == WaitlistStatus.NOTIFIED)
            .values(status=WaitlistStatus.EXPIRED)
        )
        expired_count = result.rowcount
        await self.db.commit()

        slot_ids = list(dict.fromkeys(slot_id for _, slot_id in rows))
        metrics_collector.record_waitlist_expired(expired_count)
        logger.info(
            "Stale waitlist notifications expired",
            extra={"expired_count": expired_count, "slot_count": len(slot_ids)}
        )
        return ExpiryResult(expired_count=expired_count, slot_ids=slot_ids)
