"""Unit tests for slot lifecycle transitions."""

from datetime import date, datetime

import pytest
from sqlalchemy import select

from availability_engine.core.exceptions import (
    AuthorizationError,
    DuplicateSlotError,
    InvalidSlotTransitionError,
)
from availability_engine.models.booking import Booking, BookingStatus
from availability_engine.models.slot import CancellationReason, SlotStatus
from availability_engine.models.waitlist import WaitlistEntry, WaitlistStatus
from availability_engine.schemas.slot import CreateSlotRequest
from availability_engine.services.slot_service import SlotService

from conftest import NOW, OTHER_VENDOR, VENDOR


@pytest.mark.asyncio
async def test_create_manual_slot(test_session, clock):
    service = SlotService(test_session, clock)

    slot = await service.create_manual_slot(
        CreateSlotRequest(
            listing_id="listing-1",
            date=date(2025, 3, 12),
            start_time="23:00",
            duration_minutes=90,
            capacity=8,
            booking_deadline_hours=1,
        ),
        VENDOR,
    )

    assert slot.rule_id is None
    assert slot.end_time == "24:30"
    assert slot.available == 8
    assert slot.booking_deadline == datetime(2025, 3, 12, 22, 0)


@pytest.mark.asyncio
async def test_manual_slot_duplicate_is_rejected(test_session, clock, slot_factory):
    await slot_factory(slot_date=date(2025, 3, 12), start_time="09:00")

    with pytest.raises(DuplicateSlotError):
        await SlotService(test_session, clock).create_manual_slot(
            CreateSlotRequest(
                listing_id="listing-1",
                date=date(2025, 3, 12),
                start_time="09:00",
                duration_minutes=60,
                capacity=2,
            ),
            VENDOR,
        )


@pytest.mark.asyncio
async def test_block_and_unblock(test_session, clock, slot_factory):
    slot = await slot_factory()
    slot_id = slot.id
    service = SlotService(test_session, clock)

    blocked = await service.block_slot(slot_id, VENDOR)
    assert blocked.status == SlotStatus.BLOCKED

    with pytest.raises(InvalidSlotTransitionError):
        await service.block_slot(slot_id, VENDOR)

    unblocked = await service.unblock_slot(slot_id, VENDOR)
    assert unblocked.status == SlotStatus.ACTIVE
    assert unblocked.version == 3


@pytest.mark.asyncio
async def test_block_with_bookings_is_rejected(test_session, clock, slot_factory):
    slot = await slot_factory(booked=1)

    with pytest.raises(InvalidSlotTransitionError) as exc_info:
        await SlotService(test_session, clock).block_slot(slot.id, VENDOR)

    assert "existing bookings" in exc_info.value.problem_details["detail"]


@pytest.mark.asyncio
async def test_unblock_requires_blocked(test_session, clock, slot_factory):
    slot = await slot_factory()

    with pytest.raises(InvalidSlotTransitionError):
        await SlotService(test_session, clock).unblock_slot(slot.id, VENDOR)


@pytest.mark.asyncio
async def test_only_owner_manages_slot(test_session, clock, slot_factory):
    slot = await slot_factory()

    with pytest.raises(AuthorizationError):
        await SlotService(test_session, clock).block_slot(slot.id, OTHER_VENDOR)


@pytest.mark.asyncio
async def test_cancel_slot_cancels_bookings_and_notifies(test_session, clock, outbox, dispatcher, slot_factory):
    slot = await slot_factory(capacity=4, booked=3)
    test_session.add_all([
        Booking(slot_id=slot.id, listing_id="listing-1", customer_id="alice", customer_email="a@x.io", guests=2),
        Booking(slot_id=slot.id, listing_id="listing-1", customer_id="bob", guests=1),
    ])
    waiting = WaitlistEntry(
        slot_id=slot.id, listing_id="listing-1", customer_id="carol",
        joined_at=NOW, sequence=1, status=WaitlistStatus.WAITING,
    )
    test_session.add(waiting)
    await test_session.commit()

    result = await SlotService(test_session, clock, outbox).cancel_slot(
        slot.id, CancellationReason.WEATHER, "Storm warning", VENDOR
    )
    await outbox.drain()

    assert result.slot.status == SlotStatus.CANCELLED
    assert result.slot.cancelled_at == NOW
    assert result.slot.cancellation_reason == CancellationReason.WEATHER
    assert result.slot.booked == 3
    assert len(result.bookings) == 2

    bookings = (await test_session.execute(select(Booking))).scalars().all()
    assert {b.status for b in bookings} == {BookingStatus.CANCELLED}
    assert {b.cancellation_reason for b in bookings} == {"slot_cancelled:weather"}

    assert sorted(event["customer_id"] for event in dispatcher.cancellations) == ["alice", "bob"]
    assert all(event["message"] == "Storm warning" for event in dispatcher.cancellations)

    # The waitlist is left as it was
    entry = (await test_session.execute(select(WaitlistEntry))).scalar_one()
    assert entry.status == WaitlistStatus.WAITING


@pytest.mark.asyncio
async def test_failed_cancellation_notice_does_not_affect_others(
    test_session, clock, outbox, dispatcher, slot_factory
):
    slot = await slot_factory(capacity=4, booked=2)
    test_session.add_all([
        Booking(slot_id=slot.id, listing_id="listing-1", customer_id="alice", guests=1),
        Booking(slot_id=slot.id, listing_id="listing-1", customer_id="bob", guests=1),
    ])
    await test_session.commit()
    dispatcher.fail_for.add("alice")

    result = await SlotService(test_session, clock, outbox).cancel_slot(
        slot.id, CancellationReason.EMERGENCY, None, VENDOR
    )
    await outbox.drain()

    assert result.slot.status == SlotStatus.CANCELLED
    assert [event["customer_id"] for event in dispatcher.cancellations] == ["bob"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [SlotStatus.BLOCKED, SlotStatus.CANCELLED, SlotStatus.COMPLETED])
async def test_cancel_requires_active(test_session, clock, slot_factory, status):
    slot = await slot_factory(status=status)

    with pytest.raises(InvalidSlotTransitionError):
        await SlotService(test_session, clock).cancel_slot(slot.id, CancellationReason.OTHER, None, VENDOR)


@pytest.mark.asyncio
async def test_complete_past_slots(test_session, clock, slot_factory):
    # NOW is 2025-03-03 10:00
    ended = await slot_factory(slot_date=date(2025, 3, 3), start_time="08:00", duration_minutes=120)
    running = await slot_factory(slot_date=date(2025, 3, 3), start_time="09:00", duration_minutes=120)
    yesterday_late = await slot_factory(slot_date=date(2025, 3, 2), start_time="23:00", duration_minutes=180)
    blocked = await slot_factory(slot_date=date(2025, 3, 1), status=SlotStatus.BLOCKED)
    service = SlotService(test_session, clock)

    assert await service.complete_past_slots() == 2
    assert await service.complete_past_slots() == 0

    statuses = {
        slot_id: (await service.get_slot_by_id(slot_id)).status
        for slot_id in (ended.id, running.id, yesterday_late.id, blocked.id)
    }
    assert statuses[ended.id] == SlotStatus.COMPLETED
    assert statuses[running.id] == SlotStatus.ACTIVE
    assert statuses[yesterday_late.id] == SlotStatus.COMPLETED
    assert statuses[blocked.id] == SlotStatus.BLOCKED
