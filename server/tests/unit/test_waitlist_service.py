"""Unit tests for waitlist service."""

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.sql.dml import Update

from availability_engine.core.exceptions import (
    AlreadyOnWaitlistError,
    AuthorizationError,
    ConflictError,
    SlotHasAvailabilityError,
    SlotNotBookableError,
)
from availability_engine.models.slot import SlotStatus
from availability_engine.models.waitlist import WaitlistEntry, WaitlistStatus
from availability_engine.services.ledger_service import LedgerService
from availability_engine.services.waitlist_service import WaitlistService

from conftest import NOW


@pytest.fixture
def waitlist(test_session, clock, outbox):
    return WaitlistService(test_session, clock, outbox)


@pytest.fixture
def ledger(test_session, clock, outbox):
    return LedgerService(test_session, clock, outbox)


@pytest.mark.asyncio
async def test_join_full_slot(waitlist, slot_factory):
    slot = await slot_factory(capacity=2, booked=2)

    entry = await waitlist.join(slot.id, "alice", "alice@example.com")

    assert entry.status == WaitlistStatus.WAITING
    assert entry.joined_at == NOW
    assert entry.sequence == 1
    assert entry.listing_id == slot.listing_id


@pytest.mark.asyncio
async def test_join_slot_with_availability_is_rejected(waitlist, slot_factory):
    slot = await slot_factory(capacity=2, booked=1)

    with pytest.raises(SlotHasAvailabilityError) as exc_info:
        await waitlist.join(slot.id, "alice")

    assert "Book directly" in exc_info.value.problem_details["detail"]


@pytest.mark.asyncio
async def test_join_twice_is_rejected(waitlist, slot_factory):
    slot = await slot_factory(capacity=1, booked=1)
    await waitlist.join(slot.id, "alice")

    with pytest.raises(AlreadyOnWaitlistError):
        await waitlist.join(slot.id, "alice")


@pytest.mark.asyncio
async def test_join_cancelled_slot_is_rejected(waitlist, slot_factory):
    slot = await slot_factory(capacity=1, booked=1, status=SlotStatus.CANCELLED)

    with pytest.raises(SlotNotBookableError):
        await waitlist.join(slot.id, "alice")


@pytest.mark.asyncio
async def test_positions_follow_join_order(waitlist, slot_factory, clock):
    slot = await slot_factory(capacity=1, booked=1)
    alice = await waitlist.join(slot.id, "alice")
    clock.advance(minutes=1)
    bob = await waitlist.join(slot.id, "bob")
    carol = await waitlist.join(slot.id, "carol")

    positions = [await waitlist.position(entry.id) for entry in (alice, bob, carol)]

    assert [p.position for p in positions] == [1, 2, 3]
    assert {p.total_waiting for p in positions} == {3}


@pytest.mark.asyncio
async def test_release_notifies_head_of_queue(waitlist, ledger, slot_factory, dispatcher, outbox, clock):
    slot = await slot_factory(capacity=2, booked=2)
    alice = await waitlist.join(slot.id, "alice", "alice@example.com")
    bob = await waitlist.join(slot.id, "bob")

    result = await ledger.release(slot.id, 1)
    await outbox.drain()

    assert [entry.id for entry in result.promoted] == [alice.id]
    alice = await waitlist.get_entry_by_id(alice.id)
    assert alice.status == WaitlistStatus.NOTIFIED
    assert alice.notified_at == NOW
    assert alice.expires_at == NOW + timedelta(hours=24)
    assert (await waitlist.get_entry_by_id(bob.id)).status == WaitlistStatus.WAITING

    # One offer per channel
    assert sorted(event["channel"] for event in dispatcher.spot_available) == ["email", "in_app"]
    offer = dispatcher.spot_available[0]
    assert offer["customer_id"] == "alice"
    assert offer["customer_email"] == "alice@example.com"
    assert offer["listing"].start_time == slot.start_time

    # The notified customer no longer has a queue position
    position = await waitlist.position(alice.id)
    assert position.position is None
    assert (await waitlist.position(bob.id)).position == 1


@pytest.mark.asyncio
async def test_release_of_several_spots_notifies_several(waitlist, ledger, slot_factory, dispatcher, outbox):
    slot = await slot_factory(capacity=3, booked=3)
    for customer in ("alice", "bob", "carol"):
        await waitlist.join(slot.id, customer)

    result = await ledger.release(slot.id, 2)
    await outbox.drain()

    assert [entry.customer_id for entry in result.promoted] == ["alice", "bob"]
    assert dispatcher.offered_to() == ["alice", "bob"]


@pytest.mark.asyncio
async def test_outstanding_offers_hold_back_further_promotion(waitlist, ledger, slot_factory):
    slot = await slot_factory(capacity=2, booked=2)
    await waitlist.join(slot.id, "alice")
    await waitlist.join(slot.id, "bob")

    await ledger.release(slot.id, 1)
    # Alice's offer covers the one free spot
    assert await waitlist.advance_queue(slot.id) == []

    second = await ledger.release(slot.id, 1)
    assert [entry.customer_id for entry in second.promoted] == ["bob"]


@pytest.mark.asyncio
async def test_promote_next_is_noop_without_free_spot(waitlist, slot_factory):
    slot = await slot_factory(capacity=1, booked=1)
    await waitlist.join(slot.id, "alice")

    assert await waitlist.promote_next(slot.id) is None


@pytest.mark.asyncio
async def test_promote_next_with_empty_queue(waitlist, slot_factory):
    slot = await slot_factory(capacity=2, booked=1)

    assert await waitlist.promote_next(slot.id) is None


@pytest.mark.asyncio
async def test_promote_next_skips_spots_already_offered(waitlist, ledger, slot_factory, dispatcher, outbox):
    slot = await slot_factory(capacity=1, booked=1)
    for customer in ("alice", "bob", "carol"):
        await waitlist.join(slot.id, customer)
    await ledger.release(slot.id, 1)

    # Alice already holds the only free spot
    assert await waitlist.promote_next(slot.id) is None
    assert await waitlist.promote_next(slot.id) is None
    await outbox.drain()

    notified = await waitlist.list_for_slot(slot.id, WaitlistStatus.NOTIFIED)
    assert [entry.customer_id for entry in notified] == ["alice"]
    assert dispatcher.offered_to() == ["alice"]


@pytest.mark.asyncio
async def test_promote_next_offers_unoffered_spot(waitlist, test_session, slot_factory):
    slot = await slot_factory(capacity=1, booked=1)
    await waitlist.join(slot.id, "alice")
    await waitlist.join(slot.id, "bob")
    slot.booked, slot.available = 0, 1
    await test_session.commit()

    entry = await waitlist.promote_next(slot.id)

    assert entry.customer_id == "alice"
    assert entry.status == WaitlistStatus.NOTIFIED


@pytest.mark.asyncio
async def test_leave_waiting_entry(waitlist, slot_factory):
    slot = await slot_factory(capacity=1, booked=1)
    alice = await waitlist.join(slot.id, "alice")
    bob = await waitlist.join(slot.id, "bob")

    await waitlist.leave(alice.id, "alice")

    assert await waitlist.get_entry_by_id(alice.id) is None
    assert (await waitlist.position(bob.id)).position == 1


@pytest.mark.asyncio
async def test_leaving_with_open_offer_passes_it_on(waitlist, ledger, slot_factory, dispatcher, outbox):
    slot = await slot_factory(capacity=1, booked=1)
    alice = await waitlist.join(slot.id, "alice")
    bob = await waitlist.join(slot.id, "bob")
    await ledger.release(slot.id, 1)

    await waitlist.leave(alice.id, "alice")
    await outbox.drain()

    assert (await waitlist.get_entry_by_id(bob.id)).status == WaitlistStatus.NOTIFIED
    assert dispatcher.offered_to() == ["alice", "bob"]


@pytest.mark.asyncio
async def test_leave_other_customers_entry_is_forbidden(waitlist, slot_factory):
    slot = await slot_factory(capacity=1, booked=1)
    alice = await waitlist.join(slot.id, "alice")

    with pytest.raises(AuthorizationError):
        await waitlist.leave(alice.id, "bob")


@pytest.mark.asyncio
async def test_leave_booked_entry_is_rejected(waitlist, slot_factory):
    slot = await slot_factory(capacity=1, booked=1)
    alice = await waitlist.join(slot.id, "alice")
    await waitlist.mark_booked(alice.id)

    with pytest.raises(ConflictError):
        await waitlist.leave(alice.id, "alice")


@pytest.mark.asyncio
async def test_expire_stale_only_after_window(waitlist, ledger, slot_factory, clock):
    slot = await slot_factory(capacity=1, booked=1)
    alice = await waitlist.join(slot.id, "alice")
    await ledger.release(slot.id, 1)

    clock.advance(hours=24)
    assert (await waitlist.expire_stale()).expired_count == 0

    clock.advance(seconds=1)
    result = await waitlist.expire_stale()

    assert result.expired_count == 1
    assert result.slot_ids == [slot.id]
    assert (await waitlist.get_entry_by_id(alice.id)).status == WaitlistStatus.EXPIRED
    assert (await waitlist.expire_stale()).expired_count == 0


@pytest.mark.asyncio
async def test_expired_customer_can_rejoin(waitlist, ledger, slot_factory, clock):
    slot = await slot_factory(capacity=1, booked=1)
    await waitlist.join(slot.id, "alice")
    await ledger.release(slot.id, 1)
    clock.advance(hours=25)
    await waitlist.expire_stale()
    await ledger.reserve(slot.id, 1)

    entry = await waitlist.join(slot.id, "alice")

    assert entry.status == WaitlistStatus.WAITING
    assert entry.sequence == 2


@pytest.mark.asyncio
async def test_list_for_slot_and_customer(waitlist, slot_factory):
    slot = await slot_factory(capacity=1, booked=1)
    other = await slot_factory(capacity=1, booked=1, start_time="15:00")
    await waitlist.join(slot.id, "alice")
    await waitlist.join(slot.id, "bob")
    await waitlist.join(other.id, "alice")

    assert [e.customer_id for e in await waitlist.list_for_slot(slot.id)] == ["alice", "bob"]
    assert len(await waitlist.list_for_customer("alice")) == 2
    assert await waitlist.list_for_slot(slot.id, WaitlistStatus.NOTIFIED) == []


@pytest.mark.asyncio
async def test_expire_stale_counts_only_entries_it_expired(waitlist, ledger, test_session, slot_factory, clock, monkeypatch):
    """An offer booked between the sweep's read and its update is neither expired nor counted."""
    slot = await slot_factory(capacity=2, booked=2)
    alice = await waitlist.join(slot.id, "alice")
    bob = await waitlist.join(slot.id, "bob")
    await ledger.release(slot.id, 2)
    clock.advance(hours=25)

    execute = test_session.execute
    booked_first = []

    async def book_alice_before_update(statement, *args, **kwargs):
        if isinstance(statement, Update) and not booked_first:
            booked_first.append(alice.id)
            await execute(
                update(WaitlistEntry).where(WaitlistEntry.id == alice.id).values(status=WaitlistStatus.BOOKED)
            )
        return await execute(statement, *args, **kwargs)

    monkeypatch.setattr(test_session, "execute", book_alice_before_update)
    result = await waitlist.expire_stale()
    monkeypatch.undo()

    assert booked_first == [alice.id]
    assert result.expired_count == 1
    assert (await waitlist.get_entry_by_id(alice.id)).status == WaitlistStatus.BOOKED
    assert (await waitlist.get_entry_by_id(bob.id)).status == WaitlistStatus.EXPIRED


@pytest.mark.asyncio
async def test_mark_booked_leaves_expired_entry_expired(waitlist, ledger, slot_factory, clock):
    slot = await slot_factory(capacity=1, booked=1)
    alice = await waitlist.join(slot.id, "alice")
    await ledger.release(slot.id, 1)
    clock.advance(hours=25)
    await waitlist.expire_stale()

    entry = await waitlist.mark_booked(alice.id)

    assert entry.status == WaitlistStatus.EXPIRED
