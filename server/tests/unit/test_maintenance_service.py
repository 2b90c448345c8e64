"""Unit tests for the maintenance sweeps."""

from datetime import date, timedelta

import pytest

from availability_engine.models.slot import SlotStatus
from availability_engine.models.waitlist import WaitlistStatus
from availability_engine.schemas.rule import CreateRuleRequest
from availability_engine.services.ledger_service import LedgerService
from availability_engine.services.maintenance_service import MaintenanceService
from availability_engine.services.rule_service import RuleService
from availability_engine.services.waitlist_service import WaitlistService

from conftest import VENDOR


@pytest.fixture
def maintenance(test_session, clock, outbox):
    return MaintenanceService(test_session, clock, outbox)


@pytest.mark.asyncio
async def test_generation_sweep(maintenance, test_session, clock, weekly_rule_data):
    await RuleService(test_session, clock).create_rule(CreateRuleRequest(**weekly_rule_data), VENDOR)

    summary = await maintenance.generate_slots()

    # Mon/Wed/Fri from 2025-03-03 through 2025-03-17
    assert summary.rules_processed == 1
    assert summary.slots_created == 7
    assert (await maintenance.generate_slots()).slots_created == 0


@pytest.mark.asyncio
async def test_generation_sweep_from_given_day(maintenance, test_session, clock, weekly_rule_data):
    await RuleService(test_session, clock).create_rule(CreateRuleRequest(**weekly_rule_data), VENDOR)

    summary = await maintenance.generate_slots(today=date(2025, 3, 4))

    # Wed 5th through Mon 17th
    assert summary.slots_created == 6


@pytest.mark.asyncio
async def test_expiry_sweep_promotes_next_with_fresh_window(
    maintenance, test_session, clock, outbox, dispatcher, slot_factory
):
    slot = await slot_factory(capacity=1, booked=1)
    waitlist = WaitlistService(test_session, clock, outbox)
    alice = await waitlist.join(slot.id, "alice")
    bob = await waitlist.join(slot.id, "bob")
    await LedgerService(test_session, clock, outbox).release(slot.id, 1)

    clock.advance(hours=25)
    result = await maintenance.process_waitlist_expiry()
    await outbox.drain()

    assert result.expired_count == 1
    assert result.affected_slot_ids == [slot.id]
    assert result.promoted_count == 1

    assert (await waitlist.get_entry_by_id(alice.id)).status == WaitlistStatus.EXPIRED
    bob = await waitlist.get_entry_by_id(bob.id)
    assert bob.status == WaitlistStatus.NOTIFIED
    assert bob.notified_at == clock.now()
    assert bob.expires_at == clock.now() + timedelta(hours=24)
    assert dispatcher.offered_to() == ["alice", "bob"]


@pytest.mark.asyncio
async def test_expiry_sweep_with_nothing_stale(maintenance, slot_factory):
    await slot_factory()

    result = await maintenance.process_waitlist_expiry()

    assert (result.expired_count, result.promoted_count) == (0, 0)
    assert result.affected_slot_ids == []


@pytest.mark.asyncio
async def test_expiry_sweep_without_anyone_left_waiting(maintenance, test_session, clock, outbox, slot_factory):
    slot = await slot_factory(capacity=1, booked=1)
    waitlist = WaitlistService(test_session, clock, outbox)
    await waitlist.join(slot.id, "alice")
    await LedgerService(test_session, clock, outbox).release(slot.id, 1)

    clock.advance(days=2)
    result = await maintenance.process_waitlist_expiry()

    assert result.expired_count == 1
    assert result.promoted_count == 0


@pytest.mark.asyncio
async def test_completion_sweep(maintenance, slot_factory):
    past = await slot_factory(slot_date=date(2025, 3, 1))
    future = await slot_factory(slot_date=date(2025, 3, 20))

    assert await maintenance.mark_past_slots_completed() == 1

    service = maintenance.slot_service
    assert (await service.get_slot_by_id(past.id)).status == SlotStatus.COMPLETED
    assert (await service.get_slot_by_id(future.id)).status == SlotStatus.ACTIVE
