"""Unit tests for slot generation from rules."""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from availability_engine.core.exceptions import AuthorizationError, ValidationError
from availability_engine.models.slot import Slot, SlotStatus
from availability_engine.schemas.rule import CreateRuleRequest
from availability_engine.services.rule_service import RuleService
from availability_engine.services.slot_generator import SlotGenerator

from conftest import OTHER_VENDOR, VENDOR


async def _create_rule(session, clock, **overrides):
    data = {
        "listing_id": "listing-1",
        "name": "Morning kayak tour",
        "rule_type": "recurring",
        "pattern": {"frequency": "weekly", "days_of_week": [1, 3, 5], "start_time": "09:00", "duration_minutes": 120},
        "capacity": 4,
        "booking_deadline_hours": 2,
        "generate_days_in_advance": 14,
    }
    data.update(overrides)
    return await RuleService(session, clock).create_rule(CreateRuleRequest(**data), VENDOR)


async def _slots(session):
    result = await session.execute(select(Slot).order_by(Slot.slot_date, Slot.start_time))
    return list(result.scalars())


@pytest.mark.asyncio
async def test_weekly_rule_generates_matching_days(test_session, clock):
    rule = await _create_rule(test_session, clock)

    created = await SlotGenerator(test_session, clock).generate_from_rule(
        rule.id, date(2025, 3, 3), date(2025, 3, 9)
    )

    slots = await _slots(test_session)
    assert len(created) == 3
    assert [slot.slot_date for slot in slots] == [date(2025, 3, 3), date(2025, 3, 5), date(2025, 3, 7)]

    first = slots[0]
    assert first.rule_id == rule.id
    assert first.vendor_id == VENDOR.user_id
    assert (first.start_time, first.end_time) == ("09:00", "11:00")
    assert (first.capacity, first.booked, first.available) == (4, 0, 4)
    assert first.booking_deadline == datetime(2025, 3, 3, 7, 0)
    assert first.status == SlotStatus.ACTIVE


@pytest.mark.asyncio
async def test_generation_is_idempotent(test_session, clock):
    rule = await _create_rule(test_session, clock)
    generator = SlotGenerator(test_session, clock)

    first = await generator.generate_from_rule(rule.id, date(2025, 3, 3), date(2025, 3, 16))
    second = await generator.generate_from_rule(rule.id, date(2025, 3, 3), date(2025, 3, 16))
    wider = await generator.generate_from_rule(rule.id, date(2025, 3, 3), date(2025, 3, 23))

    assert len(first) == 6
    assert second == []
    assert len(wider) == 3
    assert len(await _slots(test_session)) == 9


@pytest.mark.asyncio
async def test_existing_manual_slot_is_not_duplicated(test_session, clock, slot_factory):
    manual = await slot_factory(slot_date=date(2025, 3, 5), start_time="09:00", capacity=2)
    rule = await _create_rule(test_session, clock)

    created = await SlotGenerator(test_session, clock).generate_from_rule(
        rule.id, date(2025, 3, 3), date(2025, 3, 9)
    )

    assert len(created) == 2
    slots = await _slots(test_session)
    assert len(slots) == 3
    assert next(slot for slot in slots if slot.slot_date == date(2025, 3, 5)).id == manual.id


@pytest.mark.asyncio
async def test_daily_and_monthly_rules(test_session, clock):
    daily = await _create_rule(
        test_session, clock,
        pattern={"frequency": "daily", "start_time": "07:00", "duration_minutes": 30},
    )
    monthly = await _create_rule(
        test_session, clock,
        pattern={"frequency": "monthly", "days_of_month": [1, 31], "start_time": "18:00", "duration_minutes": 60},
    )
    generator = SlotGenerator(test_session, clock)

    assert len(await generator.generate_from_rule(daily.id, date(2025, 3, 3), date(2025, 3, 9))) == 7
    monthly_created = await generator.generate_from_rule(monthly.id, date(2025, 3, 1), date(2025, 4, 30))
    assert len(monthly_created) == 3  # Mar 1, Mar 31, Apr 1


@pytest.mark.asyncio
async def test_one_time_rule_ignores_window(test_session, clock):
    rule = await _create_rule(
        test_session, clock,
        rule_type="one-time",
        pattern=None,
        one_time={"date": "2025-06-01", "start_time": "20:00", "duration_minutes": 90},
    )

    created = await SlotGenerator(test_session, clock).generate_from_rule(
        rule.id, date(2025, 3, 3), date(2025, 3, 9)
    )

    assert len(created) == 1
    assert (await _slots(test_session))[0].slot_date == date(2025, 6, 1)


@pytest.mark.asyncio
async def test_inactive_rule_generates_nothing(test_session, clock):
    rule = await _create_rule(test_session, clock, active=False)

    created = await SlotGenerator(test_session, clock).generate_from_rule(
        rule.id, date(2025, 3, 3), date(2025, 3, 9)
    )

    assert created == []


@pytest.mark.asyncio
async def test_inverted_window_is_rejected(test_session, clock):
    rule = await _create_rule(test_session, clock)

    with pytest.raises(ValidationError):
        await SlotGenerator(test_session, clock).generate_from_rule(rule.id, date(2025, 3, 9), date(2025, 3, 3))


@pytest.mark.asyncio
async def test_regenerate_uses_rule_horizon_and_override(test_session, clock):
    rule = await _create_rule(
        test_session, clock,
        pattern={"frequency": "daily", "start_time": "07:00", "duration_minutes": 30},
        generate_days_in_advance=10,
    )
    generator = SlotGenerator(test_session, clock)

    shortened = await generator.regenerate_for_rule(rule.id, VENDOR, days_in_advance=3)
    full = await generator.regenerate_for_rule(rule.id, VENDOR, days_in_advance=50)

    # Today plus the horizon, inclusive
    assert len(shortened) == 4
    assert len(full) == 7
    last = (await _slots(test_session))[-1]
    assert last.slot_date == clock.today() + timedelta(days=10)


@pytest.mark.asyncio
async def test_regenerate_indefinite_rule_uses_default(test_session, clock):
    rule = await _create_rule(
        test_session, clock,
        pattern={"frequency": "daily", "start_time": "07:00", "duration_minutes": 30},
        generate_days_in_advance="indefinite",
    )

    created = await SlotGenerator(test_session, clock).regenerate_for_rule(rule.id, VENDOR)

    assert len(created) == 31


@pytest.mark.asyncio
async def test_regenerate_requires_owner(test_session, clock):
    rule = await _create_rule(test_session, clock)

    with pytest.raises(AuthorizationError):
        await SlotGenerator(test_session, clock).regenerate_for_rule(rule.id, OTHER_VENDOR)


@pytest.mark.asyncio
async def test_sweep_covers_active_rules_only(test_session, clock):
    await _create_rule(
        test_session, clock,
        pattern={"frequency": "daily", "start_time": "07:00", "duration_minutes": 30},
        generate_days_in_advance=2,
    )
    await _create_rule(
        test_session, clock,
        pattern={"frequency": "daily", "start_time": "12:00", "duration_minutes": 30},
        generate_days_in_advance=2,
        active=False,
    )
    await _create_rule(
        test_session, clock,
        rule_type="one-time",
        pattern=None,
        one_time={"date": "2025-01-01", "start_time": "20:00", "duration_minutes": 90},
    )
    generator = SlotGenerator(test_session, clock)

    summary = await generator.generate_for_active_rules()
    again = await generator.generate_for_active_rules()

    assert summary.rules_processed == 1
    assert summary.slots_created == 3
    assert summary.failed_rule_ids == []
    assert again.slots_created == 0
    count = (await test_session.execute(select(func.count()).select_from(Slot))).scalar_one()
    assert count == 3


@pytest.mark.asyncio
async def test_sweep_uses_long_horizon_for_indefinite_rules(test_session, clock):
    await _create_rule(
        test_session, clock,
        pattern={"frequency": "daily", "start_time": "07:00", "duration_minutes": 30},
        generate_days_in_advance="indefinite",
    )

    summary = await SlotGenerator(test_session, clock).generate_for_active_rules()

    assert summary.slots_created == 91


@pytest.mark.asyncio
async def test_weekly_ninety_minute_rule(test_session, clock):
    rule = await _create_rule(
        test_session, clock,
        pattern={"frequency": "weekly", "days_of_week": [1, 3, 5], "start_time": "09:00", "duration_minutes": 90},
    )

    created = await SlotGenerator(test_session, clock).generate_from_rule(
        rule.id, date(2025, 3, 10), date(2025, 3, 16)
    )

    assert len(created) == 3
    assert {slot.end_time for slot in await _slots(test_session)} == {"10:30"}
