"""Slot generator: expands availability rules into concrete slots."""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.exceptions import ValidationError
from ..core.locks import listing_locks
from ..core.observability import metrics_collector
from ..models.rule import AvailabilityRule
from ..models.slot import Slot, SlotStatus
from ..scheduling.recurrence import (
    compute_booking_deadline,
    compute_end_time,
    matching_days,
    resolve_days_to_generate,
)
from .rule_service import RuleService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotPlan:
    """Everything needed to materialize slots of one rule, detached from the session."""

    rule_id: UUID
    listing_id: str
    vendor_id: str
    days: tuple[date, ...]
    start_time: str
    end_time: str
    capacity: int
    booking_deadline_hours: int


@dataclass
class GenerationSummary:
    """Outcome of generating slots for every active rule."""

    rules_processed: int = 0
    slots_created: int = 0
    failed_rule_ids: list[UUID] = field(default_factory=list)


def plan_for_rule(rule: AvailabilityRule, start_date: date, end_date: date) -> SlotPlan:
    """
    Occurrence dates of ``rule`` within the inclusive window.

    One-time rules yield their single date whatever the window.
    """
    if rule.is_one_time:
        days: tuple[date, ...] = (rule.one_time_date,)
    else:
        days = tuple(matching_days(rule.selector, start_date, end_date))

    return SlotPlan(
        rule_id=rule.id,
        listing_id=rule.listing_id,
        vendor_id=rule.vendor_id,
        days=days,
        start_time=rule.start_time,
        end_time=compute_end_time(rule.start_time, rule.duration_minutes),
        capacity=rule.capacity,
        booking_deadline_hours=rule.booking_deadline_hours,
    )


class SlotGenerator:
    """Materializes slots from rules, idempotently per (listing, date, start time)."""

    def __init__(self, db: AsyncSession, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or system_clock
        self.rule_service = RuleService(db, self.clock)

    async def _existing_days(self, plan: SlotPlan) -> set[date]:
        if not plan.days:
            return set()
        stmt = select(Slot.slot_date).where(
            Slot.listing_id == plan.listing_id,
            Slot.start_time == plan.start_time,
            Slot.slot_date >= min(plan.days),
            Slot.slot_date <= max(plan.days),
        )
        return set((await self.db.execute(stmt)).scalars())

    async def _materialize(self, plan: SlotPlan) -> list[UUID]:
        existing = await self._existing_days(plan)
        slots = [
            Slot(
                listing_id=plan.listing_id,
                vendor_id=plan.vendor_id,
                rule_id=plan.rule_id,
                slot_date=day,
                start_time=plan.start_time,
                end_time=plan.end_time,
                capacity=plan.capacity,
                booked=0,
                available=plan.capacity,
                booking_deadline=compute_booking_deadline(day, plan.start_time, plan.booking_deadline_hours),
                status=SlotStatus.ACTIVE,
                version=1,
            )
            for day in plan.days
            if day not in existing
        ]
        if not slots:
            # End the read transaction
            await self.db.commit()
            return []

        self.db.add_all(slots)
        await self.db.commit()
        return [slot.id for slot in slots]

    async def generate_from_rule(self, rule_id: UUID, start_date: date, end_date: date) -> list[UUID]:
        """
        Create the rule's slots within ``[start_date, end_date]``.

        Days that already have a slot at the rule's start time are skipped,
        so re-running over the same window creates nothing. Missing and
        inactive rules generate nothing.

        Returns:
            IDs of the newly created slots
        """
        if start_date > end_date:
            raise ValidationError(detail="start_date must not be after end_date")

        rule = await self.rule_service.get_rule_by_id(rule_id)
        if rule is None or not rule.active:
            logger.info(
                "Skipping generation for missing or inactive rule",
                extra={"rule_id": str(rule_id), "found": rule is not None}
            )
            return []

        plan = plan_for_rule(rule, start_date, end_date)

        async with listing_locks.hold(plan.listing_id):
            try:
                created = await self._materialize(plan)
            except IntegrityError:
                # Another process inserted some of the same slots; the re-run skips them
                await self.db.rollback()
                logger.warning(
                    "Concurrent slot generation detected, retrying window",
                    extra={"rule_id": str(rule_id), "listing_id": plan.listing_id}
                )
                created = await self._materialize(plan)

        metrics_collector.record_slots_generated(len(created))
        logger.info(
            "Slots generated from rule",
            extra={
                "rule_id": str(rule_id),
                "listing_id": plan.listing_id,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "candidates": len(plan.days),
                "created": len(created),
            }
        )
        return created

    async def regenerate_for_rule(
        self, rule_id: UUID, caller, days_in_advance: Optional[int] = None
    ) -> list[UUID]:
        """
        Vendor-triggered generation from today over the rule's horizon.

        The horizon is the rule's ``generate_days_in_advance`` (the configured
        default when it is "indefinite"), shortened by ``days_in_advance``
        when that is smaller.
        """
        rule = await self.rule_service.get_rule_by_id_or_raise(rule_id)
        self.rule_service.check_owner(rule, caller)

        days = resolve_days_to_generate(
            rule.generate_days_in_advance,
            days_in_advance,
            default=settings.default_generate_days,
        )
        today = self.clock.today()
        return await self.generate_from_rule(rule.id, today, today + timedelta(days=days))

    async def generate_window_for_rule(self, rule_id: UUID, caller, start_date: date, end_date: date) -> list[UUID]:
        """Owner-checked generation over an explicit window."""
        rule = await self.rule_service.get_rule_by_id_or_raise(rule_id)
        self.rule_service.check_owner(rule, caller)
        return await self.generate_from_rule(rule.id, start_date, end_date)

    async def generate_for_active_rules(self, today: Optional[date] = None) -> GenerationSummary:
        """
        Roll every active rule's horizon forward.

        "Indefinite" rules use the configured long horizon. One-time rules
        dated before today are skipped. A failing rule is logged and the
        sweep continues with the next one.
        """
        today = today or self.clock.today()
        rules = await self.rule_service.list_active_rules()
        # Plain values; a rollback below expires ORM instances
        work = [
            (
                rule.id,
                rule.generate_days_in_advance or settings.indefinite_generation_horizon_days,
                rule.is_one_time and rule.one_time_date < today,
            )
            for rule in rules
        ]

        summary = GenerationSummary()
        for rule_id, days, past_one_time in work:
            if past_one_time:
                continue
            try:
                created = await self.generate_from_rule(rule_id, today, today + timedelta(days=days))
            except Exception as e:
                await self.db.rollback()
                summary.failed_rule_ids.append(rule_id)
                logger.error(
                    "Slot generation failed for rule",
                    extra={"rule_id": str(rule_id), "error": str(e)},
                    exc_info=True
                )
                continue
            summary.rules_processed += 1
            summary.slots_created += len(created)

        logger.info(
            "Slot generation sweep completed",
            extra={
                "rules_processed": summary.rules_processed,
                "slots_created": summary.slots_created,
                "failed_rules": len(summary.failed_rule_ids),
            }
        )
        return summary
