"""Rule service for availability rule CRUD and validation."""

import logging
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..core.locks import listing_locks
from ..models.rule import AvailabilityRule
from ..models.slot import Slot
from ..scheduling.recurrence import RuleType, rule_payload_errors
from ..schemas.rule import CreateRuleRequest, OneTimeSchedule, UpdateRuleRequest
from .slot_service import SlotService

logger = logging.getLogger(__name__)

PAYLOAD_FIELDS = (
    "rule_type",
    "frequency",
    "days_of_week",
    "days_of_month",
    "one_time_date",
    "start_time",
    "duration_minutes",
)


def pattern_columns(pattern) -> dict[str, Any]:
    """Column values for a recurring pattern; clears the one-time payload."""
    return {
        "frequency": pattern.frequency,
        "days_of_week": getattr(pattern, "days_of_week", None),
        "days_of_month": getattr(pattern, "days_of_month", None),
        "start_time": pattern.start_time,
        "duration_minutes": pattern.duration_minutes,
        "one_time_date": None,
    }


def one_time_columns(schedule: OneTimeSchedule) -> dict[str, Any]:
    """Column values for a one-time schedule; clears the recurring payload."""
    return {
        "frequency": None,
        "days_of_week": None,
        "days_of_month": None,
        "one_time_date": schedule.date,
        "start_time": schedule.start_time,
        "duration_minutes": schedule.duration_minutes,
    }


def generate_days_column(value) -> Optional[int]:
    """'indefinite' is stored as NULL."""
    return None if value == "indefinite" else value


class RuleService:
    """Service for availability rule operations."""

    def __init__(self, db: AsyncSession, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or system_clock

    async def create_rule(self, request: CreateRuleRequest, caller) -> AvailabilityRule:
        """
        Create a rule owned by the calling vendor.

        Raises:
            ValidationError: If the payload does not match the rule type
        """
        if request.rule_type is RuleType.RECURRING:
            payload = pattern_columns(request.pattern)
        else:
            payload = one_time_columns(request.one_time)

        values = {"rule_type": request.rule_type.value, **payload}
        self._validate_payload(values)

        rule = AvailabilityRule(
            listing_id=request.listing_id,
            vendor_id=caller.user_id,
            name=request.name,
            capacity=request.capacity,
            booking_deadline_hours=request.booking_deadline_hours,
            generate_days_in_advance=generate_days_column(request.generate_days_in_advance),
            active=request.active,
            **values,
        )

        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(
            "Availability rule created",
            extra={
                "rule_id": str(rule.id),
                "listing_id": rule.listing_id,
                "vendor_id": rule.vendor_id,
                "rule_type": rule.rule_type,
                "frequency": rule.frequency,
            }
        )
        return rule

    async def update_rule(self, rule_id: UUID, request: UpdateRuleRequest, caller) -> AvailabilityRule:
        """
        Replace the given fields of a rule and re-validate the result.

        Already generated slots are not touched; regenerate to apply changes.

        Raises:
            NotFoundError: If the rule does not exist
            AuthorizationError: If the caller does not own the rule
            ValidationError: If the merged rule is inconsistent
        """
        rule = await self.get_rule_by_id_or_raise(rule_id)
        self.check_owner(rule, caller)

        provided = request.model_fields_set
        merged = {name: getattr(rule, name) for name in PAYLOAD_FIELDS}

        if "rule_type" in provided and request.rule_type is not None:
            merged["rule_type"] = request.rule_type.value
        if "pattern" in provided and request.pattern is not None:
            merged.update(pattern_columns(request.pattern))
        if "one_time" in provided and request.one_time is not None:
            merged.update(one_time_columns(request.one_time))

        self._validate_payload(merged)

        for name, value in merged.items():
            setattr(rule, name, value)
        for name in ("name", "capacity", "booking_deadline_hours", "active"):
            value = getattr(request, name)
            if name in provided and value is not None:
                setattr(rule, name, value)
        if "generate_days_in_advance" in provided and request.generate_days_in_advance is not None:
            rule.generate_days_in_advance = generate_days_column(request.generate_days_in_advance)

        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(
            "Availability rule updated",
            extra={"rule_id": str(rule.id), "fields": sorted(provided - {"rule_id"})}
        )
        return rule

    async def delete_rule(self, rule_id: UUID, caller) -> int:
        """
        Delete a rule along with its future slots that have no bookings.

        Slots dated before today or holding bookings survive, detached from
        the rule.

        Returns:
            Number of slots deleted
        """
        rule = await self.get_rule_by_id_or_raise(rule_id)
        self.check_owner(rule, caller)
        listing_id = rule.listing_id

        async with listing_locks.hold(listing_id):
            stmt = select(Slot.id).where(
                Slot.rule_id == rule.id,
                Slot.slot_date >= self.clock.today(),
                Slot.booked == 0,
            )
            candidates = list((await self.db.execute(stmt)).scalars())

            slot_service = SlotService(self.db, self.clock)
            deleted = 0
            for slot_id in candidates:
                if await slot_service.delete_if_unbooked(slot_id, rule.id):
                    deleted += 1

            await slot_service.detach_rule(rule.id)
            await self.db.delete(rule)
            await self.db.commit()

        logger.info(
            "Availability rule deleted",
            extra={"rule_id": str(rule_id), "listing_id": listing_id, "slots_deleted": deleted}
        )
        return deleted

    async def toggle_active(self, rule_id: UUID, caller) -> AvailabilityRule:
        """Flip whether slots are generated from the rule; existing slots stay."""
        rule = await self.get_rule_by_id_or_raise(rule_id)
        self.check_owner(rule, caller)

        rule.active = not rule.active
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info("Availability rule toggled", extra={"rule_id": str(rule.id), "active": rule.active})
        return rule

    async def get_rule_by_id(self, rule_id: UUID) -> Optional[AvailabilityRule]:
        """Get rule by ID."""
        stmt = (
            select(AvailabilityRule)
            .where(AvailabilityRule.id == rule_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_rule_by_id_or_raise(self, rule_id: UUID) -> AvailabilityRule:
        """
        Get rule by ID or raise NotFoundError.

        Raises:
            NotFoundError: If rule not found
        """
        rule = await self.get_rule_by_id(rule_id)
        if not rule:
            logger.warning("Availability rule not found", extra={"rule_id": str(rule_id)})
            raise NotFoundError(resource_type="rule", resource_id=str(rule_id))
        return rule

    async def list_rules_for_listing(self, listing_id: str, active_only: bool = False) -> List[AvailabilityRule]:
        stmt = select(AvailabilityRule).where(AvailabilityRule.listing_id == listing_id)
        if active_only:
            stmt = stmt.where(AvailabilityRule.active.is_(True))
        result = await self.db.execute(stmt.order_by(AvailabilityRule.created_at, AvailabilityRule.name))
        return list(result.scalars())

    async def list_rules_for_vendor(self, vendor_id: str, active_only: bool = False) -> List[AvailabilityRule]:
        stmt = select(AvailabilityRule).where(AvailabilityRule.vendor_id == vendor_id)
        if active_only:
            stmt = stmt.where(AvailabilityRule.active.is_(True))
        result = await self.db.execute(stmt.order_by(AvailabilityRule.created_at, AvailabilityRule.name))
        return list(result.scalars())

    async def list_active_rules(self) -> List[AvailabilityRule]:
        stmt = select(AvailabilityRule).where(AvailabilityRule.active.is_(True)).order_by(AvailabilityRule.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars())

    @staticmethod
    def check_owner(rule: AvailabilityRule, caller) -> None:
        if rule.vendor_id != caller.user_id:
            logger.warning(
                "Rule ownership check failed",
                extra={"rule_id": str(rule.id), "vendor_id": rule.vendor_id, "caller_id": caller.user_id}
            )
            raise AuthorizationError(detail="You can only manage your own availability rules")

    @staticmethod
    def _validate_payload(values: dict[str, Any]) -> None:
        errors = rule_payload_errors(
            values.get("rule_type"),
            values.get("frequency"),
            values.get("days_of_week"),
            values.get("days_of_month"),
            values.get("one_time_date"),
            values.get("start_time"),
            values.get("duration_minutes"),
        )
        if errors:
            raise ValidationError(detail="; ".join(errors), errors={"payload": errors})
