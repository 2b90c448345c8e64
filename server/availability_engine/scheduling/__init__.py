"""Pure scheduling and capacity logic shared by the services."""

from .capacity import CapacityState, InsufficientCapacity, validate_guests
from .recurrence import (
    DayOfMonthSelector,
    DaySelector,
    EveryDay,
    Frequency,
    RuleType,
    WeekdaySelector,
    compute_booking_deadline,
    compute_end_time,
    iter_days,
    matching_days,
    parse_time,
    resolve_days_to_generate,
    rule_payload_errors,
    selector_for,
    slot_end,
    slot_start,
)

__all__ = [
    "CapacityState",
    "InsufficientCapacity",
    "validate_guests",
    "DayOfMonthSelector",
    "DaySelector",
    "EveryDay",
    "Frequency",
    "RuleType",
    "WeekdaySelector",
    "compute_booking_deadline",
    "compute_end_time",
    "iter_days",
    "matching_days",
    "parse_time",
    "resolve_days_to_generate",
    "rule_payload_errors",
    "selector_for",
    "slot_end",
    "slot_start",
]
