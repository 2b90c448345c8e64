"""Recurrence maths: day selectors, slot times and generation windows.

Everything here is pure and works on naive local dates and times. A rule's
day selector is a tagged union keyed by its frequency:

- ``daily``   -> :class:`EveryDay` (no selector)
- ``weekly``  -> :class:`WeekdaySelector` (ISO weekdays, Monday=1 .. Sunday=7)
- ``monthly`` -> :class:`DayOfMonthSelector` (days of month 1..31)
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterable, Iterator, Optional, Union

TIME_FORMAT_HINT = "HH:MM"


class Frequency(str, Enum):
    """Recurrence frequency of a recurring rule."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RuleType(str, Enum):
    """Kind of availability rule."""
    RECURRING = "recurring"
    ONE_TIME = "one-time"


@dataclass(frozen=True)
class EveryDay:
    """Selector of a daily rule."""

    def matches(self, day: date) -> bool:
        return True


@dataclass(frozen=True)
class WeekdaySelector:
    """Selects days whose ISO weekday is in ``days``."""

    days: frozenset[int]

    def __post_init__(self) -> None:
        if not self.days:
            raise ValueError("days_of_week must not be empty")
        invalid = sorted(d for d in self.days if not 1 <= d <= 7)
        if invalid:
            raise ValueError(f"days_of_week must be between 1 (Monday) and 7 (Sunday), got {invalid}")

    def matches(self, day: date) -> bool:
        return day.isoweekday() in self.days


@dataclass(frozen=True)
class DayOfMonthSelector:
    """Selects days whose day-of-month is in ``days``."""

    days: frozenset[int]

    def __post_init__(self) -> None:
        if not self.days:
            raise ValueError("days_of_month must not be empty")
        invalid = sorted(d for d in self.days if not 1 <= d <= 31)
        if invalid:
            raise ValueError(f"days_of_month must be between 1 and 31, got {invalid}")

    def matches(self, day: date) -> bool:
        return day.day in self.days


DaySelector = Union[EveryDay, WeekdaySelector, DayOfMonthSelector]


def selector_for(
    frequency: Union[Frequency, str],
    days_of_week: Optional[Iterable[int]] = None,
    days_of_month: Optional[Iterable[int]] = None,
) -> DaySelector:
    """
    Build the selector variant for ``frequency``.

    Raises:
        ValueError: If the selector payload does not belong to the frequency
    """
    frequency = Frequency(frequency)
    if frequency is Frequency.DAILY:
        if days_of_week or days_of_month:
            raise ValueError("daily rules take no day selector")
        return EveryDay()
    if frequency is Frequency.WEEKLY:
        if days_of_month:
            raise ValueError("weekly rules select days_of_week, not days_of_month")
        return WeekdaySelector(frozenset(days_of_week or ()))
    if days_of_week:
        raise ValueError("monthly rules select days_of_month, not days_of_week")
    return DayOfMonthSelector(frozenset(days_of_month or ()))


def parse_time(value: str) -> tuple[int, int]:
    """
    Parse an ``HH:MM`` wall-clock time.

    Raises:
        ValueError: If the value is not a valid 24-hour time
    """
    parts = value.split(":") if isinstance(value, str) else []
    if len(parts) != 2 or not all(p.isdigit() and len(p) == 2 for p in parts):
        raise ValueError(f"time must be formatted as {TIME_FORMAT_HINT}, got {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if hours > 23 or minutes > 59:
        raise ValueError(f"time out of range: {value!r}")
    return hours, minutes


def format_minutes(total_minutes: int) -> str:
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def compute_end_time(start_time: str, duration_minutes: int) -> str:
    """
    Start time plus duration in minute arithmetic.

    Times past midnight are not rolled over into the next day, so a late
    start with a long duration yields hours of 24 or more.
    """
    hours, minutes = parse_time(start_time)
    return format_minutes(hours * 60 + minutes + duration_minutes)


def _minutes_after_midnight(value: str) -> int:
    # End times may exceed 23:59, so parse_time's range check does not apply
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def slot_start(day: date, start_time: str) -> datetime:
    """Start instant of a slot."""
    hours, minutes = parse_time(start_time)
    return datetime.combine(day, time(hours, minutes))


def slot_end(day: date, end_time: str) -> datetime:
    """End instant of a slot; end times past 24:00 fall on the following day."""
    return datetime.combine(day, time()) + timedelta(minutes=_minutes_after_midnight(end_time))


def compute_booking_deadline(day: date, start_time: str, booking_deadline_hours: int) -> datetime:
    """Instant after which the slot stops accepting reservations."""
    return slot_start(day, start_time) - timedelta(hours=booking_deadline_hours)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Every calendar day from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def matching_days(selector: DaySelector, start: date, end: date) -> list[date]:
    return [day for day in iter_days(start, end) if selector.matches(day)]


def _usable_days(value: object) -> Optional[int]:
    # bool is an int subclass but never a day count
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value >= 1 else None


def resolve_days_to_generate(
    configured: object,
    override: object = None,
    default: int = 30,
) -> int:
    """
    Number of days a vendor-triggered regeneration covers.

    The rule's configured value falls back to ``default`` when it is not a
    positive integer (which covers the "indefinite" sentinel). A positive
    integer override can shorten the window but never extend it.
    """
    days = _usable_days(configured) or default
    requested = _usable_days(override)
    if requested is not None:
        days = min(requested, days)
    return days


def rule_payload_errors(
    rule_type: Union[RuleType, str, None],
    frequency: Optional[str],
    days_of_week: Optional[Iterable[int]],
    days_of_month: Optional[Iterable[int]],
    one_time_date: Optional[date],
    start_time: Optional[str],
    duration_minutes: Optional[int],
) -> list[str]:
    """
    Problems with a rule's payload; an empty list means the payload is valid.

    A recurring rule carries a frequency with its matching selector and no
    date. A one-time rule carries a date and no recurrence fields. Both need
    a start time and a positive duration.
    """
    errors: list[str] = []

    try:
        kind = RuleType(rule_type)
    except ValueError:
        return [f"rule_type must be one of {[t.value for t in RuleType]}"]

    if kind is RuleType.RECURRING:
        if one_time_date is not None:
            errors.append("recurring rules cannot carry a one-time date")
        if frequency is None:
            errors.append("recurring rules require a frequency")
        else:
            try:
                selector_for(frequency, days_of_week, days_of_month)
            except ValueError as e:
                errors.append(str(e))
    else:
        if frequency is not None or days_of_week or days_of_month:
            errors.append("one-time rules cannot carry a recurrence pattern")
        if one_time_date is None:
            errors.append("one-time rules require a date")

    if not start_time:
        errors.append("start_time is required")
    else:
        try:
            parse_time(start_time)
        except ValueError as e:
            errors.append(str(e))

    if duration_minutes is None:
        errors.append("duration_minutes is required")
    elif duration_minutes < 1:
        errors.append("duration_minutes must be positive")

    return errors
