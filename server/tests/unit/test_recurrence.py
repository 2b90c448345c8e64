"""Unit tests for recurrence maths."""

from datetime import date, datetime

import pytest

from availability_engine.scheduling.recurrence import (
    DayOfMonthSelector,
    EveryDay,
    WeekdaySelector,
    compute_booking_deadline,
    compute_end_time,
    matching_days,
    parse_time,
    resolve_days_to_generate,
    rule_payload_errors,
    selector_for,
    slot_end,
)


def test_selector_for_each_frequency():
    assert selector_for("daily") == EveryDay()
    assert selector_for("weekly", days_of_week=[1, 3]) == WeekdaySelector(frozenset({1, 3}))
    assert selector_for("monthly", days_of_month=[15]) == DayOfMonthSelector(frozenset({15}))


@pytest.mark.parametrize(
    "frequency, dow, dom",
    [
        ("daily", [1], None),
        ("weekly", None, None),
        ("weekly", [1], [1]),
        ("monthly", [2], None),
        ("monthly", None, [32]),
        ("weekly", [0], None),
        ("hourly", None, None),
    ],
)
def test_selector_for_rejects_mismatched_payload(frequency, dow, dom):
    with pytest.raises(ValueError):
        selector_for(frequency, dow, dom)


def test_weekly_selector_uses_iso_weekdays():
    # 2025-03-03 is a Monday
    days = matching_days(WeekdaySelector(frozenset({1, 3, 5})), date(2025, 3, 3), date(2025, 3, 9))
    assert days == [date(2025, 3, 3), date(2025, 3, 5), date(2025, 3, 7)]


def test_sunday_is_seven():
    days = matching_days(WeekdaySelector(frozenset({7})), date(2025, 3, 3), date(2025, 3, 16))
    assert days == [date(2025, 3, 9), date(2025, 3, 16)]


def test_monthly_selector_skips_missing_days():
    """The 31st only matches in months that have one."""
    days = matching_days(DayOfMonthSelector(frozenset({31})), date(2025, 1, 1), date(2025, 4, 30))
    assert days == [date(2025, 1, 31), date(2025, 3, 31)]


def test_window_is_inclusive():
    days = matching_days(EveryDay(), date(2025, 3, 3), date(2025, 3, 3))
    assert days == [date(2025, 3, 3)]


def test_empty_window():
    assert matching_days(EveryDay(), date(2025, 3, 4), date(2025, 3, 3)) == []


@pytest.mark.parametrize(
    "start, duration, expected",
    [
        ("09:00", 120, "11:00"),
        ("09:15", 50, "10:05"),
        ("23:30", 60, "24:30"),
        ("00:00", 1440, "24:00"),
    ],
)
def test_compute_end_time(start, duration, expected):
    assert compute_end_time(start, duration) == expected


def test_slot_end_past_midnight_falls_on_next_day():
    assert slot_end(date(2025, 3, 3), "24:30") == datetime(2025, 3, 4, 0, 30)


@pytest.mark.parametrize("value", ["9:00", "24:00", "12:60", "noon", "", "12:00:00"])
def test_parse_time_rejects_invalid(value):
    with pytest.raises(ValueError):
        parse_time(value)


def test_booking_deadline():
    assert compute_booking_deadline(date(2025, 3, 10), "09:00", 0) == datetime(2025, 3, 10, 9, 0)
    assert compute_booking_deadline(date(2025, 3, 10), "09:00", 24) == datetime(2025, 3, 9, 9, 0)
    assert compute_booking_deadline(date(2025, 3, 10), "01:00", 3) == datetime(2025, 3, 9, 22, 0)


@pytest.mark.parametrize(
    "configured, override, expected",
    [
        (14, None, 14),
        (14, 7, 7),
        (14, 60, 14),
        (None, None, 30),
        ("indefinite", None, 30),
        ("indefinite", 10, 10),
        (0, None, 30),
        (-5, 3, 3),
        (True, None, 30),
        (14, 0, 14),
        (14, "7", 14),
    ],
)
def test_resolve_days_to_generate(configured, override, expected):
    assert resolve_days_to_generate(configured, override, default=30) == expected


def test_payload_errors_valid_recurring():
    assert rule_payload_errors("recurring", "weekly", [1], None, None, "09:00", 60) == []


def test_payload_errors_valid_one_time():
    assert rule_payload_errors("one-time", None, None, None, date(2025, 3, 10), "09:00", 60) == []


def test_payload_errors_one_time_with_pattern():
    errors = rule_payload_errors("one-time", "weekly", [1], None, None, "09:00", 60)
    assert "one-time rules cannot carry a recurrence pattern" in errors
    assert "one-time rules require a date" in errors


def test_payload_errors_recurring_with_date():
    errors = rule_payload_errors("recurring", "daily", None, None, date(2025, 3, 10), "09:00", 60)
    assert errors == ["recurring rules cannot carry a one-time date"]


def test_payload_errors_bad_time_and_duration():
    errors = rule_payload_errors("recurring", "daily", None, None, None, "25:00", 0)
    assert len(errors) == 2


def test_payload_errors_unknown_type():
    assert rule_payload_errors("sometimes", None, None, None, None, "09:00", 60)
