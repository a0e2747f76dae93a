from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from nurtureflow.contracts import TimeWindow
from nurtureflow.errors import TimeWindowError
from nurtureflow.utils import as_utc, is_allowed, next_allowed, window_occurrence

MADRID = ZoneInfo("Europe/Madrid")
WEEKDAYS = [TimeWindow(start="09:00", end="18:00", days=["mon", "tue", "wed", "thu", "fri"])]


def local(day: int, hour: int, minute: int = 0) -> datetime:
    # June 2026: the 1st is a Monday
    return datetime(2026, 6, day, hour, minute, tzinfo=MADRID)


def test_no_windows_means_unrestricted():
    assert is_allowed(local(6, 3), [])
    assert next_allowed(local(6, 3), []) == local(6, 3)


def test_is_allowed_inside_and_outside():
    assert is_allowed(local(1, 10), WEEKDAYS)
    assert not is_allowed(local(1, 20), WEEKDAYS)
    # Saturday
    assert not is_allowed(local(6, 10), WEEKDAYS)


def test_bounds_are_inclusive_at_minute_resolution():
    assert is_allowed(local(1, 9, 0), WEEKDAYS)
    assert is_allowed(local(1, 18, 0), WEEKDAYS)
    assert not is_allowed(local(1, 18, 1), WEEKDAYS)
    assert not is_allowed(local(1, 8, 59), WEEKDAYS)


def test_next_allowed_returns_instant_when_allowed():
    instant = local(1, 10, 30)
    assert next_allowed(instant, WEEKDAYS) == instant
    assert next_allowed(instant, WEEKDAYS).tzinfo == timezone.utc


def test_next_allowed_same_day_before_window():
    assert next_allowed(local(1, 7), WEEKDAYS) == local(1, 9)


def test_next_allowed_after_window_moves_to_next_day():
    assert next_allowed(local(1, 20), WEEKDAYS) == local(2, 9)


def test_next_allowed_skips_weekend():
    # Friday evening -> Monday morning
    assert next_allowed(local(5, 20), WEEKDAYS) == local(8, 9)


def test_next_allowed_picks_earliest_of_several_windows():
    windows = [
        TimeWindow(start="16:00", end="19:00", days=["mon"]),
        TimeWindow(start="10:00", end="12:00", days=["mon"]),
    ]
    assert next_allowed(local(1, 8), windows) == local(1, 10)
    assert next_allowed(local(1, 13), windows) == local(1, 16)


# 2026-03-29: Madrid clocks jump from 02:00 to 03:00 (01:00 UTC)
SPRING_FORWARD = datetime(2026, 3, 29, 0, 30, tzinfo=timezone.utc)
INSIDE_GAP = [TimeWindow(start="02:10", end="02:40", days=["sun"])]
ACROSS_GAP = [TimeWindow(start="02:10", end="04:00", days=["sun"])]


@pytest.mark.parametrize(
    "instant, windows",
    [
        (local(1, 7), WEEKDAYS),
        (local(1, 12), WEEKDAYS),
        (local(1, 20), WEEKDAYS),
        (local(5, 23, 59), WEEKDAYS),
        (local(6, 12), WEEKDAYS),
        (SPRING_FORWARD, INSIDE_GAP),
        (SPRING_FORWARD, ACROSS_GAP),
    ],
)
def test_next_allowed_is_idempotent_fixed_point(instant, windows):
    first = next_allowed(instant, windows)
    assert is_allowed(first, windows)
    assert next_allowed(first, windows) == first
    assert first >= instant


def test_window_start_in_dst_gap():
    # the window does not exist that day, next Sunday it does
    assert next_allowed(SPRING_FORWARD, INSIDE_GAP) == datetime(
        2026, 4, 5, 2, 10, tzinfo=MADRID
    )
    # opens as soon as the clocks jump
    assert next_allowed(SPRING_FORWARD, ACROSS_GAP) == datetime(
        2026, 3, 29, 1, 0, tzinfo=timezone.utc
    )


def test_windows_without_days_raise():
    windows = [TimeWindow(start="09:00", end="10:00", days=[])]
    with pytest.raises(TimeWindowError):
        next_allowed(local(1, 12), windows)


def test_naive_datetimes_are_utc():
    assert as_utc(datetime(2026, 6, 1, 8)) == datetime(2026, 6, 1, 8, tzinfo=timezone.utc)
    # 08:00 UTC is 10:00 in Madrid during summer time
    assert is_allowed(datetime(2026, 6, 1, 8), WEEKDAYS)


def test_window_occurrence():
    start, end = window_occurrence(local(1, 10), WEEKDAYS)
    assert start == local(1, 9)
    assert end == local(1, 18, 1)
    assert window_occurrence(local(1, 20), WEEKDAYS) is None


def test_time_window_normalizes_input():
    window = TimeWindow(start="9:00", end="18:30", days=["Monday", "TUE"])
    assert window.start == "09:00"
    assert window.days == ["mon", "tue"]


def test_time_window_rejects_span_over_midnight():
    with pytest.raises(ValidationError):
        TimeWindow(start="22:00", end="06:00", days=["mon"])


def test_time_window_rejects_unknown_day():
    with pytest.raises(ValidationError):
        TimeWindow(start="09:00", end="10:00", days=["someday"])
