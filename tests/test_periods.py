from datetime import datetime

import pytest

from periods import is_past_period, month_bounds, previous_month


NOW = datetime(2025, 6, 15, 12, 30)


@pytest.mark.parametrize(
    "year, month",
    [(2025, 1), (2025, 5), (2024, 12), (2024, 6), (1999, 7)],
)
def test_earlier_months_are_past(year: int, month: int) -> None:
    assert is_past_period(year, month, NOW) is True


@pytest.mark.parametrize(
    "year, month",
    [(2025, 6), (2025, 7), (2025, 12), (2026, 1), (2026, 5)],
)
def test_current_and_future_months_are_not_past(year: int, month: int) -> None:
    assert is_past_period(year, month, NOW) is False


def test_first_instant_of_month_is_still_current() -> None:
    now = datetime(2025, 3, 1, 0, 0)
    assert is_past_period(2025, 3, now) is False
    assert is_past_period(2025, 2, now) is True


def test_month_bounds_use_real_month_length() -> None:
    feb_leap = month_bounds(2024, 2)
    assert feb_leap.start == datetime(2024, 2, 1)
    assert feb_leap.end == datetime(2024, 2, 29, 23, 59, 59, 999999)

    feb = month_bounds(2025, 2)
    assert feb.end == datetime(2025, 2, 28, 23, 59, 59, 999999)

    april = month_bounds(2025, 4)
    assert april.end.day == 30


def test_month_bounds_december_rolls_into_next_year() -> None:
    dec = month_bounds(2024, 12)
    assert dec.start == datetime(2024, 12, 1)
    assert dec.end == datetime(2024, 12, 31, 23, 59, 59, 999999)


def test_previous_month_wraps_year() -> None:
    assert previous_month(datetime(2025, 1, 10)) == (2024, 12)
    assert previous_month(datetime(2025, 6, 10)) == (2025, 5)
