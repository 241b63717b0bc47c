"""
Tests for date, rounding and division helpers.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from app.utils.helpers import (
    calculate_date_range,
    coerce_datetime,
    day_bounds,
    round_half_up,
    safe_divide,
)


class TestDateWindows:

    def test_calculate_date_range_ends_at_given_time(self):
        end = datetime(2026, 3, 2, 12, 0)
        start, stop = calculate_date_range(28, end)
        assert stop == end
        assert start == end - timedelta(days=28)

    def test_day_bounds_half_open(self):
        start, end = day_bounds(date(2026, 3, 2))
        assert start == datetime(2026, 3, 2)
        assert end == datetime(2026, 3, 3)


class TestCoerceDatetime:

    def test_aware_values_become_naive_utc(self):
        aware = datetime(2026, 3, 2, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert coerce_datetime(aware) == datetime(2026, 3, 2, 12, 0)

    def test_epoch_milliseconds(self):
        assert coerce_datetime(1772452800000) == datetime(2026, 3, 2, 12, 0)

    @pytest.mark.parametrize("value", [None, "", "yesterday", True, {"a": 1}])
    def test_invalid(self, value):
        assert coerce_datetime(value) is None


class TestNumbers:

    @pytest.mark.parametrize("value, places, expected", [
        (2.5, 0, 3.0),
        (0.125, 2, 0.13),
        (52.345, 2, 52.35),
    ])
    def test_round_half_up(self, value, places, expected):
        assert round_half_up(value, places) == expected

    def test_safe_divide_by_zero(self):
        assert safe_divide(5, 0) == 0.0
        assert safe_divide(5, 2) == 2.5
