"""
Unit Tests - Period Arithmetic
"""
from datetime import date

import pytest

from salesdw.cumulative.periods import (
    Granularity,
    coerce_period,
    next_period,
    period_bounds,
    period_key,
    period_of,
    period_range,
    previous_period,
    validate_chain,
)
from salesdw.exceptions import ConfigError, PeriodOrderError


class TestCoercePeriod:
    """Tests for coerce_period"""

    def test_daily_from_iso_string(self):
        assert coerce_period("2023-01-05", Granularity.DAY) == date(2023, 1, 5)

    def test_daily_rejects_year(self):
        with pytest.raises(ConfigError):
            coerce_period("2023", Granularity.DAY)

    def test_yearly_from_string_and_date(self):
        assert coerce_period("2024", Granularity.YEAR) == 2024
        assert coerce_period(date(2024, 6, 1), Granularity.YEAR) == 2024

    def test_yearly_from_iso_day_string(self):
        assert coerce_period("2023-01-04", Granularity.YEAR) == 2023
        assert coerce_period("2024-12-31", Granularity.YEAR) == 2024

    def test_yearly_rejects_bad_iso_day(self):
        with pytest.raises(ConfigError):
            coerce_period("2023-13-01", Granularity.YEAR)

    def test_yearly_rejects_garbage(self):
        with pytest.raises(ConfigError):
            coerce_period("last-year", Granularity.YEAR)


class TestPeriodSteps:
    """Tests for previous/next period and bounds"""

    def test_previous_day_crosses_year(self):
        assert previous_period(date(2024, 1, 1), Granularity.DAY) == date(2023, 12, 31)

    def test_next_day_leap_year(self):
        assert next_period(date(2024, 2, 28), Granularity.DAY) == date(2024, 2, 29)

    def test_year_steps(self):
        assert previous_period(2024, Granularity.YEAR) == 2023
        assert next_period(2024, Granularity.YEAR) == 2025

    def test_year_bounds_half_open(self):
        assert period_bounds(2023, Granularity.YEAR) == (date(2023, 1, 1), date(2024, 1, 1))

    def test_period_of_invoice(self):
        assert period_of(date(2023, 7, 14), Granularity.YEAR) == 2023
        assert period_of(date(2023, 7, 14), Granularity.DAY) == date(2023, 7, 14)

    def test_period_key(self):
        assert period_key(date(2023, 1, 5)) == "2023-01-05"
        assert period_key(2023) == "2023"


class TestChains:
    """Tests for period_range and validate_chain"""

    def test_range_inclusive(self):
        periods = period_range(date(2023, 1, 30), date(2023, 2, 2), Granularity.DAY)
        assert periods == [date(2023, 1, 30), date(2023, 1, 31), date(2023, 2, 1), date(2023, 2, 2)]

    def test_range_single_period(self):
        assert period_range(2023, 2023, Granularity.YEAR) == [2023]

    def test_range_reversed_fails(self):
        with pytest.raises(PeriodOrderError):
            period_range(2025, 2023, Granularity.YEAR)

    def test_chain_consecutive_passes(self):
        validate_chain([2022, 2023, 2024], Granularity.YEAR)

    def test_chain_gap_fails(self):
        with pytest.raises(PeriodOrderError):
            validate_chain([2022, 2024], Granularity.YEAR)

    def test_chain_repeat_fails(self):
        with pytest.raises(PeriodOrderError):
            validate_chain([date(2023, 1, 1), date(2023, 1, 1)], Granularity.DAY)

    def test_chain_descending_fails(self):
        with pytest.raises(PeriodOrderError):
            validate_chain([2024, 2023], Granularity.YEAR)
