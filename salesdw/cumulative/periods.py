"""
Period arithmetic for cumulative tables.

A period is either a calendar ``date`` (daily tables) or a year ``int``
(annual tables). "Previous" always means the immediately preceding period
in backfill order, never a wall-clock offset.
"""

from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Sequence, Tuple, Union

from salesdw.exceptions import ConfigError, PeriodOrderError

Period = Union[date, int]


class Granularity(str, Enum):
    """Grain of a cumulative table"""
    DAY = "day"
    YEAR = "year"


def coerce_period(value, granularity: Granularity) -> Period:
    """
    Normalize a user-supplied period.

    Accepts dates, ISO strings ("2023-01-05"), years as int or str ("2024").
    Yearly tables take the year of a date or ISO date string.
    """
    if granularity == Granularity.DAY:
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value))
        except ValueError as e:
            raise ConfigError(f"Invalid daily period {value!r}: expected YYYY-MM-DD") from e

    if isinstance(value, bool):
        raise ConfigError(f"Invalid yearly period {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, date):
        return value.year
    text = str(value)
    try:
        if "-" in text:
            return date.fromisoformat(text).year
        return int(text)
    except ValueError as e:
        raise ConfigError(f"Invalid yearly period {value!r}: expected YYYY or YYYY-MM-DD") from e


def previous_period(period: Period, granularity: Granularity) -> Period:
    if granularity == Granularity.DAY:
        return period - timedelta(days=1)
    return period - 1


def next_period(period: Period, granularity: Granularity) -> Period:
    if granularity == Granularity.DAY:
        return period + timedelta(days=1)
    return period + 1


def period_of(invoice_date: date, granularity: Granularity) -> Period:
    """The period a transaction dated ``invoice_date`` belongs to."""
    if granularity == Granularity.DAY:
        return invoice_date
    return invoice_date.year


def period_bounds(period: Period, granularity: Granularity) -> Tuple[date, date]:
    """Half-open ``[start, end)`` date range covered by a period."""
    if granularity == Granularity.DAY:
        return period, period + timedelta(days=1)
    return date(period, 1, 1), date(period + 1, 1, 1)


def period_key(period: Period) -> str:
    """Stable string form used in the commit ledger."""
    if isinstance(period, date):
        return period.isoformat()
    return str(period)


def period_range(start: Period, end: Period, granularity: Granularity) -> List[Period]:
    """All periods from ``start`` to ``end`` inclusive, ascending."""
    if end < start:
        raise PeriodOrderError(f"End period {end} is before start period {start}")
    periods = []
    current = start
    while current <= end:
        periods.append(current)
        current = next_period(current, granularity)
    return periods


def validate_chain(periods: Sequence[Period], granularity: Granularity) -> None:
    """
    Ensure periods are strictly ascending with no gaps.

    Raises:
        PeriodOrderError: on a repeat, a step backwards or a skipped period
    """
    for prev, cur in zip(periods, periods[1:]):
        expected = next_period(prev, granularity)
        if cur != expected:
            raise PeriodOrderError(
                f"Periods must be consecutive and ascending: {period_key(prev)} "
                f"is followed by {period_key(cur)}, expected {period_key(expected)}"
            )


def coerce_periods(values: Iterable, granularity: Granularity) -> List[Period]:
    return [coerce_period(v, granularity) for v in values]
