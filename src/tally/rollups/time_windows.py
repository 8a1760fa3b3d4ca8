"""Date bucketing for time-series metrics.

Truncate instants to bucket keys and enumerate bucket series at a grain
(day, week, month). All arithmetic happens on the UTC calendar.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import Literal, get_args

from ..core.time import format_bucket_key, parse_utc_iso8601

__all__ = [
    "GRAINS",
    "Grain",
    "add_months",
    "generate_series",
    "get_week_start",
    "iter_series",
    "step",
    "truncate_date",
    "truncate_datetime",
    "validate_grain",
]

Grain = Literal["day", "week", "month"]

GRAINS: tuple[str, ...] = get_args(Grain)

TimestampLike = str | datetime


def validate_grain(grain: str) -> Grain:
    """Return ``grain`` unchanged if it is a known grain.

    Raises
    ------
    ValueError
        If the grain is not one of day, week, month
    """
    if grain not in GRAINS:
        raise ValueError(f"Unknown grain: {grain!r} (expected one of {', '.join(GRAINS)})")
    return grain  # type: ignore[return-value]


def get_week_start(dt: datetime, start_on: int = 0) -> datetime:
    """Get start of week for a datetime.

    Parameters
    ----------
    dt
        Datetime to get week start for
    start_on
        Day of week to start on (0=Monday, 6=Sunday)

    Returns
    -------
    datetime
        Start of week (same time as input)
    """
    days_since_start = (dt.weekday() - start_on) % 7
    return dt - timedelta(days=days_since_start)


def add_months(dt: datetime, months: int) -> datetime:
    """Move ``dt`` forward by whole calendar months.

    Day-of-month and time-of-day are kept. When the target month is too
    short for the day, the surplus days roll into the following month,
    so Jan 31 + 1 month is Mar 3 (Mar 2 in leap years).
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1

    days_in_month = calendar.monthrange(year, month)[1]
    if dt.day <= days_in_month:
        return dt.replace(year=year, month=month)

    first = dt.replace(year=year, month=month, day=1)
    return first + timedelta(days=dt.day - 1)


def step(dt: datetime, grain: Grain) -> datetime:
    """Advance ``dt`` by one bucket width."""
    if grain == "day":
        return dt + timedelta(days=1)
    elif grain == "week":
        return dt + timedelta(days=7)
    elif grain == "month":
        return add_months(dt, 1)
    else:
        raise ValueError(f"Unknown grain: {grain!r}")


def truncate_datetime(value: TimestampLike, grain: Grain) -> datetime:
    """Truncate an instant to the UTC midnight that starts its bucket.

    - day: midnight of the same UTC calendar day
    - week: midnight of the Monday of its ISO week (Sunday is the last day)
    - month: midnight of the first day of the month

    Returns a new datetime; the input is never modified.
    """
    validate_grain(grain)
    dt = parse_utc_iso8601(value)

    if grain == "month":
        dt = dt.replace(day=1)
    elif grain == "week":
        dt = get_week_start(dt, start_on=0)

    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def truncate_date(value: TimestampLike, grain: Grain) -> str:
    """Truncate an instant to its bucket key.

    Parameters
    ----------
    value
        Timestamp (datetime or ISO-8601 string)
    grain
        Bucket width

    Returns
    -------
    str
        Bucket key in YYYY-MM-DD form

    Examples
    --------
    >>> truncate_date("2025-10-08T15:30:00Z", "week")
    '2025-10-06'
    >>> truncate_date("2025-10-08T15:30:00Z", "month")
    '2025-10-01'
    """
    return format_bucket_key(truncate_datetime(value, grain))


def iter_series(start: TimestampLike, end: TimestampLike, grain: Grain) -> Iterator[datetime]:
    """Yield instants from ``start`` (inclusive) to ``end`` (exclusive) at ``grain`` steps.

    ``start`` is used as given; nothing is truncated here.
    """
    validate_grain(grain)
    current = parse_utc_iso8601(start)
    stop = parse_utc_iso8601(end)

    while current < stop:
        yield current
        current = step(current, grain)


def generate_series(start: TimestampLike, end: TimestampLike, grain: Grain) -> list[str]:
    """Enumerate bucket keys over ``[start, end)``.

    Emits the current date then advances by one grain step until the
    current instant reaches ``end``. Callers that want an aligned series
    truncate both bounds first.

    Parameters
    ----------
    start
        First instant (inclusive)
    end
        Upper bound (exclusive)
    grain
        Step width

    Returns
    -------
    list[str]
        Strictly increasing bucket keys; empty when ``start >= end``

    Examples
    --------
    >>> generate_series("2025-06-01", "2025-09-01", "month")
    ['2025-06-01', '2025-07-01', '2025-08-01']
    """
    return [format_bucket_key(instant) for instant in iter_series(start, end, grain)]
