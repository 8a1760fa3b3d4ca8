"""Time utilities for tally.

UTC discipline for every timestamp the system touches:
- All instants are compared on the UTC line
- Date-only strings mean UTC midnight
- Naive datetimes are assumed to be UTC
- Bucket keys are always YYYY-MM-DD
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytz

__all__ = [
    "BUCKET_KEY_FORMAT",
    "STORAGE_FORMAT",
    "ensure_utc",
    "format_bucket_key",
    "format_storage_bound",
    "format_storage_ts",
    "format_utc_iso8601",
    "get_current_utc",
    "parse_utc_iso8601",
]

BUCKET_KEY_FORMAT = "%Y-%m-%d"
STORAGE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_current_utc() -> datetime:
    """Get current time in UTC.

    Returns
    -------
    datetime
        Current time in UTC with timezone info
    """
    return datetime.now(pytz.UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime.

    Naive datetimes are taken to already be UTC. Aware datetimes are
    converted. A new object is returned; ``dt`` is never modified.
    """
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def parse_utc_iso8601(value: str | datetime | date) -> datetime:
    """Parse an ISO-8601 date or timestamp into an aware UTC datetime.

    Accepts:
    - ``2025-06-01`` (UTC midnight)
    - ``2025-06-01T12:30:00Z`` / ``2025-06-01T12:30:00+02:00``
    - ``2025-06-01 12:30:00`` (naive, taken as UTC)
    - ``datetime`` and ``date`` objects

    Parameters
    ----------
    value
        Value to parse

    Returns
    -------
    datetime
        Timezone-aware datetime in UTC

    Raises
    ------
    ValueError
        If the string is not a valid ISO-8601 date or timestamp
    """
    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=pytz.UTC)

    if not isinstance(value, str):
        raise ValueError(f"Cannot parse timestamp from {type(value).__name__}: {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("Cannot parse empty timestamp")

    # fromisoformat() only learned the "Z" suffix in 3.11
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO-8601 timestamp: {value!r}") from exc

    return ensure_utc(parsed)


def format_utc_iso8601(dt: datetime) -> str:
    """Format datetime as ISO-8601 UTC string (``2025-06-01T00:00:00+00:00``)."""
    return ensure_utc(dt).isoformat()


def format_bucket_key(dt: datetime) -> str:
    """Format the UTC calendar date of ``dt`` as a bucket key (YYYY-MM-DD)."""
    return ensure_utc(dt).strftime(BUCKET_KEY_FORMAT)


def format_storage_ts(value: str | datetime | date) -> str:
    """Format a timestamp for SQLite storage (``YYYY-MM-DD HH:MM:SS`` UTC).

    Sub-second precision is dropped; SQLite date functions and text
    comparison both work on this form.
    """
    return parse_utc_iso8601(value).strftime(STORAGE_FORMAT)


def format_storage_bound(value: str | datetime | date) -> str:
    """Format a window bound for comparison with stored timestamps.

    Stored timestamps have whole seconds, so a bound with a fractional
    second is rounded up: ``t >= bound`` and ``t < bound`` then select the
    same stored rows as the exact bound does.
    """
    dt = parse_utc_iso8601(value)
    if dt.microsecond:
        dt = dt.replace(microsecond=0) + timedelta(seconds=1)
    return dt.strftime(STORAGE_FORMAT)
