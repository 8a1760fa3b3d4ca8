"""In-process metric aggregation over raw billing records.

Three independent algorithms, each a pure function of its inputs:

- ``revenue_by_bucket``: group-by over paid invoices (sparse)
- ``active_count_by_containment``: interval membership per bucket (dense)
- ``active_count_by_delta``: +1/-1 events and a running total (dense)

Every function treats the window as half-open, ``from`` inclusive and
``to`` exclusive.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ..core.records import Invoice, Subscription
from ..core.time import format_bucket_key, parse_utc_iso8601
from ..observability import get_logger
from .time_windows import Grain, TimestampLike, generate_series, iter_series, truncate_date, validate_grain

__all__ = [
    "ActiveCountBucket",
    "RevenueBucket",
    "active_count_by_containment",
    "active_count_by_delta",
    "aligned_series",
    "revenue_by_bucket",
]

logger = get_logger("rollups")


@dataclass(frozen=True)
class RevenueBucket:
    """Revenue of one bucket, in dollars."""

    bucket: str
    revenue_usd: float

    def to_dict(self) -> dict[str, Any]:
        return {"bucket": self.bucket, "revenue_usd": self.revenue_usd}


@dataclass(frozen=True)
class ActiveCountBucket:
    """Active subscription count of one bucket."""

    bucket: str
    active_count: int

    def to_dict(self) -> dict[str, Any]:
        return {"bucket": self.bucket, "active_count": self.active_count}


def aligned_series(start: TimestampLike, end: TimestampLike, grain: Grain) -> list[str]:
    """Dense bucket axis for a window: ``generate_series`` over truncated bounds."""
    return generate_series(truncate_date(start, grain), truncate_date(end, grain), grain)


def revenue_by_bucket(
    invoices: Iterable[Invoice],
    start: TimestampLike,
    end: TimestampLike,
    grain: Grain,
) -> list[RevenueBucket]:
    """Sum paid invoice amounts per bucket.

    Invoices that are not paid, or whose ``period_start`` is outside
    ``[start, end)``, are skipped. Buckets without a contributing invoice
    are omitted. Cents are summed exactly and converted to dollars once
    per bucket.

    Parameters
    ----------
    invoices
        Invoice records
    start
        Window start (inclusive)
    end
        Window end (exclusive)
    grain
        Bucket width

    Returns
    -------
    list[RevenueBucket]
        Rows sorted by bucket
    """
    validate_grain(grain)
    start_dt = parse_utc_iso8601(start)
    end_dt = parse_utc_iso8601(end)

    cents_by_bucket: dict[str, int] = defaultdict(int)
    skipped = 0

    for invoice in invoices:
        if not invoice.is_paid:
            skipped += 1
            continue

        if invoice.period_start < start_dt or invoice.period_start >= end_dt:
            skipped += 1
            continue

        cents_by_bucket[truncate_date(invoice.period_start, grain)] += invoice.amount_cents

    logger.debug(
        "Revenue aggregated",
        grain=grain,
        buckets=len(cents_by_bucket),
        skipped=skipped,
    )

    return [
        RevenueBucket(bucket=bucket, revenue_usd=cents_by_bucket[bucket] / 100)
        for bucket in sorted(cents_by_bucket)
    ]


def active_count_by_containment(
    subscriptions: Iterable[Subscription],
    start: TimestampLike,
    end: TimestampLike,
    grain: Grain,
) -> list[ActiveCountBucket]:
    """Count subscriptions active at the instant of each bucket.

    A subscription is active at bucket instant ``t`` when
    ``started_at <= t`` and it is not canceled at or before ``t``.
    One row per bucket of the aligned series, zero-filled.
    """
    validate_grain(grain)
    subscriptions = list(subscriptions)

    rows = []
    bucket_start = truncate_date(start, grain)
    bucket_end = truncate_date(end, grain)
    for instant in iter_series(bucket_start, bucket_end, grain):
        count = sum(1 for sub in subscriptions if sub.is_active_at(instant))
        rows.append(ActiveCountBucket(bucket=format_bucket_key(instant), active_count=count))

    logger.debug("Containment counts computed", grain=grain, buckets=len(rows), subscriptions=len(subscriptions))
    return rows


def active_count_by_delta(
    subscriptions: Iterable[Subscription],
    start: TimestampLike,
    end: TimestampLike,
    grain: Grain,
) -> list[ActiveCountBucket]:
    """Count active subscriptions with signed events and a running total.

    Each subscription that started before ``end`` adds +1 at the bucket of
    ``started_at``; each cancellation at or after ``start`` adds -1 at the
    bucket of ``canceled_at``. The running total starts at 0 and only
    reads deltas at buckets of the aligned series, so events bucketed
    before the first series bucket never reach it. A subscription that
    was already running before the window, with no event inside it,
    therefore counts as 0 (net change within the window).

    Returns
    -------
    list[ActiveCountBucket]
        One row per bucket of the aligned series
    """
    validate_grain(grain)
    start_dt = parse_utc_iso8601(start)
    end_dt = parse_utc_iso8601(end)

    deltas: dict[str, int] = defaultdict(int)

    for sub in subscriptions:
        if sub.started_at < end_dt:
            deltas[truncate_date(sub.started_at, grain)] += 1

        if sub.canceled_at is not None and sub.canceled_at >= start_dt:
            deltas[truncate_date(sub.canceled_at, grain)] -= 1

    series = aligned_series(start_dt, end_dt, grain)

    rows = []
    running_total = 0
    for bucket in series:
        running_total += deltas.get(bucket, 0)
        rows.append(ActiveCountBucket(bucket=bucket, active_count=running_total))

    untracked = sum(1 for bucket in deltas if not series or bucket < series[0])
    logger.debug(
        "Delta counts computed",
        grain=grain,
        buckets=len(rows),
        delta_buckets=len(deltas),
        untracked_delta_buckets=untracked,
    )
    return rows
