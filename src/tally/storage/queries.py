"""Declarative (SQL) counterparts of the in-process aggregators.

Each query computes the same metric inside SQLite so the two
implementations can be checked against each other:

- revenue: ``GROUP BY`` over a truncated ``period_start``
- active subscriptions: bucket series ``LEFT JOIN`` interval containment
- subscriptions over time: +1/-1 events, per-bucket sums, running window sum

All queries read the same record window as ``BillingStore.fetch_*`` and
the same half-open, dense bucket series as ``aligned_series``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.time import format_storage_ts
from ..observability import get_logger
from ..rollups.aggregator import ActiveCountBucket, RevenueBucket
from ..rollups.time_windows import Grain, validate_grain
from .billing_store import window_params

if TYPE_CHECKING:
    from .billing_store import BillingStore

__all__ = [
    "active_subscriptions_with_sql",
    "revenue_with_sql",
    "subscriptions_with_sql",
]

logger = get_logger("storage")


def truncate_sql(expr: str) -> str:
    """SQL expression truncating ``expr`` to its bucket key at ``:grain``.

    ``date(x, '-6 days', 'weekday 1')`` lands on the Monday on or before x.
    """
    return (
        "(CASE :grain"
        f" WHEN 'day' THEN date({expr})"
        f" WHEN 'week' THEN date({expr}, '-6 days', 'weekday 1')"
        f" ELSE date({expr}, 'start of month') END)"
    )


def step_sql(expr: str) -> str:
    """SQL expression advancing bucket key ``expr`` by one ``:grain`` step."""
    return (
        "(CASE :grain"
        f" WHEN 'day' THEN date({expr}, '+1 day')"
        f" WHEN 'week' THEN date({expr}, '+7 days')"
        f" ELSE date({expr}, '+1 month') END)"
    )


SERIES_CTE = f"""
    bounds AS (
        SELECT {truncate_sql(':series_start')} AS first_bucket,
               {truncate_sql(':series_end')} AS end_bucket
    ),
    series(bucket) AS (
        SELECT first_bucket FROM bounds WHERE first_bucket < end_bucket
        UNION ALL
        SELECT {step_sql('s.bucket')}
        FROM series s, bounds b
        WHERE {step_sql('s.bucket')} < b.end_bucket
    )"""

WINDOWED_SUBSCRIPTIONS_CTE = """
    windowed AS (
        SELECT started_at, canceled_at
        FROM subscriptions
        WHERE julianday(started_at) < julianday(:end)
          AND (canceled_at IS NULL OR julianday(canceled_at) >= julianday(:start))
    )"""

REVENUE_SQL = f"""
    SELECT
        {truncate_sql('period_start')} AS bucket,
        SUM(amount_cents) / 100.0 AS revenue_usd
    FROM invoices
    WHERE julianday(period_start) >= julianday(:start)
      AND julianday(period_start) < julianday(:end)
      AND status = 'paid'
    GROUP BY bucket
    ORDER BY bucket
"""

ACTIVE_SUBSCRIPTIONS_SQL = f"""
    WITH RECURSIVE
    {WINDOWED_SUBSCRIPTIONS_CTE},
    {SERIES_CTE}
    SELECT
        s.bucket AS bucket,
        COUNT(w.started_at) AS active_count
    FROM series s
    LEFT JOIN windowed w
      ON julianday(w.started_at) <= julianday(s.bucket)
     AND (w.canceled_at IS NULL OR julianday(w.canceled_at) > julianday(s.bucket))
    GROUP BY s.bucket
    ORDER BY s.bucket
"""

SUBSCRIPTIONS_SQL = f"""
    WITH RECURSIVE
    {WINDOWED_SUBSCRIPTIONS_CTE},
    deltas AS (
        SELECT {truncate_sql('started_at')} AS bucket, 1 AS delta
        FROM windowed
        WHERE julianday(started_at) < julianday(:end)

        UNION ALL

        SELECT {truncate_sql('canceled_at')} AS bucket, -1 AS delta
        FROM windowed
        WHERE canceled_at IS NOT NULL
          AND julianday(canceled_at) >= julianday(:start)
    ),
    per_bucket AS (
        SELECT bucket, SUM(delta) AS bucket_delta
        FROM deltas
        GROUP BY bucket
    ),
    {SERIES_CTE},
    joined AS (
        SELECT s.bucket AS bucket, COALESCE(p.bucket_delta, 0) AS bucket_delta
        FROM series s
        LEFT JOIN per_bucket p ON s.bucket = p.bucket
    )
    SELECT
        bucket,
        SUM(bucket_delta) OVER (ORDER BY bucket ROWS BETWEEN UNBOUNDED PRECEDING AND CURRENT ROW) AS active_count
    FROM joined
    ORDER BY bucket
"""


def _params(start: str, end: str, grain: Grain) -> dict[str, str]:
    validate_grain(grain)
    # Series bounds truncate the instant itself; rounding up could cross a
    # bucket boundary.
    return {
        **window_params(start, end),
        "series_start": format_storage_ts(start),
        "series_end": format_storage_ts(end),
        "grain": grain,
    }


def revenue_with_sql(store: BillingStore, start: str, end: str, grain: Grain) -> list[RevenueBucket]:
    """Revenue per bucket computed by SQLite (sparse)."""
    rows = store.query(REVENUE_SQL, _params(start, end, grain))
    logger.debug("Revenue query returned", rows=len(rows), grain=grain)
    return [RevenueBucket(bucket=row["bucket"], revenue_usd=float(row["revenue_usd"])) for row in rows]


def active_subscriptions_with_sql(
    store: BillingStore, start: str, end: str, grain: Grain
) -> list[ActiveCountBucket]:
    """Active subscriptions per bucket by interval containment (dense)."""
    rows = store.query(ACTIVE_SUBSCRIPTIONS_SQL, _params(start, end, grain))
    logger.debug("Active subscriptions query returned", rows=len(rows), grain=grain)
    return [ActiveCountBucket(bucket=row["bucket"], active_count=int(row["active_count"])) for row in rows]


def subscriptions_with_sql(store: BillingStore, start: str, end: str, grain: Grain) -> list[ActiveCountBucket]:
    """Active subscriptions per bucket by running sum of deltas (dense)."""
    rows = store.query(SUBSCRIPTIONS_SQL, _params(start, end, grain))
    logger.debug("Subscriptions query returned", rows=len(rows), grain=grain)
    return [ActiveCountBucket(bucket=row["bucket"], active_count=int(row["active_count"])) for row in rows]
