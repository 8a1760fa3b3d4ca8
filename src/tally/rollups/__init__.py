"""Time-bucketed metric rollups."""

from .aggregator import (
    ActiveCountBucket,
    RevenueBucket,
    active_count_by_containment,
    active_count_by_delta,
    aligned_series,
    revenue_by_bucket,
)
from .time_windows import (
    GRAINS,
    Grain,
    add_months,
    generate_series,
    get_week_start,
    truncate_date,
    validate_grain,
)

__all__ = [
    # Date bucketing
    "GRAINS",
    "Grain",
    "add_months",
    "generate_series",
    "get_week_start",
    "truncate_date",
    "validate_grain",
    # Aggregation
    "ActiveCountBucket",
    "RevenueBucket",
    "active_count_by_containment",
    "active_count_by_delta",
    "aligned_series",
    "revenue_by_bucket",
]
