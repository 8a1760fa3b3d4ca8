"""Tests for in-process metric aggregation."""

from datetime import datetime

import pytest

from tally.core.records import Invoice, Subscription
from tally.rollups.aggregator import (
    ActiveCountBucket,
    RevenueBucket,
    active_count_by_containment,
    active_count_by_delta,
    aligned_series,
    revenue_by_bucket,
)


def invoice(period_start, amount_cents, status="paid"):
    return Invoice.from_row({"period_start": period_start, "amount_cents": amount_cents, "status": status})


def subscription(started_at, canceled_at=None):
    return Subscription.from_row({"started_at": started_at, "canceled_at": canceled_at})


def counts(rows):
    return [row.active_count for row in rows]


@pytest.fixture
def aligned_subscriptions():
    """Subscriptions whose events fall on day boundaries inside June 1-7."""
    return [
        subscription("2025-06-02T00:00:00Z"),
        subscription("2025-06-03T00:00:00Z", "2025-06-05T00:00:00Z"),
        subscription("2025-06-01T00:00:00Z", "2025-06-07T00:00:00Z"),
    ]


class TestAlignedSeries:
    def test_truncates_both_bounds(self):
        assert aligned_series("2025-06-04", "2025-07-01", "week") == [
            "2025-06-02",
            "2025-06-09",
            "2025-06-16",
            "2025-06-23",
        ]

    def test_month(self):
        assert aligned_series("2025-06-15", "2025-10-01", "month") == [
            "2025-06-01",
            "2025-07-01",
            "2025-08-01",
            "2025-09-01",
        ]


class TestRevenueByBucket:
    def test_monthly_revenue(self):
        invoices = [invoice("2025-07-01", 500), invoice("2025-08-01", 500)]

        rows = revenue_by_bucket(invoices, "2025-07-01", "2025-09-01", "month")

        assert rows == [
            RevenueBucket(bucket="2025-07-01", revenue_usd=5.0),
            RevenueBucket(bucket="2025-08-01", revenue_usd=5.0),
        ]
        assert [row.to_dict() for row in rows] == [
            {"bucket": "2025-07-01", "revenue_usd": 5.0},
            {"bucket": "2025-08-01", "revenue_usd": 5.0},
        ]

    def test_only_paid_invoices_count(self):
        invoices = [
            invoice("2025-07-01", 500),
            invoice("2025-07-02", 900, "refunded"),
            invoice("2025-07-03", 700, "void"),
        ]

        rows = revenue_by_bucket(invoices, "2025-07-01", "2025-09-01", "month")

        assert rows == [RevenueBucket(bucket="2025-07-01", revenue_usd=5.0)]

    def test_window_is_half_open(self):
        invoices = [
            invoice("2025-06-30T23:59:59Z", 100),
            invoice("2025-07-01T00:00:00Z", 200),
            invoice("2025-08-31T23:59:59Z", 300),
            invoice("2025-09-01T00:00:00Z", 400),
        ]

        rows = revenue_by_bucket(invoices, "2025-07-01", "2025-09-01", "month")

        assert rows == [
            RevenueBucket(bucket="2025-07-01", revenue_usd=2.0),
            RevenueBucket(bucket="2025-08-01", revenue_usd=3.0),
        ]

    def test_out_of_window_invoice_excluded_even_if_bucket_is_reported(self):
        # Both truncate to July, but only the second is inside the window
        invoices = [invoice("2025-07-03", 1000), invoice("2025-07-20", 250)]

        rows = revenue_by_bucket(invoices, "2025-07-15", "2025-09-01", "month")

        assert rows == [RevenueBucket(bucket="2025-07-01", revenue_usd=2.5)]

    def test_sparse_buckets(self):
        invoices = [invoice("2025-06-01", 100), invoice("2025-06-05", 100)]

        rows = revenue_by_bucket(invoices, "2025-06-01", "2025-06-08", "day")

        assert [row.bucket for row in rows] == ["2025-06-01", "2025-06-05"]

    def test_rows_sorted_by_bucket(self):
        invoices = [invoice("2025-08-10", 100), invoice("2025-06-10", 100), invoice("2025-07-10", 100)]

        rows = revenue_by_bucket(invoices, "2025-06-01", "2025-10-01", "month")

        assert [row.bucket for row in rows] == ["2025-06-01", "2025-07-01", "2025-08-01"]

    def test_cents_summed_before_conversion(self):
        invoices = [invoice("2025-06-01", 10) for _ in range(10)]

        rows = revenue_by_bucket(invoices, "2025-06-01", "2025-07-01", "month")

        assert rows[0].revenue_usd == 1.0

    def test_weekly_buckets_start_on_monday(self):
        # Sunday Jun 8 belongs to the week of Monday Jun 2
        invoices = [invoice("2025-06-08T20:00:00Z", 1999), invoice("2025-06-09T00:00:00Z", 1)]

        rows = revenue_by_bucket(invoices, "2025-06-01", "2025-07-01", "week")

        assert rows == [
            RevenueBucket(bucket="2025-06-02", revenue_usd=19.99),
            RevenueBucket(bucket="2025-06-09", revenue_usd=0.01),
        ]

    def test_no_invoices(self):
        assert revenue_by_bucket([], "2025-06-01", "2025-07-01", "day") == []

    def test_unknown_grain(self):
        with pytest.raises(ValueError):
            revenue_by_bucket([], "2025-06-01", "2025-07-01", "year")


class TestActiveCountByContainment:
    def test_counts_per_day(self, aligned_subscriptions):
        rows = active_count_by_containment(aligned_subscriptions, "2025-06-01", "2025-06-08", "day")

        assert [row.bucket for row in rows] == [
            "2025-06-01",
            "2025-06-02",
            "2025-06-03",
            "2025-06-04",
            "2025-06-05",
            "2025-06-06",
            "2025-06-07",
        ]
        assert counts(rows) == [1, 2, 3, 3, 2, 2, 1]

    def test_dense_with_zero_buckets(self):
        rows = active_count_by_containment([], "2025-06-01", "2025-10-01", "month")

        assert rows == [
            ActiveCountBucket(bucket="2025-06-01", active_count=0),
            ActiveCountBucket(bucket="2025-07-01", active_count=0),
            ActiveCountBucket(bucket="2025-08-01", active_count=0),
            ActiveCountBucket(bucket="2025-09-01", active_count=0),
        ]

    def test_measured_at_bucket_start_instant(self):
        # Started mid-day, so not yet active at the start of its own day
        subs = [subscription("2025-06-02T10:00:00Z")]

        rows = active_count_by_containment(subs, "2025-06-01", "2025-06-05", "day")

        assert counts(rows) == [0, 0, 1, 1]

    def test_subscription_started_before_window_is_counted(self):
        subs = [subscription("2025-05-15T00:00:00Z")]

        rows = active_count_by_containment(subs, "2025-06-01", "2025-06-04", "day")

        assert counts(rows) == [1, 1, 1]

    def test_empty_window(self):
        assert active_count_by_containment([], "2025-06-01", "2025-06-01", "day") == []

    def test_unknown_grain(self):
        with pytest.raises(ValueError):
            active_count_by_containment([], "2025-06-01", "2025-07-01", "hour")


class TestActiveCountByDelta:
    def test_running_total(self, aligned_subscriptions):
        rows = active_count_by_delta(aligned_subscriptions, "2025-06-01", "2025-06-08", "day")

        assert counts(rows) == [1, 2, 3, 3, 2, 2, 1]

    @pytest.mark.parametrize("grain", ["day", "week", "month"])
    def test_matches_containment_for_aligned_events(self, grain):
        subs = [
            subscription("2025-06-02T00:00:00Z"),
            subscription("2025-06-09T00:00:00Z", "2025-07-07T00:00:00Z"),
            subscription("2025-07-01T00:00:00Z", "2025-08-01T00:00:00Z"),
            subscription("2025-08-04T00:00:00Z", "2025-09-01T00:00:00Z"),
        ]
        if grain == "week":
            # Keep every event on a Monday
            subs = [
                subscription("2025-06-02T00:00:00Z"),
                subscription("2025-06-09T00:00:00Z", "2025-07-07T00:00:00Z"),
                subscription("2025-06-30T00:00:00Z", "2025-08-04T00:00:00Z"),
            ]
        if grain == "month":
            subs = [
                subscription("2025-06-01T00:00:00Z"),
                subscription("2025-07-01T00:00:00Z", "2025-09-01T00:00:00Z"),
                subscription("2025-08-01T00:00:00Z", "2025-09-01T00:00:00Z"),
            ]

        delta = active_count_by_delta(subs, "2025-06-01", "2025-10-01", grain)
        containment = active_count_by_containment(subs, "2025-06-01", "2025-10-01", grain)

        assert delta == containment

    def test_subscription_running_before_window_is_not_counted(self):
        subs = [subscription("2025-05-15T00:00:00Z")]

        rows = active_count_by_delta(subs, "2025-06-01", "2025-06-04", "day")

        assert counts(rows) == [0, 0, 0]

    def test_cancellation_of_earlier_subscription_goes_negative(self):
        subs = [subscription("2025-05-20T00:00:00Z", "2025-06-04T00:00:00Z")]

        rows = active_count_by_delta(subs, "2025-06-01", "2025-06-08", "day")

        assert counts(rows) == [0, 0, 0, -1, -1, -1, -1]

    def test_events_after_window_ignored(self):
        subs = [subscription("2025-06-02T00:00:00Z", "2025-06-20T00:00:00Z"), subscription("2025-06-10T00:00:00Z")]

        rows = active_count_by_delta(subs, "2025-06-01", "2025-06-05", "day")

        assert counts(rows) == [0, 1, 1, 1]

    def test_event_in_partial_first_week_counts(self):
        # Window starts Wednesday; the aligned series starts Monday Jun 2
        subs = [subscription("2025-06-03T00:00:00Z")]

        rows = active_count_by_delta(subs, "2025-06-04", "2025-06-23", "week")

        assert [row.bucket for row in rows] == ["2025-06-02", "2025-06-09", "2025-06-16"]
        assert counts(rows) == [1, 1, 1]

    def test_same_bucket_start_and_cancel_net_zero(self):
        subs = [subscription("2025-06-02T08:00:00Z", "2025-06-02T20:00:00Z")]

        rows = active_count_by_delta(subs, "2025-06-01", "2025-06-04", "day")

        assert counts(rows) == [0, 0, 0]

    def test_dense_output(self):
        rows = active_count_by_delta([], "2025-06-01", "2025-09-01", "month")

        assert rows == [
            ActiveCountBucket(bucket="2025-06-01", active_count=0),
            ActiveCountBucket(bucket="2025-07-01", active_count=0),
            ActiveCountBucket(bucket="2025-08-01", active_count=0),
        ]

    def test_empty_window(self):
        subs = [subscription("2025-06-02T00:00:00Z")]

        assert active_count_by_delta(subs, "2025-07-01", "2025-06-01", "day") == []

    def test_accepts_generator(self, aligned_subscriptions):
        rows = active_count_by_delta(iter(aligned_subscriptions), "2025-06-01", "2025-06-08", "day")

        assert counts(rows)[-1] == 1


class TestNaiveRecords:
    """Records built from naive datetimes aggregate as UTC."""

    def test_revenue(self):
        invoices = [
            Invoice(period_start=datetime(2025, 7, 1), amount_cents=500, status="paid"),
            Invoice(period_start=datetime(2025, 8, 1, 12), amount_cents=500, status="paid"),
        ]

        rows = revenue_by_bucket(invoices, "2025-07-01", "2025-09-01", "month")

        assert rows == [
            RevenueBucket(bucket="2025-07-01", revenue_usd=5.0),
            RevenueBucket(bucket="2025-08-01", revenue_usd=5.0),
        ]

    def test_containment(self):
        subs = [Subscription(started_at=datetime(2025, 6, 2), canceled_at=datetime(2025, 6, 4))]

        rows = active_count_by_containment(subs, "2025-06-01", "2025-06-05", "day")

        assert counts(rows) == [0, 1, 1, 0]

    def test_delta(self):
        subs = [Subscription(started_at=datetime(2025, 6, 2), canceled_at=datetime(2025, 6, 4))]

        rows = active_count_by_delta(subs, "2025-06-01", "2025-06-05", "day")

        assert counts(rows) == [0, 1, 1, 0]

    def test_naive_window_bounds(self):
        subs = [Subscription(started_at=datetime(2025, 6, 2))]

        rows = active_count_by_delta(subs, datetime(2025, 6, 1), datetime(2025, 6, 4), "day")

        assert counts(rows) == [0, 1, 1]
