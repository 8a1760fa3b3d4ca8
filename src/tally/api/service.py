"""Metric execution and cross-strategy parity checks."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..observability import get_logger, timing_context
from ..rollups.aggregator import active_count_by_containment, active_count_by_delta, revenue_by_bucket
from ..storage.queries import active_subscriptions_with_sql, revenue_with_sql, subscriptions_with_sql
from .contracts import METRICS, DateRangeParams, MetricContract, get_contract

if TYPE_CHECKING:
    from ..storage.billing_store import BillingStore

__all__ = [
    "BucketMismatch",
    "MetricsService",
    "ParityReport",
]

logger = get_logger("api")

Row = dict[str, Any]


@dataclass(frozen=True)
class BucketMismatch:
    """A bucket where the two strategies disagree (``None`` = bucket missing)."""

    bucket: str
    sql: Any
    code: Any

    def to_dict(self) -> dict[str, Any]:
        return {"bucket": self.bucket, "sql": self.sql, "code": self.code}


@dataclass
class ParityReport:
    """Comparison of the sql and code strategies of one metric."""

    metric: str
    params: dict[str, str]
    sql_rows: list[Row]
    code_rows: list[Row]
    mismatches: list[BucketMismatch] = field(default_factory=list)

    @property
    def matches(self) -> bool:
        return not self.mismatches

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "params": self.params,
            "matches": self.matches,
            "buckets": len(self.code_rows),
            "mismatches": [mismatch.to_dict() for mismatch in self.mismatches],
        }


class MetricsService:
    """Runs metric contracts against a billing store.

    ``code`` contracts fetch the window's records and aggregate them in
    process; ``sql`` contracts run the declarative query. Results are
    plain row dicts, checked against the contract's response schema when
    ``validate_responses`` is set.
    """

    def __init__(self, store: BillingStore, *, validate_responses: bool = True) -> None:
        self.store = store
        self.validate_responses = validate_responses

        self._handlers: dict[tuple[str, str], Callable[[DateRangeParams], list[Any]]] = {
            ("revenue", "sql"): self._revenue_sql,
            ("revenue", "code"): self._revenue_code,
            ("active_subscriptions", "sql"): self._active_subscriptions_sql,
            ("active_subscriptions", "code"): self._active_subscriptions_code,
            ("subscriptions", "sql"): self._subscriptions_sql,
            ("subscriptions", "code"): self._subscriptions_code,
        }

    def run(self, contract: MetricContract, params: DateRangeParams, *, trace_id: str | None = None) -> list[Row]:
        """Compute one metric with one strategy.

        Raises
        ------
        SchemaValidationError
            If validation is on and the rows do not match the schema
        StoreError
            If the store cannot be read
        """
        handler = self._handlers[(contract.metric, contract.strategy)]

        with timing_context(contract.name, component="api", trace_id=trace_id, **params.to_dict()) as ctx:
            rows = [row.to_dict() for row in handler(params)]
            ctx["rows"] = len(rows)

        if self.validate_responses:
            contract.response_schema.check(rows)

        return rows

    def run_metric(self, metric: str, strategy: str, params: DateRangeParams, **kwargs: Any) -> list[Row]:
        """Compute ``metric`` with ``strategy`` (looks up the contract)."""
        return self.run(get_contract(metric, strategy), params, **kwargs)

    def compare(self, metric: str, params: DateRangeParams, *, trace_id: str | None = None) -> ParityReport:
        """Run both strategies of ``metric`` and report per-bucket differences.

        Raises
        ------
        ValueError
            If the metric is unknown
        """
        if metric not in METRICS:
            raise ValueError(f"Unknown metric: {metric!r} (expected one of {', '.join(METRICS)})")

        sql_rows = self.run_metric(metric, "sql", params, trace_id=trace_id)
        code_rows = self.run_metric(metric, "code", params, trace_id=trace_id)

        value_key = "revenue_usd" if metric == "revenue" else "active_count"
        sql_values = {row["bucket"]: row[value_key] for row in sql_rows}
        code_values = {row["bucket"]: row[value_key] for row in code_rows}

        mismatches = [
            BucketMismatch(bucket=bucket, sql=sql_values.get(bucket), code=code_values.get(bucket))
            for bucket in sorted(sql_values.keys() | code_values.keys())
            if sql_values.get(bucket) != code_values.get(bucket)
        ]

        report = ParityReport(
            metric=metric,
            params=params.to_dict(),
            sql_rows=sql_rows,
            code_rows=code_rows,
            mismatches=mismatches,
        )

        if report.matches:
            logger.info("Strategies agree", metric=metric, buckets=len(code_rows), trace_id=trace_id)
        else:
            logger.warning("Strategies disagree", metric=metric, mismatches=len(mismatches), trace_id=trace_id)

        return report

    def _revenue_sql(self, params: DateRangeParams) -> list[Any]:
        return revenue_with_sql(self.store, params.from_, params.to, params.grain)

    def _revenue_code(self, params: DateRangeParams) -> list[Any]:
        invoices = self.store.fetch_invoices(params.from_, params.to)
        return revenue_by_bucket(invoices, params.from_, params.to, params.grain)

    def _active_subscriptions_sql(self, params: DateRangeParams) -> list[Any]:
        return active_subscriptions_with_sql(self.store, params.from_, params.to, params.grain)

    def _active_subscriptions_code(self, params: DateRangeParams) -> list[Any]:
        subscriptions = self.store.fetch_subscriptions(params.from_, params.to)
        return active_count_by_containment(subscriptions, params.from_, params.to, params.grain)

    def _subscriptions_sql(self, params: DateRangeParams) -> list[Any]:
        return subscriptions_with_sql(self.store, params.from_, params.to, params.grain)

    def _subscriptions_code(self, params: DateRangeParams) -> list[Any]:
        subscriptions = self.store.fetch_subscriptions(params.from_, params.to)
        return active_count_by_delta(subscriptions, params.from_, params.to, params.grain)
