"""CLI commands that compute metrics and cross-check strategies."""

from __future__ import annotations

import click

from ..api.contracts import METRICS, STRATEGIES, DateRangeParams
from ..api.service import MetricsService
from ..config.settings import get_settings
from ..rollups.time_windows import GRAINS
from ..storage.billing_store import create_billing_store
from .cli_common import CLIContext, ExitCode, cli_command, handle_cli_error, handle_cli_success

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

window_options = [
    click.option("--from", "start", type=str, default=None, help="Window start, inclusive (YYYY-MM-DD)"),
    click.option("--to", "end", type=str, default=None, help="Window end, exclusive (YYYY-MM-DD)"),
    click.option("--grain", type=click.Choice(GRAINS), default=None, help="Bucket width"),
    click.option("--db", "db_path", type=click.Path(dir_okay=False), default=None, help="SQLite database"),
]


def with_window_options(func):
    for option in reversed(window_options):
        func = option(func)
    return func


def build_params(start: str | None, end: str | None, grain: str | None) -> DateRangeParams:
    """Merge CLI options over configured defaults."""
    return DateRangeParams.from_query({"from": start, "to": end, "grain": grain}, get_settings())


def open_service(db_path: str | None) -> MetricsService:
    settings = get_settings()
    store = create_billing_store(db_path or settings.db_path)
    return MetricsService(store, validate_responses=settings.validate_responses)


@click.command("query", context_settings=CONTEXT_SETTINGS, help="Compute one metric over a window")
@click.argument("metric", type=click.Choice(METRICS))
@click.option(
    "--strategy",
    type=click.Choice(STRATEGIES),
    default="code",
    show_default=True,
    help="sql: declarative query, code: in-process aggregation",
)
@with_window_options
@cli_command
def query_command(
    ctx: CLIContext,
    metric: str,
    strategy: str,
    start: str | None,
    end: str | None,
    grain: str | None,
    db_path: str | None,
) -> int:
    """Compute a metric and print one row per bucket."""
    cmd = "metrics.query"
    args = {"metric": metric, "strategy": strategy, "from": start, "to": end, "grain": grain}

    try:
        params = build_params(start, end, grain)
        service = open_service(db_path)
        try:
            rows = service.run_metric(metric, strategy, params, trace_id=ctx.trace_id)
        finally:
            service.store.close()

        if ctx.json_output:
            return handle_cli_success(ctx, rows, cmd, args, meta={"params": params.to_dict()})

        value_key = "revenue_usd" if metric == "revenue" else "active_count"
        lines = [f"{row['bucket']}  {row[value_key]}" for row in rows]
        if not lines:
            lines = ["(no buckets)"]
        return handle_cli_success(ctx, "\n".join(lines), cmd, args)

    except Exception as exc:
        return handle_cli_error(ctx, exc, cmd, args)


@click.command("compare", context_settings=CONTEXT_SETTINGS, help="Check that sql and code strategies agree")
@click.argument("metric", type=click.Choice(METRICS))
@with_window_options
@cli_command
def compare_command(
    ctx: CLIContext,
    metric: str,
    start: str | None,
    end: str | None,
    grain: str | None,
    db_path: str | None,
) -> int:
    """Run both strategies of a metric and report differing buckets."""
    cmd = "metrics.compare"
    args = {"metric": metric, "from": start, "to": end, "grain": grain}

    try:
        params = build_params(start, end, grain)
        service = open_service(db_path)
        try:
            report = service.compare(metric, params, trace_id=ctx.trace_id)
        finally:
            service.store.close()

        if report.matches:
            summary = f"{metric}: sql and code agree on {len(report.code_rows)} buckets"
            return handle_cli_success(ctx, report.to_dict() if ctx.json_output else summary, cmd, args)

        if ctx.json_output:
            ctx.output(report.to_dict(), status="warning", meta={"exit_code": int(ExitCode.PARITY_MISMATCH)})
        else:
            click.echo(f"{metric}: {len(report.mismatches)} buckets differ")
            for mismatch in report.mismatches:
                click.echo(f"  {mismatch.bucket}  sql={mismatch.sql}  code={mismatch.code}")
        return int(ExitCode.PARITY_MISMATCH)

    except Exception as exc:
        return handle_cli_error(ctx, exc, cmd, args)
