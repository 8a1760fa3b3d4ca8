"""CLI commands for the billing store."""

from __future__ import annotations

from pathlib import Path

import click

from ..config.settings import get_settings
from ..storage.billing_store import create_billing_store
from .cli_common import CLIContext, cli_command, handle_cli_error, handle_cli_success

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

db_option = click.option("--db", "db_path", type=click.Path(dir_okay=False), default=None, help="SQLite database")


@click.group(context_settings=CONTEXT_SETTINGS, help="Manage the invoices/subscriptions store")
def cli() -> None:
    """Root command for the store."""


@cli.command("init")
@db_option
@cli_command
def init_command(ctx: CLIContext, db_path: str | None) -> int:
    """Create the database schema (idempotent)."""
    cmd = "db.init"
    path = db_path or str(get_settings().db_path)
    args = {"db": path}

    try:
        with create_billing_store(path) as store:
            counts = store.counts()
        return handle_cli_success(ctx, {"db": path, **counts}, cmd, args)
    except Exception as exc:
        return handle_cli_error(ctx, exc, cmd, args)


@cli.command("seed")
@click.argument("fixture", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@db_option
@cli_command
def seed_command(ctx: CLIContext, fixture: Path, db_path: str | None) -> int:
    """Load invoices and subscriptions from a YAML fixture."""
    cmd = "db.seed"
    path = db_path or str(get_settings().db_path)
    args = {"db": path, "fixture": str(fixture)}

    try:
        with create_billing_store(path) as store:
            loaded = store.seed_from_yaml(fixture)
        return handle_cli_success(ctx, {"db": path, **loaded}, cmd, args)
    except Exception as exc:
        return handle_cli_error(ctx, exc, cmd, args)
