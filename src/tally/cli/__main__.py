#!/usr/bin/env python3
"""Main module of the tally CLI."""

import sys

import click

from ..config.settings import ConfigError, load_settings
from ..observability import configure_loguru
from .cli_common import ExitCode
from .tally_db import cli as db_cli
from .tally_metrics import compare_command, query_command
from .tally_serve import serve

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}
EPILOG = """
Examples:
  tally db init                                   # Create the schema
  tally db seed fixtures.yaml                     # Load invoices and subscriptions
  tally query revenue --grain month               # Revenue per month (in-process)
  tally query subscriptions --strategy sql        # Delta counts computed by SQLite
  tally compare active_subscriptions --grain week # Check sql and code agree
  tally serve --port 3000                         # HTTP service
""".strip()


@click.group(
    context_settings=CONTEXT_SETTINGS,
    help="tally - time-bucketed revenue and subscription metrics",
    epilog=EPILOG,
)
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Path to .env file")
@click.option("--log-level", type=str, default=None, help="Override TALLY_LOG_LEVEL")
def cli(env_file: str | None, log_level: str | None) -> None:
    """Root command of the CLI."""
    settings = load_settings(env_file)
    configure_loguru(
        log_dir=settings.log_dir,
        level=(log_level or settings.log_level).upper(),
    )


cli.add_command(db_cli, "db")
cli.add_command(query_command, "query")
cli.add_command(compare_command, "compare")
cli.add_command(serve, "serve")


def main(args: list[str] | None = None) -> int:
    """Main entry point of the CLI."""
    try:
        normalized_args = list(args) if args is not None else None
        return cli.main(args=normalized_args, standalone_mode=False) or 0
    except click.ClickException as exc:
        exc.show()
        return exc.exit_code
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        return int(ExitCode.CONFIG_ERROR)
    except SystemExit as exc:  # pragma: no cover - click normalizes exit codes
        return int(exc.code) if exc.code is not None else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
