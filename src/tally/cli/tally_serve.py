"""CLI command to start the tally HTTP service."""

from __future__ import annotations

from pathlib import Path

import click

from ..config.settings import get_settings


@click.command("serve")
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--db", "db_path", type=click.Path(dir_okay=False), default=None, help="SQLite database")
def serve(host: str | None, port: int | None, db_path: str | None) -> int:
    """Start the metrics HTTP service."""
    try:
        import uvicorn

        from ..api.app import create_app
    except ImportError:
        click.echo("Error: service extras not installed. Install with: pip install 'tally-metrics[service]'", err=True)
        return 1

    settings = get_settings()

    if host:
        settings.host = host
    if port:
        settings.port = port
    if db_path:
        settings.db_path = Path(db_path)

    click.echo(f"Starting tally on {settings.host}:{settings.port} (db: {settings.db_path})...")

    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)
    return 0
