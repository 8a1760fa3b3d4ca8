"""SQLite store for invoices and subscriptions.

The store is the data-access side of the metrics: it fetches the raw
records for a window and hands them to the aggregators as immutable
snapshots. It also runs the declarative (SQL) metric queries.

Timestamps are stored as ``YYYY-MM-DD HH:MM:SS`` UTC text and compared
with ``julianday()`` so that date-only bounds work too.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml

from ..core.records import Invoice, Subscription
from ..core.time import format_storage_bound, format_storage_ts
from ..observability import get_logger

__all__ = [
    "BillingStore",
    "StoreError",
    "create_billing_store",
]

logger = get_logger("storage")

MEMORY_DB = ":memory:"


class StoreError(Exception):
    """Raised when the billing store cannot be read or written."""


class BillingStore:
    """SQLite-backed invoices and subscriptions.

    One connection is shared across threads and serialized with a lock,
    so the store can back a threaded HTTP server.
    """

    def __init__(self, db_path: Path | str = MEMORY_DB) -> None:
        """Initialize billing store.

        Parameters
        ----------
        db_path
            Path to SQLite database, or ``:memory:``
        """
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        if self.db_path != MEMORY_DB:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = self._get_connection()
        with self._lock:
            try:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS invoices (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        period_start TEXT NOT NULL,
                        amount_cents INTEGER NOT NULL,
                        status TEXT NOT NULL CHECK (status IN ('paid', 'refunded', 'void'))
                    );

                    CREATE INDEX IF NOT EXISTS idx_invoices_period_start
                    ON invoices(period_start);

                    CREATE TABLE IF NOT EXISTS subscriptions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        started_at TEXT NOT NULL,
                        canceled_at TEXT
                    );

                    CREATE INDEX IF NOT EXISTS idx_subscriptions_started_at
                    ON subscriptions(started_at);
                    """
                )
                conn.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"Cannot initialize billing store at {self.db_path}: {exc}") from exc

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection."""
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            except sqlite3.Error as exc:
                raise StoreError(f"Cannot open billing store at {self.db_path}: {exc}") from exc
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[sqlite3.Row]:
        """Run a read query and return all rows.

        Raises
        ------
        StoreError
            If the query fails
        """
        conn = self._get_connection()
        with self._lock:
            try:
                return conn.execute(sql, dict(params or {})).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Query failed: {exc}") from exc

    def add_invoices(self, invoices: Iterable[Invoice]) -> int:
        """Insert invoices. Returns the number of rows written."""
        rows = [
            (format_storage_ts(invoice.period_start), invoice.amount_cents, invoice.status)
            for invoice in invoices
        ]
        self._write(
            "INSERT INTO invoices (period_start, amount_cents, status) VALUES (?, ?, ?)",
            rows,
        )
        logger.debug("Invoices stored", count=len(rows))
        return len(rows)

    def add_subscriptions(self, subscriptions: Iterable[Subscription]) -> int:
        """Insert subscriptions. Returns the number of rows written."""
        rows = [
            (
                format_storage_ts(sub.started_at),
                format_storage_ts(sub.canceled_at) if sub.canceled_at else None,
            )
            for sub in subscriptions
        ]
        self._write(
            "INSERT INTO subscriptions (started_at, canceled_at) VALUES (?, ?)",
            rows,
        )
        logger.debug("Subscriptions stored", count=len(rows))
        return len(rows)

    def _write(self, sql: str, rows: list[tuple[Any, ...]]) -> None:
        conn = self._get_connection()
        with self._lock:
            try:
                conn.executemany(sql, rows)
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StoreError(f"Write failed: {exc}") from exc

    def fetch_invoices(self, start: str, end: str) -> list[Invoice]:
        """Fetch invoices of every status with ``start <= period_start < end``.

        Parameters
        ----------
        start
            Window start (inclusive)
        end
            Window end (exclusive)

        Returns
        -------
        list[Invoice]
            Invoices ordered by period_start
        """
        rows = self.query(
            """
            SELECT period_start, amount_cents, status
            FROM invoices
            WHERE julianday(period_start) >= julianday(:start)
              AND julianday(period_start) < julianday(:end)
            ORDER BY period_start, id
            """,
            window_params(start, end),
        )
        return [Invoice.from_row(row) for row in rows]

    def fetch_subscriptions(self, start: str, end: str) -> list[Subscription]:
        """Fetch subscriptions that overlap ``[start, end)``.

        Keeps subscriptions started before ``end`` that are either still
        active or canceled at or after ``start``.
        """
        rows = self.query(
            """
            SELECT started_at, canceled_at
            FROM subscriptions
            WHERE julianday(started_at) < julianday(:end)
              AND (canceled_at IS NULL OR julianday(canceled_at) >= julianday(:start))
            ORDER BY started_at, id
            """,
            window_params(start, end),
        )
        return [Subscription.from_row(row) for row in rows]

    def counts(self) -> dict[str, int]:
        """Row counts per table."""
        invoices = self.query("SELECT COUNT(*) AS n FROM invoices")[0]["n"]
        subscriptions = self.query("SELECT COUNT(*) AS n FROM subscriptions")[0]["n"]
        return {"invoices": invoices, "subscriptions": subscriptions}

    def seed_from_yaml(self, fixture_path: Path | str) -> dict[str, int]:
        """Load invoices and subscriptions from a YAML fixture.

        The file has top-level ``invoices`` and ``subscriptions`` lists of
        mappings shaped like the table rows.

        Raises
        ------
        StoreError
            If the file cannot be read
        ValueError
            If a record is malformed
        """
        fixture_path = Path(fixture_path)
        try:
            data = yaml.safe_load(fixture_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise StoreError(f"Cannot read fixture {fixture_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError(f"Fixture {fixture_path} must be a mapping with invoices/subscriptions lists")

        invoices = [Invoice.from_row(row) for row in data.get("invoices") or []]
        subscriptions = [Subscription.from_row(row) for row in data.get("subscriptions") or []]

        loaded = {
            "invoices": self.add_invoices(invoices),
            "subscriptions": self.add_subscriptions(subscriptions),
        }
        logger.info("Fixture loaded", fixture=str(fixture_path), **loaded)
        return loaded

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> BillingStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def window_params(start: str, end: str) -> dict[str, str]:
    """Named query parameters for a ``[start, end)`` window.

    Bounds are rounded up to whole seconds, matching the precision of
    stored timestamps.
    """
    return {"start": format_storage_bound(start), "end": format_storage_bound(end)}


def create_billing_store(db_path: Path | str = MEMORY_DB) -> BillingStore:
    """Factory function to create billing store.

    Parameters
    ----------
    db_path
        Path to SQLite database

    Returns
    -------
    BillingStore
        Store instance
    """
    return BillingStore(db_path)
