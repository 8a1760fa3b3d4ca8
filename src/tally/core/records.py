"""Raw billing records consumed by the aggregators.

Records are immutable snapshots. They are built once from store rows or
fixture mappings and never modified afterwards.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, get_args

from .time import ensure_utc, parse_utc_iso8601

__all__ = [
    "INVOICE_STATUSES",
    "Invoice",
    "InvoiceStatus",
    "Subscription",
]

InvoiceStatus = Literal["paid", "refunded", "void"]

INVOICE_STATUSES: tuple[str, ...] = get_args(InvoiceStatus)


@dataclass(frozen=True)
class Invoice:
    """Invoice row.

    Attributes
    ----------
    period_start : datetime
        Start of the billed period (UTC)
    amount_cents : int
        Billed amount in cents
    status : str
        One of ``paid``, ``refunded``, ``void``
    """

    period_start: datetime
    amount_cents: int
    status: InvoiceStatus

    def __post_init__(self) -> None:
        object.__setattr__(self, "period_start", ensure_utc(self.period_start))

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Invoice:
        """Build an invoice from a store row or fixture mapping.

        Raises
        ------
        ValueError
            If a field is missing or malformed
        """
        try:
            period_start = row["period_start"]
            amount_cents = row["amount_cents"]
            status = row["status"]
        except (KeyError, IndexError) as exc:
            raise ValueError(f"Invoice row is missing field {exc}") from exc

        if status not in INVOICE_STATUSES:
            raise ValueError(f"Unknown invoice status: {status!r}")

        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
            raise ValueError(f"amount_cents must be an integer, got {amount_cents!r}")

        return cls(
            period_start=parse_utc_iso8601(period_start),
            amount_cents=amount_cents,
            status=status,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_start": self.period_start.isoformat(),
            "amount_cents": self.amount_cents,
            "status": self.status,
        }


@dataclass(frozen=True)
class Subscription:
    """Subscription row.

    ``canceled_at`` of ``None`` means the subscription is still active.
    """

    started_at: datetime
    canceled_at: datetime | None = None

    def __post_init__(self) -> None:
        # Naive datetimes are UTC
        object.__setattr__(self, "started_at", ensure_utc(self.started_at))
        if self.canceled_at is not None:
            object.__setattr__(self, "canceled_at", ensure_utc(self.canceled_at))

    def is_active_at(self, instant: datetime) -> bool:
        """Interval containment: ``started_at <= instant < canceled_at``."""
        instant = ensure_utc(instant)
        if self.started_at > instant:
            return False
        return self.canceled_at is None or self.canceled_at > instant

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Subscription:
        """Build a subscription from a store row or fixture mapping."""
        try:
            started_at = row["started_at"]
        except (KeyError, IndexError) as exc:
            raise ValueError("Subscription row is missing field 'started_at'") from exc

        canceled_at = row["canceled_at"] if "canceled_at" in row.keys() else None

        return cls(
            started_at=parse_utc_iso8601(started_at),
            canceled_at=parse_utc_iso8601(canceled_at) if canceled_at else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "canceled_at": self.canceled_at.isoformat() if self.canceled_at else None,
        }
