"""Request and response contracts for the metric endpoints.

Each metric is served by two strategies: ``sql`` (declarative query in the
store) and ``code`` (fetch records, aggregate in process). Both share the
same request parameters and the same response schema.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

import jsonschema  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config.settings import DEFAULT_FROM, DEFAULT_GRAIN, DEFAULT_TO
from ..core.time import parse_utc_iso8601
from ..rollups.time_windows import Grain

if TYPE_CHECKING:
    from ..config.settings import Settings

__all__ = [
    "API",
    "METRICS",
    "REVENUE_RESPONSE_SCHEMA",
    "STRATEGIES",
    "SUBSCRIPTION_RESPONSE_SCHEMA",
    "DateRangeParams",
    "Metric",
    "MetricContract",
    "ResponseSchema",
    "SchemaValidationError",
    "Strategy",
    "ValidationResult",
    "get_contract",
]

Metric = Literal["revenue", "active_subscriptions", "subscriptions"]
Strategy = Literal["sql", "code"]

METRICS: tuple[str, ...] = ("revenue", "active_subscriptions", "subscriptions")
STRATEGIES: tuple[str, ...] = ("sql", "code")


class DateRangeParams(BaseModel):
    """Query window and grain.

    ``from`` is inclusive, ``to`` is exclusive. Malformed dates or an
    unknown grain raise ``pydantic.ValidationError``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    from_: str = Field(default=DEFAULT_FROM, alias="from")
    to: str = DEFAULT_TO
    grain: Grain = DEFAULT_GRAIN

    @field_validator("from_", "to")
    @classmethod
    def _check_timestamp(cls, value: str) -> str:
        parse_utc_iso8601(value)
        return value

    @classmethod
    def from_query(cls, query: Mapping[str, Any], settings: Settings | None = None) -> DateRangeParams:
        """Build params from query-string values, filling gaps from settings."""
        data: dict[str, Any] = {}
        if settings is not None:
            data = {"from": settings.default_from, "to": settings.default_to, "grain": settings.default_grain}
        data.update({key: value for key, value in query.items() if value is not None})
        return cls.model_validate(data)

    def to_dict(self) -> dict[str, str]:
        return {"from": self.from_, "to": self.to, "grain": self.grain}


class SchemaValidationError(Exception):
    """Raised when a metric response does not match its schema."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class ValidationResult:
    """Result of schema validation."""

    def __init__(self, valid: bool, errors: list[str] | None = None) -> None:
        self.valid = valid
        self.errors = errors or []

    def __bool__(self) -> bool:
        return self.valid

    def __str__(self) -> str:
        if self.valid:
            return "Valid"
        return f"Invalid: {'; '.join(self.errors)}"


BUCKET_KEY_SCHEMA = {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}$"}

REVENUE_RESPONSE_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Revenue per bucket",
    "type": "array",
    "items": {
        "type": "object",
        "required": ["bucket", "revenue_usd"],
        "properties": {
            "bucket": BUCKET_KEY_SCHEMA,
            "revenue_usd": {"type": "number"},
        },
        "additionalProperties": False,
    },
}

# Delta counts can drop below zero when a cancellation lands inside the
# window but its start does not, so there is no minimum here.
SUBSCRIPTION_RESPONSE_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Active subscriptions per bucket",
    "type": "array",
    "items": {
        "type": "object",
        "required": ["bucket", "active_count"],
        "properties": {
            "bucket": BUCKET_KEY_SCHEMA,
            "active_count": {"type": "integer"},
        },
        "additionalProperties": False,
    },
}


class ResponseSchema:
    """JSON Schema for the rows of one metric."""

    def __init__(self, name: str, schema: dict[str, Any]) -> None:
        self.name = name
        self.schema = schema
        self._validator = jsonschema.Draft7Validator(schema)

    def validate(self, data: Any) -> ValidationResult:
        """Validate response rows against schema.

        Parameters
        ----------
        data
            Response rows (list of dicts)

        Returns
        -------
        ValidationResult
            Validation result
        """
        errors = []

        for error in self._validator.iter_errors(data):
            error_path = " -> ".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
            errors.append(f"[{error_path}] {error.message}")

        return ValidationResult(valid=len(errors) == 0, errors=errors)

    def check(self, data: Any) -> None:
        """Raise ``SchemaValidationError`` unless ``data`` is valid."""
        result = self.validate(data)
        if not result:
            raise SchemaValidationError(f"{self.name} response failed schema validation", result.errors)


REVENUE_SCHEMA = ResponseSchema("revenue", REVENUE_RESPONSE_SCHEMA)
SUBSCRIPTION_SCHEMA = ResponseSchema("subscriptions", SUBSCRIPTION_RESPONSE_SCHEMA)


@dataclass(frozen=True)
class MetricContract:
    """One metric endpoint: which metric, computed how, served where."""

    name: str
    path: str
    title: str
    metric: Metric
    strategy: Strategy
    response_schema: ResponseSchema


API: dict[str, MetricContract] = {
    contract.name: contract
    for contract in (
        MetricContract("revenue", "/api/revenue", "Revenue", "revenue", "sql", REVENUE_SCHEMA),
        MetricContract("revenue_code", "/api/revenue/code", "Revenue w/ Code", "revenue", "code", REVENUE_SCHEMA),
        MetricContract(
            "active_subscriptions",
            "/api/active-subscriptions",
            "Active Subscriptions (Interval)",
            "active_subscriptions",
            "sql",
            SUBSCRIPTION_SCHEMA,
        ),
        MetricContract(
            "active_subscriptions_code",
            "/api/active-subscriptions/code",
            "Active Subscriptions (Interval) w/ Code",
            "active_subscriptions",
            "code",
            SUBSCRIPTION_SCHEMA,
        ),
        MetricContract(
            "subscriptions",
            "/api/subscriptions",
            "Active Subscriptions (Delta)",
            "subscriptions",
            "sql",
            SUBSCRIPTION_SCHEMA,
        ),
        MetricContract(
            "subscriptions_code",
            "/api/subscriptions/code",
            "Active Subscriptions (Delta) w/ Code",
            "subscriptions",
            "code",
            SUBSCRIPTION_SCHEMA,
        ),
    )
}


def get_contract(metric: str, strategy: str) -> MetricContract:
    """Look up the contract serving ``metric`` with ``strategy``.

    Raises
    ------
    ValueError
        If there is no such metric or strategy
    """
    for contract in API.values():
        if contract.metric == metric and contract.strategy == strategy:
            return contract
    raise ValueError(f"Unknown metric/strategy: {metric}/{strategy}")
