"""Metric contracts, execution service and HTTP surface.

The FastAPI app lives in ``tally.api.app`` and is imported on demand so
that the CLI and library users do not need the service extras.
"""

from .contracts import API, METRICS, DateRangeParams, MetricContract, SchemaValidationError, get_contract
from .service import MetricsService, ParityReport

__all__ = [
    "API",
    "METRICS",
    "DateRangeParams",
    "MetricContract",
    "MetricsService",
    "ParityReport",
    "SchemaValidationError",
    "get_contract",
]
