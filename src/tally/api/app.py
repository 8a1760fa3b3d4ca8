"""tally HTTP service.

FastAPI service providing:
- GET /api/revenue[/code]: revenue per bucket
- GET /api/active-subscriptions[/code]: active subscriptions (interval containment)
- GET /api/subscriptions[/code]: active subscriptions (running sum of deltas)
- GET /api/contracts: endpoint catalogue
- GET /health: Health check

Every metric endpoint takes ``from``, ``to`` and ``grain`` query parameters.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from typing import Any

try:
    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse
    from pydantic import BaseModel, ValidationError
except ImportError:
    raise ImportError("FastAPI dependencies not installed. Install with: pip install 'tally-metrics[service]'") from None

from .. import __version__
from ..config.settings import Settings, get_settings
from ..core.time import format_utc_iso8601, get_current_utc
from ..observability import get_logger
from ..storage.billing_store import BillingStore, create_billing_store
from .contracts import API, DateRangeParams, MetricContract
from .service import MetricsService

__all__ = ["create_app"]

logger = get_logger("api")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str = __version__


def create_app(settings: Settings | None = None, store: BillingStore | None = None) -> FastAPI:
    """Create FastAPI app serving every metric contract.

    Parameters
    ----------
    settings
        Service settings (default: loaded from environment)
    store
        Billing store (default: opened at ``settings.db_path``)

    Returns
    -------
    FastAPI
        Configured FastAPI app
    """
    if settings is None:
        settings = get_settings()

    if store is None:
        store = create_billing_store(settings.db_path)

    service = MetricsService(store, validate_responses=settings.validate_responses)

    app = FastAPI(
        title="tally",
        description="Time-bucketed revenue and subscription metrics",
        version=__version__,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.service = service

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok", timestamp=format_utc_iso8601(get_current_utc()))

    @app.get("/api/contracts")
    def contracts() -> list[dict[str, str]]:
        return [
            {
                "name": contract.name,
                "path": contract.path,
                "title": contract.title,
                "metric": contract.metric,
                "strategy": contract.strategy,
            }
            for contract in API.values()
        ]

    for contract in API.values():
        app.add_api_route(
            contract.path,
            _make_endpoint(contract, service, settings),
            methods=["GET"],
            name=contract.name,
            summary=contract.title,
        )

    logger.info("Service created", routes=len(API), db_path=str(settings.db_path))
    return app


def _make_endpoint(
    contract: MetricContract,
    service: MetricsService,
    settings: Settings,
) -> Callable[[Request], JSONResponse]:
    def endpoint(request: Request) -> JSONResponse:
        trace_id = request.headers.get("x-trace-id") or f"trace-{uuid.uuid4().hex[:12]}"

        try:
            params = DateRangeParams.from_query(request.query_params, settings)
            rows = service.run(contract, params, trace_id=trace_id)
        except ValidationError as exc:
            logger.warning("Invalid parameters", route=contract.path, trace_id=trace_id)
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid parameters", "details": _error_details(exc)},
            )
        except Exception:
            logger.exception("Metric handler failed", route=contract.path, trace_id=trace_id)
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

        return JSONResponse(content=rows, headers={"x-trace-id": trace_id})

    endpoint.__name__ = contract.name
    return endpoint


def _error_details(exc: ValidationError) -> list[dict[str, Any]]:
    # exc.json() drops the non-serializable exception objects in ctx
    return json.loads(exc.json(include_url=False))
