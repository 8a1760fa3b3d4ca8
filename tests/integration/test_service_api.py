"""Integration tests for the metrics service and its HTTP API."""

from pathlib import Path
from unittest.mock import patch

import pytest

from tally.api.contracts import API, DateRangeParams, SchemaValidationError, get_contract
from tally.api.service import MetricsService
from tally.config.settings import Settings
from tally.storage.billing_store import create_billing_store

FIXTURE = Path(__file__).resolve().parents[2] / "examples" / "billing.yaml"

MONTHLY = DateRangeParams(grain="month")


@pytest.fixture
def store():
    with create_billing_store() as store:
        store.seed_from_yaml(FIXTURE)
        yield store


@pytest.fixture
def service(store):
    return MetricsService(store)


@pytest.fixture
def client(store):
    from fastapi.testclient import TestClient

    from tally.api.app import create_app

    app = create_app(Settings(), store=store)
    return TestClient(app)


class TestMetricsService:
    def test_run_returns_row_dicts(self, service):
        rows = service.run(get_contract("revenue", "code"), MONTHLY)

        assert rows == [
            {"bucket": "2025-06-01", "revenue_usd": 20.0},
            {"bucket": "2025-07-01", "revenue_usd": 75.0},
            {"bucket": "2025-08-01", "revenue_usd": 100.0},
        ]

    @pytest.mark.parametrize("contract", list(API.values()), ids=lambda c: c.name)
    def test_every_contract_validates(self, service, contract):
        rows = service.run(contract, DateRangeParams(grain="week"), trace_id="trace-test")

        assert contract.response_schema.validate(rows)

    def test_compare(self, service):
        report = service.compare("active_subscriptions", MONTHLY)

        assert report.matches
        assert report.to_dict() == {
            "metric": "active_subscriptions",
            "params": {"from": "2025-06-01", "to": "2025-10-01", "grain": "month"},
            "matches": True,
            "buckets": 4,
            "mismatches": [],
        }

    def test_compare_unknown_metric(self, service):
        with pytest.raises(ValueError, match="Unknown metric"):
            service.compare("churn", MONTHLY)

    def test_invalid_rows_rejected(self, service):
        with patch.object(service, "_handlers", {("revenue", "code"): lambda params: [_BadRow()]}):
            with pytest.raises(SchemaValidationError) as exc_info:
                service.run_metric("revenue", "code", MONTHLY)

        assert len(exc_info.value.errors) == 2

    def test_validation_can_be_disabled(self, store):
        service = MetricsService(store, validate_responses=False)

        with patch.object(service, "_handlers", {("revenue", "code"): lambda params: [_BadRow()]}):
            assert service.run_metric("revenue", "code", MONTHLY) == [{"bucket": "June", "revenue_usd": "lots"}]


class _BadRow:
    def to_dict(self):
        return {"bucket": "June", "revenue_usd": "lots"}


class TestHttpApi:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "version" in response.json()

    def test_contracts(self, client):
        response = client.get("/api/contracts")

        assert response.status_code == 200
        assert {c["path"] for c in response.json()} == {c.path for c in API.values()}

    @pytest.mark.parametrize("path", ["/api/revenue", "/api/revenue/code"])
    def test_revenue(self, client, path):
        response = client.get(path, params={"from": "2025-06-01", "to": "2025-10-01", "grain": "month"})

        assert response.status_code == 200
        assert response.json() == [
            {"bucket": "2025-06-01", "revenue_usd": 20.0},
            {"bucket": "2025-07-01", "revenue_usd": 75.0},
            {"bucket": "2025-08-01", "revenue_usd": 100.0},
        ]

    @pytest.mark.parametrize("path", ["/api/active-subscriptions", "/api/active-subscriptions/code"])
    def test_active_subscriptions(self, client, path):
        response = client.get(path, params={"grain": "month"})

        assert response.status_code == 200
        assert [row["active_count"] for row in response.json()] == [2, 4, 3, 3]

    @pytest.mark.parametrize("path", ["/api/subscriptions", "/api/subscriptions/code"])
    def test_subscriptions(self, client, path):
        response = client.get(path, params={"grain": "month"})

        assert response.status_code == 200
        assert [row["active_count"] for row in response.json()] == [1, 1, 1, 1]

    def test_defaults_to_daily_window(self, client):
        response = client.get("/api/subscriptions")

        assert response.status_code == 200
        rows = response.json()
        assert len(rows) == 122
        assert rows[0]["bucket"] == "2025-06-01"
        assert rows[-1]["bucket"] == "2025-09-30"

    def test_strategies_agree_over_http(self, client):
        for grain in ("day", "week", "month"):
            for contract in API.values():
                if contract.strategy != "sql":
                    continue
                sql = client.get(contract.path, params={"grain": grain}).json()
                code = client.get(f"{contract.path}/code", params={"grain": grain}).json()
                assert sql == code

    def test_trace_id_echoed(self, client):
        response = client.get("/api/revenue", headers={"x-trace-id": "trace-http"})

        assert response.headers["x-trace-id"] == "trace-http"

    def test_invalid_grain(self, client):
        response = client.get("/api/revenue", params={"grain": "year"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid parameters"
        assert body["details"][0]["loc"] == ["grain"]

    def test_invalid_date(self, client):
        response = client.get("/api/subscriptions/code", params={"from": "not-a-date"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid parameters"

    def test_internal_error(self, client):
        with patch("tally.api.service.revenue_with_sql", side_effect=RuntimeError("db gone")):
            response = client.get("/api/revenue")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
