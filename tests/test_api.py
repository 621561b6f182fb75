"""Tests for the REST API using an in-memory service with mocked upstreams."""
import pytest
from fastapi.testclient import TestClient

from api.rest.app import create_app
from api.rest.dependencies import configure_ingestion_service
from core.services.ingestion_service import IngestionService
from ingest.coverage.models import IngestionType
from ingest.errors import UpstreamServerError


@pytest.fixture
def service(breaker, retry, price_client, message_client, analytics_client):
    return IngestionService(
        use_memory=True,
        price_client=price_client,
        message_client=message_client,
        analytics_client=analytics_client,
        breaker=breaker,
        retry=retry,
    )


@pytest.fixture
def client(service):
    app = create_app(service, enable_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client
    configure_ingestion_service(None)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert [c["id"] for c in body["circuits"]] == ["yahoo-finance", "stocktwits", "analytics"]
    assert body["upstreams"] == {"price": True, "messages": True, "analytics": True}
    assert body["cache"]["persistent"] is True


def test_health_degraded_when_circuit_open(client, breaker):
    for _ in range(5):
        breaker.record_failure("stocktwits")

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    states = {c["id"]: c["state"] for c in body["circuits"]}
    assert states["stocktwits"] == "OPEN"


class TestProxyRoutes:

    def test_quote_miss_then_hit(self, client, price_client):
        first = client.get("/api/v1/quote", params={"symbol": "AAPL", "timeRange": "7D"})
        second = client.get("/api/v1/quote", params={"symbol": "aapl", "timeRange": "7d"})

        assert first.status_code == 200
        assert first.headers["X-Cache"] == "MISS"
        assert first.headers["X-Circuit"] == "CLOSED"
        assert first.json()["currentPrice"] == 190.1
        assert second.headers["X-Cache"] == "HIT"
        assert len(price_client.calls) == 1

    def test_quote_requires_symbol(self, client):
        response = client.get("/api/v1/quote")
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_quote_circuit_open(self, client, breaker):
        for _ in range(5):
            breaker.record_failure("yahoo-finance")

        response = client.get("/api/v1/quote", params={"symbol": "NVDA"})

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert response.json()["retryAfter"] == 30

    def test_feed_action(self, client, message_client):
        message_client.feed_payload = {"messages": [{"id": 1, "body": "hi"}]}

        response = client.get("/api/v1/feed/messages", params={"symbol": "tsla", "limit": 20})

        assert response.status_code == 200
        assert response.json() == {"messages": [{"id": 1, "body": "hi"}]}
        assert message_client.calls[-1]["params"] == {"symbol": "TSLA", "limit": 20}

    def test_feed_invalid_action(self, client):
        response = client.get("/api/v1/feed/delete")
        assert response.status_code == 400
        assert "Invalid action" in response.json()["error"]


class TestIngestionRoutes:

    def test_trigger(self, client):
        response = client.post("/api/v1/ingestion/trigger",
                               json={"symbol": "nvda", "date": "2025-01-10", "type": "all"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        coverage = body["data"]["coverage"]
        assert coverage["symbol"] == "NVDA"
        assert coverage["has_messages"] and coverage["has_analytics"] and coverage["has_price"]
        assert coverage["ingestion_status"] == "completed"

    def test_trigger_bad_date(self, client):
        response = client.post("/api/v1/ingestion/trigger",
                               json={"symbol": "NVDA", "date": "yesterday"})
        assert response.status_code == 400

    def test_trigger_missing_field(self, client):
        response = client.post("/api/v1/ingestion/trigger", json={"symbol": "NVDA"})
        assert response.status_code == 400

    def test_trigger_upstream_failure(self, client, message_client):
        message_client.error = UpstreamServerError("stocktwits returned 500", status=500)

        response = client.post("/api/v1/ingestion/trigger",
                               json={"symbol": "NVDA", "date": "2025-01-10", "type": "messages"})

        assert response.status_code == 502
        assert response.json()["success"] is False

    def test_trigger_circuit_open(self, client, breaker):
        for _ in range(5):
            breaker.record_failure("stocktwits")

        response = client.post("/api/v1/ingestion/trigger",
                               json={"symbol": "NVDA", "date": "2025-01-10", "type": "messages"})

        assert response.status_code == 503
        assert response.json()["retryAfter"] == 30

    def test_trigger_while_running_conflicts(self, client, service):
        service.tracker.mark_queued("NVDA", "2025-01-10", IngestionType.ALL)
        service.tracker.mark_running("NVDA", "2025-01-10")

        response = client.post("/api/v1/ingestion/trigger",
                               json={"symbol": "NVDA", "date": "2025-01-10"})

        assert response.status_code == 409

    def test_coverage_month(self, client):
        client.post("/api/v1/ingestion/trigger",
                    json={"symbol": "NVDA", "date": "2025-01-10", "type": "price"})

        response = client.get("/api/v1/coverage/NVDA", params={"year": 2025, "month": 1})

        assert response.status_code == 200
        records = response.json()
        assert [r["date"] for r in records] == ["2025-01-10"]
        assert records[0]["has_price"] is True

    def test_coverage_bad_month(self, client):
        response = client.get("/api/v1/coverage/NVDA", params={"year": 2025, "month": 13})
        assert response.status_code == 400

    def test_refresh_explicit_dates(self, client):
        response = client.post("/api/v1/coverage/NVDA/refresh",
                               json={"dates": ["2025-01-09", "2025-01-10"]})

        assert response.status_code == 200
        assert [r["date"] for r in response.json()["data"]] == ["2025-01-09", "2025-01-10"]

    def test_refresh_bad_date(self, client):
        response = client.post("/api/v1/coverage/NVDA/refresh", json={"dates": ["2025/01/10"]})
        assert response.status_code == 400

    def test_backfill_gaps(self, client):
        response = client.post("/api/v1/backfill/gaps",
                               json={"symbol": "NVDA", "days": 7, "max_dates": 1})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["symbol"] == "NVDA"
        assert len(data["dates"]) <= 1
        assert data["failed"] == 0

    def test_backfill_gaps_validation(self, client):
        response = client.post("/api/v1/backfill/gaps", json={"symbol": "NVDA", "days": 0})
        assert response.status_code == 400
