"""Health check endpoint tests"""

import pytest
from fastapi.testclient import TestClient

from oz_locator.main import app


@pytest.fixture
def client(zone_service):
    app.state.zone_service = zone_service
    return TestClient(app)


def test_health_check(client: TestClient):
    """Test basic health check endpoint."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["service"] == "oz-locator"


def test_readiness_check(client: TestClient):
    """Test readiness check endpoint."""
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"
    assert response.json()["dependencies"]["zones"] == "uninitialized"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint."""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]


def test_trace_id_header(client: TestClient):
    response = client.get("/healthz", headers={"X-Trace-ID": "trace-123"})
    assert response.headers["X-Trace-ID"] == "trace-123"
