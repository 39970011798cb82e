"""Zone lookup endpoint tests"""

from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from oz_locator.errors import TransientFetchError
from oz_locator.main import app
from oz_locator.services.geocoding import GeocodingCache, GeocodingClient, GeocodingService


def provider_handler(request: httpx.Request):
    query = request.url.params["q"]
    if query == "nowhere":
        return httpx.Response(200, json=[])
    if query == "busy":
        return httpx.Response(429, headers={"Retry-After": "30"})
    return httpx.Response(200, json=[{
        "lat": "0.5",
        "lon": "0.5",
        "display_name": "1 Test Street, Testville, 00000, United States",
    }])


@pytest.fixture
def geocoding_service(session_factory, clock):
    return GeocodingService(
        cache=GeocodingCache(session_factory, ttl=timedelta(days=30), clock=clock),
        client=GeocodingClient(
            api_url="https://geocode.test/search",
            api_key="test-key",
            transport=httpx.MockTransport(provider_handler),
        ),
    )


@pytest.fixture
def client(zone_service, geocoding_service):
    app.state.zone_service = zone_service
    app.state.geocoding_service = geocoding_service
    return TestClient(app)


class TestCheckPoint:
    """GET /zones/check"""

    def test_point_in_zone(self, client):
        response = client.get("/zones/check", params={"lat": 0.5, "lon": 0.5})

        assert response.status_code == 200
        body = response.json()
        assert body["in_zone"] is True
        assert body["zone_id"] == "test-1"
        assert body["stale"] is False
        assert body["engine"] == "memory"
        assert body["metadata"]["feature_count"] == 3
        assert len(body["metadata"]["data_hash"]) == 64

    def test_point_outside_zones(self, client):
        response = client.get("/zones/check", params={"lat": 50.0, "lon": 50.0})

        assert response.status_code == 200
        assert response.json()["in_zone"] is False
        assert response.json()["zone_id"] is None

    def test_point_in_hole(self, client):
        response = client.get("/zones/check", params={"lat": 12.0, "lon": 12.0})

        assert response.json()["in_zone"] is False

    @pytest.mark.parametrize("params", [
        {"lat": 91, "lon": 0},
        {"lat": 0, "lon": -181},
        {"lat": "abc", "lon": 0},
        {"lat": 0},
    ])
    def test_invalid_coordinates(self, client, params):
        response = client.get("/zones/check", params=params)

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert "trace_id" in response.json()

    def test_failed_cold_start(self, client, source):
        source.error = TransientFetchError("upstream down", status_code=503)

        first = client.get("/zones/check", params={"lat": 0.5, "lon": 0.5})
        assert first.status_code == 503
        assert first.json()["code"] == "NOT_INITIALIZED"

        # Backoff pending: still not initialized, never "not in zone"
        second = client.get("/zones/check", params={"lat": 0.5, "lon": 0.5})
        assert second.status_code == 503
        assert second.json()["code"] == "NOT_INITIALIZED"
        assert source.calls == 1


class TestStatusAndRefresh:
    """GET /zones/status and POST /zones/refresh"""

    def test_status_before_load(self, client):
        response = client.get("/zones/status")

        assert response.status_code == 200
        body = response.json()
        assert body["is_initialized"] is False
        assert body["state"] == "uninitialized"
        assert body["db_has_data"] is False

    def test_status_after_lookup(self, client):
        client.get("/zones/check", params={"lat": 0.5, "lon": 0.5})

        body = client.get("/zones/status").json()

        assert body["is_initialized"] is True
        assert body["state"] == "ready"
        assert body["feature_count"] == 3
        assert body["stale"] is False

    def test_refresh(self, client, source):
        response = client.post("/zones/refresh")

        assert response.status_code == 200
        assert response.json()["status"] == "refreshed"
        assert response.json()["metadata"]["feature_count"] == 3
        assert source.calls == 1

    def test_refresh_failure(self, client, source):
        source.error = TransientFetchError("upstream down")

        response = client.post("/zones/refresh")

        assert response.status_code == 502
        assert response.json()["code"] == "DATASET_FETCH_FAILED"


class TestAddressEndpoints:
    """GET /zones/geocode and GET /zones/check-address"""

    def test_geocode(self, client):
        response = client.get("/zones/geocode", params={"address": "1 Test Street"})

        assert response.status_code == 200
        body = response.json()
        assert body["lat"] == 0.5
        assert body["display_name"] == "1 Test Street, Testville"
        assert body["cached"] is False

        again = client.get("/zones/geocode", params={"address": "1 TEST STREET"})
        assert again.json()["cached"] is True

    def test_geocode_not_found(self, client):
        response = client.get("/zones/geocode", params={"address": "nowhere"})

        assert response.status_code == 404
        assert response.json()["code"] == "HTTP_404"

    def test_geocode_rate_limited(self, client):
        response = client.get("/zones/geocode", params={"address": "busy"})

        assert response.status_code == 429
        assert response.json()["code"] == "GEOCODER_RATE_LIMITED"
        assert response.headers["Retry-After"] == "30"

    def test_check_address(self, client):
        response = client.get("/zones/check-address", params={"address": "1 Test Street"})

        assert response.status_code == 200
        body = response.json()
        assert body["geocode"]["lat"] == 0.5
        assert body["zone"]["in_zone"] is True
        assert body["zone"]["zone_id"] == "test-1"

    def test_check_address_not_found(self, client, source):
        response = client.get("/zones/check-address", params={"address": "nowhere"})

        assert response.status_code == 200
        assert response.json()["geocode"]["not_found"] is True
        assert response.json()["zone"] is None
        assert source.calls == 0
