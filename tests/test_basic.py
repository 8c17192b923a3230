"""
Basic tests for the fleet coverage API.
"""

import pytest


def test_root_endpoint(client):
    """Test the root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["message"] == "Fleet Coverage API"


def test_health_endpoint(client):
    """Test the health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_request_id_header(client):
    """Responses carry the request ID and timing headers."""
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-Response-Time-Ms" in response.headers


@pytest.mark.parametrize("method,path", [
    ("get", "/v1/coverage/gaps"),
    ("get", "/v1/hosts/host_desert/coverage"),
    ("get", "/v1/vehicles/veh_1/coverage"),
    ("post", "/v1/hosts/host_desert/insurance/toggle"),
])
def test_endpoints_require_authentication(client, method, path):
    """Every /v1 endpoint requires a bearer key."""
    response = getattr(client, method)(path)
    assert response.status_code in (401, 403)


def test_invalid_api_key(client, auth_headers):
    response = client.get("/v1/coverage/gaps", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_gap_report_requires_fleet_admin(client, auth_headers):
    response = client.get("/v1/coverage/gaps", headers=auth_headers["host"])
    assert response.status_code == 403


def test_host_cannot_access_other_host(client, fleet, auth_headers):
    fleet.host("host_other")
    response = client.get("/v1/hosts/host_other/coverage", headers=auth_headers["host"])
    assert response.status_code == 403


def test_host_can_read_own_coverage(client, fleet, auth_headers):
    fleet.vehicle("veh_1", "host_desert")
    response = client.get("/v1/hosts/host_desert/coverage", headers=auth_headers["host"])
    assert response.status_code == 200
    assert response.json()["total_vehicles"] == 1
