"""Tests for health endpoints."""

from uuid import uuid4

from fastapi.testclient import TestClient

from helpers import auth_headers


def test_liveness(client: TestClient) -> None:
    """Test the liveness endpoint."""
    response = client.get("/health/live")
    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


def test_readiness_without_storage(client: TestClient) -> None:
    """Without Cassandra and services the app is alive but not ready."""
    response = client.get("/health/ready")
    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "not_ready"
    assert data["environment"] == "testing"
    assert data["checks"] == {"cassandra": False, "redis": False, "services": False}


def test_health(client: TestClient) -> None:
    """Test the general health endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["app_name"] == "codeelevate"
    assert "version" in data
    assert "environment" in data


def test_root(client: TestClient) -> None:
    """Test the root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert "codeElevateX" in data["message"]
    assert "version" in data


def test_request_id_header(client: TestClient) -> None:
    response = client.get("/health/live", headers={"X-Request-ID": "req-123"})
    assert response.headers.get("X-Request-ID") == "req-123"


def test_services_unavailable(client: TestClient) -> None:
    """Routes needing storage answer 503 in the standard error envelope."""
    response = client.get("/v1/enrollments/my", headers=auth_headers(uuid4()))
    assert response.status_code == 503
    body = response.json()
    assert body["success"] is False
    assert body["error"] is True
