"""Tests for the health check endpoints."""

from fastapi.testclient import TestClient

from imgrelay.main import app

client = TestClient(app)


def test_health_endpoint():
    """Test that the health endpoint returns correct response."""
    response = client.get("/health")

    assert response.status_code == 200

    data = response.json()

    assert "status" in data
    assert "service" in data
    assert "version" in data
    assert data["status"] == "ok"


def test_health_endpoint_values():
    """Test that the health endpoint returns expected values."""
    response = client.get("/health")

    data = response.json()

    assert data["service"] == "image-convert-api"
    assert data["version"] == "0.1.0"


def test_root_banner():
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"service": "Image Convert API", "status": "running"}


def test_cors_preflight():
    """Test that browsers may post uploads cross-origin."""
    response = client.options(
        "/convert",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_unknown_route_uses_error_body():
    response = client.get("/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
