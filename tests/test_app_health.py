"""Tests for the health endpoint and response middleware."""

import pytest
from fastapi.testclient import TestClient

from credence import app as app_module
from credence.service.runtime import get_runtime


@pytest.fixture
def client():
    return TestClient(app_module.app)


class TestHealth:
    """Tests for /healthz."""

    def test_healthz_reports_memory_store(self, client):
        """Test the healthy payload."""
        response = client.get("/healthz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"] == {"status": "healthy", "type": "memory"}
        assert data["version"] == app_module.__version__
        assert data["timestamp"]

    def test_healthz_unhealthy_when_store_fails(self, client, monkeypatch):
        """Test that a failing ping yields 503."""
        runtime = get_runtime()

        async def _broken_ping():
            raise RuntimeError("down")

        monkeypatch.setattr(runtime.store, "ping", _broken_ping)
        response = client.get("/healthz")

        assert response.status_code == 503
        assert response.json()["checks"]["database"]["status"] == "unhealthy"


class TestMiddleware:
    """Tests for headers added to every response."""

    def test_request_id_is_generated(self, client):
        """Test that each response carries an X-Request-ID."""
        response = client.get("/healthz")

        assert response.headers.get("X-Request-ID")

    def test_request_id_is_echoed(self, client):
        """Test that a client-supplied request id is reused."""
        response = client.get("/healthz", headers={"X-Request-ID": "trace-123"})

        assert response.headers["X-Request-ID"] == "trace-123"

    def test_security_headers(self, client):
        """Test the fixed security headers on API responses."""
        response = client.post("/v1/auth/logout", json={"refreshToken": "x"})

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "no-store" in response.headers["Cache-Control"]
        assert response.headers["API-Version"] == app_module.__version__
        assert "Strict-Transport-Security" not in response.headers
