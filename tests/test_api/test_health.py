"""Tests for health endpoints."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock


@pytest.fixture
def mock_app():
    """Create a test application with a mocked plan service."""
    from fastapi import FastAPI
    from rehab_progress.api.routes import health

    app = FastAPI()
    app.include_router(health.router)

    app.state.plan_service = MagicMock()
    app.state.plan_service.ping = AsyncMock(return_value=None)
    app.state.plan_service.case_store = MagicMock()
    app.state.plan_service.notifications = MagicMock()
    app.state.plan_service.tz = "Europe/London"
    app.state.plan_service.events.enabled = False

    return app


@pytest.fixture
def client(mock_app):
    return TestClient(mock_app)


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == "rehab-progress"

    def test_liveness_check(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readiness_check_success(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert response.json()["timezone"] == "Europe/London"
        assert response.json()["event_log"] == "disabled"
        assert response.json()["case_store"] == "MagicMock"

    def test_readiness_check_database_failure(self, mock_app):
        mock_app.state.plan_service.ping = AsyncMock(side_effect=RuntimeError("database is locked"))
        client = TestClient(mock_app)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        assert "database is locked" in response.json()["errors"][0]

    def test_readiness_check_without_service(self):
        from fastapi import FastAPI
        from rehab_progress.api.routes import health

        app = FastAPI()
        app.include_router(health.router)
        client = TestClient(app)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
