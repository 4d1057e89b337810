"""Tests for health endpoints."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from clinic_calendar.core.database import get_db


def _db_override(session):
    async def _override_get_db():
        yield session

    return _override_get_db


@pytest.fixture
def mock_session():
    session = MagicMock()
    session.execute = AsyncMock(return_value=None)
    return session


@pytest.fixture
def mock_app(mock_session):
    """Create a test application with a mocked database session."""
    from fastapi import FastAPI
    from clinic_calendar.api.routes import health

    app = FastAPI()
    app.include_router(health.router)
    app.dependency_overrides[get_db] = _db_override(mock_session)
    return app


@pytest.fixture
def client(mock_app):
    """Create a test client."""
    return TestClient(mock_app)


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, client):
        """Test basic health check."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == "clinic-calendar"

    def test_liveness_check(self, client):
        """Test liveness check."""
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readiness_check_success(self, client):
        """Test readiness check when the database answers."""
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert response.json()["zones"] == 14

    def test_readiness_check_database_down(self, client, mock_session):
        mock_session.execute.side_effect = ConnectionError("refused")

        response = client.get("/health/ready")

        assert response.json()["status"] == "not_ready"
        assert "Database check failed" in response.json()["errors"][0]


class TestAppFactory:
    def test_app_serves_health_without_lifespan(self):
        from clinic_calendar.api.app import create_app

        with TestClient(create_app(with_lifespan=False)) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["version"]

    def test_calendar_routes_mounted(self):
        from clinic_calendar.api.app import create_app

        with TestClient(create_app(with_lifespan=False)) as client:
            response = client.get("/api/v1/calendar/time-zones")
            missing = client.get("/api/v1/calendar/no-such-route")

        assert response.status_code == 200
        assert response.json()[0]["value"]
        assert missing.status_code == 404
