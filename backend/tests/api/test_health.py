"""Tests for health check endpoints."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from api import create_app
from shared.config import Settings, get_settings


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def client(settings):
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: settings
    return TestClient(app)


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "0.1.0"}

    def test_ready_in_memory(self, client):
        response = client.get("/api/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ready",
            "storage": "memory",
            "database": "not_used",
            "executor": "missing",
        }

    def test_ready_reports_executor(self, client):
        from api.dependencies import get_container

        get_container().configure_executor(MagicMock())

        assert client.get("/api/ready").json()["executor"] == "configured"

    def test_ready_with_supabase(self, client, settings):
        settings.storage_backend = "supabase"
        container = MagicMock(has_executor=False)
        container.ledger.list_account_ids = AsyncMock(return_value=["acct-1"])

        with patch("api.routes.health.get_container", return_value=container):
            response = client.get("/api/ready")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_not_ready_when_database_fails(self, client, settings):
        settings.storage_backend = "supabase"
        container = MagicMock(has_executor=False)
        container.ledger.list_account_ids = AsyncMock(side_effect=RuntimeError("down"))

        with patch("api.routes.health.get_container", return_value=container):
            response = client.get("/api/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        assert response.json()["database"] == "unavailable"
