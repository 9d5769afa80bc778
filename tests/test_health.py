"""Tests for the /health endpoints and request-id middleware."""

import uuid
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.config import VERSION
from app.main import app

client = TestClient(app)


def test_health_returns_ok():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert isinstance(data["live_builds"], int)


def test_health_reports_unreachable_db(monkeypatch):
    monkeypatch.setenv("TESTING", "0")
    with patch("app.api.routers.health.get_pool", AsyncMock(side_effect=OSError("refused"))):
        response = client.get("/health")
    assert response.status_code == 503
    assert response.json() == {"status": "degraded", "db": "unreachable"}


def test_health_queries_db(monkeypatch):
    monkeypatch.setenv("TESTING", "0")
    pool = AsyncMock()
    pool.fetchval.return_value = 1
    with patch("app.api.routers.health.get_pool", AsyncMock(return_value=pool)):
        response = client.get("/health")
    assert response.status_code == 200
    pool.fetchval.assert_awaited_once_with("SELECT 1")


def test_health_version_returns_version():
    response = client.get("/health/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


def test_request_id_header_generated():
    response = client.get("/health")
    uuid.UUID(response.headers["X-Request-ID"])


def test_request_id_header_echoed():
    response = client.get("/health", headers={"X-Request-ID": "my-trace-123"})
    assert response.headers["X-Request-ID"] == "my-trace-123"
