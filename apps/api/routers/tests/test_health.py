"""Tests for the health endpoints."""

import redis
from fastapi.testclient import TestClient

from apps.api.main import app
from apps.api.routers import health

client = TestClient(app)


def test_health_returns_200():
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_readiness_reports_redis_up(monkeypatch):
    class FakeRedis:
        def ping(self):
            return True

    monkeypatch.setattr(health.redis, "from_url", lambda url, **kw: FakeRedis())
    data = client.get("/api/v1/health/ready").json()

    assert data["status"] == "healthy"
    assert data["services"] == {"api": "up", "redis": "up"}


def test_readiness_degrades_when_redis_down(monkeypatch):
    class DownRedis:
        def ping(self):
            raise redis.ConnectionError("refused")

    monkeypatch.setattr(health.redis, "from_url", lambda url, **kw: DownRedis())
    data = client.get("/api/v1/health/ready").json()

    assert data["status"] == "degraded"
    assert data["services"]["redis"] == "down"


def test_app_serves_ingest_route():
    paths = app.openapi()["paths"]
    assert "/api/v1/ingest/statement" in paths
    assert "/api/v1/ingest/tasks/{task_id}" in paths
