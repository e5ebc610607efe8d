"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from linkme.main import app

client = TestClient(app)


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_readyz_all_healthy():
    with (
        patch("linkme.routes.health.fast_redis.ping", new=AsyncMock(return_value=True)),
        patch("linkme.routes.health.settings.DATABASE_URL", None),
        patch("linkme.routes.health.settings.WEBHOOK_SECRET", "test-secret"),
        patch("linkme.routes.health.settings.EXECUTOR_BASE_URL", "http://executor.test"),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["redis"]["ok"] is True
    assert "database" not in data["checks"]


def test_readyz_redis_down():
    with (
        patch("linkme.routes.health.fast_redis.ping", new=AsyncMock(return_value=False)),
        patch("linkme.routes.health.settings.DATABASE_URL", None),
        patch("linkme.routes.health.settings.WEBHOOK_SECRET", "test-secret"),
        patch("linkme.routes.health.settings.EXECUTOR_BASE_URL", "http://executor.test"),
    ):
        data = client.get("/readyz").json()

    assert data["overall_ok"] is False
    assert data["checks"]["redis"]["ok"] is False


def test_readyz_reports_missing_configuration():
    with (
        patch("linkme.routes.health.fast_redis.ping", new=AsyncMock(return_value=True)),
        patch("linkme.routes.health.settings.DATABASE_URL", None),
        patch("linkme.routes.health.settings.WEBHOOK_SECRET", None),
        patch("linkme.routes.health.settings.EXECUTOR_BASE_URL", None),
    ):
        data = client.get("/readyz").json()

    assert data["overall_ok"] is False
    assert data["checks"]["configuration"]["issues"] == [
        "WEBHOOK_SECRET not set",
        "EXECUTOR_BASE_URL not set",
    ]


def test_readyz_checks_database_when_configured():
    with (
        patch("linkme.routes.health.fast_redis.ping", new=AsyncMock(return_value=True)),
        patch("linkme.routes.health.settings.DATABASE_URL", "postgresql://localhost/linkme"),
        patch("linkme.routes.health.settings.WEBHOOK_SECRET", "test-secret"),
        patch("linkme.routes.health.settings.EXECUTOR_BASE_URL", "http://executor.test"),
        patch(
            "linkme.routes.health.db_health_check",
            new=AsyncMock(return_value={"healthy": False, "error": "pool closed"}),
        ),
    ):
        data = client.get("/readyz").json()

    assert data["overall_ok"] is False
    assert data["checks"]["database"] == {
        "ok": False,
        "latency_ms": data["checks"]["database"]["latency_ms"],
        "error": "pool closed",
    }
