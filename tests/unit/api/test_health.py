"""Unit tests for health endpoints."""

from typing import Any

from fastapi.testclient import TestClient

from catalog_sync.api.dependencies import get_catalog_store


class StubStore:
    def __init__(self, reachable: bool):
        self.reachable = reachable

    async def ping(self) -> bool:
        return self.reachable


def test_health_check(client: TestClient) -> None:
    """Test basic health check endpoint."""
    response = client.get("/api/v1/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert data["environment"] == "test"
    assert data["dependencies"]["erp"] == "configured"


def test_liveness_check(client: TestClient) -> None:
    """Test liveness check endpoint."""
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


def test_readiness_reports_database(app: Any, client: TestClient) -> None:
    app.dependency_overrides[get_catalog_store] = lambda: StubStore(reachable=False)

    response = client.get("/api/v1/health/ready")

    assert response.status_code == 200
    assert response.json() == {"ready": False, "checks": {"database": False}}
