"""
Tests for the health check endpoint.
"""

from sqlalchemy.exc import OperationalError

from banca_ledger.main import app
from banca_ledger.models.base import get_db


class _BrokenSession:
    """Stands in for a session whose connection is gone."""

    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def test_health_check_reports_healthy(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "healthy"


def test_health_check_returns_service_name(client):
    """
    Monitoring parses this field; a renamed service breaks dashboards.
    """
    response = client.get("/health")
    assert response.json()["service"] == "banca-ledger"


def test_health_check_degraded_when_database_unreachable(client):
    app.dependency_overrides[get_db] = lambda: _BrokenSession()

    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["database"] == "unhealthy"
