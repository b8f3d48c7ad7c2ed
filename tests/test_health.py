"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' while the store answers, 'error' when it does not
  - No authentication required
"""

from __future__ import annotations

from unittest.mock import patch


def test_health_returns_200_with_components(client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"]
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_database_error(client):
    """A store that cannot be reached is reported, not raised."""
    with patch.object(client.app.state.store, "ping", return_value=False):
        data = client.get("/api/v1/health").json()
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(client):
    """Health endpoint is accessible without a cookie or Authorization header."""
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
