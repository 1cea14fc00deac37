"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status and version fields
  - No authentication required
  - Unknown Host headers are rejected by TrustedHostMiddleware
"""

from __future__ import annotations

from api.main import API_VERSION


def test_health_returns_200_with_version(client):
    """Health endpoint returns 200 with status and the API version."""
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": API_VERSION}


def test_health_no_auth_required(client):
    """Health endpoint is accessible without any authentication headers."""
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_health_ignores_bad_token(client):
    """A garbage token does not turn a public endpoint into a 401."""
    resp = client.get("/api/v1/health", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 200


def test_untrusted_host_rejected(client):
    resp = client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
