"""
Tests for the health endpoint.
"""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from cortex.api.routes import health


def test_health_returns_ok():
    app = FastAPI()
    app.include_router(health.router)

    response = TestClient(app).get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_needs_no_auth(client):
    assert client.get("/api/health").status_code == 200
