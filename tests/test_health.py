"""
tests/test_health.py -- Integration tests for GET /api/health and the error envelope.

Covers:
  - 200 response with status, version and components
  - components.database reports 'ok'
  - no authentication required
  - unknown routes and validation failures use the {"error": {...}} envelope
  - the background session sweep logs a failure and keeps running
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from api.main import _purge_loop
from core.config import get_settings


def test_health_returns_200_with_components(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(client):
    resp = client.get("/api/health", headers={})
    assert resp.status_code == 200


def test_validation_error_envelope(client):
    resp = client.post("/api/login", json={"username": "alice"})
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "validation_error"
    assert error["message"].startswith("password")


def test_malformed_json_is_400(client):
    resp = client.post("/api/login", content=b"{not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400


def test_request_is_logged(client, caplog):
    with caplog.at_level("INFO", logger="devscripts.api"):
        client.get("/api/health")
    assert any("GET /api/health 200" in record.getMessage() for record in caplog.records)


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/no-such-route")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"


def test_purge_loop_survives_failures(monkeypatch, caplog):
    settings = get_settings().model_copy(update={"session_purge_interval_seconds": 0})
    monkeypatch.setattr("api.main.get_settings", lambda: settings)
    calls = []

    class BrokenManager:
        def purge_expired(self):
            calls.append(1)
            raise RuntimeError("store went away")

    app = SimpleNamespace(state=SimpleNamespace(session_manager=BrokenManager()))

    async def run():
        task = asyncio.create_task(_purge_loop(app))
        while len(calls) < 2:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    with caplog.at_level("ERROR", logger="devscripts.api"):
        asyncio.run(run())
    assert len(calls) >= 2
    assert "Session purge failed" in caplog.text
