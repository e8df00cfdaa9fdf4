"""Tests for the Web API endpoints."""

import pytest
import requests
from fastapi.testclient import TestClient

from conftest import RAW_ALGEBRA_URL
from studysync import __version__
from studysync.web.api import create_app
from studysync.web.dependencies import orchestrator_dependency

API_URL = "https://api.github.com/repos/acme/banks/contents/manifest.json?ref=main"


@pytest.fixture
def client(orchestrator, session, algebra_csv):
    """Test client bound to the isolated orchestrator."""
    session.route(RAW_ALGEBRA_URL, algebra_csv)
    session.route(API_URL, {"content": "W10="})
    app = create_app(use_lifespan=False)
    app.dependency_overrides[orchestrator_dependency] = lambda: orchestrator
    return TestClient(app)


@pytest.fixture
def source_id(client) -> int:
    response = client.post("/api/sources", json={"url": RAW_ALGEBRA_URL})
    assert response.status_code == 201
    return response.json()["source"]["id"]


class TestHealth:
    """Tests for GET /health."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == __version__


class TestSources:
    """Tests for /api/sources."""

    def test_list_empty(self, client):
        response = client.get("/api/sources")
        assert response.status_code == 200
        assert response.json() == {"sources": [], "count": 0}

    def test_create_returns_stats(self, client):
        response = client.post("/api/sources", json={"url": RAW_ALGEBRA_URL, "name": "Algebra"})

        assert response.status_code == 201
        data = response.json()
        assert data["source"]["name"] == "Algebra"
        assert data["stats"]["questions_inserted"] == 4
        assert data["stats"]["banks_created"] == 1

    def test_create_duplicate(self, client, source_id):
        response = client.post("/api/sources", json={"url": RAW_ALGEBRA_URL})
        assert response.status_code == 409

    def test_create_unreachable(self, client, session):
        session.route(RAW_ALGEBRA_URL, requests.ConnectionError)
        response = client.post("/api/sources", json={"url": RAW_ALGEBRA_URL})
        assert response.status_code == 502

    def test_create_unparseable(self, client, session):
        session.route(RAW_ALGEBRA_URL, "foo,bar\n1,2\n")
        response = client.post("/api/sources", json={"url": RAW_ALGEBRA_URL})
        assert response.status_code == 422

    def test_create_requires_url(self, client):
        response = client.post("/api/sources", json={"url": ""})
        assert response.status_code == 422

    def test_get_with_banks(self, client, source_id):
        response = client.get(f"/api/sources/{source_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "algebra"
        assert len(data["banks"]) == 1
        assert data["banks"][0]["remote_id"] == "csv_1"
        assert data["banks"][0]["question_count"] == 4

    def test_get_missing(self, client):
        assert client.get("/api/sources/404").status_code == 404

    def test_patch_auto_update(self, client, source_id):
        response = client.patch(f"/api/sources/{source_id}", json={"auto_update": False})

        assert response.status_code == 200
        assert response.json()["auto_update"] is False

    def test_delete(self, client, source_id):
        assert client.delete(f"/api/sources/{source_id}").status_code == 204
        assert client.get(f"/api/sources/{source_id}").status_code == 404
        assert client.delete(f"/api/sources/{source_id}").status_code == 404

    def test_sync_source(self, client, source_id):
        response = client.post(f"/api/sources/{source_id}/sync")

        assert response.status_code == 200
        assert response.json()["stats"]["questions_unchanged"] == 4

    def test_sync_while_busy(self, client, source_id, orchestrator):
        orchestrator._flight.acquire()
        try:
            response = client.post(f"/api/sources/{source_id}/sync")
        finally:
            orchestrator._flight.release()

        assert response.status_code == 409


class TestSync:
    """Tests for /api/sync and /api/manifest/sync."""

    def test_sync_all(self, client, source_id):
        response = client.post("/api/sync")

        assert response.status_code == 200
        assert response.json() == {"scheduled": False, "synced": 1, "total": 1}

    def test_sync_all_background(self, client, source_id, orchestrator):
        response = client.post("/api/sync", params={"background": "true"})

        assert response.status_code == 200
        assert response.json()["scheduled"] is True
        # TestClient runs background tasks before returning
        assert orchestrator.last_manifest_sync() is not None

    def test_manifest_then_cooldown(self, client):
        first = client.post("/api/manifest/sync")
        second = client.post("/api/manifest/sync")
        forced = client.post("/api/manifest/sync", params={"force": "true"})

        assert first.status_code == 200
        assert first.json()["via"] == "api"
        assert second.status_code == 429
        assert "Retry-After" in second.headers
        assert forced.status_code == 200

    def test_status(self, client, clock):
        before = client.get("/api/sync/status").json()
        assert before == {"is_syncing": False, "last_manifest_sync": None, "cooldown_remaining": 0.0}

        client.post("/api/manifest/sync")

        after = client.get("/api/sync/status").json()
        assert after["last_manifest_sync"] == clock.now
        assert after["cooldown_remaining"] == pytest.approx(3600)
