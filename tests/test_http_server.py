"""Tests for the MCP Memory HTTP server (memory routes + Streamable HTTP transport)."""
import asyncio

import pytest
from starlette.testclient import TestClient

from mcp_memory.errors import RecordStoreError
from mcp_memory.server.http_server import create_http_app
from mcp_memory.server.mcp_server import server


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def app(bridge_engine):
    """Create an HTTP app with auth disabled."""
    return create_http_app(server, api_key=None)


@pytest.fixture
def app_with_auth(bridge_engine):
    """Create an HTTP app with auth enabled."""
    return create_http_app(server, api_key="test-secret-key")


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def _remember(engine, content, namespace):
    return asyncio.run(engine.remember(content, namespace))


# ============================================================================
# App creation / metadata
# ============================================================================


def test_create_http_app_routes(app):
    route_paths = {r.path for r in app.routes}
    assert "/health" in route_paths
    assert "/.well-known/mcp.json" in route_paths
    assert "/{namespace}/memories" in route_paths
    assert "/{namespace}/memories/{memory_id}" in route_paths
    assert "/{namespace}/mcp" in route_paths


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "server": "mcp-memory"}


def test_server_card_endpoint(client):
    from mcp_memory import __version__

    data = client.get("/.well-known/mcp.json").json()
    assert data["name"] == "mcp-memory"
    assert data["version"] == __version__
    assert data["tools"] == ["addToMCPMemory", "searchMCPMemory"]


# ============================================================================
# GET /{namespace}/memories
# ============================================================================


class TestListMemories:
    def test_lists_newest_first(self, client, bridge_engine):
        first = _remember(bridge_engine, "first", "alice")
        second = _remember(bridge_engine, "second", "alice")
        resp = client.get("/alice/memories")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["memories"] == [
            {"id": second, "content": "second"},
            {"id": first, "content": "first"},
        ]

    def test_empty_namespace(self, client):
        assert client.get("/nobody/memories").json() == {"success": True, "memories": []}

    def test_store_failure_is_500(self, client, bridge_engine, monkeypatch):
        def broken(namespace):
            raise RecordStoreError("disk I/O error", operation="record select")

        monkeypatch.setattr(bridge_engine.records, "select_all_by_namespace", broken)
        resp = client.get("/alice/memories")
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Failed to retrieve memories"}


# ============================================================================
# PUT /{namespace}/memories/{id}
# ============================================================================


class TestUpdateMemory:
    def test_update_trims_content(self, client, bridge_engine):
        memory_id = _remember(bridge_engine, "I like coffee", "alice")
        resp = client.put(f"/alice/memories/{memory_id}", json={"content": "  I love green tea  "})
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["vector_synced"] is True
        assert bridge_engine.records.get(memory_id, "alice").content == "I love green tea"

    def test_missing_id_is_404(self, client):
        resp = client.put("/alice/memories/nope", json={"content": "x"})
        assert resp.status_code == 404
        assert resp.json()["success"] is False
        assert "not found" in resp.json()["error"]

    def test_wrong_namespace_is_404(self, client, bridge_engine):
        memory_id = _remember(bridge_engine, "I like coffee", "alice")
        assert client.put(f"/bob/memories/{memory_id}", json={"content": "x"}).status_code == 404

    @pytest.mark.parametrize("body", [{"content": ""}, {"content": "   "}, {"content": 5}, {}, ["content"]])
    def test_invalid_body_is_400(self, client, body):
        resp = client.put("/alice/memories/some-id", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid or missing content in request body"

    def test_unparseable_body_is_400(self, client):
        resp = client.put(
            "/alice/memories/some-id", content=b"{not json", headers={"content-type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Failed to parse request body"

    def test_oversize_content_is_400(self, client, bridge_engine):
        bridge_engine.max_content_size = 5
        memory_id = "any"
        resp = client.put(f"/alice/memories/{memory_id}", json={"content": "too long for limit"})
        assert resp.status_code == 400


# ============================================================================
# DELETE /{namespace}/memories/{id}
# ============================================================================


class TestDeleteMemory:
    def test_delete(self, client, bridge_engine):
        memory_id = _remember(bridge_engine, "I like coffee", "alice")
        resp = client.delete(f"/alice/memories/{memory_id}")
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["rows_changed"] == 1
        assert client.get("/alice/memories").json()["memories"] == []

    def test_delete_missing_still_succeeds(self, client):
        resp = client.delete("/alice/memories/nope")
        assert resp.status_code == 200
        assert resp.json()["rows_changed"] == 0

    def test_record_failure_is_500(self, client, bridge_engine, monkeypatch):
        def broken(memory_id, namespace):
            raise RecordStoreError("locked", operation="record delete")

        monkeypatch.setattr(bridge_engine.records, "delete_by_id_and_namespace", broken)
        resp = client.delete("/alice/memories/x")
        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to delete memory"


# ============================================================================
# Auth
# ============================================================================


class TestAuth:
    def test_rejects_missing_key(self, app_with_auth):
        with TestClient(app_with_auth) as c:
            assert c.get("/alice/memories").status_code == 401
            assert c.post("/alice/mcp/", json={}).status_code == 401

    def test_rejects_wrong_key(self, app_with_auth):
        with TestClient(app_with_auth) as c:
            assert c.get("/alice/memories", headers={"x-api-key": "wrong"}).status_code == 401

    def test_accepts_header_key(self, app_with_auth):
        with TestClient(app_with_auth) as c:
            resp = c.get("/alice/memories", headers={"x-api-key": "test-secret-key"})
            assert resp.status_code == 200

    def test_accepts_query_key(self, app_with_auth):
        with TestClient(app_with_auth) as c:
            assert c.get("/alice/memories?api_key=test-secret-key").status_code == 200

    def test_health_is_public(self, app_with_auth):
        with TestClient(app_with_auth) as c:
            assert c.get("/health").status_code == 200
