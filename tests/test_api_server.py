from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from browserbase_mcp.api_server import app, request_config_from
from browserbase_mcp.continuity import ContinuityStore
from browserbase_mcp.orchestrator import ToolCallOrchestrator
from browserbase_mcp.session_manager import SessionRegistry
from browserbase_mcp.tools import build_registry

from conftest import FakeRedis, FakeSessionFactory

HEADERS = {"x-api-key": "key", "x-project-id": "proj"}


@pytest.fixture
def local_client():
    app.state.orchestrator = ToolCallOrchestrator(
        build_registry(), SessionRegistry(FakeSessionFactory()), settle_delay_ms=0, capture_delay_ms=0
    )
    yield TestClient(app)
    app.state.orchestrator = None


@pytest.fixture
def remote_client():
    redis = FakeRedis()
    app.state.orchestrator = ToolCallOrchestrator(
        build_registry(),
        SessionRegistry(FakeSessionFactory()),
        ContinuityStore(client=redis, retry_backoff_ms=0),
        settle_delay_ms=0,
        capture_delay_ms=0,
    )
    yield TestClient(app), redis
    app.state.orchestrator = None


def test_health(local_client):
    response = local_client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["mode"] == "local"
    assert body["tools"] == 14
    assert datetime.fromisoformat(body["timestamp"]).tzinfo is not None


def test_list_tools(local_client):
    names = [t["name"] for t in local_client.get("/tools").json()["tools"]]
    assert "browserbase_navigate" in names


def test_unknown_tool_is_404(local_client):
    response = local_client.post("/tools/browserbase_nope", json={})
    assert response.status_code == 404


def test_invalid_json_body_is_400(local_client):
    response = local_client.post(
        "/tools/browserbase_snapshot", content=b"{oops", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400


def test_local_call_without_credentials(local_client):
    response = local_client.post("/tools/browserbase_navigate", json={"url": "https://example.com"})
    assert response.status_code == 200
    body = response.json()
    assert body["isError"] is False
    assert any("Page URL: https://example.com" in item.get("text", "") for item in body["content"])


def test_argument_errors_are_results_not_http_errors(local_client):
    response = local_client.post("/tools/browserbase_navigate", json={})
    assert response.status_code == 200
    assert response.json()["isError"] is True


def test_remote_requires_credentials(remote_client):
    client, _ = remote_client
    response = client.post("/tools/browserbase_snapshot", json={})
    assert response.status_code == 401


def test_remote_call_saves_projection(remote_client):
    client, redis = remote_client
    response = client.post("/tools/browserbase_snapshot", json={}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["isError"] is False
    assert "mcp:ctx:proj" in redis.data


def test_credentials_from_query_params(remote_client):
    client, redis = remote_client
    response = client.post(
        "/tools/browserbase_snapshot?browserbaseApiKey=key&browserbaseProjectId=qproj", json={}
    )
    assert response.status_code == 200
    assert "mcp:ctx:qproj" in redis.data


def test_resources_round_trip(local_client):
    shot = local_client.post("/tools/browserbase_take_screenshot", json={"name": "s1"}).json()
    assert shot["content"][1]["type"] == "image"

    listing = local_client.get("/resources").json()["resources"]
    assert listing == [{"uri": "mcp://screenshots/s1", "mimeType": "image/png", "name": "Screenshot: s1"}]

    read = local_client.get("/resources/read", params={"uri": "mcp://screenshots/s1"})
    assert read.status_code == 200
    assert read.json()["contents"][0]["mimeType"] == "image/png"

    assert local_client.get("/health").json()["calls"]["resources_added"] == 1


def test_resource_errors(local_client):
    assert local_client.get("/resources/read", params={"uri": "mcp://screenshots/none"}).status_code == 404
    assert local_client.get("/resources/read", params={"uri": "http://x/y"}).status_code == 400


def test_request_flags_are_parsed():
    from starlette.requests import Request

    scope = {
        "type": "http",
        "method": "POST",
        "path": "/tools/x",
        "query_string": b"proxies=true&browserWidth=1280",
        "headers": [
            (b"x-api-key", b"k"),
            (b"x-project-id", b"p"),
            (b"x-advanced-stealth", b"1"),
            (b"x-context-id", b"ctx"),
            (b"x-persist", b"false"),
        ],
    }
    config = request_config_from(Request(scope))

    assert config.api_key == "k"
    assert config.project_id == "p"
    assert config.proxies is True
    assert config.advanced_stealth is True
    assert config.context_id == "ctx"
    assert config.persist is False
    assert config.viewport_width == 1280
    assert config.viewport_height == 768
