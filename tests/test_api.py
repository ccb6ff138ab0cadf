"""HTTP surface: routing, status codes and the JSON envelope."""
import pytest
from fastapi.testclient import TestClient

from talentbrain import __version__
from talentbrain.__main__ import app, get_executor


@pytest.fixture
def client(executor):
    app.dependency_overrides[get_executor] = lambda: executor
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root(client):
    response = client.get("/api")

    assert response.status_code == 200
    body = response.json()
    assert body["version"] == __version__
    assert body["endpoints"]["mcp_loop"] == "POST /v2/mcp-loop"


def test_preflight(client):
    response = client.options("/v2/mcp-loop")

    assert response.status_code == 200
    assert response.text == "ok"


def test_malformed_json_is_a_validation_error(client, store):
    response = client.post(
        "/v2/mcp-loop", content="{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["errorType"] == "VALIDATION_ERROR"
    assert store.calls == []


def test_missing_anchor(client):
    response = client.post("/v2/mcp-loop", json={"mode": "hiring"})

    assert response.status_code == 400
    assert response.json()["error"] == "roleId is required for hiring mode"


def test_hiring_envelope_is_camel_case(client, hiring_world):
    response = client.post("/v2/mcp-loop", json={"mode": "hiring", "roleId": "r1", "sessionId": "s1"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert "error" not in body
    data = body["data"]
    assert set(data) >= {"matches", "recommendations", "chatResponse", "nextActions", "actionsTaken"}
    assert data["chatResponse"]["followUpQuestion"]
    assert data["recommendations"][0]["profileId"] == "p1"
    assert data["matches"][0]["similarity"] == pytest.approx(0.9)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "ok"


def test_health_reports_degraded_store(client, store):
    store.fail["ping"] = RuntimeError("down")

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["database"] == "unavailable"
