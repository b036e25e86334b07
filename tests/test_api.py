from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from relaylink.apps.api.server import create_app

AUTH = {"Authorization": "Bearer pw"}


@pytest.fixture
def client(ctx):
    ctx.identity.store_server_password("pw")
    with TestClient(create_app(ctx, start_heartbeat=False)) as test_client:
        yield test_client


def test_ping_requires_credential(client):
    assert client.get("/api/v1/ping").status_code == 401
    assert client.get("/api/v1/ping", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_ping_with_header_and_legacy_query(client):
    res = client.get("/api/v1/ping", headers=AUTH)
    assert res.status_code == 200
    assert res.json()["data"] == "pong"
    assert client.get("/api/v1/ping", params={"guid": "pw"}).status_code == 200
    assert client.get("/api/v1/ping", params={"password": " pw "}).status_code == 200


def test_unresolvable_password_is_server_error(ctx):
    with TestClient(create_app(ctx, start_heartbeat=False)) as test_client:
        res = test_client.get("/api/v1/ping", headers=AUTH)
    assert res.status_code == 500
    assert "keychain" in res.json()["detail"]


def test_webhook_crud(client):
    created = client.post(
        "/api/v1/webhook",
        json={"url": "https://hooks.test/a", "events": ["new-message", {"label": "All", "value": "*"}]},
        headers=AUTH,
    )
    assert created.status_code == 200
    hook = created.json()
    assert hook["url"] == "https://hooks.test/a"
    assert hook["events"] == ["new-message", "*"]

    listed = client.get("/api/v1/webhook", headers=AUTH).json()["data"]
    assert [item["id"] for item in listed] == [hook["id"]]

    updated = client.put(f"/api/v1/webhook/{hook['id']}", json={"events": ["typing"]}, headers=AUTH)
    assert updated.status_code == 200
    assert updated.json()["events"] == ["typing"]
    assert updated.json()["url"] == "https://hooks.test/a"

    assert client.delete(f"/api/v1/webhook/{hook['id']}", headers=AUTH).json() == {"ok": True}
    assert client.get("/api/v1/webhook", headers=AUTH).json()["data"] == []


def test_webhook_validation_and_missing(client):
    assert client.post("/api/v1/webhook", json={"url": "https://x.test", "events": []}, headers=AUTH).status_code == 400
    assert client.post("/api/v1/webhook", json={"url": "https://x.test", "events": [1]}, headers=AUTH).status_code == 400
    assert client.put("/api/v1/webhook/999", json={"events": ["*"]}, headers=AUTH).status_code == 404
    assert client.delete("/api/v1/webhook/999", headers=AUTH).status_code == 404


def test_webhook_routes_are_gated(client):
    assert client.get("/api/v1/webhook").status_code == 401
    assert client.post("/api/v1/webhook", json={"url": "https://x.test", "events": ["*"]}).status_code == 401
