"""Tests for API key issuance and limit management via admin Basic auth."""
from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from apiquota.core.config import Settings, get_settings
from apiquota.main import app


@pytest.fixture(name="client")
def client_fixture(tmp_path: Path) -> TestClient:
    app.dependency_overrides[get_settings] = lambda: Settings(
        api_key_store_path=str(tmp_path / "api_keys.jsonl"),
        rate_limit_store_path=str(tmp_path / "rate_limits.jsonl"),
        auth_basic_username="admin",
        auth_basic_password_plain="secret",
        database_url=None,
    )
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.pop(get_settings, None)


def _basic_auth(username: str, password: str) -> dict[str, str]:
    import base64

    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def test_issue_key_returns_builtin_and_user_limits(client: TestClient) -> None:
    resp = client.post(
        "/api/admin/api-keys",
        json={"name": "ci", "key_type": "production", "limits": {"hour": 50}},
        headers=_basic_auth("admin", "secret"),
    )
    assert resp.status_code == 201
    payload = resp.json()
    assert "." in payload["api_key"]
    assert payload["key_type"] == "production"
    assert payload["builtin_limits"] == {"minute": 10, "hour": 100, "day": 1000, "month": 1000}
    assert payload["user_limits"] == {"minute": None, "hour": 50, "day": None, "month": None}

    listing = client.get("/api/admin/api-keys", headers=_basic_auth("admin", "secret"))
    assert listing.status_code == 200
    assert [item["id"] for item in listing.json()] == [payload["id"]]


def test_issue_key_defaults_to_development(client: TestClient) -> None:
    resp = client.post("/api/admin/api-keys", json={"name": "dev"}, headers=_basic_auth("admin", "secret"))

    assert resp.status_code == 201
    assert resp.json()["key_type"] == "development"
    assert resp.json()["builtin_limits"]["minute"] == 1


def test_issue_key_rejects_limits_above_ceiling(client: TestClient) -> None:
    resp = client.post(
        "/api/admin/api-keys",
        json={"name": "greedy", "key_type": "development", "limits": {"day": 500}},
        headers=_basic_auth("admin", "secret"),
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Invalid user limits"
    assert body["details"] == ["Day limit cannot exceed 100 (maximum allowed)"]
    assert body["max_allowed"] == {"minute": 1, "hour": 10, "day": 100, "month": 1000}

    listing = client.get("/api/admin/api-keys", headers=_basic_auth("admin", "secret"))
    assert listing.json() == []


def test_admin_endpoints_require_basic_auth(client: TestClient) -> None:
    assert client.post("/api/admin/api-keys", json={"name": "x"}).status_code == 401
    resp = client.post("/api/admin/api-keys", json={"name": "x"}, headers=_basic_auth("admin", "wrong"))
    assert resp.status_code == 401


def test_update_user_limits(client: TestClient) -> None:
    created = client.post(
        "/api/admin/api-keys",
        json={"name": "ci", "key_type": "production"},
        headers=_basic_auth("admin", "secret"),
    ).json()

    resp = client.patch(
        f"/api/admin/api-keys/{created['id']}/limits",
        json={"minute": 5, "month": 0},
        headers=_basic_auth("admin", "secret"),
    )
    assert resp.status_code == 200
    assert resp.json()["user_limits"] == {"minute": 5, "hour": None, "day": None, "month": 0}

    too_high = client.patch(
        f"/api/admin/api-keys/{created['id']}/limits",
        json={"minute": 11},
        headers=_basic_auth("admin", "secret"),
    )
    assert too_high.status_code == 400
    assert too_high.json()["details"] == ["Minute limit cannot exceed 10 (maximum allowed)"]

    negative = client.patch(
        f"/api/admin/api-keys/{created['id']}/limits",
        json={"minute": -1},
        headers=_basic_auth("admin", "secret"),
    )
    assert negative.status_code == 422


def test_update_limits_for_unknown_key_is_404(client: TestClient) -> None:
    resp = client.patch(
        "/api/admin/api-keys/unknown/limits",
        json={"minute": 1},
        headers=_basic_auth("admin", "secret"),
    )
    assert resp.status_code == 404


def test_revoke_key(client: TestClient) -> None:
    created = client.post(
        "/api/admin/api-keys", json={"name": "tmp"}, headers=_basic_auth("admin", "secret")
    ).json()

    resp = client.delete(f"/api/admin/api-keys/{created['id']}", headers=_basic_auth("admin", "secret"))
    assert resp.status_code == 204

    call = client.post("/api/external/validate", headers={"X-API-Key": created["api_key"]})
    assert call.status_code == 401

    again = client.delete("/api/admin/api-keys/unknown", headers=_basic_auth("admin", "secret"))
    assert again.status_code == 404


def test_max_limits_lookup(client: TestClient) -> None:
    resp = client.get("/api/limits/max", params={"key_type": "production"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["key_type"] == "production"
    assert body["max_limits"] == {"minute": 10, "hour": 100, "day": 1000, "month": 1000}
    assert body["description"]["minute"] == "Maximum 10 requests per minute"

    assert client.get("/api/limits/max", params={"key_type": "enterprise"}).status_code == 422
