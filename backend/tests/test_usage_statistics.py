"""Tests for the usage statistics endpoint."""
from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from apiquota.core.config import Settings, get_settings
from apiquota.main import app


def _basic_auth(username: str, password: str) -> dict[str, str]:
    import base64

    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def test_usage_statistics_after_requests(tmp_path: Path) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(
        api_key_store_path=str(tmp_path / "keys.jsonl"),
        rate_limit_store_path=str(tmp_path / "rate_limits.jsonl"),
        auth_basic_username="admin",
        auth_basic_password_plain="secret",
        database_url=None,
    )
    with TestClient(app) as client:
        created = client.post(
            "/api/admin/api-keys",
            json={"name": "stats", "key_type": "production", "limits": {"day": 20}},
            headers=_basic_auth("admin", "secret"),
        ).json()
        for _ in range(3):
            r = client.post("/api/external/validate", headers={"X-API-Key": created["api_key"]})
            assert r.status_code == 200

        resp = client.get(f"/api/usage/{created['id']}", headers=_basic_auth("admin", "secret"))
        assert resp.status_code == 200
        stats = resp.json()
        assert stats["key_type"] == "production"
        assert stats["user_limits"]["day"] == 20
        current = stats["usage"]["current"]
        assert current["month"] == 3
        assert 1 <= current["minute"] <= 3
        assert stats["usage"]["remaining"]["minute"] == 10 - current["minute"]
        assert stats["usage"]["percentage"]["month"] == 0.3
        assert stats["last_used"] is not None
        assert stats["status"] == "active"
        assert set(stats["reset_times"]) == {"minute", "hour", "day", "month"}

        assert client.get(f"/api/usage/{created['id']}").status_code == 401
        assert client.get("/api/usage/missing", headers=_basic_auth("admin", "secret")).status_code == 404
    app.dependency_overrides.pop(get_settings, None)
