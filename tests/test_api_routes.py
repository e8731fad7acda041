"""
Tests for the vault and backup API endpoints.

Uses FastAPI TestClient against real services rooted in tmp_path.
Auth via a known session token (follows the X-Session-Token contract).
"""

import pytest
from fastapi.testclient import TestClient

from strongbox.api import security
from strongbox.api.main import app
from strongbox.backup import ArchiveError
from strongbox.core import load_settings
from strongbox.services import build_services, set_services


@pytest.fixture
def session_token():
    return "test-session-token-abc123"


@pytest.fixture
def services(secure_storage):
    svc = build_services(load_settings(), secure_storage=secure_storage)
    set_services(svc)
    yield svc
    set_services(None)


@pytest.fixture
def client(services, session_token):
    old_token = security._SESSION_TOKEN
    security._SESSION_TOKEN = session_token
    yield TestClient(app)
    security._SESSION_TOKEN = old_token


@pytest.fixture
def auth(session_token):
    return {"X-Session-Token": session_token}


# ── Auth ────────────────────────────────────────────────────────────


class TestAuth:

    def test_health_is_open(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_missing_token(self, client):
        assert client.get("/api/vault/secrets").status_code == 401

    def test_wrong_token(self, client):
        resp = client.get("/api/backups", headers={"X-Session-Token": "nope"})
        assert resp.status_code == 401

    def test_token_not_initialized(self, services, auth):
        old_token = security._SESSION_TOKEN
        security._SESSION_TOKEN = None
        try:
            resp = TestClient(app).get("/api/vault/status", headers=auth)
        finally:
            security._SESSION_TOKEN = old_token
        assert resp.status_code == 503

    def test_initialize_session_token(self):
        old_token = security._SESSION_TOKEN
        try:
            token = security.initialize_session_token()
            assert security.get_session_token() == token
            assert len(token) >= 32
        finally:
            security._SESSION_TOKEN = old_token


# ── Vault ───────────────────────────────────────────────────────────


class TestVaultRoutes:

    def test_status(self, client, auth):
        resp = client.get("/api/vault/status", headers=auth)

        assert resp.status_code == 200
        data = resp.json()
        assert data["encryption_available"] is True
        assert data["vault_exists"] is False

    def test_set_get_list_delete(self, client, auth):
        resp = client.put("/api/vault/secrets/openaiApiKey", json={"value": "sk-123"}, headers=auth)
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = client.get("/api/vault/secrets/openaiApiKey", headers=auth)
        assert resp.json() == {"key": "openaiApiKey", "value": "sk-123"}

        resp = client.get("/api/vault/secrets", headers=auth)
        assert resp.json() == {"keys": ["openaiApiKey"]}

        resp = client.delete("/api/vault/secrets/openaiApiKey", headers=auth)
        assert resp.json() == {"success": True, "message": "Secret deleted"}

        resp = client.get("/api/vault/secrets/openaiApiKey", headers=auth)
        assert resp.json()["value"] is None

    def test_status_after_write(self, client, auth):
        client.put("/api/vault/secrets/a", json={"value": 1}, headers=auth)

        data = client.get("/api/vault/status", headers=auth).json()
        assert data["vault_exists"] is True
        assert data["key_storage"] == "wrapped"

    def test_structured_value(self, client, auth):
        value = {"clientId": "id", "clientSecret": "secret"}
        client.put("/api/vault/secrets/googleOAuth", json={"value": value}, headers=auth)

        resp = client.get("/api/vault/secrets/googleOAuth", headers=auth)
        assert resp.json()["value"] == value

    def test_fatal_key_error(self, client, auth, secure_storage):
        client.put("/api/vault/secrets/a", json={"value": 1}, headers=auth)

        # A fresh process whose credential store no longer unwraps the key
        secure_storage.fail_unwrap = True
        set_services(build_services(load_settings(), secure_storage=secure_storage))

        resp = client.get("/api/vault/secrets/a", headers=auth)
        assert resp.status_code == 500
        assert resp.json()["fatal"] is True
        assert resp.json()["success"] is False

    def test_corrupt_vault_under_fail_policy(self, client, auth, secure_storage, monkeypatch):
        monkeypatch.setenv("STRONGBOX_VAULT_CORRUPTION", "fail")
        svc = build_services(load_settings(), secure_storage=secure_storage)
        set_services(svc)
        svc.vault.vault_path.write_text("garbage")

        resp = client.get("/api/vault/secrets", headers=auth)
        assert resp.status_code == 409
        assert resp.json()["fatal"] is False

        resp = client.put("/api/vault/secrets/a", json={"value": 1}, headers=auth)
        assert resp.status_code == 400


# ── Backups ─────────────────────────────────────────────────────────


class TestBackupRoutes:

    def test_create_and_list(self, client, auth, services):
        (services.backups.data_dir / "settings.json").write_text("{}")

        resp = client.post("/api/backups", headers=auth)
        assert resp.status_code == 200
        created = resp.json()
        assert created["success"] is True
        assert created["name"].startswith("backup-")
        assert created["safety_backup"] is False

        resp = client.get("/api/backups", headers=auth)
        data = resp.json()
        assert data["total"] == 1
        assert data["backups"][0]["name"] == created["name"]

    def test_restore(self, client, auth, services):
        settings_file = services.backups.data_dir / "settings.json"
        settings_file.write_text("v1")
        created = client.post("/api/backups", headers=auth).json()
        settings_file.write_text("v2")

        resp = client.post("/api/backups/restore", json={"path": created["path"]}, headers=auth)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["state"] == "restored"
        assert data["strategy"] == "staged"
        assert data["safety_backup"].endswith(".zip")
        assert settings_file.read_text() == "v1"

    def test_restore_without_path(self, client, auth):
        resp = client.post("/api/backups/restore", json={}, headers=auth)

        assert resp.status_code == 200
        assert resp.json()["state"] == "idle"
        assert resp.json()["message"] == "No backup selected"

    def test_restore_invalid_strategy(self, client, auth):
        resp = client.post(
            "/api/backups/restore", json={"path": "x.zip", "strategy": "yolo"}, headers=auth
        )
        assert resp.status_code == 422

    def test_inconsistent_restore_is_500(self, client, auth, services, monkeypatch):
        import strongbox.backup.backup_manager as bm

        package = services.backups.create_backup()
        (services.backups.data_dir / "settings.json").write_text("live")

        def boom(archive_path, target_dir):
            raise ArchiveError("disk full during extraction")

        monkeypatch.setattr(bm, "extract_archive", boom)
        resp = client.post(
            "/api/backups/restore",
            json={"path": str(package.path), "strategy": "in_place"},
            headers=auth,
        )

        assert resp.status_code == 500
        data = resp.json()
        assert data["state"] == "inconsistent"
        assert data["needs_manual_recovery"] is True
