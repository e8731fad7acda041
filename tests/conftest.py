"""
Shared pytest fixtures for the Strongbox test suite.

Autouse fixtures below isolate tests from the live installation:
  - Audit logger -> temp directory  (prevents test events in the real audit log)
  - Services     -> reset singleton (prevents tests touching the user's vault)
"""

import os

import pytest
from keyring.backend import KeyringBackend


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import strongbox.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_services(tmp_path, monkeypatch):
    """Point configuration at tmp_path and reset the services singleton."""
    import strongbox.services as services_mod

    for name in (
        "STRONGBOX_VAULT_CORRUPTION",
        "STRONGBOX_RESTORE_STRATEGY",
        "STRONGBOX_KEYRING_SERVICE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STRONGBOX_HOME", str(tmp_path / "app"))
    # Never touch the real OS credential store from tests
    monkeypatch.setenv("STRONGBOX_SECURE_STORAGE", "none")

    old = services_mod._services
    services_mod._services = None
    yield
    services_mod._services = old


# ── Test doubles ─────────────────────────────────────────────────────


class FakeSecureStorage:
    """In-memory stand-in for the OS secure-storage facility.

    Wraps by XOR with a per-instance pad and a marker prefix, which is enough
    to make wrapped files differ from plain hex and to detect foreign blobs.
    """

    name = "fake"
    MARKER = b"FAKEWRAP"

    def __init__(self, available=True, pad=None):
        self.available = available
        self.pad = pad or os.urandom(32)
        self.wrap_calls = 0
        self.unwrap_calls = 0
        self.fail_unwrap = False
        self.fail_wrap = False

    def is_available(self):
        return self.available

    def wrap(self, data):
        from strongbox.keys import SecureStorageError

        self.wrap_calls += 1
        if self.fail_wrap:
            raise SecureStorageError("fake wrap failure")
        return self.MARKER + bytes(b ^ self.pad[i % len(self.pad)] for i, b in enumerate(data))

    def unwrap(self, blob):
        from strongbox.keys import SecureStorageError

        self.unwrap_calls += 1
        if self.fail_unwrap or not blob.startswith(self.MARKER):
            raise SecureStorageError("fake unwrap failure")
        body = blob[len(self.MARKER):]
        return bytes(b ^ self.pad[i % len(self.pad)] for i, b in enumerate(body))


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps credentials in a dict."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.store = {}

    def get_password(self, service, username):
        return self.store.get((service, username))

    def set_password(self, service, username, password):
        self.store[(service, username)] = password

    def delete_password(self, service, username):
        self.store.pop((service, username), None)


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def app_paths(tmp_path):
    from strongbox.core import AppPaths

    paths = AppPaths(root=tmp_path / "app")
    paths.root.mkdir(parents=True, exist_ok=True)
    return paths


@pytest.fixture
def secure_storage():
    return FakeSecureStorage(available=True)


@pytest.fixture
def no_secure_storage():
    from strongbox.keys import UnavailableSecureStorage

    return UnavailableSecureStorage()


@pytest.fixture
def key_manager(app_paths, secure_storage):
    from strongbox.keys import KeyManager

    return KeyManager(app_paths.key_file, app_paths.legacy_key_file, secure_storage)


@pytest.fixture
def vault(app_paths, key_manager):
    from strongbox.vault import VaultStore

    return VaultStore(app_paths.vault_file, key_manager)


@pytest.fixture
def memory_keyring():
    return MemoryKeyring()
