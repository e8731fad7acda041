"""Tests for the encrypted vault document and the VaultStore operations."""

import json
import os

import pytest

from strongbox.core import VaultCorruptionPolicy
from strongbox.keys import KeyManager, MasterKeyUnrecoverableError
from strongbox.vault import (
    EncryptionService,
    VaultCorruptedError,
    VaultDecryptionError,
    VaultDocument,
    VaultStore,
)


def _flip_hex_byte(hex_str, index=0):
    raw = bytearray(bytes.fromhex(hex_str))
    raw[index] ^= 0x01
    return raw.hex()


# ── Encryption service ──────────────────────────────────────────────


class TestEncryptionService:

    def test_seal_and_open(self):
        key = os.urandom(32)
        document = EncryptionService.seal_map({"openaiApiKey": "sk-123"}, key)

        assert len(document.nonce) == EncryptionService.NONCE_LENGTH
        assert len(document.auth_tag) == EncryptionService.TAG_LENGTH
        assert EncryptionService.open_map(document, key) == {"openaiApiKey": "sk-123"}

    def test_fresh_nonce_per_encryption(self):
        key = os.urandom(32)
        first = EncryptionService.seal_map({"a": 1}, key)
        second = EncryptionService.seal_map({"a": 1}, key)

        assert first.nonce != second.nonce
        assert first.ciphertext != second.ciphertext

    def test_wrong_key_rejected(self):
        document = EncryptionService.seal_map({"a": 1}, os.urandom(32))

        with pytest.raises(VaultDecryptionError):
            EncryptionService.open_map(document, os.urandom(32))

    def test_tampered_tag_rejected(self):
        key = os.urandom(32)
        document = EncryptionService.seal_map({"a": 1}, key)
        tampered = VaultDocument(
            nonce=document.nonce,
            ciphertext=document.ciphertext,
            auth_tag=bytes([document.auth_tag[0] ^ 1]) + document.auth_tag[1:],
        )

        with pytest.raises(VaultDecryptionError):
            EncryptionService.open_map(tampered, key)

    def test_non_object_plaintext_rejected(self):
        key = os.urandom(32)
        document = EncryptionService.encrypt(b"[1, 2, 3]", key)

        with pytest.raises(VaultDecryptionError, match="JSON object"):
            EncryptionService.open_map(document, key)

    def test_document_json_fields(self):
        document = EncryptionService.seal_map({"a": 1}, os.urandom(32))
        data = json.loads(document.to_json())

        assert set(data) == {"v", "nonce", "ciphertext", "authTag"}
        assert VaultDocument.from_json(document.to_json()) == document

    @pytest.mark.parametrize("raw", [
        "not json",
        "[]",
        '{"nonce": "00"}',
        '{"v": 2, "nonce": "", "ciphertext": "", "authTag": ""}',
        '{"nonce": "zz", "ciphertext": "", "authTag": ""}',
    ])
    def test_malformed_documents_rejected(self, raw):
        with pytest.raises(VaultDecryptionError):
            VaultDocument.from_json(raw)


# ── Vault store ─────────────────────────────────────────────────────


class TestVaultStore:

    def test_set_then_get(self, vault):
        success, message = vault.set("openaiApiKey", "sk-123")

        assert success is True
        assert message == "Secret stored"
        assert vault.get("openaiApiKey") == "sk-123"

    def test_get_absent_vault_returns_none(self, vault):
        assert vault.exists() is False
        assert vault.get("anything") is None
        assert vault.keys() == []

    def test_get_missing_key_returns_none(self, vault):
        vault.set("a", 1)
        assert vault.get("b") is None

    def test_overwrite_and_structured_values(self, vault):
        vault.set("googleOAuth", {"clientId": "id", "clientSecret": "s"})
        vault.set("googleOAuth", {"clientId": "id2", "clientSecret": "s2"})

        assert vault.get("googleOAuth") == {"clientId": "id2", "clientSecret": "s2"}

    def test_falsy_values_returned_as_stored(self, vault):
        vault.set("empty", "")
        vault.set("zero", 0)
        vault.set("flag", False)
        vault.set("nothing", None)

        assert vault.get("empty") == ""
        assert vault.get("zero") == 0
        assert vault.get("flag") is False
        assert vault.get_many(["nothing"]) == {"nothing": None}

    def test_keys_and_get_many(self, vault):
        vault.set("b", 2)
        vault.set("a", 1)

        assert vault.keys() == ["a", "b"]
        assert vault.get_many(["a", "missing"]) == {"a": 1}

    def test_delete(self, vault):
        vault.set("a", 1)
        vault.set("b", 2)

        assert vault.delete("a") == (True, "Secret deleted")
        assert vault.get("a") is None
        assert vault.get("b") == 2

    def test_delete_missing(self, vault):
        assert vault.delete("a") == (True, "Vault is empty")
        vault.set("b", 2)
        before = vault.vault_path.read_text()

        assert vault.delete("a") == (True, "Secret not found")
        # Document not rewritten
        assert vault.vault_path.read_text() == before

    def test_non_serializable_value_rejected(self, vault):
        success, message = vault.set("bad", object())

        assert success is False
        assert "JSON-serializable" in message
        assert vault.exists() is False

    def test_empty_name_rejected(self, vault):
        success, _ = vault.set("", "x")
        assert success is False

    def test_document_holds_no_plaintext(self, vault):
        vault.set("openaiApiKey", "sk-very-secret-value")

        raw = vault.vault_path.read_text()
        assert "sk-very-secret-value" not in raw
        assert "openaiApiKey" not in raw
        assert set(json.loads(raw)) == {"v", "nonce", "ciphertext", "authTag"}

    def test_every_write_uses_new_nonce(self, vault):
        vault.set("a", 1)
        first = json.loads(vault.vault_path.read_text())["nonce"]
        vault.set("a", 1)
        second = json.loads(vault.vault_path.read_text())["nonce"]

        assert first != second

    def test_persists_across_instances(self, vault, app_paths, secure_storage):
        vault.set("a", "value")

        km = KeyManager(app_paths.key_file, app_paths.legacy_key_file, secure_storage)
        assert VaultStore(app_paths.vault_file, km).get("a") == "value"

    def test_audit_log_has_names_not_values(self, vault, tmp_path):
        vault.set("openaiApiKey", "sk-very-secret-value")

        text = "".join(
            p.read_text(encoding="utf-8")
            for p in (tmp_path / "audit_logs").glob("audit_*.log")
        )
        assert "openaiApiKey" in text
        assert "sk-very-secret-value" not in text

    def test_fatal_key_error_propagates(self, vault, app_paths, secure_storage):
        vault.set("a", 1)
        secure_storage.fail_unwrap = True
        km = KeyManager(app_paths.key_file, app_paths.legacy_key_file, secure_storage)
        store = VaultStore(app_paths.vault_file, km)

        with pytest.raises(MasterKeyUnrecoverableError):
            store.get("a")
        with pytest.raises(MasterKeyUnrecoverableError):
            store.set("b", 2)


# ── Corruption handling ─────────────────────────────────────────────


class TestVaultCorruption:

    def _tamper(self, vault, field):
        data = json.loads(vault.vault_path.read_text())
        data[field] = _flip_hex_byte(data[field])
        vault.vault_path.write_text(json.dumps(data))

    @pytest.mark.parametrize("field", ["ciphertext", "authTag", "nonce"])
    def test_tamper_resets_and_quarantines(self, vault, field):
        vault.set("a", 1)
        self._tamper(vault, field)

        assert vault.get("a") is None
        quarantined = list(vault.vault_path.parent.glob(vault.vault_path.name + ".corrupt-*"))
        assert len(quarantined) == 1
        assert not vault.vault_path.exists()

    def test_set_after_reset_works(self, vault):
        vault.set("a", 1)
        vault.vault_path.write_text("garbage")

        success, _ = vault.set("b", 2)

        assert success is True
        assert vault.keys() == ["b"]

    def test_reset_is_audit_logged(self, vault, tmp_path):
        vault.set("a", 1)
        vault.vault_path.write_text("garbage")
        vault.get("a")

        text = "".join(
            p.read_text(encoding="utf-8")
            for p in (tmp_path / "audit_logs").glob("audit_*.log")
        )
        assert "vault.reset" in text

    def test_fail_policy_refuses(self, app_paths, key_manager):
        store = VaultStore(
            app_paths.vault_file, key_manager, corruption_policy=VaultCorruptionPolicy.FAIL
        )
        store.set("a", 1)
        store.vault_path.write_text("garbage")

        with pytest.raises(VaultCorruptedError):
            store.get("a")

        success, message = store.set("b", 2)
        assert success is False
        assert "corrupted" in message
        # Untouched for manual recovery
        assert store.vault_path.read_text() == "garbage"

    def test_wrong_key_treated_as_corruption(self, vault, app_paths, no_secure_storage):
        vault.set("a", 1)
        # Replace the key file with a different (unwrapped) key
        app_paths.key_file.write_text(os.urandom(32).hex())
        km = KeyManager(app_paths.key_file, app_paths.legacy_key_file, no_secure_storage)

        assert VaultStore(app_paths.vault_file, km).get("a") is None
