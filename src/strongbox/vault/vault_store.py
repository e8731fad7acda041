# Strongbox - Vault Store
#
# One encrypted JSON document holding a flat map of secrets
# (API keys, OAuth client secrets, tokens used by integrations).
# Every mutation is read -> decrypt -> modify -> encrypt (fresh nonce) -> atomic replace.

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core import (
    EventSeverity,
    EventType,
    VaultCorruptionPolicy,
    atomic_write_text,
    get_audit_logger,
)
from ..keys import KeyManager
from .encryption import EncryptionService, VaultDecryptionError, VaultDocument

logger = logging.getLogger(__name__)


class VaultError(Exception):
    """Base class for vault failures."""


class VaultCorruptedError(VaultError):
    """Vault document unreadable and the policy forbids resetting it."""


class VaultStore:
    """
    Encrypted key/value store for application secrets.

    Security:
    - AES-256-GCM over the whole document, new nonce on every write
    - Master key obtained from the KeyManager before every decrypt/encrypt
    - Document replaced atomically; a completed write never leaves a partial file
    - Secret names are audit-logged, values never are

    Concurrency: an in-process lock serializes read-modify-write cycles.
    Separate processes are not coordinated; the last writer wins.

    Args:
        vault_path: Path to the encrypted vault document.
        key_manager: Owner of the master key.
        corruption_policy: RESET quarantines an unreadable document and
            continues empty; FAIL refuses to touch it.
    """

    def __init__(
        self,
        vault_path: Path,
        key_manager: KeyManager,
        corruption_policy: VaultCorruptionPolicy = VaultCorruptionPolicy.RESET,
    ):
        self.vault_path = Path(vault_path)
        self.key_manager = key_manager
        self.corruption_policy = corruption_policy
        self._lock = threading.Lock()
        self.logger = get_audit_logger()

    def is_encryption_available(self) -> bool:
        """Whether OS secure storage backs the current master key."""
        return self.key_manager.is_encryption_available()

    def exists(self) -> bool:
        return self.vault_path.exists()

    # ── Public API ───────────────────────────────────────────────────

    def set(self, key: str, value: Any) -> Tuple[bool, str]:
        """
        Store a JSON-serializable value under ``key``.

        Returns:
            (success, message)

        Raises:
            MasterKeyUnrecoverableError: The master key cannot be loaded.
        """
        if not isinstance(key, str) or not key:
            return False, "Secret name must be a non-empty string"
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            return False, f"Value for '{key}' is not JSON-serializable: {e}"

        with self._lock:
            master = self.key_manager.get_or_create_key().material
            try:
                data = self._read_map(master)
            except VaultError as e:
                return False, str(e)

            data[key] = value

            try:
                self._write_map(data, master)
            except OSError as e:
                logger.error("Vault write failed: %s", e)
                self.logger.log_event(
                    event_type=EventType.VAULT_ERROR,
                    severity=EventSeverity.ALERT,
                    message=f"Failed to write vault: {e}",
                    details={"key": key},
                )
                return False, f"Failed to write vault: {e}"

        self.logger.log_vault_event(
            EventType.VAULT_SECRET_STORED, f"Secret stored: {key}", {"key": key}
        )
        return True, "Secret stored"

    def get(self, key: str) -> Optional[Any]:
        """
        Return the value stored under ``key``, or None if absent.

        Does not rewrite the document (except to quarantine it under RESET).

        Raises:
            MasterKeyUnrecoverableError: The master key cannot be loaded.
            VaultCorruptedError: Document unreadable under the FAIL policy.
        """
        with self._lock:
            if not self.vault_path.exists():
                return None
            master = self.key_manager.get_or_create_key().material
            data = self._read_map(master)
        return data.get(key)

    def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return the stored values for ``keys`` (absent names are skipped)."""
        with self._lock:
            if not self.vault_path.exists():
                return {}
            master = self.key_manager.get_or_create_key().material
            data = self._read_map(master)
        return {k: data[k] for k in keys if k in data}

    def keys(self) -> List[str]:
        """Names of all stored secrets (never values)."""
        with self._lock:
            if not self.vault_path.exists():
                return []
            master = self.key_manager.get_or_create_key().material
            data = self._read_map(master)
        return sorted(data)

    def delete(self, key: str) -> Tuple[bool, str]:
        """
        Remove ``key`` from the vault.

        Deleting a missing secret succeeds without rewriting the document.

        Returns:
            (success, message)
        """
        with self._lock:
            if not self.vault_path.exists():
                return True, "Vault is empty"
            master = self.key_manager.get_or_create_key().material
            try:
                data = self._read_map(master)
            except VaultError as e:
                return False, str(e)

            if key not in data:
                return True, "Secret not found"
            del data[key]

            try:
                self._write_map(data, master)
            except OSError as e:
                logger.error("Vault write failed: %s", e)
                return False, f"Failed to write vault: {e}"

        self.logger.log_vault_event(
            EventType.VAULT_SECRET_DELETED, f"Secret deleted: {key}", {"key": key}
        )
        return True, "Secret deleted"

    # ── Document I/O ─────────────────────────────────────────────────

    def _read_map(self, master: bytes) -> Dict[str, Any]:
        """Decrypt the document into a dict. Caller holds the lock."""
        if not self.vault_path.exists():
            return {}
        try:
            raw = self.vault_path.read_bytes()
        except OSError as e:
            raise VaultError(f"Could not read vault: {e}") from e
        try:
            document = VaultDocument.from_json(raw)
            return EncryptionService.open_map(document, master)
        except VaultDecryptionError as e:
            return self._handle_corruption(e)

    def _write_map(self, data: Dict[str, Any], master: bytes):
        document = EncryptionService.seal_map(data, master)
        atomic_write_text(self.vault_path, document.to_json())

    def _handle_corruption(self, error: Exception) -> Dict[str, Any]:
        if self.corruption_policy == VaultCorruptionPolicy.FAIL:
            self.logger.log_event(
                event_type=EventType.VAULT_ERROR,
                severity=EventSeverity.CRITICAL,
                message="Vault document unreadable; refusing to reset",
                details={"vault_path": str(self.vault_path), "error": str(error)},
            )
            raise VaultCorruptedError(
                "Vault is corrupted or was encrypted with a different key. "
                "Restore it from a backup or remove it to start over."
            ) from error

        quarantine = self.vault_path.with_name(
            f"{self.vault_path.name}.corrupt-{int(time.time() * 1000)}"
        )
        try:
            self.vault_path.replace(quarantine)
        except OSError:
            logger.error("Could not quarantine corrupt vault %s", self.vault_path, exc_info=True)
            quarantine = None

        logger.error("Vault corrupt or key mismatch, resetting: %s", error)
        self.logger.log_event(
            event_type=EventType.VAULT_RESET,
            severity=EventSeverity.CRITICAL,
            message="Vault corrupt or key mismatch; continuing with an empty vault",
            details={
                "vault_path": str(self.vault_path),
                "quarantined_to": str(quarantine) if quarantine else None,
                "error": str(error),
            },
        )
        return {}
