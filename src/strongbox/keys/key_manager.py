"""Master key lifecycle: generate, persist, load, and migrate.

One 256-bit master key exists per installation. The ``KeyManager`` owning it
is constructed once at startup and handed to the vault; the key is loaded
lazily on first use and then kept in memory for the life of the instance.

Load order:
  1. Current key file (wrapped by OS secure storage, or plain hex fallback)
  2. Legacy raw key file from earlier versions (migrated once, then renamed .bak)
  3. Otherwise a freshly generated key

Concurrency: one process, one writer. Nothing guards the key file against
other processes writing it at the same time.
"""

import logging
import os
import re
import secrets
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ..core import EventSeverity, EventType, atomic_write_text, get_audit_logger
from .secure_storage import SecureStorage, SecureStorageError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # 256-bit AES key

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class MasterKeyError(Exception):
    """Base class for master key failures."""


class MasterKeyUnrecoverableError(MasterKeyError):
    """The persisted master key exists but cannot be recovered.

    Fatal: no replacement key is generated and all vault operations stop.
    """


class KeyStorage(str, Enum):
    """How the active master key is protected at rest."""
    WRAPPED = "wrapped"      # sealed by OS secure storage
    UNWRAPPED = "unwrapped"  # plain hex on disk (weaker fallback)


@dataclass(frozen=True)
class MasterKey:
    """The in-memory master key and the storage variant it came from."""

    material: bytes = field(repr=False)
    storage: KeyStorage

    def __post_init__(self):
        if len(self.material) != KEY_LENGTH:
            raise MasterKeyError(f"Master key must be {KEY_LENGTH} bytes.")

    def __repr__(self) -> str:
        return f"MasterKey(storage={self.storage.value}, material=<redacted>)"


class KeyManager:
    """
    Owns the single master key of the installation.

    Args:
        key_file: Current-format key file (wrapped blob or hex, as hex text).
        legacy_key_file: Raw key file written by earlier versions.
        secure_storage: Facility resolved by the startup probe.
    """

    def __init__(self, key_file: Path, legacy_key_file: Path, secure_storage: SecureStorage):
        self.key_file = Path(key_file)
        self.legacy_key_file = Path(legacy_key_file)
        self._secure_storage = secure_storage
        self._use_secure_storage = secure_storage.is_available()
        self._key: Optional[MasterKey] = None
        self._lock = threading.Lock()
        self.audit = get_audit_logger()

    @property
    def legacy_backup_file(self) -> Path:
        return self.legacy_key_file.with_name(self.legacy_key_file.name + ".bak")

    @property
    def storage(self) -> Optional[KeyStorage]:
        """Storage variant of the loaded key (None until first load)."""
        return self._key.storage if self._key else None

    def is_encryption_available(self) -> bool:
        """Whether OS secure storage protects the master key."""
        if self._key is not None:
            return self._key.storage == KeyStorage.WRAPPED
        return self._use_secure_storage

    def get_or_create_key(self) -> MasterKey:
        """
        Return the master key, loading or creating it on first call.

        Raises:
            MasterKeyUnrecoverableError: Key file exists but cannot be read.
        """
        if self._key is not None:
            return self._key

        with self._lock:
            if self._key is None:
                self._key = self._resolve_key()
            return self._key

    # ── Resolution ───────────────────────────────────────────────────

    def _resolve_key(self) -> MasterKey:
        self.key_file.parent.mkdir(parents=True, exist_ok=True)

        if self.key_file.exists():
            key = self._load_key_file()
            self._finish_interrupted_migration(key)
            return key

        if self.legacy_key_file.exists():
            return self._migrate_legacy_key()

        return self._generate_key()

    def _load_key_file(self) -> MasterKey:
        try:
            text = self.key_file.read_text(encoding="utf-8").strip()
            blob = bytes.fromhex(text)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            self._fatal("Master key file is unreadable or not hex-encoded.", e)

        plain_hex = bool(_HEX_KEY_RE.match(text))

        if self._use_secure_storage:
            if plain_hex:
                # Written while secure storage was unavailable; seal it now.
                try:
                    self._persist(blob)
                except MasterKeyError as e:
                    # Key is readable as is; the seal is retried on the next start.
                    logger.warning("Could not seal unwrapped master key, keeping hex file: %s", e)
                    key = MasterKey(blob, KeyStorage.UNWRAPPED)
                    self.audit.log_key_event(
                        EventType.KEY_LOADED,
                        "loaded unwrapped; sealing with OS secure storage failed",
                        {"storage": key.storage.value, "error": str(e)},
                        severity=EventSeverity.INVESTIGATE,
                    )
                    return key
                key = MasterKey(blob, KeyStorage.WRAPPED)
                self.audit.log_key_event(
                    EventType.KEY_REWRAPPED,
                    "sealed with OS secure storage",
                    details={"key_file": str(self.key_file)},
                )
                return key
            try:
                material = self._secure_storage.unwrap(blob)
            except SecureStorageError as e:
                self._fatal("Could not decrypt master key with OS secure storage.", e)
            if len(material) != KEY_LENGTH:
                self._fatal("Unwrapped master key has the wrong length.")
            key = MasterKey(material, KeyStorage.WRAPPED)
        else:
            if not plain_hex:
                self._fatal(
                    "Master key file is sealed by OS secure storage, "
                    "which is not available on this system."
                )
            key = MasterKey(blob, KeyStorage.UNWRAPPED)

        self.audit.log_key_event(
            EventType.KEY_LOADED,
            "loaded",
            {"storage": key.storage.value},
        )
        return key

    def _migrate_legacy_key(self) -> MasterKey:
        logger.info("Migrating legacy master key to current key file format")
        try:
            material = self.legacy_key_file.read_bytes()
        except OSError as e:
            self._fatal("Legacy master key file is unreadable.", e)
        if len(material) != KEY_LENGTH:
            self._fatal(
                f"Legacy master key is {len(material)} bytes, expected {KEY_LENGTH}; "
                "left in place for manual recovery."
            )

        key = MasterKey(material, self._storage_kind())
        self._persist(key.material)
        os.replace(self.legacy_key_file, self.legacy_backup_file)

        self.audit.log_key_event(
            EventType.KEY_MIGRATED,
            "legacy key file migrated",
            {
                "storage": key.storage.value,
                "legacy_backup": str(self.legacy_backup_file),
            },
        )
        return key

    def _generate_key(self) -> MasterKey:
        key = MasterKey(secrets.token_bytes(KEY_LENGTH), self._storage_kind())
        self._persist(key.material)
        self.audit.log_key_event(
            EventType.KEY_GENERATED,
            "new key generated",
            {"storage": key.storage.value},
        )
        return key

    def _finish_interrupted_migration(self, key: MasterKey):
        """Rename a leftover legacy file that was already migrated."""
        if not self.legacy_key_file.exists():
            return
        try:
            legacy = self.legacy_key_file.read_bytes()
        except OSError:
            logger.warning("Legacy key file present but unreadable: %s", self.legacy_key_file)
            return
        if secrets.compare_digest(legacy, key.material):
            os.replace(self.legacy_key_file, self.legacy_backup_file)
            logger.info("Completed interrupted legacy key migration")
        else:
            logger.warning(
                "Legacy key file %s does not match the active key; leaving it untouched",
                self.legacy_key_file,
            )

    # ── Helpers ──────────────────────────────────────────────────────

    def _storage_kind(self) -> KeyStorage:
        return KeyStorage.WRAPPED if self._use_secure_storage else KeyStorage.UNWRAPPED

    def _persist(self, material: bytes):
        if self._use_secure_storage:
            try:
                payload = self._secure_storage.wrap(material)
            except SecureStorageError as e:
                raise MasterKeyError(f"Could not seal master key: {e}") from e
        else:
            payload = material
        atomic_write_text(self.key_file, payload.hex())

    def _fatal(self, message: str, cause: Optional[BaseException] = None):
        logger.critical("%s (%s)", message, self.key_file)
        self.audit.log_key_event(
            EventType.KEY_UNRECOVERABLE,
            message,
            {"key_file": str(self.key_file), "error": str(cause) if cause else None},
            severity=EventSeverity.CRITICAL,
        )
        raise MasterKeyUnrecoverableError(message) from cause
