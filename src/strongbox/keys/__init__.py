"""Strongbox - Master key management."""

from .key_manager import (
    KEY_LENGTH,
    KeyManager,
    KeyStorage,
    MasterKey,
    MasterKeyError,
    MasterKeyUnrecoverableError,
)
from .secure_storage import (
    KeyringSecureStorage,
    SecureStorage,
    SecureStorageError,
    UnavailableSecureStorage,
    probe_secure_storage,
)

__all__ = [
    "KEY_LENGTH",
    "KeyManager",
    "KeyStorage",
    "MasterKey",
    "MasterKeyError",
    "MasterKeyUnrecoverableError",
    "KeyringSecureStorage",
    "SecureStorage",
    "SecureStorageError",
    "UnavailableSecureStorage",
    "probe_secure_storage",
]
