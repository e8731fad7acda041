"""OS secure-storage facility used to wrap the master key at rest.

``KeyringSecureStorage`` keeps a random 256-bit wrapping key in the OS
credential store (Windows Credential Locker, macOS Keychain, Secret Service)
through the ``keyring`` library and wraps data with AES-256-GCM under it.
The wrapping key only ever leaves the credential store for the logged-in
user, which is what binds a wrapped master key to the OS account.

Wrapped blob format: nonce(12) + ciphertext+tag
"""

import logging
import os
from typing import Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..core.config import SecureStorageBackend

logger = logging.getLogger(__name__)


class SecureStorageError(Exception):
    """Raised when the facility is unavailable or cannot unwrap a blob."""


class SecureStorage:
    """Interface of an OS-level encryption-at-rest facility."""

    name = "abstract"

    def is_available(self) -> bool:
        raise NotImplementedError

    def wrap(self, data: bytes) -> bytes:
        raise NotImplementedError

    def unwrap(self, blob: bytes) -> bytes:
        raise NotImplementedError


class UnavailableSecureStorage(SecureStorage):
    """Stand-in used when no facility exists (headless or dev environments)."""

    name = "none"

    def is_available(self) -> bool:
        return False

    def wrap(self, data: bytes) -> bytes:
        raise SecureStorageError("OS secure storage is not available on this system.")

    def unwrap(self, blob: bytes) -> bytes:
        raise SecureStorageError("OS secure storage is not available on this system.")


class KeyringSecureStorage(SecureStorage):
    """Wrap data under a key held in the OS credential store.

    Args:
        service: Credential-store service name.
        backend: Keyring backend to use (default: the active system keyring).
    """

    name = "keyring"

    WRAP_KEY_USERNAME = "master-key-wrap"
    KEY_LENGTH = 32
    NONCE_LENGTH = 12
    # Binds wrapped blobs to their purpose
    ASSOCIATED_DATA = b"strongbox/master-key/v1"

    def __init__(self, service: str = "strongbox", backend: Optional[KeyringBackend] = None):
        self.service = service
        self._backend = backend

    @property
    def backend(self) -> KeyringBackend:
        return self._backend if self._backend is not None else keyring.get_keyring()

    def is_available(self) -> bool:
        return keyring_backend_usable(self.backend)

    def _load_wrap_key(self) -> Optional[bytes]:
        try:
            stored = self.backend.get_password(self.service, self.WRAP_KEY_USERNAME)
        except KeyringError as e:
            raise SecureStorageError(f"Credential store unreachable: {e}") from e
        if stored is None:
            return None
        try:
            key = bytes.fromhex(stored)
        except ValueError as e:
            raise SecureStorageError("Wrapping key in credential store is malformed.") from e
        if len(key) != self.KEY_LENGTH:
            raise SecureStorageError("Wrapping key in credential store has the wrong length.")
        return key

    def _get_or_create_wrap_key(self) -> bytes:
        key = self._load_wrap_key()
        if key is not None:
            return key
        key = os.urandom(self.KEY_LENGTH)
        try:
            self.backend.set_password(self.service, self.WRAP_KEY_USERNAME, key.hex())
        except KeyringError as e:
            raise SecureStorageError(f"Could not store wrapping key: {e}") from e
        logger.info("Created wrapping key in credential store (service=%s)", self.service)
        return key

    def wrap(self, data: bytes) -> bytes:
        key = self._get_or_create_wrap_key()
        nonce = os.urandom(self.NONCE_LENGTH)
        return nonce + AESGCM(key).encrypt(nonce, data, self.ASSOCIATED_DATA)

    def unwrap(self, blob: bytes) -> bytes:
        key = self._load_wrap_key()
        if key is None:
            raise SecureStorageError("Wrapping key is missing from the credential store.")
        if len(blob) < self.NONCE_LENGTH + 16:
            raise SecureStorageError("Wrapped blob is too short.")
        nonce, ciphertext = blob[: self.NONCE_LENGTH], blob[self.NONCE_LENGTH :]
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, self.ASSOCIATED_DATA)
        except InvalidTag as e:
            raise SecureStorageError("Wrapped blob failed authentication.") from e


def keyring_backend_usable(backend: KeyringBackend) -> bool:
    """True unless the backend is keyring's fail/null placeholder."""
    from keyring.backends import fail, null

    if isinstance(backend, (fail.Keyring, null.Keyring)):
        return False
    try:
        return backend.priority > 0
    except Exception:
        logger.debug("Keyring backend priority check failed", exc_info=True)
        return False


def probe_secure_storage(
    backend: SecureStorageBackend = SecureStorageBackend.AUTO,
    service: str = "strongbox",
) -> SecureStorage:
    """Resolve the secure-storage facility once, at startup.

    ``AUTO`` falls back to :class:`UnavailableSecureStorage` when the system
    keyring is missing or unusable. ``KEYRING`` insists on it.
    """
    if backend == SecureStorageBackend.NONE:
        return UnavailableSecureStorage()

    storage = KeyringSecureStorage(service=service)
    try:
        available = storage.is_available()
    except KeyringError:
        logger.warning("Keyring probe failed", exc_info=True)
        available = False

    if available:
        logger.info("OS secure storage available (%s)", type(storage.backend).__name__)
        return storage

    if backend == SecureStorageBackend.KEYRING:
        raise SecureStorageError("Keyring backend requested but no usable keyring was found.")

    logger.warning("OS secure storage unavailable; master key will be stored unwrapped")
    return UnavailableSecureStorage()
