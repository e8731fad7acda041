# Strongbox - Vault Module
#
# Encrypted secrets document (AES-256-GCM) keyed by the installation's master key.

from .encryption import EncryptionService, VaultDecryptionError, VaultDocument
from .vault_store import VaultCorruptedError, VaultError, VaultStore

__all__ = [
    "EncryptionService",
    "VaultDecryptionError",
    "VaultDocument",
    "VaultCorruptedError",
    "VaultError",
    "VaultStore",
]
