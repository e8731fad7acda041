# Strongbox - Vault Encryption
#
# AES-256-GCM sealing of the vault document.
# Unique random nonce per encryption, 128-bit tag kept as its own field,
# decryption fails closed on any tag mismatch.

import json
import os
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


class VaultDecryptionError(Exception):
    """Raised when a vault document cannot be decoded or authenticated."""


@dataclass(frozen=True)
class VaultDocument:
    """On-disk container: nonce, ciphertext and GCM tag."""

    nonce: bytes
    ciphertext: bytes
    auth_tag: bytes

    FORMAT_VERSION = 1

    def to_json(self) -> str:
        return json.dumps({
            "v": self.FORMAT_VERSION,
            "nonce": self.nonce.hex(),
            "ciphertext": self.ciphertext.hex(),
            "authTag": self.auth_tag.hex(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "VaultDocument":
        try:
            data = json.loads(raw)
            if data.get("v", cls.FORMAT_VERSION) != cls.FORMAT_VERSION:
                raise VaultDecryptionError(f"Unsupported vault format version: {data.get('v')}")
            doc = cls(
                nonce=bytes.fromhex(data["nonce"]),
                ciphertext=bytes.fromhex(data["ciphertext"]),
                auth_tag=bytes.fromhex(data["authTag"]),
            )
        except VaultDecryptionError:
            raise
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise VaultDecryptionError(f"Malformed vault document: {e}") from e
        if len(doc.nonce) != EncryptionService.NONCE_LENGTH:
            raise VaultDecryptionError("Invalid nonce length")
        if len(doc.auth_tag) != EncryptionService.TAG_LENGTH:
            raise VaultDecryptionError("Invalid auth tag length")
        return doc


class EncryptionService:
    """
    Seals and opens the vault's JSON map with the master key.

    Flow:
    1. Serialize the secrets map to JSON
    2. AES-256-GCM encrypt under a fresh 96-bit nonce
    3. Split the 16-byte tag off the ciphertext for storage
    """

    KEY_LENGTH = 32  # 256 bits for AES-256
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)
    TAG_LENGTH = 16  # 128-bit authentication tag

    @staticmethod
    def encrypt(plaintext: bytes, key: bytes) -> VaultDocument:
        """Encrypt plaintext under a newly generated nonce."""
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
        return VaultDocument(
            nonce=nonce,
            ciphertext=sealed[: -EncryptionService.TAG_LENGTH],
            auth_tag=sealed[-EncryptionService.TAG_LENGTH :],
        )

    @staticmethod
    def decrypt(document: VaultDocument, key: bytes) -> bytes:
        """
        Decrypt a vault document.

        Raises:
            VaultDecryptionError: Wrong key, corrupted or tampered document.
        """
        try:
            return AESGCM(key).decrypt(document.nonce, document.ciphertext + document.auth_tag, None)
        except InvalidTag as e:
            raise VaultDecryptionError("Vault authentication failed") from e

    @staticmethod
    def seal_map(data: Dict[str, Any], key: bytes) -> VaultDocument:
        """Serialize and encrypt the secrets map."""
        return EncryptionService.encrypt(json.dumps(data).encode("utf-8"), key)

    @staticmethod
    def open_map(document: VaultDocument, key: bytes) -> Dict[str, Any]:
        """Decrypt and parse the secrets map."""
        plaintext = EncryptionService.decrypt(document, key)
        try:
            data = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise VaultDecryptionError("Vault plaintext is not valid JSON") from e
        if not isinstance(data, dict):
            raise VaultDecryptionError("Vault plaintext is not a JSON object")
        return data
