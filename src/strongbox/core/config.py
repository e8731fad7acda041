# Strongbox - Configuration
#
# Application paths and runtime settings, read from the environment
# (optionally seeded from a .env file) once at startup.

import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

APP_DIR_NAME = "Strongbox"

KEY_FILE_NAME = "strongbox_master.enc"
LEGACY_KEY_FILE_NAME = "strongbox_master.key"
VAULT_FILE_NAME = "strongbox_vault.enc"


class SecureStorageBackend(str, Enum):
    """Which OS secure-storage facility to probe for."""
    AUTO = "auto"
    KEYRING = "keyring"
    NONE = "none"


class VaultCorruptionPolicy(str, Enum):
    """What the vault does when its document cannot be decrypted or parsed."""
    RESET = "reset"  # quarantine the file, continue with an empty vault
    FAIL = "fail"    # refuse to read or write until the user intervenes


class RestoreStrategy(str, Enum):
    """How a restore replaces the live data directory."""
    STAGED = "staged"      # extract beside the data dir, then swap
    IN_PLACE = "in_place"  # empty the data dir, then extract into it


@dataclass(frozen=True)
class AppPaths:
    """
    Filesystem layout of the application's private storage area.

    Args:
        root: Application root (user-data directory).
    """

    root: Path

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def backups_dir(self) -> Path:
        return self.root / "backups"

    @property
    def key_file(self) -> Path:
        return self.root / KEY_FILE_NAME

    @property
    def legacy_key_file(self) -> Path:
        return self.root / LEGACY_KEY_FILE_NAME

    @property
    def vault_file(self) -> Path:
        return self.root / VAULT_FILE_NAME

    @property
    def audit_log_dir(self) -> Path:
        return self.root / "audit_logs"


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings."""

    paths: AppPaths
    secure_storage: SecureStorageBackend = SecureStorageBackend.AUTO
    vault_corruption: VaultCorruptionPolicy = VaultCorruptionPolicy.RESET
    restore_strategy: RestoreStrategy = RestoreStrategy.STAGED
    keyring_service: str = "strongbox"


def default_app_root() -> Path:
    """Return the platform user-data directory for the application."""
    home = Path.home()
    if sys.platform == "win32":
        appdata = os.getenv("APPDATA")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / APP_DIR_NAME
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / APP_DIR_NAME
    xdg = os.getenv("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else home / ".config"
    return base / APP_DIR_NAME.lower()


def _enum_from_env(name: str, enum_cls, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"{name}={raw!r} is invalid (expected one of: {allowed})")


def load_settings(root: Optional[Path] = None, dotenv_path: Optional[Path] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        root: Explicit application root. Overrides STRONGBOX_HOME.
        dotenv_path: Optional .env file to load first (default: search from cwd).

    Raises:
        ValueError: If an environment variable holds an unsupported value.
    """
    load_dotenv(dotenv_path=dotenv_path, override=False)

    if root is None:
        env_root = os.getenv("STRONGBOX_HOME")
        root = Path(env_root).expanduser() if env_root else default_app_root()

    return Settings(
        paths=AppPaths(root=Path(root)),
        secure_storage=_enum_from_env(
            "STRONGBOX_SECURE_STORAGE", SecureStorageBackend, SecureStorageBackend.AUTO
        ),
        vault_corruption=_enum_from_env(
            "STRONGBOX_VAULT_CORRUPTION", VaultCorruptionPolicy, VaultCorruptionPolicy.RESET
        ),
        restore_strategy=_enum_from_env(
            "STRONGBOX_RESTORE_STRATEGY", RestoreStrategy, RestoreStrategy.STAGED
        ),
        keyring_service=os.getenv("STRONGBOX_KEYRING_SERVICE") or "strongbox",
    )
