"""Startup wiring: the process-wide trust services.

``build_services`` probes OS secure storage once, constructs the single
``KeyManager`` and hands it to the vault.  The backup manager is independent
of both.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .backup import BackupManager
from .core import Settings, configure_audit_logger, load_settings
from .keys import KeyManager, SecureStorage, probe_secure_storage
from .vault import VaultStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    secure_storage: SecureStorage
    key_manager: KeyManager
    vault: VaultStore
    backups: BackupManager


def build_services(settings: Optional[Settings] = None,
                   secure_storage: Optional[SecureStorage] = None) -> Services:
    """Construct the services for one process.

    Args:
        settings: Resolved settings (default: ``load_settings()``).
        secure_storage: Pre-resolved facility (default: probe per settings).
    """
    settings = settings or load_settings()
    paths = settings.paths
    paths.root.mkdir(parents=True, exist_ok=True)
    configure_audit_logger(paths.audit_log_dir)

    if secure_storage is None:
        secure_storage = probe_secure_storage(settings.secure_storage, settings.keyring_service)

    key_manager = KeyManager(
        key_file=paths.key_file,
        legacy_key_file=paths.legacy_key_file,
        secure_storage=secure_storage,
    )
    vault = VaultStore(
        vault_path=paths.vault_file,
        key_manager=key_manager,
        corruption_policy=settings.vault_corruption,
    )
    backups = BackupManager(
        data_dir=paths.data_dir,
        backup_dir=paths.backups_dir,
        default_strategy=settings.restore_strategy,
    )
    logger.info("Trust services ready (root=%s, secure_storage=%s)", paths.root, secure_storage.name)
    return Services(
        settings=settings,
        secure_storage=secure_storage,
        key_manager=key_manager,
        vault=vault,
        backups=backups,
    )


# ── Singleton ────────────────────────────────────────────────────────

_services: Optional[Services] = None


def get_services() -> Services:
    """Lazy singleton, created on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace the singleton (for testing)."""
    global _services
    _services = services
