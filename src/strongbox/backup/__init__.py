"""Strongbox - Backup and Restore of the data directory."""

from .archive import ArchiveError
from .backup_manager import (
    BackupError,
    BackupManager,
    BackupPackage,
    RestoreResult,
    RestoreState,
)

__all__ = [
    "ArchiveError",
    "BackupError",
    "BackupManager",
    "BackupPackage",
    "RestoreResult",
    "RestoreState",
]
