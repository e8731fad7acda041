# Strongbox - Main Package
#
# Local trust subsystem of the desktop business-management app:
# an encrypted secrets vault with master-key lifecycle management,
# and backup/restore of the application's data directory.

__version__ = "1.0.0"
__author__ = "Strongbox Team"
__description__ = "Encrypted secrets vault and data directory backups for a desktop app"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
)

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
]
