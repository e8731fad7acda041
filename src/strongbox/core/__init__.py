# Strongbox - Core Module
#
# Shared functionality for the trust subsystem:
# - Configuration and application paths
# - Audit logging
# - Atomic file I/O

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    configure_audit_logger,
    get_audit_logger,
    log_security_event,
)
from .config import (
    AppPaths,
    RestoreStrategy,
    SecureStorageBackend,
    Settings,
    VaultCorruptionPolicy,
    load_settings,
)
from .fileio import atomic_write_bytes, atomic_write_text

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "configure_audit_logger",
    "get_audit_logger",
    "log_security_event",
    # Configuration
    "AppPaths",
    "Settings",
    "SecureStorageBackend",
    "VaultCorruptionPolicy",
    "RestoreStrategy",
    "load_settings",
    # File I/O
    "atomic_write_bytes",
    "atomic_write_text",
]
