# Strongbox - Audit Logging
#
# Append-only structured audit log for every trust-relevant event:
# master key lifecycle, vault access, backup and restore.
# Key material and secret values are never written here.

import getpass
import logging
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """
    Types of events recorded in the audit log.
    """
    # Master key lifecycle
    KEY_GENERATED = "key.generated"
    KEY_LOADED = "key.loaded"
    KEY_MIGRATED = "key.migrated"
    KEY_REWRAPPED = "key.rewrapped"
    KEY_UNRECOVERABLE = "key.unrecoverable"

    # Vault Events
    VAULT_SECRET_STORED = "vault.secret.stored"
    VAULT_SECRET_DELETED = "vault.secret.deleted"
    VAULT_RESET = "vault.reset"
    VAULT_ERROR = "vault.error"

    # Backup Events
    BACKUP_CREATED = "backup.created"
    BACKUP_RESTORED = "backup.restored"
    BACKUP_RESTORE_ABORTED = "backup.restore.aborted"
    BACKUP_RESTORE_INCONSISTENT = "backup.restore.inconsistent"

    # System Events
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for audit events.

    - INFO: Normal activity, logged only
    - INVESTIGATE: Something unusual that the user may want to look at
    - ALERT: Data was changed to recover from a problem
    - CRITICAL: User action required
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


# Detail keys that may carry secret material; their values are masked
REDACTED_DETAIL_KEYS = frozenset({"value", "secret", "material", "master_key", "password", "token"})
REDACTED = "<redacted>"


def scrub_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy ``details`` with any secret-bearing keys masked (one level deep)."""
    if not details:
        return {}
    return {
        key: REDACTED if key.lower() in REDACTED_DETAIL_KEYS else value
        for key, value in details.items()
    }


class AuditLogger:
    """
    Append-only audit trail of trust events.

    Each event is one JSON line in ``audit_<YYYY-MM-DD>.log`` carrying an
    event id, type, severity, message, UTC timestamp, scrubbed details and
    the OS user/host that produced it.

    Args:
        log_dir: Directory for audit logs (default: ./audit_logs)
    """

    LOGGER_NAME = "strongbox.audit"

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self.log_file = self._attach_file_handler()
        self.logger = structlog.get_logger(self.LOGGER_NAME)

    def _attach_file_handler(self) -> Path:
        """Route the audit logger to today's file, replacing any earlier target."""
        log_file = self.log_dir / f"audit_{datetime.now().strftime('%Y-%m-%d')}.log"

        handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(message)s"))  # already JSON

        audit = logging.getLogger(self.LOGGER_NAME)
        for old in list(audit.handlers):
            audit.removeHandler(old)
            old.close()
        audit.addHandler(handler)
        audit.setLevel(logging.INFO)
        return log_file

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Append one event to the audit log.

        Args:
            event_type: What happened
            severity: How much attention it needs
            message: Human-readable description
            details: Structured context (secret-bearing keys are masked)
            user_context: Who did it (defaults to the OS user and host)

        Returns:
            str: Event ID (UUID)
        """
        event_id = str(uuid4())
        self.logger.info(
            "audit_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            occurred_at=datetime.now(timezone.utc).isoformat(),
            details=scrub_details(details),
            user_context=user_context or self._default_user_context(),
        )
        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> str:
        """Log an INFO vault event. Details name secrets, never carry values."""
        return self.log_event(
            event_type=event_type,
            severity=EventSeverity.INFO,
            message=f"Vault: {message}",
            details=details
        )

    def log_key_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO
    ) -> str:
        """Log a master key lifecycle event."""
        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=f"Master key: {message}",
            details=details
        )

    @staticmethod
    def _default_user_context() -> Dict[str, Any]:
        try:
            os_user = getpass.getuser()
        except (KeyError, OSError):
            os_user = None
        return {
            "os_user": os_user,
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(log_dir: Path) -> AuditLogger:
    """Point the global audit logger at the application's audit directory."""
    global _audit_logger
    _audit_logger = AuditLogger(log_dir=log_dir)
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Log through the global audit logger.

    Usage:
        log_security_event(
            EventType.BACKUP_RESTORE_ABORTED,
            EventSeverity.ALERT,
            "Safety backup failed; restore aborted",
            details={"source": "backup-2026-10-18T09-15-02-123Z.zip"}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
