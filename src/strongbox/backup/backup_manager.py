"""Backup manager: create, list, and restore data directory packages.

Each backup is a single ZIP of the entire data directory tree, named
``backup-<timestamp>.zip`` in the backups directory.  Every restore first
writes a ``pre-restore-<epoch-ms>.zip`` safety package of the live data
directory; if that fails nothing else happens.

Restore strategies:
  - staged (default): extract into a sibling staging directory, then swap it
    in with two renames.  Failures before the swap leave the live data
    untouched.
  - in_place: empty the live data directory, then extract into it.  A
    failure after emptying leaves the directory inconsistent until the
    safety package is restored by hand.

Packages are not encrypted: they hold data that already lives unencrypted
in the data directory.
"""

import logging
import os
import re
import shutil
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union
from uuid import uuid4

from ..core.config import RestoreStrategy
from .archive import (
    PACKAGE_SUFFIX,
    ArchiveError,
    extract_archive,
    validate_archive,
    write_directory_archive,
)

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup-"
SAFETY_PREFIX = "pre-restore-"

# backup-<stamp>Z[-N].zip and pre-restore-<ms>[-N].zip
_COLLISION_RE = re.compile(
    rf"^(?P<base>{BACKUP_PREFIX}.*Z|{SAFETY_PREFIX}\d+)(?:-(?P<n>\d+))?{re.escape(PACKAGE_SUFFIX)}$"
)


class BackupError(Exception):
    """Raised for backup creation and listing failures."""


class RestoreState(str, Enum):
    """Restore state machine.

    IDLE -> SAFETY_BACKUP_IN_PROGRESS -> ABORTED (nothing changed)
    staged:   -> EXTRACTING -> SWAPPING -> RESTORED | ABORTED | INCONSISTENT
    in_place: -> DIRECTORY_CLEARED -> EXTRACTING -> RESTORED | INCONSISTENT
    """
    IDLE = "idle"
    SAFETY_BACKUP_IN_PROGRESS = "safety_backup_in_progress"
    ABORTED = "aborted"
    DIRECTORY_CLEARED = "directory_cleared"
    EXTRACTING = "extracting"
    SWAPPING = "swapping"
    RESTORED = "restored"
    INCONSISTENT = "inconsistent"


@dataclass(frozen=True)
class BackupPackage:
    """A backup archive on disk."""

    name: str
    path: Path
    size: int
    created: datetime

    @property
    def is_safety_backup(self) -> bool:
        return self.name.startswith(SAFETY_PREFIX)

    @classmethod
    def from_path(cls, path: Path) -> "BackupPackage":
        stat = path.stat()
        return cls(
            name=path.name,
            path=path,
            size=stat.st_size,
            created=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "size": self.size,
            "created": self.created.isoformat(),
            "safety_backup": self.is_safety_backup,
        }


@dataclass
class RestoreResult:
    """Structured outcome of a restore attempt."""

    success: bool
    state: RestoreState
    message: str
    strategy: RestoreStrategy
    source: Optional[str] = None
    safety_backup: Optional[str] = None

    @property
    def needs_manual_recovery(self) -> bool:
        return self.state == RestoreState.INCONSISTENT

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        data["strategy"] = self.strategy.value
        data["needs_manual_recovery"] = self.needs_manual_recovery
        return data


class RestoreCancelled(Exception):
    """Raised internally when a cancel request is seen before a destructive step."""


class BackupManager:
    """Orchestrates backup creation, listing and restoration.

    Args:
        data_dir: Directory tree to protect.
        backup_dir: Directory holding backup packages.
        default_strategy: Restore strategy used when the caller does not pick one.
    """

    def __init__(
        self,
        data_dir: Path,
        backup_dir: Path,
        default_strategy: RestoreStrategy = RestoreStrategy.STAGED,
    ):
        self._data_dir = Path(data_dir)
        self._backup_dir = Path(backup_dir)
        if self._backup_dir.resolve().is_relative_to(self._data_dir.resolve()):
            raise ValueError("Backup directory must not be inside the data directory.")
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        self.default_strategy = default_strategy
        self._lock = threading.Lock()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    # ── Create ───────────────────────────────────────────────────────

    def create_backup(self) -> BackupPackage:
        """Archive the data directory into a new timestamped package.

        Raises:
            BackupError: On I/O error (no partial package is left behind).
        """
        with self._lock:
            package = self._write_package(self._timestamped_name())

        logger.info("Backup created: %s (%d total bytes)", package.path, package.size)
        self._audit_log("backup.created", f"Backup created: {package.name}", {
            "name": package.name,
            "size_bytes": package.size,
        })
        return package

    def _write_package(self, name: str) -> BackupPackage:
        archive_path = self._unique_path(name)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        try:
            write_directory_archive(self._data_dir, archive_path)
        except ArchiveError as e:
            logger.error("Backup error: %s", e)
            raise BackupError(str(e)) from e
        return BackupPackage.from_path(archive_path)

    @staticmethod
    def _timestamped_name() -> str:
        # 2026-10-18T09:15:02.123Z -> 2026-10-18T09-15-02-123Z
        now = datetime.now(timezone.utc)
        stamp = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
        return f"{BACKUP_PREFIX}{stamp.replace(':', '-').replace('.', '-')}"

    @staticmethod
    def _safety_name() -> str:
        return f"{SAFETY_PREFIX}{int(time.time() * 1000)}"

    def _unique_path(self, stem: str) -> Path:
        candidate = self._backup_dir / f"{stem}{PACKAGE_SUFFIX}"
        counter = 1
        while candidate.exists():
            candidate = self._backup_dir / f"{stem}-{counter}{PACKAGE_SUFFIX}"
            counter += 1
        return candidate

    # ── List ─────────────────────────────────────────────────────────

    def list_backups(self) -> List[BackupPackage]:
        """Return all packages in the backups directory, newest first."""
        try:
            entries = [
                p for p in self._backup_dir.iterdir()
                if p.suffix == PACKAGE_SUFFIX and p.is_file()
            ]
            packages = [(p.stat().st_mtime_ns, BackupPackage.from_path(p)) for p in entries]
        except OSError as e:
            raise BackupError(f"Could not list backups: {e}") from e
        packages.sort(key=lambda item: (item[0],) + _name_order(item[1].name), reverse=True)
        return [pkg for _, pkg in packages]

    # ── Restore ──────────────────────────────────────────────────────

    def restore_backup(
        self,
        source: Optional[Union[str, Path]] = None,
        strategy: Optional[RestoreStrategy] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RestoreResult:
        """Replace the data directory with the contents of ``source``.

        A safety package of the current data directory is always written
        first.  Failures are reported in the result, never raised.

        Args:
            source: Package to restore.  Choosing one interactively is the
                caller's job; None yields a failed result.
            strategy: STAGED or IN_PLACE (default: the manager's default).
            cancel_event: Checked before each destructive step.
        """
        strategy = RestoreStrategy(strategy) if strategy else self.default_strategy
        if source is None or str(source) == "":
            return RestoreResult(
                success=False,
                state=RestoreState.IDLE,
                message="No backup selected",
                strategy=strategy,
            )

        with self._lock:
            result = self._restore_locked(Path(source), strategy, cancel_event)

        if result.success:
            event = "backup.restored"
        elif result.state == RestoreState.INCONSISTENT:
            event = "backup.restore.inconsistent"
        else:
            event = "backup.restore.aborted"
        self._audit_log(event, result.message, result.to_dict())
        return result

    def _restore_locked(
        self,
        source: Path,
        strategy: RestoreStrategy,
        cancel_event: Optional[threading.Event],
    ) -> RestoreResult:
        result = RestoreResult(
            success=False,
            state=RestoreState.SAFETY_BACKUP_IN_PROGRESS,
            message="",
            strategy=strategy,
            source=str(source),
        )

        # 1. Safety package of the current data, before anything is touched
        try:
            safety = self._write_package(self._safety_name())
        except BackupError as e:
            logger.error("Safety backup failed, restore aborted: %s", e)
            result.state = RestoreState.ABORTED
            result.message = f"Safety backup failed; restore aborted with no changes: {e}"
            return result
        result.safety_backup = str(safety.path)

        # 2. The source must be a readable package with safe paths
        try:
            if source.resolve() == safety.path.resolve():
                raise ArchiveError("Cannot restore from the safety backup being written")
            if source.resolve().is_relative_to(self._data_dir.resolve()):
                raise ArchiveError(
                    "Backup to restore lies inside the data directory; move it elsewhere first"
                )
            validate_archive(source)
        except ArchiveError as e:
            result.state = RestoreState.ABORTED
            result.message = f"Restore aborted with no changes: {e}"
            return result

        try:
            if strategy == RestoreStrategy.IN_PLACE:
                return self._restore_in_place(source, result, cancel_event)
            return self._restore_staged(source, result, cancel_event)
        except RestoreCancelled:
            result.state = RestoreState.ABORTED
            result.message = "Restore cancelled before any data was changed"
            return result

    def _restore_staged(
        self,
        source: Path,
        result: RestoreResult,
        cancel_event: Optional[threading.Event],
    ) -> RestoreResult:
        token = uuid4().hex[:8]
        parent = self._data_dir.parent
        staging = parent / f".{self._data_dir.name}.restore-{token}"
        retired = parent / f".{self._data_dir.name}.replaced-{token}"

        # 3. Extract beside the live directory
        result.state = RestoreState.EXTRACTING
        try:
            staging.mkdir()
            shutil.copymode(self._data_dir, staging)
            extract_archive(source, staging)
            _check_cancel(cancel_event)
        except (ArchiveError, OSError) as e:
            shutil.rmtree(staging, ignore_errors=True)
            logger.error("Restore extraction failed: %s", e)
            result.state = RestoreState.ABORTED
            result.message = f"Extraction failed; data directory unchanged: {e}"
            return result
        except RestoreCancelled:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        # 4. Swap staging in
        result.state = RestoreState.SWAPPING
        try:
            os.replace(self._data_dir, retired)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            result.state = RestoreState.ABORTED
            result.message = f"Could not move the current data directory aside; nothing changed: {e}"
            return result

        try:
            os.replace(staging, self._data_dir)
        except OSError as e:
            try:
                os.replace(retired, self._data_dir)
            except OSError as rollback_error:
                logger.critical(
                    "Restore swap and rollback both failed: %s / %s", e, rollback_error
                )
                result.state = RestoreState.INCONSISTENT
                result.message = (
                    f"Restore failed while swapping directories and the original data "
                    f"could not be put back ({rollback_error}). Your previous data is in "
                    f"{retired} and in the safety backup {result.safety_backup}."
                )
                return result
            shutil.rmtree(staging, ignore_errors=True)
            result.state = RestoreState.ABORTED
            result.message = f"Restore swap failed; original data put back: {e}"
            return result

        shutil.rmtree(retired, ignore_errors=True)
        result.success = True
        result.state = RestoreState.RESTORED
        result.message = f"Restored from {source.name}"
        return result

    def _restore_in_place(
        self,
        source: Path,
        result: RestoreResult,
        cancel_event: Optional[threading.Event],
    ) -> RestoreResult:
        _check_cancel(cancel_event)

        # 3. Empty the live directory (the directory itself stays)
        try:
            self._empty_data_dir()
        except OSError as e:
            return self._inconsistent(result, f"Clearing the data directory failed: {e}")
        result.state = RestoreState.DIRECTORY_CLEARED

        # 4. Extract into it
        result.state = RestoreState.EXTRACTING
        try:
            extract_archive(source, self._data_dir)
        except ArchiveError as e:
            return self._inconsistent(result, f"Extraction failed: {e}")

        result.success = True
        result.state = RestoreState.RESTORED
        result.message = f"Restored from {source.name}"
        return result

    def _inconsistent(self, result: RestoreResult, reason: str) -> RestoreResult:
        logger.critical("Restore left the data directory inconsistent: %s", reason)
        result.state = RestoreState.INCONSISTENT
        result.message = (
            f"{reason}. The data directory may be empty or incomplete; restore the "
            f"safety backup {result.safety_backup} to recover your previous data."
        )
        return result

    def _empty_data_dir(self):
        for child in self._data_dir.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _audit_log(event_type_value: str, message: str, details: dict):
        """Best-effort audit logging."""
        try:
            from ..core.audit_log import EventType, EventSeverity, log_security_event
            event_type = EventType(event_type_value)
            severity = {
                EventType.BACKUP_RESTORE_INCONSISTENT: EventSeverity.CRITICAL,
                EventType.BACKUP_RESTORE_ABORTED: EventSeverity.ALERT,
            }.get(event_type, EventSeverity.INFO)
            log_security_event(event_type, severity, message, details=details)
        except Exception:
            logger.warning("Audit log failed: %s", message, exc_info=True)


def _check_cancel(cancel_event: Optional[threading.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise RestoreCancelled()


def _name_order(name: str) -> Tuple[str, int]:
    """Sort key for packages sharing an mtime: base name, then collision counter."""
    match = _COLLISION_RE.match(name)
    if match is None:
        return name, 0
    return match.group("base"), int(match.group("n") or 0)
