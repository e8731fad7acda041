"""Atomic file writes shared by the key manager and the vault.

A target file is either left untouched or fully replaced: data goes to a
temp file in the same directory, is fsynced, then ``os.replace``d over the
target.
"""

import os
import tempfile
from pathlib import Path

# Owner read/write only
PRIVATE_FILE_MODE = 0o600


def atomic_write_bytes(target: Path, data: bytes, mode: int = PRIVATE_FILE_MODE) -> None:
    """Replace ``target`` with ``data`` in one rename."""
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def atomic_write_text(target: Path, text: str, mode: int = PRIVATE_FILE_MODE) -> None:
    """Text variant of :func:`atomic_write_bytes` (UTF-8)."""
    atomic_write_bytes(target, text.encode("utf-8"), mode=mode)
