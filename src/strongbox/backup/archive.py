"""ZIP packaging of a directory tree.

Packages are written to ``<name>.partial`` and renamed into place once the
archive is closed, so a half-written package is never visible under its
final name.
"""

import logging
import os
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import List

logger = logging.getLogger(__name__)

PACKAGE_SUFFIX = ".zip"
PARTIAL_SUFFIX = ".partial"
COMPRESS_LEVEL = 9


class ArchiveError(Exception):
    """Raised when a package cannot be written or safely extracted."""


def write_directory_archive(source_dir: Path, archive_path: Path) -> int:
    """Stream every entry under ``source_dir`` into a new ZIP at ``archive_path``.

    Args:
        source_dir: Directory whose contents are archived (paths stored relative to it).
        archive_path: Final package path.

    Returns:
        Size of the finished package in bytes.
    """
    source_dir = Path(source_dir)
    archive_path = Path(archive_path)
    partial = archive_path.with_name(archive_path.name + PARTIAL_SUFFIX)

    try:
        with zipfile.ZipFile(
            partial, "w", zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL
        ) as zf:
            for root, dirs, files in os.walk(source_dir):
                root_path = Path(root)
                dirs.sort()
                rel_root = root_path.relative_to(source_dir)
                if rel_root != Path("."):
                    zf.write(root_path, rel_root.as_posix() + "/")
                for name in sorted(files):
                    file_path = root_path / name
                    if file_path.is_symlink():
                        logger.debug("Skipping symlink %s", file_path)
                        continue
                    zf.write(file_path, (rel_root / name).as_posix())
        os.replace(partial, archive_path)
    except (OSError, zipfile.BadZipFile, ValueError) as e:
        partial.unlink(missing_ok=True)
        raise ArchiveError(f"Could not write archive {archive_path.name}: {e}") from e

    return archive_path.stat().st_size


def safe_member_names(zf: zipfile.ZipFile) -> List[str]:
    """Return member names, rejecting any that would land outside the target.

    Raises:
        ArchiveError: Absolute paths, drive letters or ``..`` components.
    """
    names = []
    for info in zf.infolist():
        name = info.filename.replace("\\", "/")
        parts = PurePosixPath(name).parts
        if name.startswith("/") or ".." in parts or (parts and ":" in parts[0]):
            raise ArchiveError(f"Unsafe path in archive: {info.filename!r}")
        names.append(name)
    return names


def extract_archive(archive_path: Path, target_dir: Path) -> int:
    """Extract a package into ``target_dir`` after validating it.

    Returns:
        Number of members extracted.
    """
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            members = safe_member_names(zf)
            bad = zf.testzip()
            if bad is not None:
                raise ArchiveError(f"Corrupt member in archive: {bad}")
            zf.extractall(target_dir)
    except ArchiveError:
        raise
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, RuntimeError, ValueError) as e:
        raise ArchiveError(f"Could not extract {Path(archive_path).name}: {e}") from e
    return len(members)


def validate_archive(archive_path: Path) -> int:
    """Check that a package opens, holds only safe paths and passes its CRC checks.

    Returns:
        Number of members.
    """
    archive_path = Path(archive_path)
    if not archive_path.is_file():
        raise ArchiveError(f"Backup file not found: {archive_path}")
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            count = len(safe_member_names(zf))
            bad = zf.testzip()
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"Not a valid backup archive: {archive_path.name}") from e
    except (zipfile.LargeZipFile, zlib.error, RuntimeError) as e:
        raise ArchiveError(f"Could not read {archive_path.name}: {e}") from e
    except OSError as e:
        raise ArchiveError(f"Could not open {archive_path.name}: {e}") from e
    if bad is not None:
        raise ArchiveError(f"Corrupt member in archive: {bad}")
    return count
