"""
Backup manager for the datastore file.

Creates byte-for-byte copies of the live datastore file and the SHA-256
digest needed to detect corruption or tampering later.

Backup layout:
    <backup_dir>/recovery-points/recovery-point-<iso-ts>.db
    <backup_dir>/pre-restore/pre-restore-<iso-ts>.db

where <iso-ts> is the ISO-8601 UTC timestamp with ':' and '.' replaced by
'-' (e.g. 2026-10-18T09-30-00-000Z). A numeric suffix is added if that
name is already taken.

Invariants:
    - The digest is computed over the copy, never over the live file
    - verify() always reads and hashes the whole file; size and mtime are
      never trusted
    - The copy runs on the calling thread, so no write scheduled on the
      event loop can interleave with it

How to change safely:
    - Changing the digest algorithm invalidates every stored checksum
    - Keep file names derivable from timestamps for operators
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..datastore.connection import DatastoreConnection
from ..errors import ChecksumMismatchError, MissingFileError, NoDatastoreFileError
from ..timeutil import iso_slug, now_ms

logger = logging.getLogger(__name__)

RECOVERY_POINT_AREA = "recovery-points"
PRE_RESTORE_AREA = "pre-restore"

_AREA_PREFIXES = {
    RECOVERY_POINT_AREA: "recovery-point",
    PRE_RESTORE_AREA: "pre-restore",
}

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class BackupFile:
    """A backup copy of the datastore.

    Attributes:
        path: Location of the copy
        checksum: SHA-256 hex digest of the copy
        size_bytes: Size of the copy
        created_at_ms: Timestamp the file name was derived from
    """

    path: Path
    checksum: str
    size_bytes: int
    created_at_ms: int


def compute_checksum(path: str | Path) -> str:
    """Compute the SHA-256 hex digest of a whole file."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


class BackupManager:
    """Snapshots and verifies copies of the datastore file.

    Attributes:
        db: Connection manager of the live datastore
        backup_dir: Root of the backup tree

    Example:
        >>> backups = BackupManager(db, "/var/lib/pitr/backups")
        >>> backup = backups.snapshot()
        >>> backups.verify(backup.path, backup.checksum)
    """

    def __init__(self, db: DatastoreConnection, backup_dir: str | Path) -> None:
        self.db = db
        self.backup_dir = Path(backup_dir)

    def area_dir(self, area: str) -> Path:
        if area not in _AREA_PREFIXES:
            raise ValueError(f"Unknown backup area: {area}")
        return self.backup_dir / area

    def _target_path(self, area: str, timestamp_ms: int) -> Path:
        directory = self.area_dir(area)
        directory.mkdir(parents=True, exist_ok=True)

        stem = f"{_AREA_PREFIXES[area]}-{iso_slug(timestamp_ms)}"
        candidate = directory / f"{stem}.db"
        counter = 1
        while candidate.exists():
            candidate = directory / f"{stem}-{counter}.db"
            counter += 1
        return candidate

    def snapshot(
        self,
        area: str = RECOVERY_POINT_AREA,
        timestamp_ms: int | None = None,
    ) -> BackupFile:
        """Copy the live datastore file into a backup area.

        Args:
            area: recovery-points or pre-restore
            timestamp_ms: Instant used for the file name (now if None)

        Returns:
            BackupFile with the digest of the copy

        Raises:
            NoDatastoreFileError: If the datastore file does not exist
        """
        source = self.db.get_datastore_path()
        if not source.exists():
            raise NoDatastoreFileError(str(source))

        timestamp_ms = timestamp_ms if timestamp_ms is not None else now_ms()
        target = self._target_path(area, timestamp_ms)

        self.db.checkpoint()
        try:
            shutil.copyfile(source, target)
            checksum = compute_checksum(target)
        except Exception:
            target.unlink(missing_ok=True)
            raise

        backup = BackupFile(
            path=target,
            checksum=checksum,
            size_bytes=target.stat().st_size,
            created_at_ms=timestamp_ms,
        )
        logger.info(
            "Backup created",
            extra={
                "area": area,
                "backup_path": str(target),
                "checksum": checksum[:16] + "...",
                "size_bytes": backup.size_bytes,
            },
        )
        return backup

    def verify(self, path: str | Path, expected_checksum: str) -> None:
        """Verify a backup file against its recorded digest.

        Raises:
            MissingFileError: If the file no longer exists
            ChecksumMismatchError: If the digest differs
        """
        path = Path(path)
        if not path.is_file():
            raise MissingFileError(str(path))

        actual = compute_checksum(path)
        if actual != expected_checksum:
            logger.warning(
                "Backup checksum mismatch",
                extra={"backup_path": str(path), "expected": expected_checksum, "actual": actual},
            )
            raise ChecksumMismatchError(str(path), expected_checksum, actual)

    def restore_file(self, source: str | Path, destination: str | Path) -> None:
        """Copy a backup over the live datastore path, byte for byte."""
        shutil.copyfile(source, destination)

    def delete(self, path: str | Path) -> bool:
        """Remove a backup file. Returns False if it was already gone."""
        path = Path(path)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Deleted backup file", extra={"backup_path": str(path)})
        return True
