"""
Recovery point registry.

A recovery point is a named, timestamped marker that can serve as a restore
target. It optionally references a backup file (with the SHA-256 digest
recorded at creation) and caches the low-water mark: the id of the newest
log entry at or before its timestamp.

Invariants:
    - A recovery point has both backup_path and checksum, or neither
    - If creation fails after the snapshot was taken, the snapshot file is
      removed before the error propagates
    - verify_integrity() is read-only and safe to call repeatedly
    - delete() removes the referenced backup file

How to change safely:
    - transaction_log_id is a low-water mark, not a strict guarantee under
      concurrent log writes
    - Never rewrite a stored checksum; it is the tamper-evidence anchor
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from ..backup.manager import RECOVERY_POINT_AREA, BackupManager
from ..datastore.connection import DatastoreConnection
from ..errors import NoBackupError, RecoveryPointNotFoundError
from ..timeutil import ms_to_iso, now_ms
from ..txlog.store import TransactionLogStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecoveryPoint:
    """A point-in-time restore target.

    Attributes:
        id: Registry id
        name: Optional display name
        description: Optional description
        timestamp_ms: The instant this point represents (Unix ms)
        backup_path: Backup file location, if a backup was taken
        checksum: SHA-256 hex of the backup at creation time
        created_by: User who created the point
        is_automatic: Created by a scheduler rather than a person
        transaction_log_id: Low-water mark into the transaction log
    """

    id: int
    name: str | None
    description: str | None
    timestamp_ms: int
    backup_path: str | None
    checksum: str | None
    created_by: int | None
    is_automatic: bool
    transaction_log_id: int | None

    @property
    def has_backup(self) -> bool:
        return self.backup_path is not None and self.checksum is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "timestamp": ms_to_iso(self.timestamp_ms),
            "timestamp_ms": self.timestamp_ms,
            "backup_path": self.backup_path,
            "checksum": self.checksum,
            "created_by": self.created_by,
            "is_automatic": self.is_automatic,
            "transaction_log_id": self.transaction_log_id,
        }


@dataclass(frozen=True)
class CreateRecoveryPointRequest:
    """Input for RecoveryPointRegistry.create().

    Attributes:
        name: Optional display name
        description: Optional description
        timestamp_ms: Instant of the point (now if None)
        create_backup: Snapshot the datastore and anchor the point to it
        user_id: Creator
        is_automatic: Created by a scheduler
    """

    name: str | None = None
    description: str | None = None
    timestamp_ms: int | None = None
    create_backup: bool = False
    user_id: int | None = None
    is_automatic: bool = False


@dataclass
class RecoveryPointPage:
    """One page of recovery points, newest-first."""

    recovery_points: list[RecoveryPoint]
    total: int
    page: int
    page_size: int


@dataclass(frozen=True)
class IntegrityReport:
    """Outcome of a successful backup verification."""

    valid: bool
    message: str


def _row_to_point(row: sqlite3.Row) -> RecoveryPoint:
    return RecoveryPoint(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        timestamp_ms=row["timestamp_ms"],
        backup_path=row["backup_path"],
        checksum=row["checksum"],
        created_by=row["created_by"],
        is_automatic=bool(row["is_automatic"]),
        transaction_log_id=row["transaction_log_id"],
    )


class RecoveryPointRegistry:
    """Creates, lists, deletes and verifies recovery points.

    Example:
        >>> registry = RecoveryPointRegistry(db, log_store, backups)
        >>> point = await registry.create(
        ...     CreateRecoveryPointRequest(name="before price update", create_backup=True)
        ... )
        >>> report = await registry.verify_integrity(point.id)
    """

    def __init__(
        self,
        db: DatastoreConnection,
        log_store: TransactionLogStore,
        backups: BackupManager,
    ) -> None:
        self.db = db
        self.log_store = log_store
        self.backups = backups

    async def create(self, request: CreateRecoveryPointRequest) -> RecoveryPoint:
        """Create a recovery point, optionally with a backup.

        Raises:
            NoDatastoreFileError: If a backup was requested and there is no
                datastore file
        """
        timestamp_ms = request.timestamp_ms if request.timestamp_ms is not None else now_ms()

        low_water_mark = await self.log_store.latest_entry_id_up_to(timestamp_ms)

        backup = None
        if request.create_backup:
            backup = self.backups.snapshot(RECOVERY_POINT_AREA, timestamp_ms)

        try:
            cursor = self.db.connection.execute(
                """
                INSERT INTO recovery_points (name, description, timestamp_ms, backup_path,
                                             checksum, created_by, is_automatic,
                                             transaction_log_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    request.name,
                    request.description,
                    timestamp_ms,
                    str(backup.path) if backup else None,
                    backup.checksum if backup else None,
                    request.user_id,
                    int(request.is_automatic),
                    low_water_mark,
                ),
            )
        except Exception:
            if backup is not None:
                try:
                    self.backups.delete(backup.path)
                except Exception as cleanup_error:
                    logger.error(
                        f"Failed to remove backup after insert failure: {cleanup_error}",
                        extra={"backup_path": str(backup.path)},
                    )
            raise

        point = RecoveryPoint(
            id=cursor.lastrowid,
            name=request.name,
            description=request.description,
            timestamp_ms=timestamp_ms,
            backup_path=str(backup.path) if backup else None,
            checksum=backup.checksum if backup else None,
            created_by=request.user_id,
            is_automatic=request.is_automatic,
            transaction_log_id=low_water_mark,
        )

        logger.info(
            "Recovery point created",
            extra={
                "recovery_point_id": point.id,
                "timestamp": ms_to_iso(timestamp_ms),
                "has_backup": point.has_backup,
            },
        )
        return point

    async def list_points(
        self,
        start_ms: int | None = None,
        end_ms: int | None = None,
        is_automatic: bool | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> RecoveryPointPage:
        """Page through recovery points, newest-first."""
        page = max(page, 1)
        page_size = max(page_size, 1)

        clauses: list[str] = []
        params: list[Any] = []
        if start_ms is not None:
            clauses.append("timestamp_ms >= ?")
            params.append(start_ms)
        if end_ms is not None:
            clauses.append("timestamp_ms <= ?")
            params.append(end_ms)
        if is_automatic is not None:
            clauses.append("is_automatic = ?")
            params.append(int(is_automatic))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = self.db.connection
        total = conn.execute(f"SELECT COUNT(*) FROM recovery_points {where}", params).fetchone()[0]
        cursor = conn.execute(
            f"""
            SELECT * FROM recovery_points {where}
            ORDER BY timestamp_ms DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            [*params, page_size, (page - 1) * page_size],
        )

        return RecoveryPointPage(
            recovery_points=[_row_to_point(row) for row in cursor.fetchall()],
            total=total,
            page=page,
            page_size=page_size,
        )

    async def get(self, recovery_point_id: int) -> RecoveryPoint:
        """Fetch a recovery point.

        Raises:
            RecoveryPointNotFoundError: If the id is unknown
        """
        row = self.db.connection.execute(
            "SELECT * FROM recovery_points WHERE id = ?", (recovery_point_id,)
        ).fetchone()
        if row is None:
            raise RecoveryPointNotFoundError(recovery_point_id)
        return _row_to_point(row)

    async def delete(self, recovery_point_id: int) -> None:
        """Delete a recovery point and its backup file.

        Raises:
            RecoveryPointNotFoundError: If the id is unknown
        """
        point = await self.get(recovery_point_id)

        if point.backup_path and self.backups.delete(point.backup_path):
            logger.info(
                "Deleted recovery point backup file",
                extra={"backup_path": point.backup_path},
            )

        self.db.connection.execute("DELETE FROM recovery_points WHERE id = ?", (recovery_point_id,))
        logger.info("Recovery point deleted", extra={"recovery_point_id": recovery_point_id})

    async def verify_integrity(self, recovery_point_id: int) -> IntegrityReport:
        """Re-hash a recovery point's backup and compare with the stored digest.

        Raises:
            RecoveryPointNotFoundError: If the id is unknown
            NoBackupError: If the point has no backup reference
            MissingFileError: If the backup file is gone
            ChecksumMismatchError: If the digest differs
        """
        point = await self.get(recovery_point_id)
        if not point.has_backup:
            raise NoBackupError(recovery_point_id)

        self.backups.verify(point.backup_path, point.checksum)
        return IntegrityReport(valid=True, message="Backup file integrity verified")
