"""
Point-in-time restorer.

Returns the live datastore to the state captured by a recovery point:

    1. Look up the recovery point and refuse it if it has no backup
    2. Optionally snapshot the live file into pre-restore/ (rollback target)
    3. Verify the target backup (presence and SHA-256)
    4. Close the live handle
    5. Copy the backup over the live file
    6. Reopen the datastore
    7. Replay log entries up to the target timestamp
    8. Probe the restored datastore (warning only)
    9. Report success

Invariants:
    - restore() never raises; every outcome is a RestoreResult
    - Steps 1-3 never replace the live file
    - A point without a backup is refused before the pre-restore snapshot,
      whose WAL checkpoint writes to the live file
    - A replay handler failure fails the restore like any other step 4-8 error
    - A failure in steps 4-8 triggers rollback when a pre-restore backup
      exists; the result carries the original failure, not the rollback's
    - The datastore is left open whenever possible, rolled back or not

How to change safely:
    - The caller guarantees one restore at a time (see service.py)
    - Keep the destructive window (steps 4-6) as short as possible
    - Test every failure step with injected faults (see _copy_file)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..audit import AuditEvent, AuditSink, emit_audit
from ..backup.manager import PRE_RESTORE_AREA, BackupManager
from ..config import DEFAULT_CRITICAL_TABLES
from ..datastore.connection import DatastoreConnection
from ..datastore.schema import quote_identifier
from ..errors import (
    BackupVerificationError,
    IntegrityCheckFailedError,
    NoBackupAvailableError,
    RecoveryError,
    RestoreFailedError,
    RollbackFailedError,
)
from ..timeutil import ms_to_iso
from ..txlog.store import TransactionLogStore
from .registry import RecoveryPoint, RecoveryPointRegistry
from .replay import ReplayRegistry

logger = logging.getLogger(__name__)


@dataclass
class RestoreResult:
    """Result of a restore attempt.

    Attributes:
        success: Whether the restore completed
        message: Human-readable outcome
        error_code: RecoveryError code when the restore failed
        backup_path: Pre-restore backup, if one was taken
        restored_timestamp_ms: Timestamp of the recovery point restored to
        records_restored: Log entries up to the target that were accounted for
        integrity_warning: Post-restore probe problem, if any
        rolled_back: Whether the pre-restore backup was put back
        rollback_error: Why rollback failed, if it did
        duration_ms: Total duration
    """

    success: bool
    message: str
    error_code: str | None = None
    backup_path: str | None = None
    restored_timestamp_ms: int | None = None
    records_restored: int = 0
    integrity_warning: str | None = None
    rolled_back: bool = False
    rollback_error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "error_code": self.error_code,
            "backup_path": self.backup_path,
            "restored_timestamp": (
                ms_to_iso(self.restored_timestamp_ms)
                if self.restored_timestamp_ms is not None
                else None
            ),
            "restored_timestamp_ms": self.restored_timestamp_ms,
            "records_restored": self.records_restored,
            "integrity_warning": self.integrity_warning,
            "rolled_back": self.rolled_back,
            "rollback_error": self.rollback_error,
            "duration_ms": self.duration_ms,
        }


class PointInTimeRestorer:
    """Restores the live datastore to a recovery point.

    Example:
        >>> restorer = PointInTimeRestorer(db, log_store, registry, backups)
        >>> result = await restorer.restore(point.id, create_backup_before_restore=True)
        >>> if not result.success:
        ...     print(result.error_code, result.message)
    """

    def __init__(
        self,
        db: DatastoreConnection,
        log_store: TransactionLogStore,
        registry: RecoveryPointRegistry,
        backups: BackupManager,
        replay: ReplayRegistry | None = None,
        critical_tables: Sequence[str] = DEFAULT_CRITICAL_TABLES,
        audit: AuditSink | None = None,
    ) -> None:
        self.db = db
        self.log_store = log_store
        self.registry = registry
        self.backups = backups
        self.replay = replay or ReplayRegistry()
        self.critical_tables = tuple(critical_tables)
        self.audit = audit
        self._audit_tasks: set = set()

    async def restore(
        self,
        recovery_point_id: int,
        create_backup_before_restore: bool = False,
        user_id: int | None = None,
    ) -> RestoreResult:
        """Restore the datastore to a recovery point.

        Args:
            recovery_point_id: Target recovery point
            create_backup_before_restore: Snapshot the live file first, enabling rollback
            user_id: Acting user, for the audit trail

        Returns:
            RestoreResult describing the outcome
        """
        start_time = time.time()
        pre_restore_path: str | None = None

        self._audit("restore_started", recovery_point_id, user_id)
        logger.info(
            f"Starting restore to recovery point {recovery_point_id}",
            extra={
                "recovery_point_id": recovery_point_id,
                "backup_before": create_backup_before_restore,
            },
        )

        # Steps 1-3: nothing destructive yet
        try:
            point = await self.registry.get(recovery_point_id)
            if not point.has_backup:
                raise NoBackupAvailableError(point.id)

            if create_backup_before_restore:
                pre_restore = self.backups.snapshot(PRE_RESTORE_AREA)
                pre_restore_path = str(pre_restore.path)
                logger.info(f"Created pre-restore backup: {pre_restore_path}")

            self._verify_target(point)
        except RecoveryError as e:
            return self._failed(recovery_point_id, user_id, e, start_time, pre_restore_path)
        except Exception as e:
            logger.error(f"Restore preparation failed: {e}", exc_info=True)
            return self._failed(
                recovery_point_id,
                user_id,
                RestoreFailedError("preparation", e),
                start_time,
                pre_restore_path,
            )

        # Steps 4-8: the live file is replaced
        step = "disconnect"
        try:
            await self.db.close()

            step = "swap"
            self._copy_file(point.backup_path, self.db.get_datastore_path())

            step = "reconnect"
            await self.db.open()

            step = "replay"
            entries = await self.log_store.entries_up_to(point.timestamp_ms)
            records_restored = self.replay.apply(self.db.connection, entries)

            step = "verify"
            integrity_warning = self._probe()
        except Exception as e:
            logger.error(f"Restore failed during {step}: {e}", exc_info=True)
            error = RestoreFailedError(step, e)
            rolled_back, rollback_error = await self._rollback(pre_restore_path)
            return self._failed(
                recovery_point_id,
                user_id,
                error,
                start_time,
                pre_restore_path,
                rolled_back=rolled_back,
                rollback_error=rollback_error,
            )

        duration_ms = int((time.time() - start_time) * 1000)
        result = RestoreResult(
            success=True,
            message=f"Datastore restored to point in time: {ms_to_iso(point.timestamp_ms)}",
            backup_path=pre_restore_path,
            restored_timestamp_ms=point.timestamp_ms,
            records_restored=records_restored,
            integrity_warning=integrity_warning,
            duration_ms=duration_ms,
        )

        logger.info(
            "Restore completed",
            extra={
                "recovery_point_id": recovery_point_id,
                "records_restored": records_restored,
                "integrity_warning": integrity_warning,
                "duration_ms": duration_ms,
            },
        )
        self._audit(
            "restore_completed",
            recovery_point_id,
            user_id,
            {
                "restored_timestamp": ms_to_iso(point.timestamp_ms),
                "records_restored": records_restored,
                "backup_path": pre_restore_path,
            },
        )
        return result

    def _verify_target(self, point: RecoveryPoint) -> None:
        try:
            self.backups.verify(point.backup_path, point.checksum)
        except BackupVerificationError as e:
            raise IntegrityCheckFailedError(e) from e

    def _copy_file(self, source: str | Path, destination: str | Path) -> None:
        self.backups.restore_file(source, destination)

    def _probe(self) -> str | None:
        """Check the restored datastore. Returns a warning, never raises."""
        try:
            conn = self.db.connection
            conn.execute("SELECT 1").fetchone()

            result = conn.execute("PRAGMA integrity_check").fetchone()[0]
            if result != "ok":
                return f"Datastore integrity check reported: {result}"

            for table in self.critical_tables:
                conn.execute(f"SELECT COUNT(*) FROM {quote_identifier(table)}").fetchone()
        except Exception as e:
            logger.warning(f"Post-restore integrity probe failed: {e}")
            return f"Post-restore integrity probe failed: {e}"

        logger.info("Post-restore integrity probe passed")
        return None

    async def _rollback(self, pre_restore_path: str | None) -> tuple[bool, str | None]:
        """Put the pre-restore backup back, or at least reopen the datastore.

        Returns:
            (rolled_back, rollback_error)
        """
        if pre_restore_path is None:
            await self._reopen()
            return False, None

        try:
            await self.db.close()
            self._copy_file(pre_restore_path, self.db.get_datastore_path())
            await self.db.open()
        except Exception as e:
            error = RollbackFailedError(pre_restore_path, e)
            logger.error(error.message, extra={"backup_path": pre_restore_path}, exc_info=True)
            await self._reopen()
            return False, error.message

        logger.info(f"Rolled back to pre-restore backup: {pre_restore_path}")
        return True, None

    async def _reopen(self) -> None:
        if self.db.is_open:
            return
        try:
            await self.db.open()
        except Exception as e:
            logger.error(f"Failed to reopen datastore after restore failure: {e}")

    def _failed(
        self,
        recovery_point_id: int,
        user_id: int | None,
        error: RecoveryError,
        start_time: float,
        pre_restore_path: str | None,
        rolled_back: bool = False,
        rollback_error: str | None = None,
    ) -> RestoreResult:
        logger.warning(
            f"Restore to recovery point {recovery_point_id} failed: {error.message}",
            extra={"recovery_point_id": recovery_point_id, "error_code": error.code},
        )
        self._audit(
            "restore_failed",
            recovery_point_id,
            user_id,
            {"error_code": error.code, "error": error.message, "rolled_back": rolled_back},
        )
        return RestoreResult(
            success=False,
            message=error.message,
            error_code=error.code,
            backup_path=pre_restore_path,
            rolled_back=rolled_back,
            rollback_error=rollback_error,
            duration_ms=int((time.time() - start_time) * 1000),
        )

    async def drain_audit(self) -> None:
        """Wait for scheduled audit events to be delivered."""
        while self._audit_tasks:
            await asyncio.gather(*list(self._audit_tasks), return_exceptions=True)

    def _audit(
        self,
        action: str,
        recovery_point_id: int,
        user_id: int | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        emit_audit(
            self.audit,
            AuditEvent(
                action=action,
                entity="recovery_point",
                entity_id=recovery_point_id,
                user_id=user_id,
                details=details or {},
            ),
            self._audit_tasks,
        )
