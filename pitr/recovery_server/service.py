"""
Recovery service: the uniform result envelope over every operation.

Every public method returns a dict with a boolean `success` and either the
operation's payload or an `error` message with an `error_code`. Callers
(the admin HTTP app, the CLI, an embedding application) never have to
catch exceptions from the recovery subsystem.

Invariants:
    - No method raises; unexpected errors are logged with a traceback and
      returned as INTERNAL_ERROR envelopes
    - At most one restore runs at a time
    - Pending log writes are drained before a restore swaps the file

How to change safely:
    - Envelope keys are part of the external contract; add, never rename
    - Failure envelopes for list operations carry empty defaults
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from .audit import AuditSink, LoggingAuditSink
from .backup.manager import BackupManager
from .config import ServerConfig
from .datastore.connection import DatastoreConnection, SqliteDatastore
from .errors import RecoveryError
from .recovery.registry import CreateRecoveryPointRequest, RecoveryPointRegistry
from .recovery.replay import ReplayRegistry
from .recovery.restorer import PointInTimeRestorer
from .timeutil import parse_instant
from .txlog.dispatcher import LogDispatcher
from .txlog.store import DEFAULT_RETENTION_DAYS, TransactionLogStore

logger = logging.getLogger(__name__)

Instant = int | float | str | datetime | None


def _error(e: Exception, fallback: str, **defaults: Any) -> dict[str, Any]:
    """Build a failure envelope from an exception."""
    if isinstance(e, RecoveryError):
        message, code = e.message, e.code
    elif isinstance(e, ValueError):
        message, code = str(e) or fallback, "INVALID_ARGUMENT"
    else:
        logger.error(f"{fallback}: {e}", exc_info=True)
        message, code = fallback, "INTERNAL_ERROR"
    return {"success": False, **defaults, "error": message, "error_code": code}


class RecoveryService:
    """Envelope facade over the log store, registry and restorer.

    Example:
        >>> service = RecoveryService.from_config(ServerConfig.from_env())
        >>> await service.open()
        >>> result = await service.create_recovery_point(name="nightly", create_backup=True)
        >>> if result["success"]:
        ...     print(result["recovery_point"]["id"])
    """

    def __init__(
        self,
        db: DatastoreConnection,
        log_store: TransactionLogStore,
        registry: RecoveryPointRegistry,
        restorer: PointInTimeRestorer,
        dispatcher: LogDispatcher | None = None,
        backup_before_restore: bool = True,
    ) -> None:
        self.db = db
        self.log_store = log_store
        self.registry = registry
        self.restorer = restorer
        self.dispatcher = dispatcher or LogDispatcher(log_store)
        self.backup_before_restore = backup_before_restore
        self._restore_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: ServerConfig,
        replay: ReplayRegistry | None = None,
        audit: AuditSink | None = None,
    ) -> RecoveryService:
        """Wire up all components from server configuration."""
        db = SqliteDatastore(
            config.storage.datastore_path,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
        log_store = TransactionLogStore(db)
        backups = BackupManager(db, config.storage.backup_dir)
        registry = RecoveryPointRegistry(db, log_store, backups)
        restorer = PointInTimeRestorer(
            db,
            log_store,
            registry,
            backups,
            replay=replay,
            critical_tables=config.restore.critical_tables,
            audit=audit or LoggingAuditSink(),
        )
        return cls(
            db,
            log_store,
            registry,
            restorer,
            backup_before_restore=config.restore.backup_before_restore,
        )

    @property
    def restore_in_progress(self) -> bool:
        return self._restore_lock.locked()

    async def open(self) -> None:
        await self.db.open()

    async def close(self) -> None:
        await self.dispatcher.drain()
        await self.restorer.drain_audit()
        await self.db.close()

    async def create_recovery_point(
        self,
        name: str | None = None,
        description: str | None = None,
        timestamp: Instant = None,
        create_backup: bool = False,
        user_id: int | None = None,
        is_automatic: bool = False,
    ) -> dict[str, Any]:
        logger.info(
            "Creating recovery point",
            extra={"recovery_point_name": name, "create_backup": create_backup},
        )
        try:
            point = await self.registry.create(
                CreateRecoveryPointRequest(
                    name=name,
                    description=description,
                    timestamp_ms=parse_instant(timestamp),
                    create_backup=create_backup,
                    user_id=user_id,
                    is_automatic=is_automatic,
                )
            )
        except Exception as e:
            return _error(e, "Failed to create recovery point")
        return {"success": True, "recovery_point": point.to_dict()}

    async def list_recovery_points(
        self,
        start_date: Instant = None,
        end_date: Instant = None,
        is_automatic: bool | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        try:
            result = await self.registry.list_points(
                start_ms=parse_instant(start_date),
                end_ms=parse_instant(end_date),
                is_automatic=is_automatic,
                page=page,
                page_size=page_size,
            )
        except Exception as e:
            return _error(
                e,
                "Failed to get recovery points",
                recovery_points=[],
                total=0,
                page=page or 1,
                page_size=page_size or 20,
            )
        return {
            "success": True,
            "recovery_points": [p.to_dict() for p in result.recovery_points],
            "total": result.total,
            "page": result.page,
            "page_size": result.page_size,
        }

    async def get_recovery_point(self, recovery_point_id: int) -> dict[str, Any]:
        try:
            point = await self.registry.get(recovery_point_id)
        except Exception as e:
            return _error(e, "Failed to get recovery point", recovery_point=None)
        return {"success": True, "recovery_point": point.to_dict()}

    async def delete_recovery_point(self, recovery_point_id: int) -> dict[str, Any]:
        try:
            await self.registry.delete(recovery_point_id)
        except Exception as e:
            return _error(e, "Failed to delete recovery point")
        return {"success": True}

    async def verify_backup_integrity(self, recovery_point_id: int) -> dict[str, Any]:
        """Verify a recovery point's backup.

        `valid` is False, with the failure reason in `message`, whenever
        `success` is False.
        """
        try:
            report = await self.registry.verify_integrity(recovery_point_id)
        except Exception as e:
            envelope = _error(e, "Failed to verify backup integrity", valid=False)
            envelope["message"] = envelope["error"]
            return envelope
        return {"success": True, "valid": report.valid, "message": report.message}

    async def restore_to_point_in_time(
        self,
        recovery_point_id: int,
        create_backup_before_restore: bool | None = None,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        """Restore the datastore to a recovery point.

        A second restore requested while one is running is refused with
        RESTORE_IN_PROGRESS.
        """
        if self._restore_lock.locked():
            logger.warning(
                "Restore refused, another restore is in progress",
                extra={"recovery_point_id": recovery_point_id},
            )
            return {
                "success": False,
                "message": "A restore is already in progress",
                "error": "A restore is already in progress",
                "error_code": "RESTORE_IN_PROGRESS",
            }

        if create_backup_before_restore is None:
            create_backup_before_restore = self.backup_before_restore

        async with self._restore_lock:
            try:
                await self.dispatcher.drain()
                result = await self.restorer.restore(
                    recovery_point_id,
                    create_backup_before_restore=create_backup_before_restore,
                    user_id=user_id,
                )
            except Exception as e:
                envelope = _error(e, "Failed to restore to point in time")
                envelope["message"] = envelope["error"]
                return envelope

        envelope = result.to_dict()
        if not result.success:
            envelope["error"] = result.message
        return envelope

    async def get_transaction_logs(
        self,
        start_date: Instant = None,
        end_date: Instant = None,
        table: str | None = None,
        operation: str | None = None,
        user_id: int | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        try:
            result = await self.log_store.query(
                start_ms=parse_instant(start_date),
                end_ms=parse_instant(end_date),
                table=table,
                operation=operation,
                user_id=user_id,
                page=page,
                page_size=page_size,
            )
        except Exception as e:
            return _error(
                e,
                "Failed to get transaction logs",
                logs=[],
                total=0,
                page=page or 1,
                page_size=page_size or 20,
            )
        return {
            "success": True,
            "logs": [entry.to_dict() for entry in result.entries],
            "total": result.total,
            "page": result.page,
            "page_size": result.page_size,
        }

    async def cleanup_old_logs(self, days_to_keep: int = DEFAULT_RETENTION_DAYS) -> dict[str, Any]:
        try:
            if days_to_keep < 1:
                raise ValueError("days_to_keep must be at least 1")
            deleted = await self.log_store.prune_older_than(days_to_keep)
        except Exception as e:
            return _error(e, "Failed to cleanup old logs", deleted_count=0)
        return {"success": True, "deleted_count": deleted}
