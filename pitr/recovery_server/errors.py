"""
Error types for the recovery subsystem.

Every failure raised inside the subsystem is a RecoveryError carrying a
stable code. The service layer converts these into `{"success": False}`
envelopes, so callers never have to catch Python exceptions.

Invariants:
    - All errors inherit from RecoveryError
    - `code` values are part of the external contract; never rename them
    - Errors that wrap another failure keep it in `cause` and as __cause__
"""

from __future__ import annotations

from typing import Any


class RecoveryError(Exception):
    """Base exception for all recovery errors.

    Attributes:
        message: Human-readable message
        code: Error code for programmatic handling
        details: Additional error context
    """

    default_code = "RECOVERY_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}


class NotFoundError(RecoveryError):
    """A recovery point or log entry does not exist."""

    default_code = "NOT_FOUND"


class RecoveryPointNotFoundError(NotFoundError):
    """Recovery point id is unknown."""

    def __init__(self, recovery_point_id: int) -> None:
        super().__init__(
            "Recovery point not found",
            details={"recovery_point_id": recovery_point_id},
        )
        self.recovery_point_id = recovery_point_id


class LogEntryNotFoundError(NotFoundError):
    """Transaction log entry id is unknown."""

    def __init__(self, entry_id: int) -> None:
        super().__init__(
            "Transaction log entry not found",
            details={"entry_id": entry_id},
        )
        self.entry_id = entry_id


class NoDatastoreFileError(RecoveryError):
    """The datastore file does not exist, so there is nothing to snapshot."""

    default_code = "NO_DATASTORE_FILE"

    def __init__(self, path: str) -> None:
        super().__init__("Database file does not exist", details={"path": path})
        self.path = path


class BackupVerificationError(RecoveryError):
    """A backup file failed verification."""

    default_code = "BACKUP_VERIFICATION_FAILED"


class NoBackupError(BackupVerificationError):
    """The recovery point has no backup reference."""

    default_code = "NO_BACKUP"

    def __init__(self, recovery_point_id: int) -> None:
        super().__init__(
            "Recovery point does not have a backup file",
            details={"recovery_point_id": recovery_point_id},
        )


class MissingFileError(BackupVerificationError):
    """The backup file is gone from disk."""

    default_code = "MISSING_FILE"

    def __init__(self, path: str) -> None:
        super().__init__("Backup file does not exist", details={"path": path})
        self.path = path


class ChecksumMismatchError(BackupVerificationError):
    """The recomputed digest differs from the recorded one."""

    default_code = "CHECKSUM_MISMATCH"

    def __init__(self, path: str, expected: str, actual: str) -> None:
        super().__init__(
            "Backup file checksum mismatch - file may be corrupted",
            details={"path": path, "expected": expected, "actual": actual},
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class IntegrityCheckFailedError(RecoveryError):
    """Restore refused because the target backup failed verification."""

    default_code = "INTEGRITY_CHECK_FAILED"

    def __init__(self, cause: BackupVerificationError) -> None:
        super().__init__(
            f"Recovery point backup integrity check failed: {cause.message}",
            details={"reason": cause.code, **cause.details},
        )
        self.cause = cause


class NoBackupAvailableError(RecoveryError):
    """Restore refused because the target has no backup to restore from."""

    default_code = "NO_BACKUP_AVAILABLE"

    def __init__(self, recovery_point_id: int) -> None:
        super().__init__(
            "Recovery point does not have a backup file. "
            "Point-in-time recovery requires a backup file.",
            details={"recovery_point_id": recovery_point_id},
        )


class RestoreFailedError(RecoveryError):
    """Failure while disconnecting, swapping, reconnecting or replaying."""

    default_code = "RESTORE_FAILED"

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(
            f"Restore failed during {step}: {cause}",
            details={"step": step, "cause": type(cause).__name__},
        )
        self.step = step
        self.cause = cause


class RollbackFailedError(RecoveryError):
    """Failure while putting the pre-restore backup back in place."""

    default_code = "ROLLBACK_FAILED"

    def __init__(self, backup_path: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to restore from pre-restore backup: {cause}",
            details={"backup_path": backup_path},
        )
        self.backup_path = backup_path
        self.cause = cause


class DatastoreClosedError(RecoveryError):
    """The datastore connection is not open."""

    default_code = "DATASTORE_CLOSED"

    def __init__(self) -> None:
        super().__init__("Datastore connection is not open")
