"""
Backup module for the datastore file.

This module handles byte-for-byte copies of the live datastore for:
- Recovery point snapshots
- Pre-restore safety snapshots (rollback targets)
- Integrity verification with SHA-256

Invariants:
    - Digests are computed over the copied bytes
    - Backup files are never garbage-collected here, only deleted explicitly
"""

from .manager import (
    PRE_RESTORE_AREA,
    RECOVERY_POINT_AREA,
    BackupFile,
    BackupManager,
    compute_checksum,
)

__all__ = [
    "BackupManager",
    "BackupFile",
    "compute_checksum",
    "RECOVERY_POINT_AREA",
    "PRE_RESTORE_AREA",
]
