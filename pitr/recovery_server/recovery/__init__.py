"""
Recovery module: recovery points and point-in-time restore.

This module provides:
- The recovery point registry (create, list, delete, verify)
- Table-keyed replay strategies for log entries
- The restore state machine with rollback

Invariants:
    - The live file is never touched before the target backup is verified
    - Restore failures are results, not exceptions
"""

from .registry import (
    CreateRecoveryPointRequest,
    IntegrityReport,
    RecoveryPoint,
    RecoveryPointPage,
    RecoveryPointRegistry,
)
from .replay import ReplayHandler, ReplayRegistry, RowImageReplayHandler
from .restorer import PointInTimeRestorer, RestoreResult

__all__ = [
    "RecoveryPointRegistry",
    "RecoveryPoint",
    "RecoveryPointPage",
    "CreateRecoveryPointRequest",
    "IntegrityReport",
    "ReplayRegistry",
    "ReplayHandler",
    "RowImageReplayHandler",
    "PointInTimeRestorer",
    "RestoreResult",
]
