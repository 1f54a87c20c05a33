"""
Transaction log module for point-in-time accounting.

This module provides:
- The append-only transaction log store
- Fire-and-forget dispatch so log writes never block or fail a mutation
- The periodic retention janitor

Invariants:
    - Log writes are non-throwing from the caller's point of view
    - Pinned entries survive retention indefinitely
"""

from .dispatcher import LogDispatcher, fire_and_forget, with_logging
from .retention import LogJanitor
from .store import DEFAULT_RETENTION_DAYS, LogEntry, LogPage, Operation, TransactionLogStore

__all__ = [
    "TransactionLogStore",
    "LogEntry",
    "LogPage",
    "Operation",
    "DEFAULT_RETENTION_DAYS",
    "LogDispatcher",
    "fire_and_forget",
    "with_logging",
    "LogJanitor",
]
