"""
CLI tools for recovery administration.

This module provides command-line tools for:
- recovery: Manage recovery points, verify backups, restore, query and prune
  the transaction log

Invariants:
    - Tools work offline (no running server required)
    - All operations are logged for audit
"""

from .recovery_cli import build_parser, main, run_command

__all__ = ["build_parser", "main", "run_command"]
