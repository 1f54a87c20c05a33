"""
PITR Recovery Server - point-in-time recovery for a single-file SQLite datastore.

This package implements the recovery subsystem that sits beside a
transactional datastore:
- Transaction log of every mutating operation (append-only, in the datastore)
- Recovery points, optionally anchored to checksummed backup files
- Restore of the live datastore file to any recovery point, with rollback

Architecture:
    ┌──────────────┐  fire-and-forget   ┌──────────────────┐
    │  Business    │───────────────────▶│ Transaction Log  │
    │  mutations   │                    │ Store (SQLite)   │
    └──────────────┘                    └────────┬─────────┘
                                                 │ low-water mark
    ┌──────────────┐     snapshot       ┌────────▼─────────┐
    │   Backup     │◀───────────────────│ Recovery Point   │
    │   Manager    │                    │ Registry         │
    └──────┬───────┘                    └────────┬─────────┘
           │ backup files                        │
           ▼                                     ▼
    ┌──────────────────────────────────────────────────────┐
    │ Point-in-Time Restorer (verify, swap, replay, probe) │
    └──────────────────────────────────────────────────────┘

Invariants:
    - Log writes never fail the mutation that produced them
    - A recovery point has both a backup path and a checksum, or neither
    - Nothing destructive happens to the live file before the target
      backup has been verified
    - Every failure path returns a structured result instead of raising
      across the service boundary

How to change safely:
    - New tables in the recovery schema must use CREATE ... IF NOT EXISTS,
      restored snapshots may predate them
    - Keep backup file names derivable from timestamps
    - Test restore failure paths with injected faults

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
