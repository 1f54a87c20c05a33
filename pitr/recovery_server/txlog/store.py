"""
Transaction log store.

Append-only record of every mutating operation against the datastore:
    {table, record id, operation, user, before-image, after-image, timestamp}

The log lives in the datastore's own `transaction_log` table. It is read
for point-in-time accounting (entries up to a recovery point) and pruned
by age, except for entries pinned to a recovery point.

Invariants:
    - Entries are never updated, only appended and pruned
    - append() and append_batch() never raise; failures are only logged
    - entries_up_to()/entries_after() are ordered oldest-first by
      (timestamp_ms, id), the ordering replay relies on
    - Pinned entries (recovery_point_id set) are never pruned

How to change safely:
    - The non-throwing write contract is relied on by every mutation path
    - Keep image payloads JSON-serialisable
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..datastore.connection import DatastoreConnection
from ..errors import LogEntryNotFoundError
from ..timeutil import DAY_MS, ms_to_iso, now_ms

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 90


class Operation(str, Enum):
    """Kind of mutation recorded in a log entry."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class LogEntry:
    """One recorded mutation.

    Attributes:
        table: Name of the mutated table
        operation: create, update or delete
        record_id: Primary key of the mutated row, if known
        user_id: Acting user, if known
        before_image: Row state before the mutation (update/delete)
        after_image: Row state after the mutation (create/update)
        recovery_point_id: Pins the entry to a recovery point when set
        timestamp_ms: When the mutation happened (Unix ms); now if None
        id: Assigned by the store; may be supplied for batch deduplication
    """

    table: str
    operation: Operation
    record_id: int | None = None
    user_id: int | None = None
    before_image: Any = None
    after_image: Any = None
    recovery_point_id: int | None = None
    timestamp_ms: int | None = None
    id: int | None = None

    @property
    def is_pinned(self) -> bool:
        return self.recovery_point_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "table": self.table,
            "record_id": self.record_id,
            "operation": self.operation.value,
            "user_id": self.user_id,
            "before_image": self.before_image,
            "after_image": self.after_image,
            "recovery_point_id": self.recovery_point_id,
            "timestamp": ms_to_iso(self.timestamp_ms) if self.timestamp_ms is not None else None,
            "timestamp_ms": self.timestamp_ms,
        }


@dataclass
class LogPage:
    """One page of a log query, newest-first."""

    entries: list[LogEntry]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


def _dump_image(image: Any) -> str | None:
    return json.dumps(image) if image is not None else None


def _row_to_entry(row: sqlite3.Row) -> LogEntry:
    return LogEntry(
        id=row["id"],
        table=row["table_name"],
        record_id=row["record_id"],
        operation=Operation(row["operation"]),
        user_id=row["user_id"],
        before_image=json.loads(row["before_image"]) if row["before_image"] else None,
        after_image=json.loads(row["after_image"]) if row["after_image"] else None,
        recovery_point_id=row["recovery_point_id"],
        timestamp_ms=row["timestamp_ms"],
    )


class TransactionLogStore:
    """Append-only transaction log backed by the datastore.

    Example:
        >>> log = TransactionLogStore(db)
        >>> await log.append(LogEntry(table="products", record_id=7,
        ...                           operation=Operation.UPDATE, user_id=1,
        ...                           before_image={"price": 10},
        ...                           after_image={"price": 12}))
        >>> entries = await log.entries_up_to(now_ms())
    """

    _INSERT = """
        INSERT INTO transaction_log (table_name, record_id, operation, user_id,
                                     before_image, after_image, recovery_point_id,
                                     timestamp_ms)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """

    _INSERT_WITH_ID = """
        INSERT OR IGNORE INTO transaction_log (id, table_name, record_id, operation,
                                               user_id, before_image, after_image,
                                               recovery_point_id, timestamp_ms)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """

    def __init__(self, db: DatastoreConnection) -> None:
        self.db = db

    def _values(self, entry: LogEntry, default_ts: int) -> tuple[Any, ...]:
        return (
            entry.table,
            entry.record_id,
            Operation(entry.operation).value,
            entry.user_id,
            _dump_image(entry.before_image),
            _dump_image(entry.after_image),
            entry.recovery_point_id,
            entry.timestamp_ms if entry.timestamp_ms is not None else default_ts,
        )

    async def append(self, entry: LogEntry) -> int | None:
        """Persist one entry.

        Never raises: the mutation that produced the entry must not fail
        because of the audit trail.

        Returns:
            The new entry id, or None if the write failed
        """
        try:
            cursor = self.db.connection.execute(self._INSERT, self._values(entry, now_ms()))
            return cursor.lastrowid
        except Exception as e:
            logger.error(
                f"Failed to log transaction: {e}",
                extra={"table": entry.table, "operation": str(entry.operation)},
            )
            return None

    async def append_batch(self, entries: Iterable[LogEntry]) -> int:
        """Persist many entries in one transaction.

        Entries that carry an id already present in the log are skipped.
        Never raises.

        Returns:
            Number of entries actually inserted (0 on failure)
        """
        entries = list(entries)
        if not entries:
            return 0

        try:
            conn = self.db.connection
            ts = now_ms()
            inserted = 0
            conn.execute("BEGIN IMMEDIATE")
            try:
                for entry in entries:
                    if entry.id is not None:
                        cursor = conn.execute(
                            self._INSERT_WITH_ID, (entry.id, *self._values(entry, ts))
                        )
                    else:
                        cursor = conn.execute(self._INSERT, self._values(entry, ts))
                    inserted += cursor.rowcount
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            return inserted
        except Exception as e:
            logger.error(
                f"Failed to log batch transactions: {e}",
                extra={"entry_count": len(entries)},
            )
            return 0

    async def query(
        self,
        start_ms: int | None = None,
        end_ms: int | None = None,
        table: str | None = None,
        operation: Operation | str | None = None,
        user_id: int | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> LogPage:
        """Page through the log, newest-first.

        Args:
            start_ms: Inclusive lower bound on timestamp
            end_ms: Inclusive upper bound on timestamp
            table: Only entries for this table
            operation: Only entries of this kind
            user_id: Only entries by this user
            page: 1-based page number
            page_size: Entries per page

        Returns:
            LogPage with entries and total count
        """
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
        if table:
            clauses.append("table_name = ?")
            params.append(table)
        if operation:
            clauses.append("operation = ?")
            params.append(Operation(operation).value)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = self.db.connection
        total = conn.execute(f"SELECT COUNT(*) FROM transaction_log {where}", params).fetchone()[0]
        cursor = conn.execute(
            f"""
            SELECT * FROM transaction_log {where}
            ORDER BY timestamp_ms DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            [*params, page_size, (page - 1) * page_size],
        )

        return LogPage(
            entries=[_row_to_entry(row) for row in cursor.fetchall()],
            total=total,
            page=page,
            page_size=page_size,
        )

    async def entries_up_to(self, timestamp_ms: int) -> list[LogEntry]:
        """All entries with timestamp <= timestamp_ms, oldest-first."""
        cursor = self.db.connection.execute(
            """
            SELECT * FROM transaction_log
            WHERE timestamp_ms <= ?
            ORDER BY timestamp_ms ASC, id ASC
            """,
            (timestamp_ms,),
        )
        return [_row_to_entry(row) for row in cursor.fetchall()]

    async def entries_after(self, timestamp_ms: int) -> list[LogEntry]:
        """All entries with timestamp > timestamp_ms, oldest-first."""
        cursor = self.db.connection.execute(
            """
            SELECT * FROM transaction_log
            WHERE timestamp_ms > ?
            ORDER BY timestamp_ms ASC, id ASC
            """,
            (timestamp_ms,),
        )
        return [_row_to_entry(row) for row in cursor.fetchall()]

    async def latest_entry_id_up_to(self, timestamp_ms: int) -> int | None:
        """Id of the newest entry at or before timestamp_ms (the low-water mark)."""
        row = self.db.connection.execute(
            """
            SELECT id FROM transaction_log
            WHERE timestamp_ms <= ?
            ORDER BY timestamp_ms DESC, id DESC
            LIMIT 1
            """,
            (timestamp_ms,),
        ).fetchone()
        return row[0] if row else None

    async def get_entry(self, entry_id: int) -> LogEntry:
        """Fetch one entry.

        Raises:
            LogEntryNotFoundError: If no entry has this id
        """
        row = self.db.connection.execute(
            "SELECT * FROM transaction_log WHERE id = ?", (entry_id,)
        ).fetchone()
        if row is None:
            raise LogEntryNotFoundError(entry_id)
        return _row_to_entry(row)

    async def prune_older_than(self, days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete unpinned entries older than `days` days.

        Returns:
            Number of entries deleted
        """
        cutoff_ms = now_ms() - days * DAY_MS
        cursor = self.db.connection.execute(
            """
            DELETE FROM transaction_log
            WHERE timestamp_ms < ? AND recovery_point_id IS NULL
            """,
            (cutoff_ms,),
        )
        deleted = cursor.rowcount

        logger.info(
            "Cleaned up old transaction logs",
            extra={"deleted_count": deleted, "cutoff": ms_to_iso(cutoff_ms)},
        )
        return deleted
