"""
Replay strategies for transaction log entries.

After a backup file has been swapped in, the restorer hands the log entries
up to the target timestamp to a ReplayRegistry. Entries are grouped by
table and each group goes to the handler registered for that table.

Invariants:
    - Handlers receive their table's entries oldest-first
    - Tables without a handler are accounted for, not applied
    - A failing handler aborts the replay; the exception propagates so the
      restorer rolls back

How to change safely:
    - Handlers must be idempotent: the backup may already contain the
      effect of some entries up to the target
    - Register handlers only for tables whose row images are complete
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from typing import Any, Protocol

from ..datastore.schema import quote_identifier
from ..txlog.store import LogEntry, Operation

logger = logging.getLogger(__name__)


class ReplayHandler(Protocol):
    """Applies one table's log entries to the restored datastore."""

    def apply(self, conn: sqlite3.Connection, entries: Sequence[LogEntry]) -> None:
        ...


class ReplayRegistry:
    """Table-keyed registry of replay handlers.

    Example:
        >>> replay = ReplayRegistry()
        >>> replay.register("products", RowImageReplayHandler("products"))
        >>> restored = replay.apply(db.connection, entries)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ReplayHandler] = {}

    def register(self, table: str, handler: ReplayHandler) -> None:
        self._handlers[table] = handler

    def unregister(self, table: str) -> None:
        self._handlers.pop(table, None)

    @property
    def tables(self) -> list[str]:
        return list(self._handlers)

    def apply(self, conn: sqlite3.Connection, entries: Sequence[LogEntry]) -> int:
        """Dispatch entries to their table handlers.

        Args:
            conn: Connection to the restored datastore
            entries: Log entries, oldest-first

        Returns:
            Number of entries accounted for

        Raises:
            Exception: Whatever a handler raises, after logging it
        """
        by_table: dict[str, list[LogEntry]] = {}
        for entry in entries:
            by_table.setdefault(entry.table, []).append(entry)

        restored = 0
        for table, table_entries in by_table.items():
            handler = self._handlers.get(table)
            if handler is None:
                logger.debug(
                    f"No replay handler for {table}, accounting only",
                    extra={"table": table, "entry_count": len(table_entries)},
                )
                restored += len(table_entries)
                continue

            try:
                handler.apply(conn, table_entries)
            except Exception as e:
                logger.error(
                    f"Replay failed for table {table}: {e}",
                    extra={"table": table, "entry_count": len(table_entries)},
                )
                raise

            restored += len(table_entries)

        logger.info(
            "Replayed transaction log entries",
            extra={"entry_count": len(entries), "restored": restored, "tables": len(by_table)},
        )
        return restored


class RowImageReplayHandler:
    """Re-applies full row images to a table.

    create/update write the after-image with INSERT OR REPLACE; delete
    removes the row by record id. All entries for the table are applied in
    one transaction.

    Attributes:
        table: Target table
        key_column: Primary key column matched against record_id
    """

    def __init__(self, table: str, key_column: str = "id") -> None:
        self.table = table
        self.key_column = key_column

    def apply(self, conn: sqlite3.Connection, entries: Sequence[LogEntry]) -> None:
        conn.execute("BEGIN IMMEDIATE")
        try:
            for entry in entries:
                self._apply_entry(conn, entry)
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def _apply_entry(self, conn: sqlite3.Connection, entry: LogEntry) -> None:
        op = Operation(entry.operation)
        if op == Operation.DELETE:
            self._delete(conn, entry)
        else:
            self._upsert(conn, entry)

    def _upsert(self, conn: sqlite3.Connection, entry: LogEntry) -> None:
        image: dict[str, Any] = dict(entry.after_image or {})
        if not image:
            logger.warning(
                "Skipping log entry without after-image",
                extra={"table": self.table, "entry_id": entry.id},
            )
            return
        if entry.record_id is not None:
            image.setdefault(self.key_column, entry.record_id)

        columns = list(image)
        column_sql = ", ".join(quote_identifier(c) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        conn.execute(
            f"INSERT OR REPLACE INTO {quote_identifier(self.table)} ({column_sql}) "
            f"VALUES ({placeholders})",
            [image[c] for c in columns],
        )

    def _delete(self, conn: sqlite3.Connection, entry: LogEntry) -> None:
        if entry.record_id is None:
            logger.warning(
                "Skipping delete entry without record id",
                extra={"table": self.table, "entry_id": entry.id},
            )
            return
        conn.execute(
            f"DELETE FROM {quote_identifier(self.table)} "
            f"WHERE {quote_identifier(self.key_column)} = ?",
            (entry.record_id,),
        )
