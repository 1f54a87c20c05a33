"""
Datastore connection manager.

The restorer must be able to release the live handle, replace the file
underneath it and open it again. That lifecycle is modeled explicitly as
the DatastoreConnection protocol and passed into every component, instead
of living in ambient global state.

Invariants:
    - At most one live sqlite3 connection per manager
    - open() always (re)applies the recovery schema, a restored file may
      predate it
    - close() is idempotent

How to change safely:
    - Protocol changes require updating every implementation and test fake
    - Keep connections in autocommit mode, writers open explicit transactions
"""

from __future__ import annotations

import logging
import sqlite3
from abc import abstractmethod
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..errors import DatastoreClosedError
from .schema import apply_schema

logger = logging.getLogger(__name__)


@runtime_checkable
class DatastoreConnection(Protocol):
    """Protocol for the datastore connection manager.

    Exclusive and not re-entrant during a restore: the restorer calls
    close(), replaces the file, then open().

    Example:
        >>> db = SqliteDatastore("/var/lib/pitr/datastore.db")
        >>> await db.open()
        >>> db.connection.execute("SELECT 1")
        >>> await db.close()
    """

    @abstractmethod
    async def open(self) -> None:
        """Open (or reopen) the datastore."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the live handle so the file can be replaced."""
        ...

    @abstractmethod
    def get_datastore_path(self) -> Path:
        """Path of the live datastore file."""
        ...

    @abstractmethod
    def checkpoint(self) -> None:
        """Flush pending journal content into the main file."""
        ...

    @property
    @abstractmethod
    def connection(self) -> sqlite3.Connection:
        """The live connection.

        Raises:
            DatastoreClosedError: If the datastore is not open
        """
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether a live connection exists."""
        ...


class SqliteDatastore:
    """SQLite implementation of DatastoreConnection.

    Attributes:
        path: Datastore file path
        wal_mode: Enable SQLite WAL journal (checkpointed before snapshots)
        busy_timeout_ms: SQLite busy timeout

    Thread safety:
        The connection belongs to the thread that opened it (the event
        loop thread). All store coroutines run there.
    """

    def __init__(
        self,
        path: str | Path,
        wal_mode: bool = False,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatastoreClosedError()
        return self._conn

    def get_datastore_path(self) -> Path:
        return self.path

    async def open(self) -> None:
        if self._conn is not None:
            await self.close()

        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA journal_mode = {'WAL' if self.wal_mode else 'DELETE'}")
            conn.execute("PRAGMA synchronous = FULL")
            apply_schema(conn)
        except Exception:
            conn.close()
            raise

        self._conn = conn
        logger.info("Datastore opened", extra={"path": str(self.path)})

    async def close(self) -> None:
        if self._conn is None:
            return
        try:
            self.checkpoint()
        finally:
            self._conn.close()
            self._conn = None
        logger.info("Datastore closed", extra={"path": str(self.path)})

    def checkpoint(self) -> None:
        if self._conn is not None and self.wal_mode:
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
