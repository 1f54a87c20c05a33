"""
Recovery tables inside the primary datastore.

Log entries and recovery point metadata live in the datastore's own schema,
so a restored file carries the log and registry as they were at that moment.

Table schema:
    transaction_log:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - table_name TEXT
        - record_id INTEGER NULL
        - operation TEXT (create | update | delete)
        - user_id INTEGER NULL
        - before_image TEXT NULL (JSON)
        - after_image TEXT NULL (JSON)
        - recovery_point_id INTEGER NULL (pinned when set)
        - timestamp_ms INTEGER (Unix ms)

    recovery_points:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - name TEXT NULL
        - description TEXT NULL
        - timestamp_ms INTEGER
        - backup_path TEXT NULL
        - checksum TEXT NULL (SHA-256 hex)
        - created_by INTEGER NULL
        - is_automatic INTEGER (0/1)
        - transaction_log_id INTEGER NULL (low-water mark)
        - CHECK backup_path and checksum are both set or both null
"""

from __future__ import annotations

import sqlite3

SCHEMA_VERSION = 1

RECOVERY_SCHEMA = """
    CREATE TABLE IF NOT EXISTS recovery_schema_version (
        version INTEGER PRIMARY KEY,
        applied_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS transaction_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        table_name TEXT NOT NULL,
        record_id INTEGER,
        operation TEXT NOT NULL CHECK (operation IN ('create', 'update', 'delete')),
        user_id INTEGER,
        before_image TEXT,
        after_image TEXT,
        recovery_point_id INTEGER,
        timestamp_ms INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_transaction_log_ts
        ON transaction_log(timestamp_ms, id);
    CREATE INDEX IF NOT EXISTS idx_transaction_log_table
        ON transaction_log(table_name, timestamp_ms);
    CREATE INDEX IF NOT EXISTS idx_transaction_log_pinned
        ON transaction_log(recovery_point_id);

    CREATE TABLE IF NOT EXISTS recovery_points (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT,
        description TEXT,
        timestamp_ms INTEGER NOT NULL,
        backup_path TEXT,
        checksum TEXT,
        created_by INTEGER,
        is_automatic INTEGER NOT NULL DEFAULT 0,
        transaction_log_id INTEGER,
        CHECK ((backup_path IS NULL) = (checksum IS NULL))
    );

    CREATE INDEX IF NOT EXISTS idx_recovery_points_ts
        ON recovery_points(timestamp_ms DESC);

    INSERT OR IGNORE INTO recovery_schema_version (version, applied_at)
    VALUES (1, strftime('%s', 'now') * 1000);
"""


def apply_schema(conn: sqlite3.Connection) -> None:
    """Create the recovery tables if they don't exist."""
    conn.executescript(RECOVERY_SCHEMA)


def quote_identifier(name: str) -> str:
    """Quote a table or column name for interpolation into SQL.

    Raises:
        ValueError: If the name is empty or contains a NUL byte
    """
    if not name or "\x00" in name:
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return '"' + name.replace('"', '""') + '"'
