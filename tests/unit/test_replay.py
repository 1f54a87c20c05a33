"""
Unit tests for replay strategies.

Tests cover:
- Accounting for tables without a handler
- Row-image upserts and deletes
- Failing handlers abort the replay
"""

import sqlite3

import pytest

from pitr.recovery_server.recovery import ReplayRegistry, RowImageReplayHandler
from pitr.recovery_server.txlog import LogEntry, Operation


class _ExplodingHandler:
    def apply(self, conn, entries):
        raise RuntimeError("handler bug")


class _RecordingHandler:
    def __init__(self):
        self.seen = []

    def apply(self, conn, entries):
        self.seen.extend(entries)


class TestReplayRegistry:
    """Tests for ReplayRegistry."""

    @pytest.fixture
    def conn(self):
        conn = sqlite3.connect(":memory:", isolation_level=None)
        conn.execute("CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT, price REAL)")
        yield conn
        conn.close()

    def test_unhandled_tables_are_counted(self, conn):
        replay = ReplayRegistry()
        entries = [
            LogEntry(id=1, table="orders", operation=Operation.CREATE, record_id=1),
            LogEntry(id=2, table="customers", operation=Operation.UPDATE, record_id=9),
        ]

        assert replay.apply(conn, entries) == 2

    def test_entries_are_grouped_by_table_in_order(self, conn):
        """Each handler sees only its table's entries, oldest-first."""
        orders = _RecordingHandler()
        replay = ReplayRegistry()
        replay.register("orders", orders)
        entries = [
            LogEntry(id=1, table="orders", operation=Operation.CREATE, record_id=1),
            LogEntry(id=2, table="products", operation=Operation.CREATE, record_id=1),
            LogEntry(id=3, table="orders", operation=Operation.UPDATE, record_id=1),
        ]

        restored = replay.apply(conn, entries)

        assert restored == 3
        assert [e.id for e in orders.seen] == [1, 3]

    def test_failing_handler_propagates(self, conn):
        """A handler error aborts the replay instead of shrinking the count."""
        replay = ReplayRegistry()
        replay.register("orders", _ExplodingHandler())
        entries = [
            LogEntry(id=1, table="orders", operation=Operation.CREATE),
            LogEntry(id=2, table="orders", operation=Operation.UPDATE),
            LogEntry(id=3, table="products", operation=Operation.CREATE),
        ]

        with pytest.raises(RuntimeError, match="handler bug"):
            replay.apply(conn, entries)

    def test_register_and_unregister(self):
        replay = ReplayRegistry()
        replay.register("products", RowImageReplayHandler("products"))
        assert replay.tables == ["products"]

        replay.unregister("products")
        assert replay.tables == []


class TestRowImageReplayHandler:
    """Tests for RowImageReplayHandler."""

    @pytest.fixture
    def conn(self):
        conn = sqlite3.connect(":memory:", isolation_level=None)
        conn.execute("CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT, price REAL)")
        yield conn
        conn.close()

    def test_create_update_delete(self, conn):
        handler = RowImageReplayHandler("products")
        handler.apply(
            conn,
            [
                LogEntry(
                    table="products",
                    operation=Operation.CREATE,
                    record_id=1,
                    after_image={"id": 1, "name": "widget", "price": 10.0},
                ),
                LogEntry(
                    table="products",
                    operation=Operation.CREATE,
                    record_id=2,
                    after_image={"name": "gadget", "price": 5.0},
                ),
                LogEntry(
                    table="products",
                    operation=Operation.UPDATE,
                    record_id=1,
                    before_image={"id": 1, "name": "widget", "price": 10.0},
                    after_image={"id": 1, "name": "widget", "price": 12.0},
                ),
                LogEntry(table="products", operation=Operation.DELETE, record_id=2),
            ],
        )

        rows = conn.execute("SELECT id, name, price FROM products ORDER BY id").fetchall()
        assert rows == [(1, "widget", 12.0)]

    def test_replay_is_idempotent(self, conn):
        """Applying the same entries twice yields the same rows."""
        handler = RowImageReplayHandler("products")
        entries = [
            LogEntry(
                table="products",
                operation=Operation.CREATE,
                record_id=1,
                after_image={"id": 1, "name": "widget", "price": 10.0},
            )
        ]

        handler.apply(conn, entries)
        handler.apply(conn, entries)

        assert conn.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 1

    def test_failure_rolls_back_table(self, conn):
        """A bad image aborts the whole batch for the table."""
        handler = RowImageReplayHandler("products")
        entries = [
            LogEntry(
                table="products",
                operation=Operation.CREATE,
                record_id=1,
                after_image={"id": 1, "name": "widget", "price": 10.0},
            ),
            LogEntry(
                table="products",
                operation=Operation.CREATE,
                record_id=2,
                after_image={"id": 2, "no_such_column": "x"},
            ),
        ]

        with pytest.raises(sqlite3.OperationalError):
            handler.apply(conn, entries)

        assert conn.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 0
