"""
Unit tests for the recovery point registry.

Tests cover:
- Creation with and without backups
- Low-water mark
- Listing and filtering
- Deletion removes the backup file
- Backup integrity verification outcomes
- No stray backup file when creation fails
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from pitr.recovery_server.backup import RECOVERY_POINT_AREA, BackupManager, compute_checksum
from pitr.recovery_server.datastore import SqliteDatastore
from pitr.recovery_server.errors import (
    ChecksumMismatchError,
    MissingFileError,
    NoBackupError,
    RecoveryPointNotFoundError,
)
from pitr.recovery_server.recovery import CreateRecoveryPointRequest, RecoveryPointRegistry
from pitr.recovery_server.timeutil import now_ms
from pitr.recovery_server.txlog import LogEntry, Operation, TransactionLogStore


class TestRecoveryPointRegistry:
    """Tests for RecoveryPointRegistry."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    async def db(self, data_dir):
        db = SqliteDatastore(data_dir / "datastore.db")
        await db.open()
        yield db
        await db.close()

    @pytest.fixture
    def log_store(self, db):
        return TransactionLogStore(db)

    @pytest.fixture
    def backups(self, db, data_dir):
        return BackupManager(db, data_dir / "backups")

    @pytest.fixture
    def registry(self, db, log_store, backups):
        return RecoveryPointRegistry(db, log_store, backups)

    @pytest.mark.asyncio
    async def test_create_without_backup(self, registry):
        """A point without backup has neither path nor checksum."""
        point = await registry.create(CreateRecoveryPointRequest(name="marker", user_id=4))

        assert point.id is not None
        assert point.backup_path is None
        assert point.checksum is None
        assert point.has_backup is False
        assert point.created_by == 4

        fetched = await registry.get(point.id)
        assert fetched == point

    @pytest.mark.asyncio
    async def test_create_with_backup(self, registry):
        """A point with backup records the digest of the copy."""
        point = await registry.create(
            CreateRecoveryPointRequest(name="before price update", create_backup=True)
        )

        assert point.has_backup is True
        assert Path(point.backup_path).exists()
        assert point.checksum == compute_checksum(point.backup_path)
        assert Path(point.backup_path).name.startswith("recovery-point-")

    @pytest.mark.asyncio
    async def test_low_water_mark(self, registry, log_store):
        """transaction_log_id is the newest entry at or before the point."""
        base = now_ms() - 10_000
        await log_store.append(LogEntry(table="t", operation=Operation.CREATE, timestamp_ms=base))
        second = await log_store.append(
            LogEntry(table="t", operation=Operation.UPDATE, timestamp_ms=base + 100)
        )
        await log_store.append(LogEntry(table="t", operation=Operation.DELETE, timestamp_ms=base + 200))

        point = await registry.create(CreateRecoveryPointRequest(timestamp_ms=base + 150))

        assert point.transaction_log_id == second
        assert point.timestamp_ms == base + 150

    @pytest.mark.asyncio
    async def test_list_newest_first_and_filter(self, registry):
        """Listing is newest-first and filters by kind and time."""
        base = now_ms() - 10_000
        await registry.create(CreateRecoveryPointRequest(name="a", timestamp_ms=base))
        await registry.create(
            CreateRecoveryPointRequest(name="b", timestamp_ms=base + 100, is_automatic=True)
        )
        await registry.create(CreateRecoveryPointRequest(name="c", timestamp_ms=base + 200))

        everything = await registry.list_points()
        automatic = await registry.list_points(is_automatic=True)
        window = await registry.list_points(start_ms=base + 50, end_ms=base + 250)
        paged = await registry.list_points(page=2, page_size=2)

        assert [p.name for p in everything.recovery_points] == ["c", "b", "a"]
        assert everything.total == 3
        assert [p.name for p in automatic.recovery_points] == ["b"]
        assert [p.name for p in window.recovery_points] == ["c", "b"]
        assert [p.name for p in paged.recovery_points] == ["a"]

    @pytest.mark.asyncio
    async def test_get_unknown_point(self, registry):
        with pytest.raises(RecoveryPointNotFoundError) as exc_info:
            await registry.get(42)
        assert exc_info.value.code == "NOT_FOUND"
        assert exc_info.value.message == "Recovery point not found"

    @pytest.mark.asyncio
    async def test_delete_removes_backup_file(self, registry):
        """Deleting a point removes its backup and the registry row."""
        point = await registry.create(CreateRecoveryPointRequest(create_backup=True))
        backup_path = Path(point.backup_path)

        await registry.delete(point.id)

        assert not backup_path.exists()
        with pytest.raises(RecoveryPointNotFoundError):
            await registry.get(point.id)

    @pytest.mark.asyncio
    async def test_delete_tolerates_missing_backup_file(self, registry):
        point = await registry.create(CreateRecoveryPointRequest(create_backup=True))
        Path(point.backup_path).unlink()

        await registry.delete(point.id)

        with pytest.raises(RecoveryPointNotFoundError):
            await registry.get(point.id)

    @pytest.mark.asyncio
    async def test_delete_unknown_point(self, registry):
        with pytest.raises(RecoveryPointNotFoundError):
            await registry.delete(42)

    @pytest.mark.asyncio
    async def test_verify_intact_backup(self, registry):
        point = await registry.create(CreateRecoveryPointRequest(create_backup=True))

        report = await registry.verify_integrity(point.id)

        assert report.valid is True
        assert report.message == "Backup file integrity verified"

    @pytest.mark.asyncio
    async def test_verify_is_repeatable(self, registry):
        """Verification never modifies the backup."""
        point = await registry.create(CreateRecoveryPointRequest(create_backup=True))
        before = Path(point.backup_path).read_bytes()

        await registry.verify_integrity(point.id)
        await registry.verify_integrity(point.id)

        assert Path(point.backup_path).read_bytes() == before

    @pytest.mark.asyncio
    async def test_verify_without_backup(self, registry):
        point = await registry.create(CreateRecoveryPointRequest())

        with pytest.raises(NoBackupError) as exc_info:
            await registry.verify_integrity(point.id)
        assert exc_info.value.message == "Recovery point does not have a backup file"

    @pytest.mark.asyncio
    async def test_verify_missing_file(self, registry):
        point = await registry.create(CreateRecoveryPointRequest(create_backup=True))
        Path(point.backup_path).unlink()

        with pytest.raises(MissingFileError) as exc_info:
            await registry.verify_integrity(point.id)
        assert exc_info.value.message == "Backup file does not exist"

    @pytest.mark.asyncio
    async def test_verify_corrupted_backup(self, registry):
        point = await registry.create(CreateRecoveryPointRequest(create_backup=True))
        with open(point.backup_path, "ab") as f:
            f.write(b"\x00")

        with pytest.raises(ChecksumMismatchError):
            await registry.verify_integrity(point.id)

    @pytest.mark.asyncio
    async def test_verify_unknown_point(self, registry):
        with pytest.raises(RecoveryPointNotFoundError):
            await registry.verify_integrity(42)

    @pytest.mark.asyncio
    async def test_failed_insert_leaves_no_backup_file(self, registry, db, backups):
        """If the row cannot be written, the snapshot is removed."""
        db.connection.execute("DROP TABLE recovery_points")

        with pytest.raises(sqlite3.OperationalError):
            await registry.create(CreateRecoveryPointRequest(create_backup=True))

        area = backups.area_dir(RECOVERY_POINT_AREA)
        assert list(area.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failed_cleanup_keeps_insert_error(self, registry, db, backups, monkeypatch):
        """A cleanup error after a failed insert does not hide the insert error."""
        db.connection.execute("DROP TABLE recovery_points")

        def failing_delete(path):
            raise PermissionError("backup directory is read-only")

        monkeypatch.setattr(backups, "delete", failing_delete)

        with pytest.raises(sqlite3.OperationalError):
            await registry.create(CreateRecoveryPointRequest(create_backup=True))
