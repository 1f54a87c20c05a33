"""
Unit tests for the backup manager.

Tests cover:
- Snapshot naming and digests
- Verification (missing file, single-byte corruption)
- Missing datastore file
- Deletion
"""

import tempfile
from pathlib import Path

import pytest

from pitr.recovery_server.backup import (
    PRE_RESTORE_AREA,
    RECOVERY_POINT_AREA,
    BackupManager,
    compute_checksum,
)
from pitr.recovery_server.datastore import SqliteDatastore
from pitr.recovery_server.errors import (
    ChecksumMismatchError,
    MissingFileError,
    NoDatastoreFileError,
)


class TestBackupManager:
    """Tests for BackupManager."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    async def db(self, data_dir):
        db = SqliteDatastore(data_dir / "datastore.db")
        await db.open()
        db.connection.execute("CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT)")
        db.connection.execute("INSERT INTO products (name) VALUES ('widget')")
        yield db
        await db.close()

    @pytest.fixture
    def backups(self, db, data_dir):
        return BackupManager(db, data_dir / "backups")

    @pytest.mark.asyncio
    async def test_snapshot_then_verify(self, backups, db):
        """A fresh snapshot verifies against its own digest."""
        backup = backups.snapshot(timestamp_ms=1_792_324_800_000)

        assert backup.path.parent == backups.backup_dir / RECOVERY_POINT_AREA
        assert backup.path.name == "recovery-point-2026-10-18T12-00-00-000Z.db"
        assert backup.checksum == compute_checksum(backup.path)
        assert len(backup.checksum) == 64
        assert backup.size_bytes == db.get_datastore_path().stat().st_size

        backups.verify(backup.path, backup.checksum)

    @pytest.mark.asyncio
    async def test_snapshot_copies_bytes(self, backups, db):
        """The backup is a byte-for-byte copy of the datastore."""
        backup = backups.snapshot()

        assert backup.path.read_bytes() == db.get_datastore_path().read_bytes()

    @pytest.mark.asyncio
    async def test_pre_restore_area_naming(self, backups):
        """Pre-restore snapshots use their own directory and prefix."""
        backup = backups.snapshot(PRE_RESTORE_AREA, timestamp_ms=0)

        assert backup.path.parent.name == "pre-restore"
        assert backup.path.name == "pre-restore-1970-01-01T00-00-00-000Z.db"

    @pytest.mark.asyncio
    async def test_name_collision_gets_suffix(self, backups):
        """Two snapshots at the same instant get distinct files."""
        first = backups.snapshot(timestamp_ms=1000)
        second = backups.snapshot(timestamp_ms=1000)

        assert first.path != second.path
        assert second.path.name.endswith("-1.db")
        assert first.path.exists() and second.path.exists()

    @pytest.mark.asyncio
    async def test_unknown_area_rejected(self, backups):
        with pytest.raises(ValueError):
            backups.snapshot("elsewhere")

    @pytest.mark.asyncio
    async def test_flipped_byte_is_detected(self, backups):
        """Changing a single byte fails verification."""
        backup = backups.snapshot()

        data = bytearray(backup.path.read_bytes())
        data[len(data) // 2] ^= 0xFF
        backup.path.write_bytes(bytes(data))

        with pytest.raises(ChecksumMismatchError) as exc_info:
            backups.verify(backup.path, backup.checksum)
        assert exc_info.value.code == "CHECKSUM_MISMATCH"
        assert exc_info.value.message == "Backup file checksum mismatch - file may be corrupted"

    @pytest.mark.asyncio
    async def test_missing_file_is_detected(self, backups):
        backup = backups.snapshot()
        backup.path.unlink()

        with pytest.raises(MissingFileError):
            backups.verify(backup.path, backup.checksum)

    @pytest.mark.asyncio
    async def test_no_datastore_file(self, data_dir):
        """Snapshotting a datastore that was never created fails."""
        db = SqliteDatastore(data_dir / "absent.db")
        backups = BackupManager(db, data_dir / "backups")

        with pytest.raises(NoDatastoreFileError) as exc_info:
            backups.snapshot()
        assert exc_info.value.code == "NO_DATASTORE_FILE"
        assert not (data_dir / "backups" / RECOVERY_POINT_AREA).exists()

    @pytest.mark.asyncio
    async def test_delete(self, backups):
        backup = backups.snapshot()

        assert backups.delete(backup.path) is True
        assert not backup.path.exists()
        assert backups.delete(backup.path) is False

    @pytest.mark.asyncio
    async def test_snapshot_with_wal_mode(self, data_dir):
        """WAL content is checkpointed into the copy."""
        db = SqliteDatastore(data_dir / "wal.db", wal_mode=True)
        await db.open()
        db.connection.execute("CREATE TABLE notes (body TEXT)")
        db.connection.execute("INSERT INTO notes VALUES ('kept')")

        backup = BackupManager(db, data_dir / "backups").snapshot()
        await db.close()

        copy = SqliteDatastore(backup.path)
        await copy.open()
        row = copy.connection.execute("SELECT body FROM notes").fetchone()
        await copy.close()
        assert row["body"] == "kept"
