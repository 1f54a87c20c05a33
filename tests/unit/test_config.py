"""
Unit tests for environment-driven configuration.

Tests cover:
- Defaults
- Environment overrides
- Validation failures
"""

import pytest

from pitr.recovery_server.config import (
    DEFAULT_CRITICAL_TABLES,
    RestoreConfig,
    RetentionConfig,
    ServerConfig,
    StorageConfig,
)


class TestServerConfig:
    """Tests for ServerConfig and its sections."""

    def test_defaults(self):
        config = ServerConfig()

        assert config.retention.retention_days == 90
        assert config.restore.critical_tables == DEFAULT_CRITICAL_TABLES
        assert config.restore.backup_before_restore is True
        assert config.http.host == "127.0.0.1"
        assert config.observability.log_format == "json"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATASTORE_PATH", str(tmp_path / "data" / "store.db"))
        monkeypatch.setenv("BACKUP_DIR", str(tmp_path / "backups"))
        monkeypatch.setenv("SQLITE_WAL_MODE", "true")
        monkeypatch.setenv("LOG_RETENTION_DAYS", "30")
        monkeypatch.setenv("LOG_CLEANUP_ENABLED", "false")
        monkeypatch.setenv("RESTORE_CRITICAL_TABLES", "products, orders ,")
        monkeypatch.setenv("RESTORE_BACKUP_BEFORE", "false")
        monkeypatch.setenv("ADMIN_HTTP_PORT", "9000")
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = ServerConfig.from_env()

        assert config.storage.datastore_path == str(tmp_path / "data" / "store.db")
        assert config.storage.wal_mode is True
        assert config.retention.retention_days == 30
        assert config.retention.enabled is False
        assert config.restore.critical_tables == ("products", "orders")
        assert config.restore.backup_before_restore is False
        assert config.http.port == 9000
        assert config.observability.log_format == "text"

    def test_empty_critical_tables_fall_back(self, monkeypatch):
        monkeypatch.setenv("RESTORE_CRITICAL_TABLES", " , ")

        assert RestoreConfig.from_env().critical_tables == DEFAULT_CRITICAL_TABLES

    def test_backup_dir_must_not_contain_datastore(self, tmp_path):
        config = ServerConfig(
            storage=StorageConfig(
                datastore_path=str(tmp_path / "backups" / "store.db"),
                backup_dir=str(tmp_path / "backups"),
            )
        )

        with pytest.raises(ValueError, match="BACKUP_DIR"):
            config.validate()

    def test_retention_days_must_be_positive(self, tmp_path):
        config = ServerConfig(
            storage=StorageConfig(
                datastore_path=str(tmp_path / "store.db"),
                backup_dir=str(tmp_path / "backups"),
            ),
            retention=RetentionConfig(retention_days=0),
        )

        with pytest.raises(ValueError, match="LOG_RETENTION_DAYS"):
            config.validate()

    def test_invalid_log_format(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATASTORE_PATH", str(tmp_path / "store.db"))
        monkeypatch.setenv("BACKUP_DIR", str(tmp_path / "backups"))
        monkeypatch.setenv("LOG_FORMAT", "xml")

        with pytest.raises(ValueError, match="LOG_FORMAT"):
            ServerConfig.from_env()
