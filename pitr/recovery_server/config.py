"""
Configuration management for the PITR recovery server.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Backup directories are never inside the live datastore path
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CRITICAL_TABLES = ("transaction_log", "recovery_points")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """Datastore and backup location configuration.

    Attributes:
        datastore_path: Path of the live SQLite datastore file
        backup_dir: Root of the backup tree (recovery-points/, pre-restore/)
        wal_mode: SQLite WAL mode enabled (checkpointed before every snapshot)
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    datastore_path: str = "/var/lib/pitr/datastore.db"
    backup_dir: str = "/var/lib/pitr/backups"
    wal_mode: bool = False
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            datastore_path=os.getenv("DATASTORE_PATH", "/var/lib/pitr/datastore.db"),
            backup_dir=os.getenv("BACKUP_DIR", "/var/lib/pitr/backups"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "false"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class RetentionConfig:
    """Transaction log retention configuration.

    Attributes:
        enabled: Whether the periodic cleanup timer runs
        retention_days: Unpinned log entries older than this are pruned
        interval_seconds: Interval between cleanup runs
    """

    enabled: bool = True
    retention_days: int = 90
    interval_seconds: int = 24 * 60 * 60

    @classmethod
    def from_env(cls) -> RetentionConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("LOG_CLEANUP_ENABLED", "true"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "90")),
            interval_seconds=int(os.getenv("LOG_CLEANUP_INTERVAL_SECONDS", str(24 * 60 * 60))),
        )


@dataclass(frozen=True)
class RestoreConfig:
    """Restore behaviour configuration.

    Attributes:
        critical_tables: Tables the post-restore probe must be able to count
        backup_before_restore: Default for the pre-restore safety snapshot
    """

    critical_tables: tuple[str, ...] = DEFAULT_CRITICAL_TABLES
    backup_before_restore: bool = True

    @classmethod
    def from_env(cls) -> RestoreConfig:
        """Load configuration from environment variables."""
        raw = os.getenv("RESTORE_CRITICAL_TABLES", "")
        tables = tuple(t.strip() for t in raw.split(",") if t.strip())
        return cls(
            critical_tables=tables or DEFAULT_CRITICAL_TABLES,
            backup_before_restore=_env_bool("RESTORE_BACKUP_BEFORE", "true"),
        )


@dataclass(frozen=True)
class HttpConfig:
    """Admin HTTP surface configuration.

    Attributes:
        enabled: Whether the admin HTTP app is served
        host: Bind host
        port: Bind port
    """

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8091

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("ADMIN_HTTP_ENABLED", "true"),
            host=os.getenv("ADMIN_HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("ADMIN_HTTP_PORT", "8091")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Datastore and backup locations
        retention: Log retention timer
        restore: Restore behaviour
        http: Admin HTTP surface
        observability: Logging
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            retention=RetentionConfig.from_env(),
            restore=RestoreConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.datastore_path:
            raise ValueError("DATASTORE_PATH is required")
        if not self.storage.backup_dir:
            raise ValueError("BACKUP_DIR is required")

        datastore = Path(self.storage.datastore_path).resolve()
        backups = Path(self.storage.backup_dir).resolve()
        if datastore == backups or backups in datastore.parents:
            raise ValueError("BACKUP_DIR must not contain the datastore file")

        if self.retention.retention_days < 1:
            raise ValueError("LOG_RETENTION_DAYS must be at least 1")
        if self.retention.interval_seconds < 1:
            raise ValueError("LOG_CLEANUP_INTERVAL_SECONDS must be positive")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not datastore.parent.exists():
            logger.warning(
                f"Datastore directory does not exist: {datastore.parent}. "
                "It will be created on first open."
            )

    def log_config(self) -> None:
        """Log configuration summary."""
        logger.info(
            "Server configuration loaded",
            extra={
                "datastore_path": self.storage.datastore_path,
                "backup_dir": self.storage.backup_dir,
                "wal_mode": self.storage.wal_mode,
                "log_cleanup_enabled": self.retention.enabled,
                "log_retention_days": self.retention.retention_days,
                "critical_tables": list(self.restore.critical_tables),
                "admin_http": f"{self.http.host}:{self.http.port}" if self.http.enabled else None,
                "log_level": self.observability.log_level,
            },
        )
