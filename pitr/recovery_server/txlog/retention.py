"""
Periodic transaction log cleanup.

The janitor runs on its own timer, decoupled from backup and restore. It is
safe to run alongside them because pruning never touches pinned entries or
backup files.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .store import DEFAULT_RETENTION_DAYS, TransactionLogStore

logger = logging.getLogger(__name__)


class LogJanitor:
    """Background loop that prunes old, unpinned log entries.

    Example:
        >>> janitor = LogJanitor(log_store, retention_days=90)
        >>> await janitor.start()  # Runs until stopped
    """

    def __init__(
        self,
        store: TransactionLogStore,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        interval_seconds: float = 24 * 60 * 60,
    ) -> None:
        self.store = store
        self.retention_days = retention_days
        self.interval_seconds = interval_seconds

        self._running = False
        self._runs = 0
        self._total_deleted = 0

    async def start(self) -> None:
        """Start the cleanup loop."""
        if self._running:
            logger.warning("Log janitor already running")
            return

        self._running = True
        logger.info(
            "Starting log janitor",
            extra={
                "retention_days": self.retention_days,
                "interval_seconds": self.interval_seconds,
            },
        )

        try:
            while self._running:
                await self.run_once()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Log janitor cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the cleanup loop."""
        self._running = False
        logger.info("Stopping log janitor")

    async def run_once(self) -> int:
        """Run one cleanup pass. Errors are logged, never raised."""
        try:
            deleted = await self.store.prune_older_than(self.retention_days)
        except Exception as e:
            logger.error(f"Transaction log cleanup failed: {e}", exc_info=True)
            return 0

        self._runs += 1
        self._total_deleted += deleted
        return deleted

    @property
    def stats(self) -> dict[str, Any]:
        """Get janitor statistics."""
        return {
            "running": self._running,
            "runs": self._runs,
            "total_deleted": self._total_deleted,
        }
