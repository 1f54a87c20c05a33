"""
PITR Recovery Server - Main entry point.

This module starts the recovery server with all components:
- Datastore connection (recovery schema applied on open)
- Log janitor loop (transaction log retention)
- Admin HTTP surface (optional)

Usage:
    python -m pitr.recovery_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The datastore is open before the admin surface accepts requests
    - Graceful shutdown drains pending log writes before closing the datastore

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import create_admin_app
from .config import ServerConfig
from .service import RecoveryService
from .txlog.retention import LogJanitor

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Recovery server orchestrator.

    Manages the lifecycle of all server components:
    - Recovery service (datastore, log store, registry, restorer)
    - Log janitor
    - Admin HTTP runner

    Attributes:
        config: Server configuration
        service: Recovery service
        janitor: Transaction log retention loop

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        service: RecoveryService | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            service: Optional pre-wired service (built from config if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self.service = service or RecoveryService.from_config(self.config)
        self.janitor: LogJanitor | None = None

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._runner: web.AppRunner | None = None
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the server and wait until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting PITR recovery server")
        self.config.log_config()

        try:
            await self.service.open()
            self._running = True

            if self.config.retention.enabled:
                self.janitor = LogJanitor(
                    self.service.log_store,
                    retention_days=self.config.retention.retention_days,
                    interval_seconds=self.config.retention.interval_seconds,
                )
                self._tasks.append(asyncio.create_task(self.janitor.start()))

            if self.config.http.enabled:
                app = create_admin_app(self.service)
                self._runner = web.AppRunner(app)
                await self._runner.setup()
                site = web.TCPSite(self._runner, self.config.http.host, self.config.http.port)
                await site.start()
                logger.info(
                    f"Admin HTTP server running on "
                    f"http://{self.config.http.host}:{self.config.http.port}"
                )

            logger.info("PITR recovery server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping PITR recovery server")

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self.janitor:
            await self.janitor.stop()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.service.close()

        self._running = False
        logger.info("PITR recovery server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
