"""
Recovery CLI tool.

Operator access to recovery points and the transaction log without a
running server:
- create: Create a recovery point (optionally with a backup)
- list / show / delete: Manage recovery points
- verify: Re-hash a recovery point's backup
- restore: Restore the datastore to a recovery point
- logs: Query the transaction log
- prune: Delete old, unpinned log entries

Usage:
    pitr-recovery --datastore data.db --backup-dir backups create --name nightly --backup
    pitr-recovery --datastore data.db --backup-dir backups verify 3
    pitr-recovery --datastore data.db --backup-dir backups restore 3

Invariants:
    - Output is the service envelope as JSON on stdout
    - Exit code is 0 on success, 1 on failure
    - Do not run against a datastore another process has open for writing

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..config import RestoreConfig, ServerConfig, StorageConfig
from ..service import RecoveryService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Point-in-time recovery tool")
    parser.add_argument("--datastore", help="Datastore file (default: $DATASTORE_PATH)")
    parser.add_argument("--backup-dir", help="Backup directory (default: $BACKUP_DIR)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # create command
    create_parser = subparsers.add_parser("create", help="Create a recovery point")
    create_parser.add_argument("--name", help="Recovery point name")
    create_parser.add_argument("--description", help="Recovery point description")
    create_parser.add_argument("--timestamp", help="ISO-8601 instant or Unix ms (default: now)")
    create_parser.add_argument("--backup", action="store_true", help="Snapshot the datastore")
    create_parser.add_argument("--user-id", type=int, help="Acting user")
    create_parser.add_argument("--automatic", action="store_true", help="Mark as automatic")

    # list command
    list_parser = subparsers.add_parser("list", help="List recovery points")
    list_parser.add_argument("--start-date", help="Only points at or after this instant")
    list_parser.add_argument("--end-date", help="Only points at or before this instant")
    kind_group = list_parser.add_mutually_exclusive_group()
    kind_group.add_argument(
        "--automatic",
        dest="is_automatic",
        action="store_const",
        const=True,
        help="Only automatic points",
    )
    kind_group.add_argument(
        "--manual",
        dest="is_automatic",
        action="store_const",
        const=False,
        help="Only manual points",
    )
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--page-size", type=int, default=20)

    # show / delete / verify commands
    for name, help_text in (
        ("show", "Show a recovery point"),
        ("delete", "Delete a recovery point and its backup"),
        ("verify", "Verify a recovery point's backup"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("id", type=int, help="Recovery point id")

    # restore command
    restore_parser = subparsers.add_parser("restore", help="Restore to a recovery point")
    restore_parser.add_argument("id", type=int, help="Recovery point id")
    restore_parser.add_argument(
        "--no-pre-restore-backup",
        action="store_true",
        help="Skip the pre-restore safety backup (disables rollback)",
    )
    restore_parser.add_argument("--user-id", type=int, help="Acting user")

    # logs command
    logs_parser = subparsers.add_parser("logs", help="Query the transaction log")
    logs_parser.add_argument("--start-date", help="Only entries at or after this instant")
    logs_parser.add_argument("--end-date", help="Only entries at or before this instant")
    logs_parser.add_argument("--table", help="Only entries for this table")
    logs_parser.add_argument("--operation", choices=["create", "update", "delete"])
    logs_parser.add_argument("--user-id", type=int)
    logs_parser.add_argument("--page", type=int, default=1)
    logs_parser.add_argument("--page-size", type=int, default=20)

    # prune command
    prune_parser = subparsers.add_parser("prune", help="Delete old, unpinned log entries")
    prune_parser.add_argument("--days", type=int, default=90, help="Days to keep (default: 90)")

    return parser


def build_config(args: argparse.Namespace) -> ServerConfig:
    storage = StorageConfig.from_env()
    storage = StorageConfig(
        datastore_path=args.datastore or storage.datastore_path,
        backup_dir=args.backup_dir or storage.backup_dir,
        wal_mode=storage.wal_mode,
        busy_timeout_ms=storage.busy_timeout_ms,
    )
    config = ServerConfig(storage=storage, restore=RestoreConfig.from_env())
    config.validate()
    return config


async def run_command(service: RecoveryService, args: argparse.Namespace) -> dict[str, Any]:
    """Dispatch a parsed command to the service and return its envelope."""
    if args.command == "create":
        return await service.create_recovery_point(
            name=args.name,
            description=args.description,
            timestamp=args.timestamp,
            create_backup=args.backup,
            user_id=args.user_id,
            is_automatic=args.automatic,
        )
    if args.command == "list":
        return await service.list_recovery_points(
            start_date=args.start_date,
            end_date=args.end_date,
            is_automatic=args.is_automatic,
            page=args.page,
            page_size=args.page_size,
        )
    if args.command == "show":
        return await service.get_recovery_point(args.id)
    if args.command == "delete":
        return await service.delete_recovery_point(args.id)
    if args.command == "verify":
        return await service.verify_backup_integrity(args.id)
    if args.command == "restore":
        return await service.restore_to_point_in_time(
            args.id,
            create_backup_before_restore=not args.no_pre_restore_backup,
            user_id=args.user_id,
        )
    if args.command == "logs":
        return await service.get_transaction_logs(
            start_date=args.start_date,
            end_date=args.end_date,
            table=args.table,
            operation=args.operation,
            user_id=args.user_id,
            page=args.page,
            page_size=args.page_size,
        )
    if args.command == "prune":
        return await service.cleanup_old_logs(args.days)

    raise ValueError(f"Unknown command: {args.command}")


async def _run(config: ServerConfig, args: argparse.Namespace) -> dict[str, Any]:
    service = RecoveryService.from_config(config)
    await service.open()
    try:
        return await run_command(service, args)
    finally:
        await service.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the recovery tool."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging (stderr, stdout carries the JSON result)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    result = asyncio.run(_run(config, args))

    print(json.dumps(result, indent=2, sort_keys=True))
    sys.exit(0 if result.get("success") else 1)


if __name__ == "__main__":
    main()
