# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command-line entry point.

    mongobak                      # full backup run (same as --backup)
    mongobak --test               # prerequisites, credentials, connectivity
    mongobak --list               # remote backups, newest first
    mongobak --restore 20260101_020000 --target tasky_restored
    mongobak --setup-auth         # create users, enable authorization
    mongobak --history 10         # recent runs from the local journal
"""

import argparse
import asyncio
import sys
from typing import List, Sequence

import structlog

from mongobak.backup.manager import format_backup_listing
from mongobak.backup.restore import RestoreTarget
from mongobak.config import BackupConfig, RunMode
from mongobak.core import (
    initialize_backup_state,
    list_backups,
    restore_from_backup,
    run_backup_cycle,
    setup_database_auth,
    show_history,
    verify_backup_system,
)
from mongobak.env import create_config_from_env
from mongobak.exceptions import ConfigurationError, MongoBakError
from mongobak.journal import RunRecord
from mongobak.log import configure_logging

logger = structlog.get_logger()

EPILOG = """\
retention:
  Backups older than MONGOBAK_RETENTION_DAYS (default 30) are deleted
  from s3://<bucket>/backups/<service>/ at the end of each backup run.
  The bucket lifecycle policy moves objects to Glacier after 30 days,
  Deep Archive after 90 days and expires them after 365 days.

environment:
  MONGOBAK_SECRET_ID       Secrets Manager secret (default tasky/database/credentials)
  AWS_REGION               AWS region (default us-east-1)
  S3_BUCKET                bucket override (default: S3_BUCKET in the secret)
  S3_ENDPOINT_URL          S3-compatible endpoint
  MONGOBAK_SERVICE         key prefix segment (default mongodb)
  MONGOBAK_DATABASE        dump a single database (default: all)
  MONGOBAK_OPLOG           "true" adds --oplog to full dumps
  MONGOBAK_RETENTION_DAYS  days to keep backups (default 30)
  MONGOBAK_STORAGE_CLASS   S3 storage class (default STANDARD_IA)
  MONGOBAK_WORK_DIR        local work directory (default /tmp/mongodb-backups)
  MONGOBAK_LOG_FILE        log file (default /var/log/mongodb-backup.log)
  MONGOBAK_LOG_GROUP       CloudWatch Logs group, empty to disable
  MONGOBAK_JOURNAL_PATH    run journal (default ~/.mongobak/journal.db)
  MONGOBAK_MIN_FREE_BYTES  required free space (default 1 GiB)
  MONGOBAK_MONGOD_CONF     mongod.conf edited by --setup-auth

exit codes:
  0 success, 2 configuration, 3 prerequisites, 4 credentials,
  5 connectivity, 6 dump, 7 packaging, 8 transfer, 9 restore,
  10 journal, 1 unexpected error, 130 interrupted
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongobak",
        description="Back up a MongoDB server to S3 and restore from those backups",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    modes = parser.add_mutually_exclusive_group()
    modes.add_argument(
        "--backup",
        action="store_true",
        help="Run a full backup (default when no mode is given)",
    )
    modes.add_argument(
        "--test",
        action="store_true",
        help="Check prerequisites, credentials and connectivity only",
    )
    modes.add_argument("--list", "-l", action="store_true", help="List available backups")
    modes.add_argument(
        "--restore",
        "-r",
        metavar="TIMESTAMP",
        help="Restore the backup with this timestamp (YYYYMMDD_HHMMSS)",
    )
    modes.add_argument(
        "--setup-auth",
        action="store_true",
        help="Create database users and enable authorization in mongod.conf",
    )
    modes.add_argument(
        "--history",
        nargs="?",
        const=20,
        type=int,
        metavar="N",
        help="Show the last N runs from the local journal (default 20)",
    )

    parser.add_argument("--target", metavar="DB", help="Database to restore into")
    parser.add_argument(
        "--source",
        metavar="DB",
        help="Database to take from the backup (default: the secret's database)",
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing collections in the target before restoring",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Minimum log level (default INFO)",
    )
    return parser


def resolve_mode(args: argparse.Namespace) -> RunMode:
    if args.test:
        return RunMode.TEST
    if args.list:
        return RunMode.LIST
    if args.restore is not None:
        return RunMode.RESTORE
    if args.setup_auth:
        return RunMode.SETUP_AUTH
    if args.history is not None:
        return RunMode.HISTORY
    return RunMode.BACKUP


def format_history(runs: Sequence[RunRecord], stats: dict) -> str:
    lines = [
        f"Runs recorded: {stats.get('total_runs', 0)}  "
        f"Objects pruned: {stats.get('objects_pruned', 0)}",
    ]
    last = stats.get("last_backup")
    if last:
        lines.append(f"Last successful backup: {last['timestamp']} ({last['archive_key']})")
    lines.append("")

    if not runs:
        lines.append("  (no runs recorded)")
    for run in runs:
        detail = run["archive_key"] or run["error"] or ""
        lines.append(
            f"  {run['started_at'][:19]}  {run['mode']:<10} {run['status']:<9} "
            f"{run['timestamp'] or '-':<15}  {detail}"
        )
    return "\n".join(lines)


async def run(mode: RunMode, args: argparse.Namespace, config: BackupConfig) -> None:
    state = await initialize_backup_state(config)

    if mode == RunMode.BACKUP:
        result = await run_backup_cycle(config, state)
        print(
            f"Backup {result.timestamp} uploaded to s3://{result.bucket}/{result.archive_key} "
            f"({result.size_bytes / (1024 * 1024):.2f} MB, "
            f"{len(result.prune.deleted_keys)} expired objects pruned)"
        )

    elif mode == RunMode.TEST:
        info = await verify_backup_system(config, state)
        print(f"All checks passed: MongoDB at {info['address']}, bucket {info['bucket']}")

    elif mode == RunMode.LIST:
        bucket, backups = await list_backups(config, state)
        print(format_backup_listing(backups, bucket, config.service, config.retention_days))

    elif mode == RunMode.RESTORE:
        target = RestoreTarget(
            timestamp=args.restore,
            target_database=args.target,
            source_database=args.source,
            drop=args.drop,
        )
        result = await restore_from_backup(config, state, target)
        print(
            f"Restored {result.source_database} from backup {result.timestamp} "
            f"into {result.target_database}"
        )

    elif mode == RunMode.SETUP_AUTH:
        result = await setup_database_auth(config, state)
        print(f"Admin user: {result.admin_user}; application user: {result.app_user}")
        if result.restart_required:
            print("mongod.conf updated: restart mongod to enable authorization")

    elif mode == RunMode.HISTORY:
        runs, stats = await show_history(config, state, args.history)
        print(format_history(runs, stats))


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    mode = resolve_mode(args)

    if mode == RunMode.RESTORE and not args.target:
        parser.error("--restore requires --target DB")
    if mode != RunMode.RESTORE and (args.target or args.source or args.drop):
        parser.error("--target, --source and --drop only apply to --restore")
    if mode == RunMode.HISTORY and args.history < 1:
        parser.error("--history N must be at least 1")

    try:
        config = create_config_from_env()
    except ConfigurationError as e:
        configure_logging(None, args.log_level)
        logger.error("configuration_invalid", error=str(e))
        return e.exit_code

    configure_logging(config.log_file, args.log_level)
    logger.info("mongobak_started", mode=mode.value)

    try:
        asyncio.run(run(mode, args, config))
    except MongoBakError as e:
        logger.error("mongobak_failed", mode=mode.value, error=str(e), kind=type(e).__name__)
        return e.exit_code
    except KeyboardInterrupt:
        logger.warning("mongobak_interrupted", mode=mode.value)
        return 130
    except Exception as e:
        logger.exception("mongobak_unexpected_error", mode=mode.value, error=str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
