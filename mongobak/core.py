# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Core - Orchestration of backup, verification and restore runs.

This module wires the components together (secret store, MongoDB tools,
object store, notifier and journal) and runs one mode per invocation.
Every step raises its own error kind; a failed run is journaled, logged,
notified and re-raised.
"""

import asyncio
import shutil
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, TypedDict

import aiosqlite
import structlog
from ulid import ULID

from mongobak.auth import AuthSetupResult, setup_authentication
from mongobak.backup.manager import (
    PruneResult,
    RemoteBackup,
    build_metadata,
    check_prerequisites,
    create_run_directory,
    discard_remote_archive,
    list_remote_backups,
    package_dump,
    produce_dump,
    prune_remote_backups,
    upload_backup,
    verify_aws_identity,
    write_metadata,
)
from mongobak.backup.restore import RestoreResult, RestoreTarget, restore_backup
from mongobak.config import BackupConfig, RunMode
from mongobak.credentials import (
    CredentialBundle,
    SecretStore,
    SecretsManagerStore,
    fetch_credentials,
)
from mongobak.exceptions import TransferError
from mongobak.journal import (
    STATUS_FAILED,
    STATUS_SUCCEEDED,
    RunRecord,
    complete_run,
    get_journal_stats,
    init_journal_db,
    list_runs,
    record_pruned,
    record_run_started,
)
from mongobak.layout import new_timestamp
from mongobak.mongo import DatabaseShell, Dumper, MongoDumper, MongoRestorer, MongoShell, Restorer
from mongobak.notify import CloudWatchNotifier, Notifier
from mongobak.storage import ObjectStore, S3ObjectStore

logger = structlog.get_logger()


@dataclass
class BackupResult:
    """Result of a backup run."""

    run_id: str  # ULID
    timestamp: str
    bucket: str
    archive_key: str
    metadata_key: str
    size_bytes: int
    sha256: str
    prune: PruneResult
    duration_seconds: float
    notified: bool = False


class BackupState(TypedDict):
    """Runtime collaborators for a run."""

    session: Any  # aiobotocore session
    secret_store: SecretStore
    object_store_factory: Callable[[str], ObjectStore]  # bucket -> store
    dumper: Dumper
    restorer: Restorer
    shell: DatabaseShell
    notifier: Notifier | None
    identity_check: Callable[[], Awaitable[Any]] | None
    journal_db_path: Path
    sleep: Callable[[float], Awaitable[None]]


async def initialize_backup_state(config: BackupConfig) -> BackupState:
    """
    Initialize runtime state for a run.

    Creates the AWS session, the tool wrappers and the journal database.

    Args:
        config: Backup configuration

    Returns:
        Initialized BackupState dictionary
    """
    from aiobotocore.session import get_session

    await init_journal_db(config.journal_path)

    session = get_session()

    def object_store_factory(bucket: str) -> ObjectStore:
        return S3ObjectStore(session, bucket, config.region, config.endpoint_url)

    notifier = None
    if config.log_group:
        notifier = CloudWatchNotifier(session, config.region, config.log_group)

    return BackupState(
        session=session,
        secret_store=SecretsManagerStore(session, config.region),
        object_store_factory=object_store_factory,
        dumper=MongoDumper(oplog=config.oplog),
        restorer=MongoRestorer(),
        shell=MongoShell(),
        notifier=notifier,
        identity_check=lambda: verify_aws_identity(session, config.region),
        journal_db_path=config.journal_path,
        sleep=asyncio.sleep,
    )


async def _notify(state: BackupState, status: str, message: str) -> bool:
    if state["notifier"] is None:
        return False
    return await state["notifier"].send(status, message)


async def _connect(config: BackupConfig, state: BackupState) -> CredentialBundle:
    """Fetch credentials and confirm the server answers with them."""
    credentials = await fetch_credentials(
        state["secret_store"],
        config.secret_id,
        config.bucket,
    )
    await state["shell"].ping(credentials, config.health_check_timeout)
    logger.info("mongodb_connectivity_verified", address=credentials.address)
    return credentials


async def run_backup_cycle(config: BackupConfig, state: BackupState) -> BackupResult:
    """
    Run a complete backup.

    Steps, in order:
    1. Check prerequisites (tools, AWS identity, free space)
    2. Fetch credentials and verify connectivity
    3. Dump into a fresh per-run directory and package it
    4. Upload the archive, then its metadata object
    5. Prune backups older than the retention window
    6. Notify the outcome

    The per-run work directory is removed whether the run succeeds or not.
    If the metadata object cannot be written, the uploaded archive is
    removed again so that no archive exists without metadata.

    Args:
        config: Backup configuration
        state: Runtime state

    Returns:
        BackupResult with run details
    """
    run_id = str(ULID())
    timestamp = new_timestamp()
    start_time = datetime.now(UTC)
    run_dir = config.work_dir / run_id

    logger.info(
        "backup_run_started",
        run_id=run_id,
        timestamp=timestamp,
        service=config.service,
    )

    async with aiosqlite.connect(state["journal_db_path"]) as journal_db:
        await record_run_started(journal_db, run_id, RunMode.BACKUP.value, timestamp)

        try:
            await check_prerequisites(config, state["identity_check"])

            credentials = await _connect(config, state)

            # Nothing is written locally before the server has answered
            run_dir = create_run_directory(config.work_dir, run_id)

            dump_dir = await produce_dump(
                state["dumper"],
                credentials,
                run_dir,
                timestamp,
                database=config.database,
                attempts=config.retry_attempts,
                delay=config.retry_delay,
                sleep=state["sleep"],
            )
            artifact = await package_dump(dump_dir, config.service)

            server_stats = await state["shell"].server_stats(credentials)

            store = state["object_store_factory"](credentials.bucket)
            await upload_backup(store, config, artifact)

            try:
                await write_metadata(
                    store,
                    artifact,
                    build_metadata(config, artifact, run_id, server_stats),
                )
            except TransferError:
                await discard_remote_archive(store, artifact)
                raise

            prune = await prune_remote_backups(store, config)
            for key in prune.deleted_keys:
                await record_pruned(journal_db, run_id, key, deleted=True)
            for key, error in zip(prune.failed_keys, prune.errors):
                await record_pruned(journal_db, run_id, key, deleted=False, error=error)

        except Exception as e:
            duration = (datetime.now(UTC) - start_time).total_seconds()
            logger.error(
                "backup_run_failed",
                run_id=run_id,
                error=str(e),
                duration=duration,
            )
            await complete_run(journal_db, run_id, STATUS_FAILED, error=str(e))
            await _notify(state, "FAILURE", f"MongoDB backup {timestamp} failed: {e}")
            raise

        except BaseException as e:
            logger.warning("backup_run_interrupted", run_id=run_id, reason=type(e).__name__)
            await complete_run(
                journal_db, run_id, STATUS_FAILED, error=f"interrupted: {type(e).__name__}"
            )
            raise

        finally:
            shutil.rmtree(run_dir, ignore_errors=True)

        duration = (datetime.now(UTC) - start_time).total_seconds()

        await complete_run(
            journal_db,
            run_id,
            STATUS_SUCCEEDED,
            archive_key=artifact.archive_key,
            size_bytes=artifact.size_bytes,
            stats={
                "sha256": artifact.sha256,
                "pruned": len(prune.deleted_keys),
                "prune_failures": len(prune.failed_keys),
                "duration_seconds": duration,
            },
        )

    notified = await _notify(
        state,
        "SUCCESS",
        f"MongoDB backup {timestamp} completed: "
        f"s3://{credentials.bucket}/{artifact.archive_key} "
        f"({artifact.size_bytes / (1024 * 1024):.2f} MB)",
    )

    result = BackupResult(
        run_id=run_id,
        timestamp=timestamp,
        bucket=credentials.bucket,
        archive_key=artifact.archive_key,
        metadata_key=artifact.metadata_key,
        size_bytes=artifact.size_bytes,
        sha256=artifact.sha256,
        prune=prune,
        duration_seconds=duration,
        notified=notified,
    )

    logger.info(
        "backup_run_completed",
        run_id=run_id,
        key=artifact.archive_key,
        size=artifact.size_bytes,
        pruned=len(prune.deleted_keys),
        duration=duration,
    )
    return result


async def _journaled(
    state: BackupState,
    mode: RunMode,
    operation: Callable[[], Awaitable[Any]],
    timestamp: str | None = None,
) -> Any:
    """Run `operation` with a journal row tracking its outcome."""
    run_id = str(ULID())

    async with aiosqlite.connect(state["journal_db_path"]) as journal_db:
        await record_run_started(journal_db, run_id, mode.value, timestamp)
        try:
            result = await operation()
        except Exception as e:
            logger.error(f"{mode.value}_run_failed", run_id=run_id, error=str(e))
            await complete_run(journal_db, run_id, STATUS_FAILED, error=str(e))
            raise
        except BaseException as e:
            logger.warning(f"{mode.value}_run_interrupted", run_id=run_id, reason=type(e).__name__)
            await complete_run(
                journal_db, run_id, STATUS_FAILED, error=f"interrupted: {type(e).__name__}"
            )
            raise
        await complete_run(journal_db, run_id, STATUS_SUCCEEDED)

    return result


async def verify_backup_system(config: BackupConfig, state: BackupState) -> Dict[str, Any]:
    """
    Check everything a backup needs without producing one.

    Returns:
        Dict with the database address, bucket and server stats
    """

    async def operation() -> Dict[str, Any]:
        await check_prerequisites(config, state["identity_check"])
        credentials = await _connect(config, state)
        server = await state["shell"].server_stats(credentials)
        logger.info("backup_system_verified", address=credentials.address)
        return {
            "address": credentials.address,
            "bucket": credentials.bucket,
            "server": server,
        }

    return await _journaled(state, RunMode.TEST, operation)


async def list_backups(config: BackupConfig, state: BackupState) -> tuple[str, List[RemoteBackup]]:
    """
    Enumerate remote backups, newest first.

    The secret is only read when no bucket is configured explicitly.

    Returns:
        (bucket, backups)
    """
    bucket = config.bucket
    if bucket is None:
        credentials = await fetch_credentials(state["secret_store"], config.secret_id)
        bucket = credentials.bucket

    store = state["object_store_factory"](bucket)
    backups = await list_remote_backups(store, config.service)

    logger.info("backups_listed", bucket=bucket, count=len(backups))
    return bucket, backups


async def restore_from_backup(
    config: BackupConfig,
    state: BackupState,
    target: RestoreTarget,
) -> RestoreResult:
    """Restore one backup into target.target_database."""

    async def operation() -> RestoreResult:
        credentials = await _connect(config, state)
        store = state["object_store_factory"](credentials.bucket)
        config.work_dir.mkdir(parents=True, exist_ok=True)
        return await restore_backup(
            store,
            state["restorer"],
            credentials,
            config.service,
            target,
            config.work_dir,
        )

    return await _journaled(state, RunMode.RESTORE, operation, target.timestamp)


async def setup_database_auth(config: BackupConfig, state: BackupState) -> AuthSetupResult:
    """Create the users from the secret and enable authorization."""

    async def operation() -> AuthSetupResult:
        credentials = await fetch_credentials(
            state["secret_store"],
            config.secret_id,
            config.bucket,
        )
        return await setup_authentication(
            state["shell"],
            credentials,
            config.mongod_conf,
            config.health_check_timeout,
        )

    return await _journaled(state, RunMode.SETUP_AUTH, operation)


async def show_history(
    config: BackupConfig,
    state: BackupState,
    limit: int = 20,
) -> tuple[List[RunRecord], dict]:
    """
    Recent runs from the local journal.

    Returns:
        (runs newest first, journal statistics)
    """
    async with aiosqlite.connect(state["journal_db_path"]) as journal_db:
        runs = await list_runs(journal_db, limit=limit)
        stats = await get_journal_stats(journal_db)
    return runs, stats
