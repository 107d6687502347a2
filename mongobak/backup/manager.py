# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Backup Manager - Backup lifecycle steps.

This module holds the individual steps of a backup run: prerequisite
checks, dumping, packaging, uploading, metadata, pruning and listing.
The orchestration lives in mongobak.core.
"""

import asyncio
import hashlib
import json
import shutil
import tarfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Sequence

import structlog

from mongobak.config import BackupConfig
from mongobak.credentials import CredentialBundle
from mongobak.errors import explain_missing_tool
from mongobak.exceptions import (
    DumpError,
    PackagingError,
    PrerequisiteError,
    TransferError,
)
from mongobak.layout import (
    archive_key,
    backup_prefix,
    is_archive_key,
    is_metadata_key,
    metadata_key,
    timestamp_from_key,
)
from mongobak.mongo import Dumper
from mongobak.retry import retry_async
from mongobak.storage import ObjectStore, RemoteObject

logger = structlog.get_logger()


@dataclass
class BackupArtifact:
    """A packaged dump on local disk and where it goes remotely."""

    timestamp: str
    local_path: Path
    archive_key: str
    metadata_key: str
    size_bytes: int
    sha256: str


@dataclass
class PruneResult:
    """Outcome of a pruning pass."""

    cutoff: datetime
    examined: int
    deleted_keys: List[str] = field(default_factory=list)
    failed_keys: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RemoteBackup:
    """An archive found in the bucket."""

    timestamp: str
    key: str
    size_bytes: int
    last_modified: datetime
    has_metadata: bool

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


# ============================================================================
# Prerequisites
# ============================================================================

def _nearest_existing(path: Path) -> Path:
    """Closest existing ancestor of path (disk usage needs a real directory)."""
    candidate = path
    while not candidate.exists() and candidate != candidate.parent:
        candidate = candidate.parent
    return candidate


async def verify_aws_identity(session: Any, region: str) -> str:
    """
    Confirm that AWS credentials are configured and valid.

    Returns:
        The caller identity ARN

    Raises:
        PrerequisiteError: If STS rejects or cannot be reached
    """
    try:
        async with session.create_client("sts", region_name=region) as sts:
            identity = await sts.get_caller_identity()
    except Exception as e:
        raise PrerequisiteError(f"AWS credentials not configured or invalid: {e}")
    return identity.get("Arn", "")


async def check_prerequisites(
    config: BackupConfig,
    identity_check: Callable[[], Awaitable[Any]] | None = None,
    which: Callable[[str], str | None] = shutil.which,
    disk_usage: Callable[[Path], Any] = shutil.disk_usage,
) -> None:
    """
    Verify tools, AWS identity and free disk space before a run.

    Args:
        config: Backup configuration
        identity_check: Coroutine factory confirming AWS credentials
        which: Executable lookup, replaceable in tests
        disk_usage: Disk usage lookup, replaceable in tests

    Raises:
        PrerequisiteError: On the first unmet prerequisite
    """
    logger.info("prerequisites_check_started")

    missing = [tool for tool in config.required_tools if which(tool) is None]
    if missing:
        raise PrerequisiteError(
            " ".join(explain_missing_tool(tool) for tool in missing),
            details={"missing_tools": missing},
        )

    if identity_check is not None:
        await identity_check()

    location = _nearest_existing(config.work_dir)
    free = disk_usage(location).free
    if free < config.min_free_bytes:
        raise PrerequisiteError(
            "Insufficient disk space for backup",
            details={
                "path": str(location),
                "free_bytes": free,
                "required_bytes": config.min_free_bytes,
            },
        )

    logger.info("prerequisites_satisfied", free_bytes=free)


# ============================================================================
# Dump and package
# ============================================================================

def create_run_directory(work_dir: Path, run_id: str) -> Path:
    """
    Create the fresh per-run directory.

    Raises:
        PrerequisiteError: If the directory cannot be created
    """
    run_dir = work_dir / run_id
    try:
        run_dir.mkdir(parents=True, exist_ok=False)
    except OSError as e:
        raise PrerequisiteError(
            f"Cannot create work directory: {e}",
            details={"path": str(run_dir)},
        )
    return run_dir


async def produce_dump(
    dumper: Dumper,
    credentials: CredentialBundle,
    run_dir: Path,
    timestamp: str,
    *,
    database: str | None = None,
    attempts: int = 3,
    delay: float = 5.0,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> Path:
    """
    Dump the server (or one database) into run_dir/<timestamp>.

    Transient dump failures are retried; a partial output directory is
    discarded before each new attempt.

    Returns:
        Path to the dump directory

    Raises:
        DumpError: If every attempt fails or the output stays empty
    """
    dump_dir = run_dir / timestamp

    async def attempt() -> None:
        if dump_dir.exists():
            shutil.rmtree(dump_dir)
        dump_dir.mkdir(parents=True)
        await dumper.dump(credentials, dump_dir, database)

    logger.info(
        "dump_started",
        address=credentials.address,
        database=database or "*",
        out_dir=str(dump_dir),
    )

    await retry_async(
        attempt,
        attempts=attempts,
        delay=delay,
        retry_on=(DumpError,),
        description="mongodump",
        sleep=sleep or asyncio.sleep,
    )

    files = [p for p in dump_dir.rglob("*") if p.is_file()]
    if not files:
        raise DumpError(
            "Dump directory is empty",
            details={"out_dir": str(dump_dir)},
        )

    logger.info(
        "dump_completed",
        out_dir=str(dump_dir),
        files=len(files),
        size=sum(p.stat().st_size for p in files),
    )
    return dump_dir


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


async def package_dump(dump_dir: Path, service: str) -> BackupArtifact:
    """
    Compress a dump directory into <timestamp>.tar.gz next to it.

    The uncompressed directory is deleted once the archive is written.

    Args:
        dump_dir: Directory produced by produce_dump()
        service: Service name for the remote keys

    Returns:
        BackupArtifact describing the archive
    """
    timestamp = dump_dir.name
    archive_path = dump_dir.parent / f"{timestamp}.tar.gz"

    try:
        with tarfile.open(archive_path, "w:gz") as tar:
            tar.add(dump_dir, arcname=timestamp)
    except Exception as e:
        archive_path.unlink(missing_ok=True)
        raise PackagingError(
            f"Backup compression failed: {e}",
            details={"dump_dir": str(dump_dir)},
        )

    shutil.rmtree(dump_dir, ignore_errors=True)

    artifact = BackupArtifact(
        timestamp=timestamp,
        local_path=archive_path,
        archive_key=archive_key(service, timestamp),
        metadata_key=metadata_key(service, timestamp),
        size_bytes=archive_path.stat().st_size,
        sha256=file_sha256(archive_path),
    )

    logger.info(
        "backup_compressed",
        archive=str(archive_path),
        size=artifact.size_bytes,
    )
    return artifact


# ============================================================================
# Upload and metadata
# ============================================================================

async def upload_backup(
    store: ObjectStore,
    config: BackupConfig,
    artifact: BackupArtifact,
) -> RemoteObject:
    """
    Upload the archive and verify it landed.

    An archive that fails verification is deleted again before raising.

    Raises:
        TransferError: If the upload fails or the object cannot be verified
    """
    await store.upload_file(
        artifact.local_path,
        artifact.archive_key,
        metadata={
            "backup-date": artifact.timestamp,
            "backup-type": "mongodb",
            "retention-days": str(config.retention_days),
            "sha256": artifact.sha256,
        },
        storage_class=config.storage_class,
        content_type="application/gzip",
    )

    try:
        remote = await _verify_upload(store, artifact)
    except TransferError:
        await discard_remote_archive(store, artifact)
        raise

    logger.info("backup_uploaded", key=artifact.archive_key, size=remote.size)
    return remote


async def _verify_upload(store: ObjectStore, artifact: BackupArtifact) -> RemoteObject:
    remote = await store.head(artifact.archive_key)
    if remote is None:
        raise TransferError(
            "Uploaded backup not found in bucket",
            details={"key": artifact.archive_key},
        )
    if remote.size != artifact.size_bytes:
        raise TransferError(
            "Uploaded backup size does not match local archive",
            details={
                "key": artifact.archive_key,
                "local_size": artifact.size_bytes,
                "remote_size": remote.size,
            },
        )
    return remote


def build_metadata(
    config: BackupConfig,
    artifact: BackupArtifact,
    run_id: str,
    server_stats: Dict[str, Any],
) -> Dict[str, Any]:
    return {
        "run_id": run_id,
        "service": config.service,
        "timestamp": artifact.timestamp,
        "archive_key": artifact.archive_key,
        "size_bytes": artifact.size_bytes,
        "sha256": artifact.sha256,
        "retention_days": config.retention_days,
        "database": config.database,
        "backup_date": datetime.now(UTC).isoformat(),
        "server": server_stats,
    }


async def write_metadata(
    store: ObjectStore,
    artifact: BackupArtifact,
    metadata: Dict[str, Any],
) -> None:
    """
    Write the per-run metadata object.

    Raises:
        TransferError: If the object cannot be written
    """
    body = json.dumps(metadata, indent=2, default=str).encode()
    await store.put_bytes(
        artifact.metadata_key,
        body,
        content_type="application/json",
        metadata={"backup-date": artifact.timestamp},
    )
    logger.info("backup_metadata_uploaded", key=artifact.metadata_key)


async def discard_remote_archive(store: ObjectStore, artifact: BackupArtifact) -> None:
    """Best-effort removal of an archive that cannot become a valid backup."""
    try:
        await store.delete_object(artifact.archive_key)
        logger.warning("incomplete_backup_discarded", key=artifact.archive_key)
    except TransferError as e:
        logger.error(
            "incomplete_backup_discard_failed",
            key=artifact.archive_key,
            error=str(e),
        )


# ============================================================================
# Prune and list
# ============================================================================

async def prune_remote_backups(
    store: ObjectStore,
    config: BackupConfig,
    now: datetime | None = None,
) -> PruneResult:
    """
    Delete every object under the service prefix older than the retention window.

    A failed delete is logged and skipped; it never fails the run.

    Args:
        store: Object store
        config: Backup configuration
        now: Reference time (default: current UTC time)

    Returns:
        PruneResult
    """
    cutoff = (now or datetime.now(UTC)) - timedelta(days=config.retention_days)
    objects = await store.list_objects(config.backup_prefix)

    result = PruneResult(cutoff=cutoff, examined=len(objects))

    for obj in objects:
        if obj.last_modified >= cutoff:
            continue
        try:
            await store.delete_object(obj.key)
            result.deleted_keys.append(obj.key)
            logger.info("old_backup_deleted", key=obj.key)
        except Exception as e:
            result.failed_keys.append(obj.key)
            result.errors.append(f"{obj.key}: {e}")
            logger.warning("old_backup_delete_failed", key=obj.key, error=str(e))

    logger.info(
        "backup_pruning_complete",
        examined=result.examined,
        deleted=len(result.deleted_keys),
        failed=len(result.failed_keys),
        cutoff=cutoff.isoformat(),
    )
    return result


async def list_remote_backups(store: ObjectStore, service: str) -> List[RemoteBackup]:
    """
    Enumerate archives under the service prefix, newest first.

    An archive counts as complete when its metadata object exists.
    """
    objects = await store.list_objects(backup_prefix(service))

    metadata_timestamps = {
        timestamp_from_key(obj.key)
        for obj in objects
        if is_metadata_key(service, obj.key)
    }

    backups = [
        RemoteBackup(
            timestamp=timestamp_from_key(obj.key),
            key=obj.key,
            size_bytes=obj.size,
            last_modified=obj.last_modified,
            has_metadata=timestamp_from_key(obj.key) in metadata_timestamps,
        )
        for obj in objects
        if is_archive_key(service, obj.key)
    ]

    backups.sort(key=lambda b: (b.timestamp, b.last_modified), reverse=True)
    return backups


def format_backup_listing(
    backups: Sequence[RemoteBackup],
    bucket: str,
    service: str,
    retention_days: int,
) -> str:
    """Render a listing for operators choosing a restore point."""
    lines = [
        f"Available backups in s3://{bucket}/backups/{service}/",
        f"Retention: {retention_days} days",
        "",
    ]

    if not backups:
        lines.append("  (none)")
        return "\n".join(lines)

    for backup in backups:
        uploaded = backup.last_modified.strftime("%Y-%m-%d %H:%M:%S UTC")
        marker = "" if backup.has_metadata else "  [incomplete: no metadata]"
        lines.append(
            f"  {backup.timestamp}  {backup.size_mb:10.2f} MB  {uploaded}{marker}"
        )

    return "\n".join(lines)
