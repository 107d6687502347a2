# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Restore Manager - Materialize a remote backup into a database.

A restore downloads one archive by timestamp, checks it against the
checksum recorded at upload and that it is a well-formed dump of the
requested source database, and loads it into the target database,
optionally dropping existing collections first.
"""

import shutil
import tarfile
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path

import structlog

from mongobak.backup.manager import file_sha256
from mongobak.credentials import CredentialBundle
from mongobak.exceptions import RestoreError, TransferError
from mongobak.layout import archive_key, is_valid_timestamp, metadata_key
from mongobak.mongo import Restorer
from mongobak.storage import ObjectStore

logger = structlog.get_logger()

DUMP_SUFFIXES = (".bson", ".bson.gz")


@dataclass(frozen=True)
class RestoreTarget:
    """Which backup to restore and where to."""

    timestamp: str
    target_database: str
    source_database: str | None = None  # defaults to the credentials' database
    drop: bool = False


@dataclass
class RestoreResult:
    """Result of a restore."""

    timestamp: str
    archive_key: str
    source_database: str
    target_database: str
    size_bytes: int
    had_metadata: bool
    dropped: bool
    duration_seconds: float = 0.0


def validate_archive(archive_path: Path, source_database: str) -> str:
    """
    Check that an archive is a safe, non-empty dump of source_database.

    Args:
        archive_path: Downloaded .tar.gz
        source_database: Database expected inside the dump

    Returns:
        Name of the archive's top-level directory

    Raises:
        RestoreError: If the archive is unreadable, unsafe or lacks the database
    """
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            members = tar.getmembers()
    except (tarfile.TarError, OSError, EOFError) as e:
        raise RestoreError(
            f"Backup archive is not a readable gzip tarball: {e}",
            details={"archive": str(archive_path)},
        )

    if not members:
        raise RestoreError(
            "Backup archive is empty",
            details={"archive": str(archive_path)},
        )

    # Security: reject absolute paths, traversal and links
    for member in members:
        parts = Path(member.name).parts
        if member.name.startswith("/") or ".." in parts:
            raise RestoreError(
                f"Unsafe path in archive: {member.name}",
                details={"archive": str(archive_path)},
            )
        if member.issym() or member.islnk():
            raise RestoreError(
                f"Link in archive: {member.name}",
                details={"archive": str(archive_path)},
            )

    top_levels = {Path(m.name).parts[0] for m in members if Path(m.name).parts}
    if len(top_levels) != 1:
        raise RestoreError(
            "Backup archive must contain exactly one top-level directory",
            details={"archive": str(archive_path), "top_levels": sorted(top_levels)},
        )
    top = top_levels.pop()

    has_collections = any(
        m.isfile()
        and Path(m.name).parts[:2] == (top, source_database)
        and m.name.endswith(DUMP_SUFFIXES)
        for m in members
    )
    if not has_collections:
        raise RestoreError(
            f"Backup does not contain database {source_database!r}",
            details={"archive": str(archive_path)},
        )

    return top


def extract_archive(archive_path: Path, extract_to: Path, top: str) -> Path:
    """
    Extract a validated archive.

    Returns:
        Path to the dump directory (the archive's top-level directory)
    """
    try:
        extract_to.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive_path, "r:gz") as tar:
            tar.extractall(extract_to, filter="data")
    except (tarfile.TarError, OSError) as e:
        raise RestoreError(
            f"Failed to extract backup archive: {e}",
            details={"archive": str(archive_path)},
        )
    return extract_to / top


def verify_checksum(path: Path, expected: str | None) -> None:
    """
    Compare a downloaded archive with the sha256 recorded at upload.

    Archives uploaded without a recorded checksum are accepted with a warning.

    Raises:
        RestoreError: If the checksums differ
    """
    if not expected:
        logger.warning("restore_checksum_unavailable", archive=str(path))
        return

    actual = file_sha256(path)
    if actual != expected:
        raise RestoreError(
            "Backup archive checksum mismatch",
            details={"expected": expected, "actual": actual},
        )
    logger.debug("restore_checksum_verified", sha256=actual)


async def restore_backup(
    store: ObjectStore,
    restorer: Restorer,
    credentials: CredentialBundle,
    service: str,
    target: RestoreTarget,
    work_dir: Path,
) -> RestoreResult:
    """
    Restore one remote backup into the target database.

    The download and extraction directory is always removed afterwards.

    Args:
        store: Object store holding the backup
        restorer: Tool that loads the dump
        credentials: Database credentials
        service: Service name of the backup prefix
        target: What to restore and where
        work_dir: Parent directory for the temporary restore directory

    Returns:
        RestoreResult

    Raises:
        RestoreError: If the backup is missing, corrupted, malformed or fails to load
    """
    start_time = datetime.now(UTC)

    if not is_valid_timestamp(target.timestamp):
        raise RestoreError(
            f"Invalid backup timestamp: {target.timestamp!r} (expected YYYYMMDD_HHMMSS)",
        )

    source_database = target.source_database or credentials.database
    key = archive_key(service, target.timestamp)

    remote = await store.head(key)
    if remote is None:
        raise RestoreError(
            f"Backup {target.timestamp} not found",
            details={"key": key},
        )

    had_metadata = await store.head(metadata_key(service, target.timestamp)) is not None
    if not had_metadata:
        logger.warning(
            "restore_from_incomplete_backup",
            timestamp=target.timestamp,
            reason="metadata object missing",
        )

    restore_dir = work_dir / f"restore_{target.timestamp}_{int(start_time.timestamp())}"
    if restore_dir.exists():
        shutil.rmtree(restore_dir)

    logger.info(
        "restore_started",
        timestamp=target.timestamp,
        source_database=source_database,
        target_database=target.target_database,
        drop=target.drop,
    )

    try:
        archive_path = restore_dir / f"{target.timestamp}.tar.gz"
        try:
            size = await store.download_file(key, archive_path)
        except TransferError as e:
            raise RestoreError(
                f"Failed to download backup: {e.message}",
                details={"key": key},
            )

        verify_checksum(archive_path, (remote.metadata or {}).get("sha256"))
        top = validate_archive(archive_path, source_database)
        dump_dir = extract_archive(archive_path, restore_dir / "extracted", top)

        await restorer.restore(
            credentials,
            dump_dir,
            source_database,
            target.target_database,
            drop=target.drop,
        )
    finally:
        shutil.rmtree(restore_dir, ignore_errors=True)

    result = RestoreResult(
        timestamp=target.timestamp,
        archive_key=key,
        source_database=source_database,
        target_database=target.target_database,
        size_bytes=size,
        had_metadata=had_metadata,
        dropped=target.drop,
        duration_seconds=(datetime.now(UTC) - start_time).total_seconds(),
    )

    logger.info(
        "restore_completed",
        timestamp=target.timestamp,
        target_database=target.target_database,
        size=size,
        duration=result.duration_seconds,
    )
    return result
