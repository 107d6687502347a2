# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while a run is in progress.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
import re


class RunMode(str, Enum):
    """What a single invocation does."""

    BACKUP = "backup"  # Full dump, upload and prune
    TEST = "test"  # Prerequisites, credentials and connectivity only
    LIST = "list"  # Enumerate remote backups
    RESTORE = "restore"  # Materialize a remote backup into a database
    SETUP_AUTH = "setup_auth"  # Create users and enable authorization
    HISTORY = "history"  # Show the local run journal


# S3 storage classes accepted by PutObject
STORAGE_CLASSES = frozenset(
    {
        "STANDARD",
        "STANDARD_IA",
        "ONEZONE_IA",
        "INTELLIGENT_TIERING",
        "GLACIER",
        "GLACIER_IR",
        "DEEP_ARCHIVE",
        "REDUCED_REDUNDANCY",
    }
)

DEFAULT_REQUIRED_TOOLS = ("mongodump", "mongorestore", "mongosh")

ONE_GIB = 1024 * 1024 * 1024


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _validate_service_name(service: str) -> bool:
    """Service names become a key prefix segment: keep them path-safe."""
    return bool(service) and bool(re.match(r"^[a-z0-9][a-z0-9_-]*$", service))


def _validate_database_name(name: str) -> bool:
    """MongoDB database names cannot contain these characters."""
    if not name or len(name) > 63:
        return False
    return not any(ch in name for ch in '/\\. "$*<>:|?')


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable configuration for MongoDB backup and restore runs.

    Values that come from the credentials secret (database host, users,
    bucket) are not stored here; `bucket` only overrides the secret.
    """

    # Secrets Manager secret holding the credential bundle
    secret_id: str = "tasky/database/credentials"

    # AWS region (default: us-east-1)
    region: str = "us-east-1"

    # Service name, used as the key prefix segment: backups/<service>/
    service: str = "mongodb"

    # S3 bucket override; when unset the bucket is read from the secret
    bucket: str | None = None

    # Custom S3 endpoint for S3-compatible storage
    endpoint_url: str | None = None

    # Dump a single database instead of all of them
    database: str | None = None

    # Pass --oplog to full dumps (requires a replica set member)
    oplog: bool = False

    # Backups older than this many days are pruned
    retention_days: int = 30

    # Storage class used for uploaded archives
    storage_class: str = "STANDARD_IA"

    # Parent of the per-run work directories
    work_dir: Path = field(default_factory=lambda: Path("/tmp/mongodb-backups"))

    # Local log file
    log_file: Path = field(default_factory=lambda: Path("/var/log/mongodb-backup.log"))

    # CloudWatch Logs group for run notifications (None disables them)
    log_group: str | None = "/mongodb/backups"

    # SQLite journal of past runs
    journal_path: Path = field(default_factory=lambda: Path.home() / ".mongobak" / "journal.db")

    # Minimum free space in work_dir before a run starts
    min_free_bytes: int = ONE_GIB

    # Dump retry policy
    retry_attempts: int = 3
    retry_delay: float = 5.0

    # Seconds allowed for the connectivity ping
    health_check_timeout: float = 30.0

    # Executables that must be on PATH
    required_tools: List[str] = field(default_factory=lambda: list(DEFAULT_REQUIRED_TOOLS))

    # mongod configuration file edited by setup-auth
    mongod_conf: Path = field(default_factory=lambda: Path("/etc/mongod.conf"))

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not self.secret_id:
            errors.append("secret_id must not be empty")

        if not self.region:
            errors.append("region must not be empty")

        if not _validate_service_name(self.service):
            errors.append(f"Invalid service name: {self.service!r}")

        if self.bucket is not None and not _validate_bucket_name(self.bucket):
            errors.append(f"Invalid bucket name: {self.bucket}")

        if self.database is not None and not _validate_database_name(self.database):
            errors.append(f"Invalid database name: {self.database!r}")

        if self.retention_days < 1:
            errors.append(f"retention_days must be >= 1, got {self.retention_days}")

        if self.storage_class not in STORAGE_CLASSES:
            errors.append(f"Unknown storage_class: {self.storage_class}")

        if self.min_free_bytes < 0:
            errors.append(f"min_free_bytes must be >= 0, got {self.min_free_bytes}")

        if self.retry_attempts < 1:
            errors.append(f"retry_attempts must be >= 1, got {self.retry_attempts}")

        if self.retry_delay < 0:
            errors.append(f"retry_delay must be >= 0, got {self.retry_delay}")

        if self.health_check_timeout <= 0:
            errors.append(
                f"health_check_timeout must be > 0, got {self.health_check_timeout}"
            )

        if errors:
            from mongobak.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def backup_prefix(self) -> str:
        """Key prefix under which all of this service's objects live."""
        from mongobak.layout import backup_prefix

        return backup_prefix(self.service)

    def with_updates(self, **kwargs) -> "BackupConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return BackupConfig(**current)
