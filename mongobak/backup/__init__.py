# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Backup lifecycle and restore operations.
"""

from mongobak.backup.manager import (
    BackupArtifact,
    PruneResult,
    RemoteBackup,
    check_prerequisites,
    create_run_directory,
    produce_dump,
    package_dump,
    upload_backup,
    write_metadata,
    prune_remote_backups,
    list_remote_backups,
    format_backup_listing,
)

from mongobak.backup.restore import (
    restore_backup,
    validate_archive,
    verify_checksum,
    RestoreTarget,
    RestoreResult,
)

__all__ = [
    # Manager
    "BackupArtifact",
    "PruneResult",
    "RemoteBackup",
    "check_prerequisites",
    "create_run_directory",
    "produce_dump",
    "package_dump",
    "upload_backup",
    "write_metadata",
    "prune_remote_backups",
    "list_remote_backups",
    "format_backup_listing",
    # Restore
    "restore_backup",
    "validate_archive",
    "verify_checksum",
    "RestoreTarget",
    "RestoreResult",
]
