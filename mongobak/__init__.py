# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak - Scheduled MongoDB backups to S3 with retention and restore.

Dumps a MongoDB server with credentials from AWS Secrets Manager,
uploads a verified tar.gz plus a metadata object per run, prunes
expired backups and restores any of them into a named database.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from mongobak.builder import create_config
from mongobak.env import create_config_from_env

# Core functions
from mongobak.core import (
    initialize_backup_state,
    run_backup_cycle,
    verify_backup_system,
    list_backups,
    restore_from_backup,
    setup_database_auth,
    show_history,
)

__all__ = [
    # Version
    "__version__",
    # Configuration creation
    "create_config",
    "create_config_from_env",
    # Core orchestration functions
    "initialize_backup_state",
    "run_backup_cycle",
    "verify_backup_system",
    "list_backups",
    "restore_from_backup",
    "setup_database_auth",
    "show_history",
]
