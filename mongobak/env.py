# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

The backup job runs from cron on the database host, so everything it needs
beyond the credentials secret comes from a handful of environment
variables. Unset variables keep the defaults of create_config().
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from mongobak.builder import create_config
from mongobak.config import BackupConfig
from mongobak.errors import (
    explain_invalid_integer_env,
    explain_invalid_retention_days_env,
)
from mongobak.exceptions import ConfigurationError


def _parse_retention_days(value: str | None) -> int | None:
    if not value:
        return None
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_retention_days_env(value)) from exc
    if days < 1:
        raise ConfigurationError(explain_invalid_retention_days_env(value))
    return days


def _parse_non_negative_int(name: str, value: str | None) -> int | None:
    if not value:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_integer_env(name, value)) from exc
    if number < 0:
        raise ConfigurationError(explain_invalid_integer_env(name, value))
    return number


def _parse_log_group(value: str | None) -> str | None:
    # An explicitly empty value disables CloudWatch notifications
    if value is None:
        return "/mongodb/backups"
    return value.strip() or None


def create_config_from_env(environ: Mapping[str, str] | None = None) -> BackupConfig:
    """
    Create a BackupConfig from environment variables.

    Optional environment variables:
        - MONGOBAK_SECRET_ID: Secrets Manager secret (default: tasky/database/credentials)
        - AWS_REGION: AWS region (default: us-east-1)
        - MONGOBAK_SERVICE: Key prefix segment (default: mongodb)
        - S3_BUCKET: Bucket override (default: S3_BUCKET field of the secret)
        - S3_ENDPOINT_URL: S3-compatible endpoint
        - MONGOBAK_DATABASE: Dump a single database (default: all)
        - MONGOBAK_OPLOG: "true" to add --oplog to full dumps
        - MONGOBAK_RETENTION_DAYS: Positive integer (default: 30)
        - MONGOBAK_STORAGE_CLASS: S3 storage class (default: STANDARD_IA)
        - MONGOBAK_WORK_DIR: Local work directory (default: /tmp/mongodb-backups)
        - MONGOBAK_LOG_FILE: Local log file (default: /var/log/mongodb-backup.log)
        - MONGOBAK_LOG_GROUP: CloudWatch Logs group, empty to disable
        - MONGOBAK_JOURNAL_PATH: SQLite run journal
        - MONGOBAK_MIN_FREE_BYTES: Free-space precondition (default: 1 GiB)
        - MONGOBAK_MONGOD_CONF: mongod.conf edited by setup-auth
    """

    env = os.environ if environ is None else environ

    kwargs: dict = {}

    min_free = _parse_non_negative_int(
        "MONGOBAK_MIN_FREE_BYTES", env.get("MONGOBAK_MIN_FREE_BYTES")
    )
    if min_free is not None:
        kwargs["min_free_bytes"] = min_free

    if env.get("S3_ENDPOINT_URL"):
        kwargs["endpoint_url"] = env["S3_ENDPOINT_URL"]

    if env.get("MONGOBAK_STORAGE_CLASS"):
        kwargs["storage_class"] = env["MONGOBAK_STORAGE_CLASS"].upper()

    if env.get("MONGOBAK_OPLOG", "").strip().lower() in ("1", "true", "yes"):
        kwargs["oplog"] = True

    if env.get("MONGOBAK_LOG_FILE"):
        kwargs["log_file"] = Path(env["MONGOBAK_LOG_FILE"])

    if env.get("MONGOBAK_JOURNAL_PATH"):
        kwargs["journal_path"] = Path(env["MONGOBAK_JOURNAL_PATH"])

    if env.get("MONGOBAK_MONGOD_CONF"):
        kwargs["mongod_conf"] = Path(env["MONGOBAK_MONGOD_CONF"])

    kwargs["log_group"] = _parse_log_group(env.get("MONGOBAK_LOG_GROUP"))

    return create_config(
        secret_id=env.get("MONGOBAK_SECRET_ID"),
        region=env.get("AWS_REGION"),
        service=env.get("MONGOBAK_SERVICE"),
        bucket=env.get("S3_BUCKET"),
        database=env.get("MONGOBAK_DATABASE"),
        retention_days=_parse_retention_days(env.get("MONGOBAK_RETENTION_DAYS")),
        work_dir=env.get("MONGOBAK_WORK_DIR"),
        **kwargs,
    )
