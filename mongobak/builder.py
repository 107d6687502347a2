# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Builder - Functional builder pattern for configuration.

This module provides pure functions for building BackupConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from mongobak.config import BackupConfig, DEFAULT_REQUIRED_TOOLS, ONE_GIB


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "secret_id": "tasky/database/credentials",
        "region": "us-east-1",
        "service": "mongodb",
        "bucket": None,
        "endpoint_url": None,
        "database": None,
        "oplog": False,
        "retention_days": 30,
        "storage_class": "STANDARD_IA",
        "work_dir": Path("/tmp/mongodb-backups"),
        "log_file": Path("/var/log/mongodb-backup.log"),
        "log_group": "/mongodb/backups",
        "journal_path": Path.home() / ".mongobak" / "journal.db",
        "min_free_bytes": ONE_GIB,
        "retry_attempts": 3,
        "retry_delay": 5.0,
        "health_check_timeout": 30.0,
        "required_tools": list(DEFAULT_REQUIRED_TOOLS),
        "mongod_conf": Path("/etc/mongod.conf"),
    }


def with_secret(config: ConfigDict, secret_id: str) -> ConfigDict:
    """
    Set the Secrets Manager secret that holds the credential bundle.

    Args:
        config: Current configuration dictionary
        secret_id: Secret name or ARN

    Returns:
        New configuration dictionary with secret_id set
    """
    return {**config, "secret_id": secret_id}


def with_region(config: ConfigDict, region: str) -> ConfigDict:
    """
    Set the AWS region.

    Args:
        config: Current configuration dictionary
        region: AWS region (e.g., 'us-east-1', 'eu-west-1')

    Returns:
        New configuration dictionary with region set
    """
    return {**config, "region": region}


def with_bucket(config: ConfigDict, bucket_name: str) -> ConfigDict:
    """
    Override the S3 bucket named in the secret.
    """
    return {**config, "bucket": bucket_name}


def with_endpoint(config: ConfigDict, endpoint_url: str) -> ConfigDict:
    """
    Use an S3-compatible endpoint instead of AWS S3.
    """
    return {**config, "endpoint_url": endpoint_url}


def for_service(config: ConfigDict, service: str) -> ConfigDict:
    """
    Set the service name used in backups/<service>/ keys.
    """
    return {**config, "service": service}


def dump_database(config: ConfigDict, database: str) -> ConfigDict:
    """
    Restrict dumps to a single database instead of the whole server.
    """
    return {**config, "database": database}


def with_oplog(config: ConfigDict, enabled: bool = True) -> ConfigDict:
    return {**config, "oplog": enabled}


def retain_backups_for(config: ConfigDict, days: int) -> ConfigDict:
    """
    Set the retention window in days.

    Args:
        config: Current configuration dictionary
        days: Backups older than this are pruned

    Returns:
        New configuration dictionary with retention_days set
    """
    return {**config, "retention_days": days}


def store_as(config: ConfigDict, storage_class: str) -> ConfigDict:
    """
    Set the S3 storage class for uploaded archives.
    """
    return {**config, "storage_class": storage_class.upper()}


def use_work_dir(config: ConfigDict, path: Path) -> ConfigDict:
    """
    Set the local directory that holds per-run dump directories.
    """
    return {**config, "work_dir": Path(path)}


def log_to(config: ConfigDict, log_file: Path) -> ConfigDict:
    return {**config, "log_file": Path(log_file)}


def notify_log_group(config: ConfigDict, log_group: str) -> ConfigDict:
    """
    Send run notifications to the given CloudWatch Logs group.
    """
    return {**config, "log_group": log_group}


def without_notifications(config: ConfigDict) -> ConfigDict:
    return {**config, "log_group": None}


def journal_at(config: ConfigDict, path: Path) -> ConfigDict:
    return {**config, "journal_path": Path(path)}


def require_free_space(config: ConfigDict, min_free_bytes: int) -> ConfigDict:
    """
    Set the free-space precondition checked before a run.
    """
    return {**config, "min_free_bytes": min_free_bytes}


def retry_dump(config: ConfigDict, attempts: int, delay: float) -> ConfigDict:
    """
    Set the dump retry policy.

    Args:
        config: Current configuration dictionary
        attempts: Total attempts including the first
        delay: Seconds to wait between attempts

    Returns:
        New configuration dictionary with the retry policy set
    """
    return {**config, "retry_attempts": attempts, "retry_delay": delay}


def build_config(config_dict: ConfigDict) -> BackupConfig:
    """
    Build an immutable BackupConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary

    Returns:
        Validated, immutable BackupConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    return BackupConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = pipe(
            lambda c: with_secret(c, "prod/mongo"),
            lambda c: retain_backups_for(c, 14),
        )(create_empty_config())
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def build_from_steps(*steps: BuilderFunc) -> BackupConfig:
    """
    Build config by applying a sequence of builder functions.

    This is a convenience function that combines pipe() and build_config().
    """
    return build_config(pipe(*steps)(create_empty_config()))


def create_config(
    *,
    secret_id: str | None = None,
    region: str | None = None,
    service: str | None = None,
    bucket: str | None = None,
    database: str | None = None,
    retention_days: int | None = None,
    work_dir: str | Path | None = None,
    **kwargs: Any,
) -> BackupConfig:
    """
    Create a BackupConfig from simple parameters.

    This is the recommended user-facing API for creating configurations.
    Parameters left as None keep their defaults.

    Args:
        secret_id: Secrets Manager secret with the credential bundle
        region: AWS region (default: "us-east-1")
        service: Key prefix segment (default: "mongodb")
        bucket: Bucket override (default: taken from the secret)
        database: Dump only this database (default: all databases)
        retention_days: Prune backups older than this (default: 30)
        work_dir: Local work directory (default: /tmp/mongodb-backups)
        **kwargs: Any other BackupConfig field

    Returns:
        Validated, immutable BackupConfig instance

    Example:
        config = create_config(
            secret_id="prod/mongo/credentials",
            retention_days=14,
            work_dir="/var/tmp/mongobak",
        )
    """
    config_dict = create_empty_config()

    if secret_id:
        config_dict = with_secret(config_dict, secret_id)

    if region:
        config_dict = with_region(config_dict, region)

    if service:
        config_dict = for_service(config_dict, service)

    if bucket:
        config_dict = with_bucket(config_dict, bucket)

    if database:
        config_dict = dump_database(config_dict, database)

    if retention_days is not None:
        config_dict = retain_backups_for(config_dict, retention_days)

    if work_dir:
        config_dict = use_work_dir(config_dict, Path(work_dir))

    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    return build_config(config_dict)
