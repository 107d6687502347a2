# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Configuration tests: validation, functional builder, environment loading.
"""

from pathlib import Path

import pytest

from mongobak.builder import (
    build_from_steps,
    create_config,
    dump_database,
    retain_backups_for,
    store_as,
    with_bucket,
    with_oplog,
    without_notifications,
)
from mongobak.config import BackupConfig
from mongobak.env import create_config_from_env
from mongobak.exceptions import ConfigurationError


# ============================================================================
# BackupConfig validation
# ============================================================================

def test_defaults_match_documented_values():
    config = BackupConfig()

    assert config.secret_id == "tasky/database/credentials"
    assert config.region == "us-east-1"
    assert config.retention_days == 30
    assert config.storage_class == "STANDARD_IA"
    assert config.work_dir == Path("/tmp/mongodb-backups")
    assert config.log_group == "/mongodb/backups"
    assert config.retry_attempts == 3
    assert config.retry_delay == 5.0
    assert config.oplog is False
    assert config.backup_prefix == "backups/mongodb/"


def test_invalid_values_are_reported_together():
    with pytest.raises(ConfigurationError) as exc_info:
        BackupConfig(retention_days=0, storage_class="COLD", bucket="Bad_Bucket")

    errors = exc_info.value.details["errors"]
    assert len(errors) == 3
    assert any("retention_days" in e for e in errors)
    assert any("storage_class" in e for e in errors)
    assert any("bucket" in e for e in errors)


@pytest.mark.parametrize("database", ["bad.name", "has space", "a/b", ""])
def test_invalid_database_names_rejected(database):
    with pytest.raises(ConfigurationError):
        BackupConfig(database=database)


def test_service_name_must_be_key_safe():
    with pytest.raises(ConfigurationError):
        BackupConfig(service="../other")


def test_config_is_frozen_and_with_updates_copies():
    config = BackupConfig()

    with pytest.raises(Exception):
        config.retention_days = 5  # type: ignore[misc]

    updated = config.with_updates(retention_days=7)
    assert updated.retention_days == 7
    assert config.retention_days == 30


def test_with_updates_revalidates():
    with pytest.raises(ConfigurationError):
        BackupConfig().with_updates(retry_attempts=0)


# ============================================================================
# Builder
# ============================================================================

def test_build_from_steps_applies_in_order():
    config = build_from_steps(
        lambda c: retain_backups_for(c, 14),
        lambda c: store_as(c, "glacier_ir"),
        lambda c: with_bucket(c, "tasky-backups"),
        lambda c: dump_database(c, "tasky"),
        lambda c: with_oplog(c),
        without_notifications,
    )

    assert config.retention_days == 14
    assert config.storage_class == "GLACIER_IR"
    assert config.bucket == "tasky-backups"
    assert config.database == "tasky"
    assert config.oplog is True
    assert config.log_group is None


def test_create_config_none_keeps_defaults(temp_dir: Path):
    config = create_config(work_dir=str(temp_dir), retention_days=None, unknown_field=1)

    assert config.work_dir == temp_dir
    assert config.retention_days == 30


# ============================================================================
# Environment
# ============================================================================

def test_env_empty_uses_defaults():
    config = create_config_from_env({})

    assert config == BackupConfig()


def test_env_overrides():
    config = create_config_from_env(
        {
            "MONGOBAK_SECRET_ID": "prod/mongo",
            "AWS_REGION": "eu-west-1",
            "S3_BUCKET": "prod-backups",
            "MONGOBAK_RETENTION_DAYS": "7",
            "MONGOBAK_WORK_DIR": "/var/tmp/mongobak",
            "MONGOBAK_STORAGE_CLASS": "standard",
            "MONGOBAK_MIN_FREE_BYTES": "0",
            "MONGOBAK_OPLOG": "true",
            "MONGOBAK_DATABASE": "tasky",
        }
    )

    assert config.secret_id == "prod/mongo"
    assert config.region == "eu-west-1"
    assert config.bucket == "prod-backups"
    assert config.retention_days == 7
    assert config.work_dir == Path("/var/tmp/mongobak")
    assert config.storage_class == "STANDARD"
    assert config.min_free_bytes == 0
    assert config.oplog is True
    assert config.database == "tasky"


def test_env_empty_log_group_disables_notifications():
    assert create_config_from_env({"MONGOBAK_LOG_GROUP": ""}).log_group is None
    assert create_config_from_env({"MONGOBAK_LOG_GROUP": "/ops/db"}).log_group == "/ops/db"


@pytest.mark.parametrize("value", ["thirty", "0", "-3"])
def test_env_invalid_retention_days(value):
    with pytest.raises(ConfigurationError) as exc_info:
        create_config_from_env({"MONGOBAK_RETENTION_DAYS": value})

    assert "MONGOBAK_RETENTION_DAYS" in exc_info.value.message


def test_env_invalid_min_free_bytes():
    with pytest.raises(ConfigurationError):
        create_config_from_env({"MONGOBAK_MIN_FREE_BYTES": "lots"})
