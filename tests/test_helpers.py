# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for the small building blocks: key layout, retry, process
redaction and MongoDB tool command lines.
"""

import json
from datetime import datetime, UTC
from pathlib import Path

import pytest

from conftest import SECRET, SECRET_ID
from mongobak.credentials import parse_credentials
from mongobak.exceptions import DumpError, TransferError
from mongobak.layout import (
    archive_key,
    is_archive_key,
    is_metadata_key,
    is_valid_timestamp,
    metadata_key,
    new_timestamp,
    parse_timestamp,
    timestamp_from_key,
)
from mongobak.mongo import MongoDumper, MongoRestorer, dump_is_empty
from mongobak.process import CommandResult, redact_argv
from mongobak.retry import calculate_delay, retry_async


# ============================================================================
# Layout
# ============================================================================

def test_timestamp_format_is_utc_and_sortable():
    ts = new_timestamp(datetime(2026, 3, 4, 5, 6, 7, tzinfo=UTC))

    assert ts == "20260304_050607"
    assert is_valid_timestamp(ts)
    assert parse_timestamp(ts) == datetime(2026, 3, 4, 5, 6, 7, tzinfo=UTC)
    assert new_timestamp(datetime(2026, 1, 1, tzinfo=UTC)) < ts


@pytest.mark.parametrize("value", ["", "2026-03-04", "20261304_000000", "20260304_0506"])
def test_invalid_timestamps(value):
    assert not is_valid_timestamp(value)


def test_keys_share_timestamp():
    ts = "20260304_050607"

    assert archive_key("mongodb", ts) == "backups/mongodb/20260304_050607.tar.gz"
    assert metadata_key("mongodb", ts) == "backups/mongodb/metadata/20260304_050607.json"
    assert timestamp_from_key(archive_key("mongodb", ts)) == ts
    assert timestamp_from_key(metadata_key("mongodb", ts)) == ts


def test_key_classification():
    assert is_archive_key("mongodb", "backups/mongodb/20260304_050607.tar.gz")
    assert not is_archive_key("mongodb", "backups/mongodb/metadata/20260304_050607.json")
    assert not is_archive_key("mongodb", "backups/mongodb/nested/20260304_050607.tar.gz")
    assert not is_archive_key("mongodb", "backups/other/20260304_050607.tar.gz")
    assert is_metadata_key("mongodb", "backups/mongodb/metadata/20260304_050607.json")


# ============================================================================
# Retry
# ============================================================================

def test_delay_is_fixed_by_default():
    assert [calculate_delay(a, 5.0) for a in (1, 2, 3)] == [5.0, 5.0, 5.0]
    assert [calculate_delay(a, 1.0, multiplier=2.0) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert calculate_delay(20, 1.0, multiplier=2.0, max_delay=30.0) == 30.0


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failures():
    attempts = []
    sleeps = []

    async def operation():
        attempts.append(1)
        if len(attempts) < 3:
            raise DumpError("transient")
        return "ok"

    async def sleep(seconds):
        sleeps.append(seconds)

    result = await retry_async(operation, attempts=3, delay=5.0, retry_on=(DumpError,), sleep=sleep)

    assert result == "ok"
    assert len(attempts) == 3
    assert sleeps == [5.0, 5.0]


@pytest.mark.asyncio
async def test_retry_gives_up_and_reraises():
    async def operation():
        raise DumpError("always")

    async def sleep(seconds):
        return None

    with pytest.raises(DumpError):
        await retry_async(operation, attempts=2, delay=0, retry_on=(DumpError,), sleep=sleep)


@pytest.mark.asyncio
async def test_retry_does_not_retry_other_errors():
    calls = []

    async def operation():
        calls.append(1)
        raise TransferError("not retryable")

    with pytest.raises(TransferError):
        await retry_async(operation, attempts=3, delay=0, retry_on=(DumpError,))

    assert len(calls) == 1


# ============================================================================
# Process and MongoDB tools
# ============================================================================

def test_redact_argv_hides_passwords():
    argv = ["mongodump", "--username", "admin", "--password", "hunter2", "-p", "x", "--password=y"]

    assert redact_argv(argv) == [
        "mongodump", "--username", "admin", "--password", "***", "-p", "***", "--password=***",
    ]


def test_command_result_tail_prefers_stderr():
    result = CommandResult(argv=("x",), returncode=1, stdout="out", stderr="boom")

    assert not result.ok
    assert result.tail() == "boom"


def test_dumper_argv_single_database_has_no_oplog(temp_dir: Path):
    credentials = parse_credentials(json.dumps(SECRET), SECRET_ID)

    argv = MongoDumper(oplog=True).build_argv(credentials, temp_dir, "tasky")

    assert argv[0] == "mongodump"
    assert "--gzip" in argv
    assert argv[argv.index("--db") + 1] == "tasky"
    assert "--oplog" not in argv


def test_dumper_argv_full_dump_with_oplog(temp_dir: Path):
    credentials = parse_credentials(json.dumps(SECRET), SECRET_ID)

    assert "--oplog" in MongoDumper(oplog=True).build_argv(credentials, temp_dir)
    assert "--oplog" not in MongoDumper().build_argv(credentials, temp_dir)


def test_restorer_argv_remaps_namespace(temp_dir: Path):
    credentials = parse_credentials(json.dumps(SECRET), SECRET_ID)

    argv = MongoRestorer().build_argv(credentials, temp_dir, "tasky", "tasky_restored", drop=True)

    assert argv[argv.index("--nsInclude") + 1] == "tasky.*"
    assert argv[argv.index("--nsFrom") + 1] == "tasky.*"
    assert argv[argv.index("--nsTo") + 1] == "tasky_restored.*"
    assert "--drop" in argv
    assert "s3cr3t-admin" not in redact_argv(argv)


def test_dump_is_empty(temp_dir: Path):
    assert dump_is_empty(temp_dir / "missing")
    (temp_dir / "tasky").mkdir()
    assert dump_is_empty(temp_dir)
    (temp_dir / "tasky" / "tasks.bson.gz").write_bytes(b"x")
    assert not dump_is_empty(temp_dir)
