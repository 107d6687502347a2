# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote key layout and timestamp identifiers.

    backups/<service>/<timestamp>.tar.gz          archive
    backups/<service>/metadata/<timestamp>.json   per-run metadata

Timestamps are UTC, formatted YYYYmmdd_HHMMSS, so lexical order is
chronological order.
"""

import re
from datetime import datetime, UTC

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
ARCHIVE_SUFFIX = ".tar.gz"
METADATA_SUFFIX = ".json"

_TIMESTAMP_RE = re.compile(r"^\d{8}_\d{6}$")
_KEY_TIMESTAMP_RE = re.compile(r"(\d{8}_\d{6})(?:\.tar\.gz|\.json)$")


def new_timestamp(now: datetime | None = None) -> str:
    """Timestamp identifier for a run starting at `now` (default: current UTC time)."""
    return (now or datetime.now(UTC)).astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def is_valid_timestamp(value: str) -> bool:
    if not _TIMESTAMP_RE.match(value or ""):
        return False
    try:
        datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        return False
    return True


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp identifier into an aware UTC datetime."""
    if not _TIMESTAMP_RE.match(value or ""):
        raise ValueError(f"Not a backup timestamp: {value!r}")
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=UTC)


def backup_prefix(service: str) -> str:
    return f"backups/{service}/"


def metadata_prefix(service: str) -> str:
    return f"backups/{service}/metadata/"


def archive_key(service: str, timestamp: str) -> str:
    return f"{backup_prefix(service)}{timestamp}{ARCHIVE_SUFFIX}"


def metadata_key(service: str, timestamp: str) -> str:
    return f"{metadata_prefix(service)}{timestamp}{METADATA_SUFFIX}"


def timestamp_from_key(key: str) -> str | None:
    """Extract the timestamp identifier from an archive or metadata key."""
    match = _KEY_TIMESTAMP_RE.search(key)
    return match.group(1) if match else None


def is_archive_key(service: str, key: str) -> bool:
    """True for archive objects directly under the service prefix."""
    prefix = backup_prefix(service)
    if not key.startswith(prefix):
        return False
    name = key[len(prefix):]
    return "/" not in name and name.endswith(ARCHIVE_SUFFIX) and timestamp_from_key(key) is not None


def is_metadata_key(service: str, key: str) -> bool:
    prefix = metadata_prefix(service)
    return key.startswith(prefix) and key.endswith(METADATA_SUFFIX)
