# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for mongobak tests.

Provides in-memory stand-ins for the secret store, object store and the
MongoDB tools, plus test configuration helpers.
"""

import gzip
import json
import tempfile
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, Generator, List

import pytest
import pytest_asyncio

from mongobak.exceptions import DumpError, TransferError
from mongobak.process import CommandResult
from mongobak.storage import RemoteObject


SECRET_ID = "tasky/database/credentials"

SECRET = {
    "MONGODB_ADMIN_USERNAME": "admin",
    "MONGODB_ADMIN_PASSWORD": "s3cr3t-admin",
    "MONGODB_USERNAME": "tasky_app",
    "MONGODB_PASSWORD": "s3cr3t-app",
    "MONGODB_DATABASE": "tasky",
    "S3_BUCKET": "tasky-backups",
}


class FakeSecretStore:
    """SecretStore holding secrets in a dict."""

    def __init__(self, secrets: Dict[str, Any]):
        self.secrets = secrets
        self.calls: List[str] = []

    async def get_secret_string(self, secret_id: str) -> str:
        self.calls.append(secret_id)
        if secret_id not in self.secrets:
            raise RuntimeError(f"ResourceNotFoundException: {secret_id}")
        value = self.secrets[secret_id]
        return value if isinstance(value, str) else json.dumps(value)


class InMemoryObjectStore:
    """ObjectStore keeping objects in a dict."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.info: Dict[str, RemoteObject] = {}
        self.fail_put_keys: set = set()
        self.fail_delete_keys: set = set()
        self.deleted: List[str] = []

    def add(self, key: str, body: bytes, last_modified: datetime | None = None) -> None:
        self.objects[key] = body
        self.info[key] = RemoteObject(
            key=key,
            size=len(body),
            last_modified=last_modified or datetime.now(UTC),
            metadata={},
        )

    async def upload_file(self, path, key, *, metadata=None, storage_class=None,
                          content_type="application/octet-stream") -> None:
        if key in self.fail_put_keys:
            raise TransferError(f"Failed to upload {key}")
        self.add(key, Path(path).read_bytes())
        self.info[key] = RemoteObject(
            key=key,
            size=self.info[key].size,
            last_modified=self.info[key].last_modified,
            metadata={**(metadata or {}), "storage-class": storage_class or ""},
        )

    async def put_bytes(self, key, body, *, content_type="application/octet-stream",
                        metadata=None) -> None:
        if key in self.fail_put_keys:
            raise TransferError(f"Failed to write {key}")
        self.add(key, body)

    async def head(self, key):
        return self.info.get(key)

    async def list_objects(self, prefix):
        return [info for key, info in sorted(self.info.items()) if key.startswith(prefix)]

    async def download_file(self, key, dest) -> int:
        if key not in self.objects:
            raise TransferError(f"Failed to download {key}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.objects[key])
        return len(self.objects[key])

    async def get_bytes(self, key) -> bytes:
        if key not in self.objects:
            raise TransferError(f"Failed to download {key}")
        return self.objects[key]

    async def delete_object(self, key) -> None:
        if key in self.fail_delete_keys:
            raise TransferError(f"Failed to delete {key}")
        self.objects.pop(key, None)
        self.info.pop(key, None)
        self.deleted.append(key)


class FakeDumper:
    """Dumper writing gzip'd .bson files shaped like mongodump output."""

    def __init__(self, databases: Dict[str, Dict[str, int]] | None = None, fail_times: int = 0):
        self.databases = databases or {"tasky": {"tasks": 3, "users": 2}, "admin": {"system.users": 2}}
        self.fail_times = fail_times
        self.calls: List[Path] = []

    async def dump(self, credentials, out_dir: Path, database=None) -> None:
        self.calls.append(out_dir)
        if len(self.calls) <= self.fail_times:
            (out_dir / "partial.tmp").write_bytes(b"partial")
            raise DumpError("mongodump exited with status 1")

        for db_name, collections in self.databases.items():
            if database and db_name != database:
                continue
            db_dir = out_dir / db_name
            db_dir.mkdir(parents=True, exist_ok=True)
            for collection, count in collections.items():
                docs = json.dumps([{"_id": i} for i in range(count)]).encode()
                (db_dir / f"{collection}.bson.gz").write_bytes(gzip.compress(docs))
                (db_dir / f"{collection}.metadata.json.gz").write_bytes(gzip.compress(b"{}"))


class FakeRestorer:
    """Restorer loading FakeDumper output into a dict of databases."""

    def __init__(self):
        self.databases: Dict[str, Dict[str, int]] = {}
        self.calls: List[Dict[str, Any]] = []

    async def restore(self, credentials, dump_dir: Path, source_database, target_database,
                      drop=False) -> None:
        self.calls.append(
            {
                "dump_dir": dump_dir,
                "source": source_database,
                "target": target_database,
                "drop": drop,
            }
        )
        collections = self.databases.setdefault(target_database, {})
        if drop:
            collections.clear()
        for path in sorted((dump_dir / source_database).glob("*.bson.gz")):
            docs = json.loads(gzip.decompress(path.read_bytes()))
            name = path.name[: -len(".bson.gz")]
            collections[name] = collections.get(name, 0) + len(docs)


class FakeShell:
    """DatabaseShell recording calls instead of running mongosh."""

    def __init__(self, ping_error: Exception | None = None, stats: Dict[str, Any] | None = None):
        self.ping_error = ping_error
        self.stats = stats if stats is not None else {"serverVersion": "7.0.5", "totalSize": 4096}
        self.pings = 0
        self.scripts: List[Dict[str, Any]] = []
        self.evaluate_stdout = "created\n"

    async def ping(self, credentials, timeout) -> None:
        self.pings += 1
        if self.ping_error is not None:
            raise self.ping_error

    async def server_stats(self, credentials) -> Dict[str, Any]:
        return dict(self.stats)

    async def evaluate(self, script, credentials=None, host="localhost", port=27017, env=None):
        self.scripts.append(
            {"script": script, "credentials": credentials, "host": host, "env": env or {}}
        )
        return CommandResult(
            argv=("mongosh",),
            returncode=0,
            stdout=self.evaluate_stdout,
            stderr="",
        )


class FakeNotifier:
    def __init__(self):
        self.events: List[tuple] = []

    async def send(self, status: str, message: str) -> bool:
        self.events.append((status, message))
        return True


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path):
    """Create a test configuration with no external prerequisites."""
    from mongobak.builder import create_config

    return create_config(
        secret_id=SECRET_ID,
        work_dir=temp_dir / "work",
        retention_days=30,
        journal_path=temp_dir / "journal.db",
        log_file=temp_dir / "mongodb-backup.log",
        log_group=None,
        required_tools=[],
        min_free_bytes=0,
        retry_delay=0.0,
        mongod_conf=temp_dir / "mongod.conf",
    )


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest_asyncio.fixture
async def test_state(test_config, object_store: InMemoryObjectStore):
    """Create a BackupState wired to in-memory fakes."""
    from mongobak.core import BackupState
    from mongobak.journal import init_journal_db

    await init_journal_db(test_config.journal_path)

    buckets: List[str] = []

    def factory(bucket: str) -> InMemoryObjectStore:
        buckets.append(bucket)
        return object_store

    state = BackupState(
        session=None,
        secret_store=FakeSecretStore({SECRET_ID: dict(SECRET)}),
        object_store_factory=factory,
        dumper=FakeDumper(),
        restorer=FakeRestorer(),
        shell=FakeShell(),
        notifier=FakeNotifier(),
        identity_check=None,
        journal_db_path=test_config.journal_path,
        sleep=no_sleep,
    )
    yield state


@pytest.fixture
def credentials():
    from mongobak.credentials import parse_credentials

    return parse_credentials(json.dumps(SECRET), SECRET_ID)
