# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Mongo - Wrappers around the MongoDB command-line tools.

Each external tool sits behind a small protocol (DatabaseShell, Dumper,
Restorer) so the workflow can be exercised without a database server.
The concrete classes shell out to mongosh, mongodump and mongorestore.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Protocol

import structlog

from mongobak.credentials import CredentialBundle
from mongobak.errors import explain_missing_tool
from mongobak.exceptions import (
    ConnectivityError,
    DumpError,
    PrerequisiteError,
    RestoreError,
)
from mongobak.process import CommandResult, run_command

logger = structlog.get_logger()

PING_SCRIPT = "db.adminCommand('ping').ok"

STATS_SCRIPT = """
print(JSON.stringify({
    serverVersion: db.version(),
    databases: db.adminCommand('listDatabases').databases.map(d => ({
        name: d.name,
        sizeOnDisk: d.sizeOnDisk,
        empty: d.empty
    })),
    totalSize: db.adminCommand('listDatabases').totalSize,
    hostname: db.adminCommand('hello').me || db.getMongo().host
}))
"""


class DatabaseShell(Protocol):
    """Health checks and ad-hoc scripts against the server."""

    async def ping(self, credentials: CredentialBundle, timeout: float) -> None: ...

    async def server_stats(self, credentials: CredentialBundle) -> Dict[str, Any]: ...

    async def evaluate(
        self,
        script: str,
        credentials: CredentialBundle | None = None,
        host: str = "localhost",
        port: int = 27017,
        env: Dict[str, str] | None = None,
    ) -> CommandResult: ...


class Dumper(Protocol):
    """Produces a dump directory."""

    async def dump(
        self,
        credentials: CredentialBundle,
        out_dir: Path,
        database: str | None = None,
    ) -> None: ...


class Restorer(Protocol):
    """Loads a dump directory into a database."""

    async def restore(
        self,
        credentials: CredentialBundle,
        dump_dir: Path,
        source_database: str,
        target_database: str,
        drop: bool = False,
    ) -> None: ...


def auth_args(credentials: CredentialBundle) -> List[str]:
    """Connection and authentication flags shared by all MongoDB tools."""
    return [
        "--host",
        credentials.host,
        "--port",
        str(credentials.port),
        "--username",
        credentials.admin_username,
        "--password",
        credentials.admin_password,
        "--authenticationDatabase",
        credentials.auth_source,
    ]


def dump_is_empty(out_dir: Path) -> bool:
    """True when the dump directory is missing or holds no files at all."""
    if not out_dir.is_dir():
        return True
    return not any(p.is_file() for p in out_dir.rglob("*"))


class MongoShell:
    """DatabaseShell implemented with mongosh."""

    def __init__(self, executable: str = "mongosh"):
        self.executable = executable

    async def _run(
        self,
        argv: List[str],
        timeout: float | None = None,
        env: Dict[str, str] | None = None,
    ) -> CommandResult:
        try:
            return await run_command(argv, timeout=timeout, env=env)
        except FileNotFoundError:
            raise PrerequisiteError(explain_missing_tool(self.executable))

    async def ping(self, credentials: CredentialBundle, timeout: float) -> None:
        argv = [self.executable, "--quiet", *auth_args(credentials), "--eval", PING_SCRIPT]
        try:
            result = await self._run(argv, timeout=timeout)
        except asyncio.TimeoutError:
            raise ConnectivityError(
                f"MongoDB health check timed out after {timeout}s",
                details={"address": credentials.address},
            )

        if not result.ok:
            raise ConnectivityError(
                "Cannot connect to MongoDB with provided credentials",
                details={"address": credentials.address, "output": result.tail()},
            )

    async def server_stats(self, credentials: CredentialBundle) -> Dict[str, Any]:
        argv = [self.executable, "--quiet", *auth_args(credentials), "--eval", STATS_SCRIPT]
        result = await self._run(argv)
        if not result.ok:
            logger.warning("server_stats_failed", output=result.tail())
            return {}

        lines = [line for line in result.stdout.splitlines() if line.strip()]
        try:
            return json.loads(lines[-1])
        except (IndexError, ValueError):
            logger.warning("server_stats_unparseable", output=result.stdout[-200:])
            return {}

    async def evaluate(
        self,
        script: str,
        credentials: CredentialBundle | None = None,
        host: str = "localhost",
        port: int = 27017,
        env: Dict[str, str] | None = None,
    ) -> CommandResult:
        """
        Run a script with mongosh, authenticated when credentials are given.

        Values in `env` are added to the child environment so scripts can
        read them from process.env instead of embedding them in argv.
        """
        child_env = {**os.environ, **env} if env else None
        if credentials is not None:
            connection = auth_args(credentials)
        else:
            connection = ["--host", host, "--port", str(port)]
        return await self._run(
            [self.executable, "--quiet", *connection, "--eval", script],
            env=child_env,
        )


class MongoDumper:
    """Dumper implemented with mongodump --gzip."""

    def __init__(self, executable: str = "mongodump", oplog: bool = False):
        self.executable = executable
        # --oplog requires a replica set member and a full dump
        self.oplog = oplog

    def build_argv(
        self,
        credentials: CredentialBundle,
        out_dir: Path,
        database: str | None = None,
    ) -> List[str]:
        argv = [self.executable, *auth_args(credentials), "--out", str(out_dir), "--gzip"]
        if database:
            argv += ["--db", database]
        elif self.oplog:
            argv.append("--oplog")
        return argv

    async def dump(
        self,
        credentials: CredentialBundle,
        out_dir: Path,
        database: str | None = None,
    ) -> None:
        try:
            result = await run_command(self.build_argv(credentials, out_dir, database))
        except FileNotFoundError:
            raise PrerequisiteError(explain_missing_tool(self.executable))

        if not result.ok:
            raise DumpError(
                f"mongodump exited with status {result.returncode}",
                details={"output": result.tail()},
            )

        if dump_is_empty(out_dir):
            raise DumpError(
                "mongodump produced an empty output directory",
                details={"out_dir": str(out_dir)},
            )


class MongoRestorer:
    """Restorer implemented with mongorestore namespace remapping."""

    def __init__(self, executable: str = "mongorestore"):
        self.executable = executable

    def build_argv(
        self,
        credentials: CredentialBundle,
        dump_dir: Path,
        source_database: str,
        target_database: str,
        drop: bool = False,
    ) -> List[str]:
        argv = [
            self.executable,
            *auth_args(credentials),
            "--gzip",
            "--dir",
            str(dump_dir),
            "--nsInclude",
            f"{source_database}.*",
            "--nsFrom",
            f"{source_database}.*",
            "--nsTo",
            f"{target_database}.*",
        ]
        if drop:
            argv.append("--drop")
        return argv

    async def restore(
        self,
        credentials: CredentialBundle,
        dump_dir: Path,
        source_database: str,
        target_database: str,
        drop: bool = False,
    ) -> None:
        argv = self.build_argv(credentials, dump_dir, source_database, target_database, drop)
        try:
            result = await run_command(argv)
        except FileNotFoundError:
            raise PrerequisiteError(explain_missing_tool(self.executable))

        if not result.ok:
            raise RestoreError(
                f"mongorestore exited with status {result.returncode}",
                details={"target_database": target_database, "output": result.tail()},
            )
