# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Journal - Local append-only record of runs.

Every backup, test, restore and setup-auth invocation gets a row in
`runs`; every object removed by pruning gets a row in `pruned`. Rows are
never deleted. Run rows are only updated once, when the run completes.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from mongobak.exceptions import JournalError

logger = structlog.get_logger()

STATUS_RUNNING = "running"
STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"


class RunRecord(TypedDict):
    """Record of one invocation."""

    id: str  # ULID
    mode: str  # backup, test, list, restore, setup_auth
    started_at: str  # ISO 8601
    completed_at: str | None
    status: str  # running, succeeded, failed
    timestamp: str | None  # backup timestamp identifier
    archive_key: str | None
    size_bytes: int | None
    stats: dict
    error: str | None


class PruneRecord(TypedDict):
    """Record of one object removed (or not) by pruning."""

    id: int
    run_id: str
    s3_key: str
    pruned_at: str
    deleted: bool
    error: str | None


async def init_journal_db(db_path: Path) -> None:
    """
    Initialize the journal database schema.

    Creates tables if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    mode TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    status TEXT NOT NULL,
                    timestamp TEXT,
                    archive_key TEXT,
                    size_bytes INTEGER,
                    stats TEXT NOT NULL DEFAULT '{}',
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS pruned (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    s3_key TEXT NOT NULL,
                    pruned_at TEXT NOT NULL,
                    deleted INTEGER NOT NULL,
                    error TEXT,
                    FOREIGN KEY (run_id) REFERENCES runs(id)
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_started_at
                ON runs(started_at)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_pruned_run_id
                ON pruned(run_id)
            """)

            await db.commit()

        logger.debug("journal_db_initialized", db_path=str(db_path))

    except Exception as e:
        raise JournalError(
            f"Failed to initialize journal database: {e}",
            details={"db_path": str(db_path)},
        )


async def record_run_started(
    db: aiosqlite.Connection,
    run_id: str,
    mode: str,
    timestamp: str | None = None,
) -> None:
    """
    Record the start of a run.

    Args:
        db: SQLite database connection
        run_id: Unique run ID (ULID)
        mode: Run mode
        timestamp: Backup timestamp identifier, when the run has one
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        INSERT INTO runs (id, mode, started_at, status, timestamp)
        VALUES (?, ?, ?, ?, ?)
        """,
        (run_id, mode, now, STATUS_RUNNING, timestamp),
    )
    await db.commit()


async def complete_run(
    db: aiosqlite.Connection,
    run_id: str,
    status: str,
    *,
    archive_key: str | None = None,
    size_bytes: int | None = None,
    stats: dict | None = None,
    error: str | None = None,
) -> None:
    """
    Mark a run as finished.

    Args:
        db: SQLite database connection
        run_id: Run ID
        status: STATUS_SUCCEEDED or STATUS_FAILED
        archive_key: Uploaded archive key (backup runs)
        size_bytes: Archive size (backup runs)
        stats: Free-form run statistics
        error: Error message if the run failed
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        UPDATE runs
        SET completed_at = ?, status = ?, archive_key = ?, size_bytes = ?,
            stats = ?, error = ?
        WHERE id = ? AND completed_at IS NULL
        """,
        (now, status, archive_key, size_bytes, json.dumps(stats or {}), error, run_id),
    )
    await db.commit()

    logger.debug("run_recorded", run_id=run_id, status=status)


async def record_pruned(
    db: aiosqlite.Connection,
    run_id: str,
    s3_key: str,
    deleted: bool,
    error: str | None = None,
) -> int:
    """
    Record the outcome of pruning one object.

    Returns:
        Prune record ID
    """
    now = datetime.now(UTC).isoformat()

    cursor = await db.execute(
        """
        INSERT INTO pruned (run_id, s3_key, pruned_at, deleted, error)
        VALUES (?, ?, ?, ?, ?)
        """,
        (run_id, s3_key, now, 1 if deleted else 0, error),
    )
    await db.commit()

    return cursor.lastrowid


def _run_from_row(row) -> RunRecord:
    return RunRecord(
        id=row[0],
        mode=row[1],
        started_at=row[2],
        completed_at=row[3],
        status=row[4],
        timestamp=row[5],
        archive_key=row[6],
        size_bytes=row[7],
        stats=json.loads(row[8] or "{}"),
        error=row[9],
    )


_RUN_COLUMNS = """
    id, mode, started_at, completed_at, status, timestamp,
    archive_key, size_bytes, stats, error
"""


async def get_run(db: aiosqlite.Connection, run_id: str) -> RunRecord | None:
    """Get a run record by ID."""
    async with db.execute(
        f"SELECT {_RUN_COLUMNS} FROM runs WHERE id = ?",
        (run_id,),
    ) as cursor:
        row = await cursor.fetchone()

    return _run_from_row(row) if row else None


async def list_runs(
    db: aiosqlite.Connection,
    limit: int = 20,
    mode: str | None = None,
) -> List[RunRecord]:
    """
    List runs, newest first.

    Args:
        db: SQLite database connection
        limit: Maximum number of records to return
        mode: Optional filter by mode

    Returns:
        List of run records
    """
    query = f"SELECT {_RUN_COLUMNS} FROM runs"
    params: List = []

    if mode:
        query += " WHERE mode = ?"
        params.append(mode)

    # ULIDs sort by creation time
    query += " ORDER BY started_at DESC, id DESC LIMIT ?"
    params.append(limit)

    records: List[RunRecord] = []

    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(_run_from_row(row))

    return records


async def list_pruned(db: aiosqlite.Connection, run_id: str) -> List[PruneRecord]:
    """List prune outcomes recorded by a run."""
    records: List[PruneRecord] = []

    async with db.execute(
        """
        SELECT id, run_id, s3_key, pruned_at, deleted, error
        FROM pruned
        WHERE run_id = ?
        ORDER BY id
        """,
        (run_id,),
    ) as cursor:
        async for row in cursor:
            records.append(
                PruneRecord(
                    id=row[0],
                    run_id=row[1],
                    s3_key=row[2],
                    pruned_at=row[3],
                    deleted=bool(row[4]),
                    error=row[5],
                )
            )

    return records


async def get_journal_stats(db: aiosqlite.Connection) -> dict:
    """
    Get journal statistics.

    Returns:
        Dict with run counts and the last successful backup
    """
    stats: dict = {}

    async with db.execute("SELECT COUNT(*) FROM runs") as cursor:
        row = await cursor.fetchone()
        stats["total_runs"] = row[0] if row else 0

    async with db.execute(
        "SELECT status, COUNT(*) FROM runs GROUP BY status"
    ) as cursor:
        stats["runs_by_status"] = {row[0]: row[1] async for row in cursor}

    async with db.execute(
        """
        SELECT timestamp, archive_key, completed_at FROM runs
        WHERE mode = 'backup' AND status = ?
        ORDER BY completed_at DESC LIMIT 1
        """,
        (STATUS_SUCCEEDED,),
    ) as cursor:
        row = await cursor.fetchone()
        stats["last_backup"] = (
            {"timestamp": row[0], "archive_key": row[1], "completed_at": row[2]}
            if row
            else None
        )

    async with db.execute("SELECT COUNT(*) FROM pruned WHERE deleted = 1") as cursor:
        row = await cursor.fetchone()
        stats["objects_pruned"] = row[0] if row else 0

    return stats
