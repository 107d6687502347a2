# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Async subprocess runner.

All MongoDB tools are invoked through run_command(), which captures exit
status and output and keeps secrets out of log events.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Sequence

import structlog

logger = structlog.get_logger()

_SECRET_FLAGS = {"--password", "-p"}


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of a finished command."""

    argv: tuple
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, limit: int = 500) -> str:
        """Last `limit` characters of stderr (or stdout when stderr is empty)."""
        text = (self.stderr or self.stdout).strip()
        return text[-limit:]


def redact_argv(argv: Sequence[str]) -> list:
    """Replace the values of password flags so argv can be logged."""
    redacted = []
    hide_next = False
    for arg in argv:
        if hide_next:
            redacted.append("***")
            hide_next = False
        elif arg in _SECRET_FLAGS:
            redacted.append(arg)
            hide_next = True
        elif arg.startswith("--password="):
            redacted.append("--password=***")
        else:
            redacted.append(arg)
    return redacted


async def run_command(
    argv: Sequence[str],
    *,
    timeout: float | None = None,
    env: Dict[str, str] | None = None,
    cwd: str | None = None,
) -> CommandResult:
    """
    Run a command to completion and capture its output.

    Args:
        argv: Program and arguments (no shell is involved)
        timeout: Seconds before the process is killed; None waits forever
        env: Environment for the child process
        cwd: Working directory for the child process

    Returns:
        CommandResult

    Raises:
        FileNotFoundError: If the program is not installed
        asyncio.TimeoutError: If `timeout` elapses (the process is killed)
    """
    logger.debug("command_started", argv=redact_argv(argv))

    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
        cwd=cwd,
    )

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("command_timed_out", program=argv[0], timeout=timeout)
        raise

    result = CommandResult(
        argv=tuple(redact_argv(argv)),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )

    logger.debug("command_finished", program=argv[0], returncode=result.returncode)
    return result
