# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Logging configuration for mongobak.

structlog events are routed through stdlib logging so that the same
timestamped, human-readable line goes to stdout and to the local log file.
"""

import logging
import sys
from pathlib import Path

import structlog

FALLBACK_LOG_FILE = Path("/tmp/mongodb-backup.log")

_HANDLER_NAME = "mongobak"


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _open_log_file(log_file: Path) -> tuple[logging.Handler, Path]:
    """Open the requested log file, falling back to /tmp when it is not writable."""
    for candidate in (log_file, FALLBACK_LOG_FILE):
        try:
            candidate.parent.mkdir(parents=True, exist_ok=True)
            return logging.FileHandler(candidate, encoding="utf-8"), candidate
        except OSError:
            continue
    raise OSError(f"Cannot open log file {log_file} or {FALLBACK_LOG_FILE}")


def configure_logging(
    log_file: Path | None = None,
    log_level: str = "INFO",
) -> Path | None:
    """
    Configure structlog and stdlib logging for a run.

    Args:
        log_file: Local log file; None logs to stdout only
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        The log file actually in use, which differs from `log_file`
        when the fallback location was needed
    """
    shared_processors = _shared_processors()

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    active_log_file = None
    if log_file is not None:
        file_handler, active_log_file = _open_log_file(log_file)
        handlers.append(file_handler)

    for handler in handlers:
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if active_log_file is not None and active_log_file != log_file:
        structlog.get_logger().warning(
            "log_file_fallback",
            requested=str(log_file),
            using=str(active_log_file),
        )

    return active_log_file
