# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Run notifications to CloudWatch Logs.

One event per backup run, in the log group's stream named after the host.
Notification failures are logged and never fail the run.
"""

import socket
from datetime import datetime, UTC
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

_ALREADY_EXISTS = "ResourceAlreadyExistsException"


class Notifier(Protocol):
    async def send(self, status: str, message: str) -> bool: ...


def _error_code(error: Exception) -> str:
    response = getattr(error, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


class CloudWatchNotifier:
    """Notifier that appends events to a CloudWatch Logs stream."""

    def __init__(
        self,
        session: Any,
        region: str,
        log_group: str,
        stream_name: str | None = None,
    ):
        self._session = session
        self._region = region
        self.log_group = log_group
        self.stream_name = stream_name or socket.gethostname()

    async def _ensure(self, create: Any, **kwargs: Any) -> None:
        try:
            await create(**kwargs)
        except Exception as e:
            if _error_code(e) != _ALREADY_EXISTS:
                raise

    async def send(self, status: str, message: str) -> bool:
        """
        Append "<status>: <message>" to the stream.

        Returns:
            True if the event was accepted
        """
        event = {
            "timestamp": int(datetime.now(UTC).timestamp() * 1000),
            "message": f"{status}: {message}",
        }

        try:
            async with self._session.create_client(
                "logs",
                region_name=self._region,
            ) as client:
                await self._ensure(client.create_log_group, logGroupName=self.log_group)
                await self._ensure(
                    client.create_log_stream,
                    logGroupName=self.log_group,
                    logStreamName=self.stream_name,
                )
                await client.put_log_events(
                    logGroupName=self.log_group,
                    logStreamName=self.stream_name,
                    logEvents=[event],
                )
        except Exception as e:
            logger.warning(
                "notification_failed",
                log_group=self.log_group,
                status=status,
                error=str(e),
            )
            return False

        logger.info("notification_sent", log_group=self.log_group, status=status)
        return True
