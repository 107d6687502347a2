# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Retry helper for transient failures.

Only the dump step retries; every other step fails on first error.
"""

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


def calculate_delay(
    attempt: int,
    base_delay: float,
    multiplier: float = 1.0,
    max_delay: float = 300.0,
) -> float:
    """
    Delay before retrying after the given failed attempt (1-based).

    With multiplier=1.0 (the default) the delay is fixed:
        attempt=1: base_delay
        attempt=2: base_delay
    With multiplier=2.0:
        attempt=1: base_delay
        attempt=2: base_delay * 2
        attempt=3: base_delay * 4
    """
    if attempt < 1:
        return base_delay
    return min(base_delay * (multiplier ** (attempt - 1)), max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    delay: float = 5.0,
    multiplier: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await `operation()` up to `attempts` times.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        attempts: Total attempts including the first
        delay: Seconds to wait after the first failure
        multiplier: Growth factor of the delay per attempt (1.0 = fixed)
        retry_on: Exception types that trigger another attempt
        description: Name used in log events
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The first successful result

    Raises:
        The last exception once all attempts are exhausted, or any
        exception not listed in `retry_on` immediately.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
            if attempt > 1:
                logger.info("retry_succeeded", operation=description, attempt=attempt)
            return result
        except retry_on as e:
            if attempt == attempts:
                logger.error(
                    "retry_exhausted",
                    operation=description,
                    attempts=attempts,
                    error=str(e),
                )
                raise
            wait = calculate_delay(attempt, delay, multiplier)
            logger.warning(
                "retry_scheduled",
                operation=description,
                attempt=attempt,
                attempts=attempts,
                delay=wait,
                error=str(e),
            )
            await sleep(wait)

    raise AssertionError("unreachable")
