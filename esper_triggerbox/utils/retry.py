"""
Bounded poll-until-success helper shared by handshake, quiet-down and probes.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from esper_triggerbox.utils.exceptions import MaxRetriesExceededError


logger = logging.getLogger(__name__)


async def repeat_until(
    attempt: Callable[[], Awaitable[bool]],
    interval_ms: int,
    max_attempts: int,
) -> int:
    """
    Await ``attempt`` until it returns a truthy value.

    The first try runs immediately; every following try is preceded by a
    sleep of ``interval_ms``. Exceptions raised by ``attempt`` propagate
    unchanged and stop the loop.

    Args:
        attempt: Coroutine function returning True once the condition holds.
        interval_ms: Delay between tries in milliseconds.
        max_attempts: Total number of tries allowed (>= 1).

    Returns:
        Number of tries used (1..max_attempts).

    Raises:
        MaxRetriesExceededError: If every try returned a falsy value.
        ValueError: If max_attempts < 1 or interval_ms < 0.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    if interval_ms < 0:
        raise ValueError(f"interval_ms must be >= 0, got {interval_ms}")

    for count in range(1, max_attempts + 1):
        if count > 1:
            await asyncio.sleep(interval_ms / 1000.0)
        if await attempt():
            return count

    logger.debug(f"Condition still false after {max_attempts} attempts")
    raise MaxRetriesExceededError(
        f"Max retries exceeded waiting for test to pass ({max_attempts} attempts, {interval_ms}ms apart)"
    )
