"""
Deadline and retry combinators.

A navigation can tear down the page's execution context while a protocol
call is in flight, which surfaces as a CDP error. ``retry_deadline`` hides
that transient failure from idempotent, read-only operations by running them
again until they succeed or the deadline passes.

Deadlines only abandon the local await. The browser may still execute a
command after the caller has timed out on it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from lodestar.exceptions import CDPError, CommandTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_deadline(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    *,
    operation: Optional[str] = None,
) -> T:
    """Await ``awaitable``, failing with CommandTimeout after ``timeout`` seconds.

    Args:
        awaitable: Coroutine or future to await.
        timeout: Deadline in seconds. None waits forever.
        operation: Optional label used in the timeout message.

    Returns:
        The awaitable's result.

    Raises:
        CommandTimeout: If the deadline passed first.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise CommandTimeout(timeout, operation) from None


async def retry_deadline(
    operation: Callable[[], Awaitable[T]],
    timeout: float,
    *,
    retry_on: tuple[type[BaseException], ...] = (CDPError,),
    interval: float = 0.0,
    label: Optional[str] = None,
) -> T:
    """Run ``operation`` until it succeeds or ``timeout`` seconds have passed.

    Each attempt starts from scratch by calling ``operation`` again. Only
    exceptions in ``retry_on`` are retried; anything else propagates at once.
    Never use this for operations whose side effects are unsafe to repeat.

    Args:
        operation: Zero-argument callable returning a fresh awaitable.
        timeout: Overall deadline in seconds.
        retry_on: Exception types treated as transient.
        interval: Pause between attempts in seconds.
        label: Optional label used in log and timeout messages.

    Returns:
        The first successful result.

    Raises:
        CommandTimeout: If no attempt succeeded before the deadline. The last
            transient failure is chained as the cause.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    last_error: Optional[BaseException] = None
    attempt = 0

    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise CommandTimeout(timeout, label) from last_error

        attempt += 1
        try:
            return await asyncio.wait_for(operation(), timeout=remaining)
        except asyncio.TimeoutError:
            raise CommandTimeout(timeout, label) from last_error
        except retry_on as e:
            last_error = e
            logger.debug(f"Retrying {label or 'operation'} (attempt {attempt}): {e}")

        if interval:
            await asyncio.sleep(min(interval, max(deadline - loop.time(), 0)))


__all__ = ["retry_deadline", "with_deadline"]
