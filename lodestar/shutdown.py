"""
Graceful shutdown for lodestar scripts.

A process-wide registry of shutdown handlers. ``shutdown()`` runs them once,
in registration order, then exits. ``install_signal_handlers()`` routes
SIGINT and SIGTERM to it so a browser is closed instead of leaked.

Example:
    browser = await launch()
    on_shutdown(browser.close)
    install_signal_handlers()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
import sys
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

ShutdownHandler = Callable[[], Union[None, Awaitable[None]]]

SIGNALS = ("SIGINT", "SIGTERM")

_handlers: list[ShutdownHandler] = []
_shutdown_task: Optional[asyncio.Task[None]] = None
_shut_down = False


def on_shutdown(handler: ShutdownHandler) -> Callable[[], None]:
    """Register ``handler`` (sync or async) to run on shutdown.

    Returns:
        Callable removing the registration.
    """
    _handlers.append(handler)

    def remove() -> None:
        if handler in _handlers:
            _handlers.remove(handler)

    return remove


async def run_handlers() -> None:
    """Run every handler once, in registration order.

    Handler failures are logged and do not stop the remaining handlers.
    Later calls do nothing.
    """
    global _shut_down

    if _shut_down:
        return
    _shut_down = True

    handlers = list(_handlers)
    _handlers.clear()
    for handler in handlers:
        try:
            result = handler()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"Error in shutdown handler {handler!r}: {e}")


async def shutdown(exit_code: Optional[int] = 0) -> None:
    """Run the shutdown handlers, then exit with ``exit_code``.

    Args:
        exit_code: Process exit code. None runs the handlers without exiting.
    """
    logger.debug("Shutting down")
    await run_handlers()
    if exit_code is not None:
        sys.exit(exit_code)


def install_signal_handlers(exit_code: Optional[int] = 0) -> None:
    """Trigger ``shutdown`` on SIGINT and SIGTERM.

    Must be called from the running event loop.
    """
    loop = asyncio.get_running_loop()

    def trigger(signame: str) -> None:
        global _shutdown_task

        if _shutdown_task is not None:
            return
        logger.debug(f"Received {signame}")
        _shutdown_task = loop.create_task(_shutdown_and_stop(exit_code))

    for signame in SIGNALS:
        signum = getattr(signal, signame, None)
        if signum is None:
            continue
        try:
            loop.add_signal_handler(signum, trigger, signame)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(
                signum,
                lambda *_args, name=signame: loop.call_soon_threadsafe(trigger, name),
            )


async def _shutdown_and_stop(exit_code: Optional[int]) -> None:
    loop = asyncio.get_running_loop()
    for signame in SIGNALS:
        signum = getattr(signal, signame, None)
        if signum is not None:
            try:
                loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError):
                pass
    # SystemExit raised inside a task propagates out of the event loop
    await shutdown(exit_code)


def reset() -> None:
    """Forget every handler and the shutdown state."""
    global _shutdown_task, _shut_down

    _handlers.clear()
    _shutdown_task = None
    _shut_down = False


def handlers() -> list[Any]:
    """Registered handlers, in order."""
    return list(_handlers)


__all__ = [
    "install_signal_handlers",
    "on_shutdown",
    "reset",
    "run_handlers",
    "shutdown",
]
