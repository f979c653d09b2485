"""
Event bus for lodestar.

A plain publish/subscribe registry keyed by event name. Emission is
synchronous: handlers run in registration order, at the moment the event is
emitted, so events reach subscribers in the order they were emitted.
Coroutine handlers are scheduled as tasks in that same order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Any]
EventPredicate = Callable[[Any], bool]
Unsubscribe = Callable[[], None]


@dataclass(eq=False)
class HandlerEntry:
    """A registered handler."""

    handler: EventHandler
    once: bool = False


class EventBus:
    """Synchronous event bus supporting sync and async handlers.

    Example:
        bus = EventBus()
        unsubscribe = bus.on("Page.loadEventFired", lambda params: ...)
        bus.emit("Page.loadEventFired", {"timestamp": 1.0})
        unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[HandlerEntry]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, handler: EventHandler) -> Unsubscribe:
        """Register a handler.

        Args:
            event: Event name.
            handler: Callable receiving the event payload (sync or async).

        Returns:
            Callable that removes exactly this registration.
        """
        return self._add(event, HandlerEntry(handler))

    def once(self, event: str, handler: EventHandler) -> Unsubscribe:
        """Register a handler that is removed before its first invocation."""
        return self._add(event, HandlerEntry(handler, once=True))

    def off(self, event: str, handler: Optional[EventHandler] = None) -> None:
        """Remove a handler, or every handler for ``event`` if none is given."""
        if handler is None:
            self._handlers.pop(event, None)
            return
        entries = self._handlers.get(event)
        if entries:
            entries[:] = [e for e in entries if e.handler != handler]

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def emit(self, event: str, payload: Any = None) -> int:
        """Dispatch ``payload`` to every handler of ``event``.

        Returns:
            Number of handlers invoked.
        """
        entries = self._handlers.get(event)
        if not entries:
            return 0

        snapshot = list(entries)
        # Once-handlers leave before anything runs, so re-entrant emits skip them.
        entries[:] = [e for e in entries if not e.once]

        for entry in snapshot:
            try:
                result = entry.handler(payload)
                if asyncio.iscoroutine(result):
                    self._spawn(result, event)
            except Exception as e:
                logger.exception(f"Error in event handler for {event}: {e}")
        return len(snapshot)

    def wait_for(
        self,
        event: str,
        predicate: Optional[EventPredicate] = None,
    ) -> asyncio.Future[Any]:
        """Future resolved with the next matching payload of ``event``.

        The subscription is registered before this returns, so an event
        emitted right after the call is never missed. Cancelling the future
        removes the subscription.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()

        def handler(payload: Any) -> None:
            if future.done():
                return
            try:
                if predicate is not None and not predicate(payload):
                    return
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(payload)
            unsubscribe()

        unsubscribe = self.on(event, handler)
        future.add_done_callback(lambda _: unsubscribe())
        return future

    def _add(self, event: str, entry: HandlerEntry) -> Unsubscribe:
        self._handlers.setdefault(event, []).append(entry)

        def unsubscribe() -> None:
            entries = self._handlers.get(event)
            if entries and entry in entries:
                entries.remove(entry)

        return unsubscribe

    def _spawn(self, coro: Any, event: str) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                exc = t.exception()
                logger.error(
                    f"Error in async event handler for {event}: {exc}",
                    exc_info=exc,
                )

        task.add_done_callback(done)

    async def drain(self) -> None:
        """Wait for every scheduled async handler to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
