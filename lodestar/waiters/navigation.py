"""
Navigation completion waits.

A NavigationWaiter is created before the navigation command is sent so the
load event cannot slip past it. For network idle conditions it waits for the
load event and then runs a NetworkIdleTracker.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from lodestar.config.defaults import DEFAULT_IDLE_TIME
from lodestar.config.options import WaitUntil

if TYPE_CHECKING:
    from lodestar.cdp.connection import CDPConnection

logger = logging.getLogger(__name__)

REQUEST_STARTED_EVENTS = ("Network.requestWillBeSent",)
REQUEST_FINISHED_EVENTS = ("Network.loadingFinished", "Network.loadingFailed")


class NetworkIdleTracker:
    """Resolves once in-flight requests stayed at or below a threshold long enough.

    The idle timer is armed exactly while the in-flight count is at or below
    ``idle_connections``. A request pushing the count above the threshold
    disarms it; the request bringing it back arms a fresh one. The wait
    resolves when a timer fires.

    Subscriptions are made on construction. Use once, then discard.
    """

    def __init__(
        self,
        connection: "CDPConnection",
        *,
        idle_connections: int = 0,
        idle_time: float = DEFAULT_IDLE_TIME,
    ) -> None:
        if idle_connections < 0:
            raise ValueError("idle_connections must be >= 0")
        if idle_time < 0:
            raise ValueError("idle_time must be >= 0")

        self._loop = asyncio.get_running_loop()
        self._idle_connections = idle_connections
        self._idle_time = idle_time
        self._in_flight = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._future: asyncio.Future[None] = self._loop.create_future()
        self._unsubscribes: list[Callable[[], None]] = []

        for event in REQUEST_STARTED_EVENTS:
            self._unsubscribes.append(connection.on(event, self._on_request_started))
        for event in REQUEST_FINISHED_EVENTS:
            self._unsubscribes.append(connection.on(event, self._on_request_finished))

        self._arm()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def armed(self) -> bool:
        return self._timer is not None

    @property
    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> None:
        """Wait until the network has been idle for ``idle_time`` seconds."""
        try:
            await self._future
        finally:
            self.dispose()

    def cancel(self) -> None:
        if not self._future.done():
            self._future.cancel()
        self.dispose()

    def dispose(self) -> None:
        """Drop subscriptions and the timer."""
        self._disarm()
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()

    def _on_request_started(self, params: Any) -> None:
        self._in_flight += 1
        if self._in_flight > self._idle_connections:
            self._disarm()

    def _on_request_finished(self, params: Any) -> None:
        self._in_flight = max(self._in_flight - 1, 0)
        if self._in_flight <= self._idle_connections and self._timer is None:
            self._arm()

    def _arm(self) -> None:
        if self._future.done():
            return
        self._disarm()
        self._timer = self._loop.call_later(self._idle_time, self._on_idle)

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle(self) -> None:
        self._timer = None
        if not self._future.done():
            logger.debug(
                f"Network idle ({self._in_flight} in flight, "
                f"threshold {self._idle_connections})"
            )
            self._future.set_result(None)


class NavigationWaiter:
    """Waits for a navigation to satisfy a WaitUntil condition.

    Construct it before sending the command that navigates, then await
    wait() concurrently with that command.

    The idle tracker only exists once the load event was seen. Request
    events already queued behind that load event are not counted, so a
    network idle wait can resolve early on pages that start requests in
    the same instant they finish loading.
    """

    def __init__(
        self,
        connection: "CDPConnection",
        wait_until: Union[WaitUntil, str] = WaitUntil.LOAD,
        *,
        idle_time: float = DEFAULT_IDLE_TIME,
    ) -> None:
        self._connection = connection
        self._wait_until = WaitUntil(wait_until)
        self._idle_time = idle_time
        self._tracker: Optional[NetworkIdleTracker] = None
        self._load: Optional[asyncio.Future[Any]] = None
        self._cancelled = False

        if self._wait_until != WaitUntil.NONE:
            self._load = connection.wait_for_event("Page.loadEventFired")

    @property
    def wait_until(self) -> WaitUntil:
        return self._wait_until

    async def wait(self) -> None:
        if self._load is None:
            return

        await self._load
        logger.debug(f"Load event fired ({self._wait_until.value})")

        idle_connections = self._wait_until.idle_connections
        if idle_connections is None or self._cancelled:
            return

        self._tracker = NetworkIdleTracker(
            self._connection,
            idle_connections=idle_connections,
            idle_time=self._idle_time,
        )
        await self._tracker.wait()

    def cancel(self) -> None:
        """Abandon the wait and drop its subscriptions."""
        self._cancelled = True
        if self._load is not None and not self._load.done():
            self._load.cancel()
        if self._tracker is not None:
            self._tracker.cancel()


__all__ = ["NavigationWaiter", "NetworkIdleTracker"]
