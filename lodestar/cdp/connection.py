"""
CDP WebSocket connection handler.

Manages one WebSocket connection to a DevTools endpoint, either the
browser-level one or a single page target.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import websockets

from lodestar.config.defaults import MAX_MESSAGE_SIZE
from lodestar.debug import is_debug_enabled
from lodestar.events.bus import EventBus, EventHandler, EventPredicate, Unsubscribe
from lodestar.exceptions import CDPError, CommandTimeout, TransportClosedError

logger = logging.getLogger(__name__)

CloseCallback = Callable[[], Any]


class CDPConnection:
    """Manages the WebSocket connection to a browser's CDP endpoint.

    Commands are tagged with a unique id and many can be outstanding at once;
    each response settles the command with the same id, whatever order the
    responses arrive in. Messages without an id are events and are
    dispatched synchronously, in arrival order, through an EventBus.

    Example:
        connection = CDPConnection("ws://127.0.0.1:9222/devtools/browser/xxx")
        await connection.connect()
        result = await connection.send("Browser.getVersion")
        print(result)
        await connection.close()
    """

    def __init__(
        self,
        ws_url: str,
        *,
        timeout: Optional[float] = None,
        debug: Optional[bool] = None,
    ) -> None:
        """Initialize CDP connection.

        Args:
            ws_url: WebSocket URL to connect to.
            timeout: Default timeout for commands in seconds. None waits
                until the response or the connection closes.
            debug: Log every frame. Defaults to the LODESTAR_DEBUG toggle.
        """
        self._ws_url = ws_url
        self._timeout = timeout
        self._debug = is_debug_enabled() if debug is None else debug
        self._ws: Any = None
        self._message_id = 0
        self._callbacks: dict[int, asyncio.Future[Any]] = {}
        self._events = EventBus()
        self._waiters: set[asyncio.Future[Any]] = set()
        self._close_callbacks: list[CloseCallback] = []
        self._receive_task: Optional[asyncio.Task[None]] = None
        self._connected = False
        self._closed = False

    @property
    def ws_url(self) -> str:
        """Get the WebSocket URL."""
        return self._ws_url

    @property
    def is_connected(self) -> bool:
        """Check if connected to CDP."""
        return self._connected and self._ws is not None

    @property
    def closed(self) -> bool:
        """True once the connection was closed locally or dropped remotely."""
        return self._closed

    @property
    def events(self) -> EventBus:
        return self._events

    async def connect(self) -> "CDPConnection":
        """Open the WebSocket and start the receive loop.

        The connection is usable as soon as this returns.
        """
        if self._connected:
            return self

        if self._closed:
            raise TransportClosedError("Connection was closed and cannot be reused")

        logger.debug(f"Connecting to CDP: {self._ws_url}")
        self._ws = await websockets.connect(
            self._ws_url,
            max_size=MAX_MESSAGE_SIZE,
            ping_interval=30,
            ping_timeout=10,
        )
        self._connected = True
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.debug(f"CDP connection established: {self._ws_url}")
        return self

    async def close(self) -> None:
        """Close the connection.

        Pending commands fail with TransportClosedError and every subscriber
        is removed. Calling this on a closed connection does nothing.
        """
        if self._closed:
            return

        self._shutdown("Connection closed")

        if self._receive_task and not self._receive_task.done():
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Error closing websocket {self._ws_url}: {e}")
            self._ws = None

        logger.debug(f"CDP connection closed: {self._ws_url}")

    async def send(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Send a CDP command and wait for response.

        Args:
            method: CDP method name (e.g., "Page.navigate").
            params: Optional parameters for the method.
            timeout: Optional timeout override in seconds.

        Returns:
            The result from the CDP response.

        Raises:
            CDPError: If the CDP command returns an error.
            CommandTimeout: If no response arrived in time. The command may
                still run in the browser.
            TransportClosedError: If the connection is or gets closed.
        """
        if self._closed or self._ws is None:
            raise TransportClosedError(f"Cannot send {method}: connection is closed")

        self._message_id += 1
        message_id = self._message_id

        message: dict[str, Any] = {"id": message_id, "method": method}
        if params:
            message["params"] = params

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._callbacks[message_id] = future

        deadline = self._timeout if timeout is None else timeout
        try:
            payload = json.dumps(message)
            if self._debug:
                logger.debug(f"--> {payload}")
            try:
                await self._ws.send(payload)
            except websockets.exceptions.ConnectionClosed as e:
                raise TransportClosedError(f"Cannot send {method}: {e}") from e

            if deadline is None:
                return await future
            try:
                return await asyncio.wait_for(future, timeout=deadline)
            except asyncio.TimeoutError:
                raise CommandTimeout(deadline, method) from None
        finally:
            self._callbacks.pop(message_id, None)

    def on(self, event: str, handler: EventHandler) -> Unsubscribe:
        """Register a CDP event handler.

        Args:
            event: Event name (e.g., "Page.loadEventFired").
            handler: Callback receiving the event params.

        Returns:
            Callable removing this registration.
        """
        return self._events.on(event, handler)

    def once(self, event: str, handler: EventHandler) -> Unsubscribe:
        """Register a handler for the next occurrence of ``event`` only."""
        return self._events.once(event, handler)

    def off(self, event: str, handler: Optional[EventHandler] = None) -> None:
        """Remove a CDP event handler, or all handlers of ``event``."""
        self._events.off(event, handler)

    def wait_for_event(
        self,
        event: str,
        predicate: Optional[EventPredicate] = None,
    ) -> asyncio.Future[Any]:
        """Future resolved with the params of the next matching ``event``.

        The subscription exists when this returns. The future fails with
        TransportClosedError if the connection closes first.
        """
        if self._closed:
            raise TransportClosedError(f"Cannot wait for {event}: connection is closed")

        future = self._events.wait_for(event, predicate)
        self._waiters.add(future)
        future.add_done_callback(self._waiters.discard)
        return future

    def add_close_callback(self, callback: CloseCallback) -> None:
        """Run ``callback`` once when the connection closes, for any reason."""
        if self._closed:
            self._run_close_callback(callback)
            return
        self._close_callbacks.append(callback)

    async def _receive_loop(self) -> None:
        """Background loop to receive and dispatch messages."""
        if self._ws is None:
            return

        try:
            async for message in self._ws:
                if self._debug:
                    logger.debug(f"<-- {message}")
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON from CDP: {message[:100]}")
                    continue
                self._handle_message(data)

        except websockets.exceptions.ConnectionClosed as e:
            logger.debug(f"CDP WebSocket connection closed: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"CDP receive loop error: {e}")
        finally:
            if not self._closed:
                self._shutdown("Connection closed by remote end")

    def _handle_message(self, data: dict[str, Any]) -> None:
        """Route a response to its pending command, or an event to subscribers."""
        if "id" in data:
            message_id = data["id"]
            future = self._callbacks.pop(message_id, None)
            if future is None or future.done():
                logger.debug(f"Dropping response for unknown command id {message_id}")
                return
            if "error" in data:
                error = data["error"]
                future.set_exception(
                    CDPError(
                        error.get("code", -1),
                        error.get("message", "Unknown error"),
                        error.get("data"),
                    )
                )
            else:
                future.set_result(data.get("result", {}))

        elif "method" in data:
            self._events.emit(data["method"], data.get("params", {}))

    def _shutdown(self, reason: str) -> None:
        self._closed = True
        self._connected = False

        for future in list(self._callbacks.values()):
            if not future.done():
                future.set_exception(TransportClosedError(reason))
        self._callbacks.clear()

        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_exception(TransportClosedError(reason))
        self._waiters.clear()

        self._events.clear()

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            self._run_close_callback(callback)

    def _run_close_callback(self, callback: CloseCallback) -> None:
        try:
            result = callback()
            if asyncio.iscoroutine(result):
                asyncio.ensure_future(result)
        except Exception as e:
            logger.exception(f"Error in close callback for {self._ws_url}: {e}")

    async def __aenter__(self) -> "CDPConnection":
        """Async context manager entry."""
        return await self.connect()

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()
