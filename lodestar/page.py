"""
Page implementation for lodestar.

A Page owns the CDP connection of one target. It tracks the current URL,
turns raw protocol events into typed page events and hosts the request
interception policy configured for it.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import math
import re
import weakref
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from lodestar.config.defaults import DEFAULT_IDLE_TIME, DEFAULT_POLLING_INTERVAL
from lodestar.config.options import PageOptions, WaitUntil
from lodestar.events.bus import EventBus, EventHandler, EventPredicate, Unsubscribe
from lodestar.events.types import Dialog, FileChooser, PageEvent
from lodestar.exceptions import (
    AlreadyClosedError,
    CDPError,
    EvaluationError,
    NavigationError,
    NavigationHistoryUnavailable,
    TransportClosedError,
)
from lodestar.models import ConsoleMessage, Cookie, PageError
from lodestar.network.interceptor import InterceptionPolicy, fetch_enable_params
from lodestar.retry import retry_deadline, with_deadline
from lodestar.waiters.navigation import NavigationWaiter, NetworkIdleTracker

if TYPE_CHECKING:
    from lodestar.browser.browser import Browser
    from lodestar.cdp.connection import CDPConnection

logger = logging.getLogger(__name__)

FUNCTION_PATTERN = re.compile(
    r"^\s*(async\s+)?(function\b|\(?[\w$,\s]*\)?\s*=>)",
)

UNSERIALIZABLE_VALUES = {
    "NaN": math.nan,
    "Infinity": math.inf,
    "-Infinity": -math.inf,
    "-0": -0.0,
}


class Page:
    """A browser tab driven over its own CDP connection.

    Pages are created by Browser.new_page. A closed page is gone for good:
    it is removed from Browser.pages and every further operation raises
    AlreadyClosedError.

    Example:
        page = await browser.new_page("https://example.com")
        title = await page.evaluate("document.title")
        await page.close()
    """

    def __init__(
        self,
        target_id: str,
        connection: "CDPConnection",
        browser: "Browser",
        options: Optional[PageOptions] = None,
    ) -> None:
        self._target_id = target_id
        self._connection = connection
        self._browser_ref = weakref.ref(browser)
        self._options = options or PageOptions()
        self._url = "about:blank"
        self._closed = False
        self._events = EventBus()
        self._interception = InterceptionPolicy.from_page_options(self._options)
        self._credentials: Optional[tuple[str, str]] = None
        self._auth_attempts: set[str] = set()
        self._continue_paused: Optional[Unsubscribe] = None

        connection.on("Page.frameNavigated", self._on_frame_navigated)
        connection.on("Runtime.consoleAPICalled", self._on_console)
        connection.on("Runtime.exceptionThrown", self._on_exception)
        connection.on("Page.javascriptDialogOpening", self._on_dialog)
        connection.on("Page.fileChooserOpened", self._on_file_chooser)
        connection.on("Fetch.authRequired", self._on_auth_required)
        if self._interception is not None:
            self._interception.install(connection)
        connection.add_close_callback(self._on_connection_closed)

    def __repr__(self) -> str:
        return f"Page(target_id={self._target_id!r}, url={self._url!r})"

    @property
    def target_id(self) -> str:
        return self._target_id

    @property
    def url(self) -> str:
        """URL of the main frame, as of the last navigation event."""
        return self._url

    @property
    def timeout(self) -> float:
        """Default timeout of page operations, in seconds."""
        return self._options.timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        if value <= 0:
            raise ValueError("timeout must be positive")
        self._options = self._options.model_copy(update={"timeout": value})

    @property
    def options(self) -> PageOptions:
        return self._options

    @property
    def connection(self) -> "CDPConnection":
        return self._connection

    @property
    def browser(self) -> Optional["Browser"]:
        """Owning browser, None once it has been garbage collected."""
        return self._browser_ref()

    @property
    def interception(self) -> Optional[InterceptionPolicy]:
        return self._interception

    @property
    def closed(self) -> bool:
        """True once closed, or when the page connection dropped."""
        return self._closed or self._connection.closed

    # Setup

    async def _initialize(self, user_agent: str) -> None:
        """Enable the domains the page relies on.

        The calls run concurrently. All of them finish before this returns,
        so navigation never starts before interception is enabled.
        """
        calls: list[Awaitable[Any]] = [
            self._connection.send("Emulation.setUserAgentOverride", {"userAgent": user_agent}),
            self._connection.send("Page.enable"),
            self._connection.send("Runtime.enable"),
            self._connection.send("Network.enable"),
            self._connection.send("Page.setInterceptFileChooserDialog", {"enabled": True}),
        ]
        if self._interception is not None:
            calls.append(self._interception.enable(self._connection))
        await asyncio.gather(*calls)

    # Navigation

    async def goto(
        self,
        url: str,
        *,
        wait_until: Optional[Union[WaitUntil, str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Navigate to ``url``.

        Args:
            url: URL to navigate to.
            wait_until: Completion condition. Defaults to the page option.
            timeout: Timeout in seconds. Defaults to the page timeout.

        Raises:
            NavigationError: If the browser refused the navigation.
            CommandTimeout: If the condition was not met in time.
        """

        async def navigate() -> None:
            result = await self._connection.send("Page.navigate", {"url": url})
            if result.get("errorText"):
                raise NavigationError(url, result["errorText"])

        await self._navigate(navigate, wait_until, timeout, f"goto {url}")

    async def reload(
        self,
        *,
        ignore_cache: bool = False,
        wait_until: Optional[Union[WaitUntil, str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Reload the page."""

        async def reload() -> None:
            await self._connection.send("Page.reload", {"ignoreCache": ignore_cache})

        await self._navigate(reload, wait_until, timeout, "reload")

    async def go_back(
        self,
        *,
        wait_until: Optional[Union[WaitUntil, str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Navigate to the previous history entry.

        Raises:
            NavigationHistoryUnavailable: If there is no previous entry.
        """
        await self._navigate_history(-1, "back", wait_until, timeout)

    async def go_forward(
        self,
        *,
        wait_until: Optional[Union[WaitUntil, str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Navigate to the next history entry.

        Raises:
            NavigationHistoryUnavailable: If there is no next entry.
        """
        await self._navigate_history(1, "forward", wait_until, timeout)

    async def wait_for_navigation(
        self,
        wait_until: Optional[Union[WaitUntil, str]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        """Wait for a navigation triggered by something else, e.g. a click."""
        self._check_open()
        waiter = self._navigation_waiter(wait_until)
        try:
            await with_deadline(
                waiter.wait(),
                self._timeout(timeout),
                operation=f"waiting for navigation ({waiter.wait_until.value})",
            )
        finally:
            waiter.cancel()

    async def wait_for_network_idle(
        self,
        *,
        idle_time: float = DEFAULT_IDLE_TIME,
        idle_connections: int = 0,
        timeout: Optional[float] = None,
    ) -> None:
        """Wait until at most ``idle_connections`` requests were in flight for ``idle_time`` seconds."""
        self._check_open()
        tracker = NetworkIdleTracker(
            self._connection,
            idle_connections=idle_connections,
            idle_time=idle_time,
        )
        try:
            await with_deadline(
                tracker.wait(),
                self._timeout(timeout),
                operation="waiting for network idle",
            )
        finally:
            tracker.cancel()

    async def _navigate_history(
        self,
        delta: int,
        direction: str,
        wait_until: Optional[Union[WaitUntil, str]],
        timeout: Optional[float],
    ) -> None:
        self._check_open()
        history = await self._connection.send("Page.getNavigationHistory")
        entries = history.get("entries", [])
        index = history.get("currentIndex", 0) + delta
        if index < 0 or index >= len(entries):
            raise NavigationHistoryUnavailable(direction)
        entry = entries[index]

        async def navigate() -> None:
            await self._connection.send("Page.navigateToHistoryEntry", {"entryId": entry["id"]})

        await self._navigate(navigate, wait_until, timeout, f"go {direction}")

    async def _navigate(
        self,
        command: Callable[[], Awaitable[None]],
        wait_until: Optional[Union[WaitUntil, str]],
        timeout: Optional[float],
        operation: str,
    ) -> None:
        """Run a navigating command together with a wait registered before it."""
        self._check_open()
        waiter = self._navigation_waiter(wait_until)
        logger.debug(f"[{self._target_id}] {operation} ({waiter.wait_until.value})")
        try:
            await with_deadline(
                asyncio.gather(command(), waiter.wait()),
                self._timeout(timeout),
                operation=operation,
            )
        finally:
            waiter.cancel()

    def _navigation_waiter(self, wait_until: Optional[Union[WaitUntil, str]]) -> NavigationWaiter:
        return NavigationWaiter(
            self._connection,
            wait_until if wait_until is not None else self._options.wait_until,
        )

    # Content

    async def evaluate(
        self,
        script: str,
        *args: Any,
        timeout: Optional[float] = None,
    ) -> Any:
        """Evaluate JavaScript in the page and return its value.

        ``script`` is either an expression or a function source; a function
        is called with ``args``, which must be JSON serializable. Promises
        are awaited. A failure caused by a navigation tearing down the
        context is retried until the timeout.

        Raises:
            EvaluationError: If the script threw.
            CommandTimeout: If no attempt succeeded in time.
        """
        self._check_open()
        expression = _call_expression(script, args)

        return await retry_deadline(
            lambda: self._evaluate_once(expression),
            self._timeout(timeout),
            label="evaluate",
        )

    async def _evaluate_once(self, expression: str) -> Any:
        result = await self._connection.send(
            "Runtime.evaluate",
            {
                "expression": expression,
                "returnByValue": True,
                "awaitPromise": True,
            },
        )

        if "exceptionDetails" in result:
            details = result["exceptionDetails"]
            exception = details.get("exception") or {}
            message = exception.get("description") or details.get("text", "JavaScript error")
            raise EvaluationError(message, details)

        return _remote_value(result.get("result", {}))

    async def content(self, *, timeout: Optional[float] = None) -> str:
        """Get the page HTML."""
        html = await self.evaluate(
            "(() => { const d = document.doctype;"
            " return (d ? new XMLSerializer().serializeToString(d) : '')"
            " + document.documentElement.outerHTML; })()",
            timeout=timeout,
        )
        return html or ""

    async def set_content(self, html: str) -> None:
        """Replace the document of the main frame with ``html``."""
        self._check_open()
        tree = await self._connection.send("Page.getFrameTree")
        frame_id = tree["frameTree"]["frame"]["id"]
        await self._connection.send("Page.setDocumentContent", {"frameId": frame_id, "html": html})

    async def screenshot(
        self,
        *,
        path: Optional[Union[str, Path]] = None,
        format: str = "png",
        quality: Optional[int] = None,
        clip: Optional[dict[str, float]] = None,
        full_page: bool = False,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Take a screenshot.

        Args:
            path: Also write the image to this file.
            format: Image format (png, jpeg, webp).
            quality: Compression quality (0-100), jpeg and webp only.
            clip: Region to capture (x, y, width, height, scale).
            full_page: Capture beyond the viewport.
            timeout: Timeout in seconds.

        Returns:
            Image data.
        """
        self._check_open()
        params: dict[str, Any] = {"format": format, "captureBeyondViewport": full_page}
        if quality is not None and format in ("jpeg", "webp"):
            params["quality"] = quality
        if clip:
            params["clip"] = {"scale": 1, **clip}

        result = await retry_deadline(
            lambda: self._connection.send("Page.captureScreenshot", params),
            self._timeout(timeout),
            label="screenshot",
        )
        data = base64.b64decode(result["data"])
        if path:
            Path(path).write_bytes(data)
        return data

    async def pdf(
        self,
        *,
        path: Optional[Union[str, Path]] = None,
        landscape: bool = False,
        print_background: bool = False,
        scale: float = 1,
        page_ranges: str = "",
        prefer_css_page_size: bool = False,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Print the page to PDF. Headless only."""
        self._check_open()
        params: dict[str, Any] = {
            "landscape": landscape,
            "printBackground": print_background,
            "scale": scale,
            "preferCSSPageSize": prefer_css_page_size,
        }
        if page_ranges:
            params["pageRanges"] = page_ranges

        result = await retry_deadline(
            lambda: self._connection.send("Page.printToPDF", params),
            self._timeout(timeout),
            label="pdf",
        )
        data = base64.b64decode(result["data"])
        if path:
            Path(path).write_bytes(data)
        return data

    # Waits

    async def wait_for_function(
        self,
        script: str,
        *args: Any,
        timeout: Optional[float] = None,
        polling: float = DEFAULT_POLLING_INTERVAL,
    ) -> Any:
        """Evaluate ``script`` repeatedly until it returns a truthy value.

        Returns:
            The truthy value.
        """
        self._check_open()
        expression = _call_expression(script, args)

        async def poll() -> Any:
            while True:
                try:
                    value = await self._evaluate_once(expression)
                except CDPError as e:
                    logger.debug(f"wait_for_function retrying after: {e}")
                    value = None
                if value:
                    return value
                await asyncio.sleep(polling)

        return await with_deadline(poll(), self._timeout(timeout), operation="wait_for_function")

    async def wait_for_selector(
        self,
        selector: str,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        """Wait until an element matching ``selector`` is in the document."""
        await self.wait_for_function(
            "(selector) => document.querySelector(selector) !== null",
            selector,
            timeout=timeout,
        )

    async def wait_for_timeout(self, timeout: float) -> None:
        """Sleep for ``timeout`` seconds."""
        await asyncio.sleep(timeout)

    # Cookies and emulation

    async def cookies(self, *urls: str) -> list[Cookie]:
        """Cookies visible to ``urls``, or to the current URL."""
        self._check_open()
        params: dict[str, Any] = {"urls": list(urls)} if urls else {}
        result = await self._connection.send("Network.getCookies", params)
        return [Cookie.from_cdp(c) for c in result.get("cookies", [])]

    async def set_cookies(self, *cookies: Cookie) -> None:
        self._check_open()
        params = []
        for cookie in cookies:
            item = cookie.to_cdp()
            if "domain" not in item and "url" not in item:
                item["url"] = self._url
            params.append(item)
        await self._connection.send("Network.setCookies", {"cookies": params})

    async def delete_cookies(
        self,
        name: str,
        *,
        url: Optional[str] = None,
        domain: Optional[str] = None,
        path: Optional[str] = None,
    ) -> None:
        self._check_open()
        params: dict[str, Any] = {"name": name}
        if domain is None and url is None:
            url = self._url
        if url is not None:
            params["url"] = url
        if domain is not None:
            params["domain"] = domain
        if path is not None:
            params["path"] = path
        await self._connection.send("Network.deleteCookies", params)

    async def set_user_agent(
        self,
        user_agent: str,
        *,
        accept_language: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> None:
        """Override the user agent of this page."""
        self._check_open()
        params: dict[str, Any] = {"userAgent": user_agent}
        if accept_language:
            params["acceptLanguage"] = accept_language
        if platform:
            params["platform"] = platform
        await self._connection.send("Emulation.setUserAgentOverride", params)

    async def set_viewport(
        self,
        width: int,
        height: int,
        *,
        device_scale_factor: float = 1,
        is_mobile: bool = False,
    ) -> None:
        """Set viewport size."""
        self._check_open()
        await self._connection.send(
            "Emulation.setDeviceMetricsOverride",
            {
                "width": width,
                "height": height,
                "deviceScaleFactor": device_scale_factor,
                "mobile": is_mobile,
            },
        )

    async def bring_to_front(self) -> None:
        self._check_open()
        await self._connection.send("Page.bringToFront")

    async def emulate_media_features(
        self,
        features: Optional[dict[str, str]] = None,
        *,
        media: Optional[str] = None,
    ) -> None:
        """Emulate CSS media features, e.g. ``{"prefers-color-scheme": "dark"}``.

        Args:
            features: Media feature values. None or empty resets them.
            media: Media type to emulate ("screen", "print"). None resets it.
        """
        self._check_open()
        await self._connection.send(
            "Emulation.setEmulatedMedia",
            {
                "media": media or "",
                "features": [
                    {"name": name, "value": value} for name, value in (features or {}).items()
                ],
            },
        )

    # Authentication

    async def authenticate(self, username: str, password: str) -> None:
        """Answer HTTP authentication challenges with these credentials.

        Turns on auth handling in the Fetch domain. When the page has no
        sandbox or interceptor, paused requests are continued unchanged. A
        challenge repeated for the same request after the credentials were
        given is cancelled instead of retried.
        """
        self._check_open()
        self._credentials = (username, password)
        self._auth_attempts.clear()

        if self._interception is not None:
            await self._interception.enable(self._connection, handle_auth_requests=True)
            return

        if self._continue_paused is None:
            self._continue_paused = self._connection.on(
                "Fetch.requestPaused", self._on_request_paused
            )
        await self._connection.send("Fetch.enable", fetch_enable_params(handle_auth_requests=True))

    # Events

    def on(self, event: Union[PageEvent, str], handler: EventHandler) -> Unsubscribe:
        """Subscribe to a page event.

        Events: ``console`` (ConsoleMessage), ``dialog`` (Dialog),
        ``filechooser`` (FileChooser), ``pageerror`` (PageError),
        ``framenavigated`` (url) and ``close`` (the page).

        Returns:
            Callable removing the subscription.
        """
        return self._events.on(PageEvent(event).value, handler)

    def once(self, event: Union[PageEvent, str], handler: EventHandler) -> Unsubscribe:
        return self._events.once(PageEvent(event).value, handler)

    def off(self, event: Union[PageEvent, str], handler: Optional[EventHandler] = None) -> None:
        self._events.off(PageEvent(event).value, handler)

    async def wait_for_event(
        self,
        event: Union[PageEvent, str],
        *,
        predicate: Optional[EventPredicate] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Wait for the next ``event`` matching ``predicate`` and return its payload."""
        self._check_open()
        name = PageEvent(event).value
        future = self._events.wait_for(name, predicate)
        try:
            return await with_deadline(future, self._timeout(timeout), operation=f"waiting for {name}")
        finally:
            future.cancel()

    def _on_frame_navigated(self, params: dict[str, Any]) -> None:
        frame = params.get("frame", {})
        if frame.get("parentId"):
            return
        self._url = frame.get("url", self._url)
        self._events.emit(PageEvent.FRAME_NAVIGATED.value, self._url)

    def _on_console(self, params: dict[str, Any]) -> None:
        self._events.emit(PageEvent.CONSOLE.value, ConsoleMessage.from_cdp(params))

    def _on_exception(self, params: dict[str, Any]) -> None:
        self._events.emit(PageEvent.PAGE_ERROR.value, PageError.from_cdp(params))

    def _on_dialog(self, params: dict[str, Any]) -> Optional[Awaitable[None]]:
        dialog = Dialog(self._connection, params)
        if self._events.emit(PageEvent.DIALOG.value, dialog) == 0:
            # Nobody can answer it, and an open dialog blocks the page
            logger.debug(f"[{self._target_id}] Dismissing unhandled {dialog!r}")
            return dialog.dismiss()
        return None

    def _on_file_chooser(self, params: dict[str, Any]) -> None:
        self._events.emit(PageEvent.FILE_CHOOSER.value, FileChooser(self._connection, params))

    async def _on_auth_required(self, params: dict[str, Any]) -> None:
        request_id = params["requestId"]
        if self._credentials is None:
            response: dict[str, Any] = {"response": "Default"}
        elif request_id in self._auth_attempts:
            logger.debug(f"[{self._target_id}] Credentials rejected for {request_id}")
            response = {"response": "CancelAuth"}
        else:
            self._auth_attempts.add(request_id)
            username, password = self._credentials
            response = {
                "response": "ProvideCredentials",
                "username": username,
                "password": password,
            }
        await self._send_fetch_reply(
            "Fetch.continueWithAuth",
            {"requestId": request_id, "authChallengeResponse": response},
        )

    async def _on_request_paused(self, params: dict[str, Any]) -> None:
        await self._send_fetch_reply("Fetch.continueRequest", {"requestId": params["requestId"]})

    async def _send_fetch_reply(self, method: str, params: dict[str, Any]) -> None:
        try:
            await self._connection.send(method, params)
        except (TransportClosedError, CDPError) as e:
            logger.debug(f"[{self._target_id}] {method} failed for {params['requestId']}: {e}")

    # Lifecycle

    async def close(self) -> None:
        """Close the page and its target.

        Raises:
            AlreadyClosedError: If the page was already closed.
        """
        if self._closed:
            raise AlreadyClosedError("Page has already been closed")
        self._closed = True

        browser = self.browser
        if browser is not None:
            browser._remove_page(self)

        logger.debug(f"Closing page {self._target_id}")
        try:
            await self._connection.close()
            if browser is not None:
                await browser._close_target(self._target_id)
        finally:
            self._events.emit(PageEvent.CLOSE.value, self)
            self._events.clear()

    def _mark_closed(self) -> None:
        """Flag the page closed without talking to the browser."""
        if self._closed:
            return
        self._closed = True
        self._events.emit(PageEvent.CLOSE.value, self)
        self._events.clear()

    def _on_connection_closed(self) -> None:
        if self._closed:
            return
        logger.debug(f"Connection of page {self._target_id} dropped")
        browser = self.browser
        if browser is not None:
            browser._remove_page(self)
        self._mark_closed()

    def _check_open(self) -> None:
        if self.closed:
            raise AlreadyClosedError("Page has been closed")

    def _timeout(self, timeout: Optional[float]) -> float:
        return self._options.timeout if timeout is None else timeout


def _call_expression(script: str, args: tuple[Any, ...]) -> str:
    """``script`` as is, or called with ``args`` when it is a function."""
    if not args and not FUNCTION_PATTERN.match(script):
        return script
    arguments = ", ".join(json.dumps(arg) for arg in args)
    return f"({script})({arguments})"


def _remote_value(remote: dict[str, Any]) -> Any:
    """Python value of a ``Runtime.RemoteObject`` returned by value."""
    if "value" in remote:
        return remote["value"]
    unserializable = remote.get("unserializableValue")
    if unserializable is not None:
        if unserializable in UNSERIALIZABLE_VALUES:
            return UNSERIALIZABLE_VALUES[unserializable]
        if unserializable.endswith("n"):
            return int(unserializable[:-1])
        return unserializable
    return None


__all__ = ["Page"]
