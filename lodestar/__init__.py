"""
lodestar: asyncio browser automation over the Chrome DevTools Protocol.

Launches or attaches to a browser, speaks CDP to it over WebSockets and
exposes page operations (navigate, evaluate, screenshot, intercept network
traffic) on top.

Basic usage:
    from lodestar import launch

    async with await launch() as browser:
        page = await browser.new_page("https://example.com")
        await page.wait_for_selector("h1")
        print(await page.evaluate("document.title"))

Request interception:
    import httpx
    from lodestar import InterceptorError, launch

    def interceptor(request: httpx.Request):
        if request.url.path.endswith(".png"):
            raise InterceptorError("BlockedByClient")
        if request.url.path == "/api":
            return httpx.Response(200, json={"mocked": True})
        return None

    page = await browser.new_page("https://example.com", interceptor=interceptor)

Sandboxed pages:
    from lodestar import Permissions

    page = await browser.new_page(
        "https://example.com",
        sandbox=Permissions(net=["example.com"]),
    )
"""

__version__ = "0.1.0"

from lodestar.browser import Browser, connect, launch
from lodestar.cdp import (
    BrowserProcess,
    CDPConnection,
    find_browser_executable,
    generate_bin_args,
    resolve_binary,
)
from lodestar.config import (
    ConnectOptions,
    LaunchOptions,
    LaunchPresets,
    PageOptions,
    Product,
    WaitUntil,
    WindowSize,
)
from lodestar.events import Dialog, DialogType, EventBus, FileChooser, PageEvent
from lodestar.exceptions import (
    AlreadyClosedError,
    BrowserCloseError,
    CDPError,
    CommandTimeout,
    EvaluationError,
    InterceptorError,
    LaunchError,
    LodestarError,
    NavigationError,
    NavigationHistoryUnavailable,
    ProtocolVersionMismatch,
    TransportClosedError,
)
from lodestar.models import BrowserVersion, ConsoleMessage, Cookie, PageError
from lodestar.network import ErrorReason, InterceptionPolicy, Permissions
from lodestar.page import Page
from lodestar.retry import retry_deadline, with_deadline
from lodestar.shutdown import install_signal_handlers, on_shutdown, shutdown

__all__ = [
    # Version
    "__version__",
    # Entry points
    "Browser",
    "Page",
    "connect",
    "launch",
    # CDP
    "BrowserProcess",
    "CDPConnection",
    "find_browser_executable",
    "generate_bin_args",
    "resolve_binary",
    # Config
    "ConnectOptions",
    "LaunchOptions",
    "LaunchPresets",
    "PageOptions",
    "Product",
    "WaitUntil",
    "WindowSize",
    # Events
    "Dialog",
    "DialogType",
    "EventBus",
    "FileChooser",
    "PageEvent",
    # Models
    "BrowserVersion",
    "ConsoleMessage",
    "Cookie",
    "PageError",
    # Network
    "ErrorReason",
    "InterceptionPolicy",
    "Permissions",
    # Retry
    "retry_deadline",
    "with_deadline",
    # Shutdown
    "install_signal_handlers",
    "on_shutdown",
    "shutdown",
    # Exceptions
    "AlreadyClosedError",
    "BrowserCloseError",
    "CDPError",
    "CommandTimeout",
    "EvaluationError",
    "InterceptorError",
    "LaunchError",
    "LodestarError",
    "NavigationError",
    "NavigationHistoryUnavailable",
    "ProtocolVersionMismatch",
    "TransportClosedError",
]
