"""
Chrome DevTools Protocol (CDP) module for lodestar.

This module provides low-level access to CDP:
- CDPConnection: WebSocket connection to a browser or page target
- BrowserProcess: Manages the browser process lifecycle
- Endpoint helpers: /json/version discovery and /json/close

Example usage:
    ```python
    from lodestar.cdp import BrowserProcess, CDPConnection, generate_bin_args, resolve_binary

    process = BrowserProcess(resolve_binary("chrome"), generate_bin_args("chrome"))
    async with process:
        async with CDPConnection(process.ws_endpoint) as connection:
            result = await connection.send("Target.getTargets")
            pages = [t for t in result["targetInfos"] if t["type"] == "page"]
    ```
"""

from lodestar.cdp.connection import CDPConnection
from lodestar.cdp.endpoint import (
    close_target,
    fetch_version,
    http_base,
    is_ws_url,
    page_ws_url,
    resolve_ws_endpoint,
)
from lodestar.cdp.launcher import (
    BrowserProcess,
    find_browser_executable,
    generate_bin_args,
    resolve_binary,
)

__all__ = [
    # Connection
    "CDPConnection",
    # Endpoint
    "close_target",
    "fetch_version",
    "http_base",
    "is_ws_url",
    "page_ws_url",
    "resolve_ws_endpoint",
    # Launcher
    "BrowserProcess",
    "find_browser_executable",
    "generate_bin_args",
    "resolve_binary",
]
