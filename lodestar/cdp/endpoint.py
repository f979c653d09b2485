"""
DevTools HTTP endpoint helpers.

Discovery of the browser WebSocket URL through ``/json/version``, and target
closing through ``/json/close``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from urllib.parse import urlsplit

import httpx

from lodestar.config.defaults import PROTOCOL_VERSION, TARGET_CLOSED_RESPONSE
from lodestar.exceptions import LodestarError, ProtocolVersionMismatch

logger = logging.getLogger(__name__)

WS_SCHEMES = {"ws": "http", "wss": "https"}


def is_ws_url(endpoint: str) -> bool:
    """Whether ``endpoint`` is already a WebSocket URL."""
    return urlsplit(endpoint).scheme in WS_SCHEMES


def http_base(endpoint: str) -> str:
    """HTTP base URL (``scheme://host:port``) of an endpoint.

    Accepts ws(s):// and http(s):// URLs as well as a bare ``host:port``.
    """
    endpoint = endpoint.strip()
    if "://" not in endpoint:
        endpoint = f"http://{endpoint}"
    parts = urlsplit(endpoint)
    scheme = WS_SCHEMES.get(parts.scheme, parts.scheme)
    if not parts.netloc:
        raise ValueError(f"Invalid DevTools endpoint: {endpoint}")
    return f"{scheme}://{parts.netloc}"


def page_ws_url(browser_ws_url: str, target_id: str) -> str:
    """WebSocket URL of a page target, derived from the browser endpoint."""
    parts = urlsplit(browser_ws_url)
    return f"{parts.scheme}://{parts.netloc}/devtools/page/{target_id}"


@asynccontextmanager
async def _http_client(client: Optional[httpx.AsyncClient]) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient() as owned:
        yield owned


async def fetch_version(
    endpoint: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> dict[str, Any]:
    """GET ``/json/version`` of a DevTools endpoint.

    Args:
        endpoint: Any form accepted by http_base.
        client: Optional httpx client to use.

    Returns:
        The decoded JSON body.
    """
    url = f"{http_base(endpoint)}/json/version"
    logger.debug(f"Fetching {url}")
    async with _http_client(client) as http:
        response = await http.get(url)
        response.raise_for_status()
        return response.json()


async def resolve_ws_endpoint(
    endpoint: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Resolve any endpoint form to the browser WebSocket URL.

    WebSocket URLs are returned unchanged. Otherwise ``/json/version`` is
    queried and its protocol version must equal PROTOCOL_VERSION.

    Raises:
        ProtocolVersionMismatch: If the browser speaks another version.
        LodestarError: If the response carries no WebSocket URL.
    """
    endpoint = endpoint.strip()
    if is_ws_url(endpoint):
        return endpoint

    data = await fetch_version(endpoint, client=client)
    version = data.get("Protocol-Version")
    if version != PROTOCOL_VERSION:
        raise ProtocolVersionMismatch(PROTOCOL_VERSION, version)

    ws_url = data.get("webSocketDebuggerUrl")
    if not ws_url:
        raise LodestarError(f"Could not get WebSocket URL from {endpoint}")
    return ws_url


async def close_target(
    endpoint: str,
    target_id: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    """Close a target through ``GET /json/close/<target_id>``.

    Raises:
        LodestarError: If the browser did not answer with the expected body.
    """
    url = f"{http_base(endpoint)}/json/close/{target_id}"
    async with _http_client(client) as http:
        response = await http.get(url)
        body = response.text
    if body != TARGET_CLOSED_RESPONSE:
        raise LodestarError(
            f"Unexpected response closing target {target_id}: "
            f"{response.status_code} {body!r}"
        )
    logger.debug(f"Closed target {target_id}")


__all__ = [
    "close_target",
    "fetch_version",
    "http_base",
    "is_ws_url",
    "page_ws_url",
    "resolve_ws_endpoint",
]
