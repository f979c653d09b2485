"""
Request interception for lodestar.

Every request a page makes is paused through the CDP Fetch domain and
decided by an InterceptionPolicy, either a sandbox permission check or a
user callback working on httpx requests and responses.
"""

from __future__ import annotations

import base64
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Optional, Union

import httpx

from lodestar.exceptions import CDPError, InterceptorError, TransportClosedError
from lodestar.network.sandbox import Permissions

if TYPE_CHECKING:
    from lodestar.cdp.connection import CDPConnection
    from lodestar.config.options import PageOptions

logger = logging.getLogger(__name__)

InterceptorCallback = Callable[
    [httpx.Request],
    Union[Optional[httpx.Response], Awaitable[Optional[httpx.Response]]],
]

FETCH_PATTERNS = [{"urlPattern": "*"}]


class ErrorReason(str, Enum):
    """Network error reasons accepted by ``Fetch.failRequest``."""

    FAILED = "Failed"
    ABORTED = "Aborted"
    TIMED_OUT = "TimedOut"
    ACCESS_DENIED = "AccessDenied"
    CONNECTION_CLOSED = "ConnectionClosed"
    CONNECTION_RESET = "ConnectionReset"
    CONNECTION_REFUSED = "ConnectionRefused"
    CONNECTION_ABORTED = "ConnectionAborted"
    CONNECTION_FAILED = "ConnectionFailed"
    NAME_NOT_RESOLVED = "NameNotResolved"
    INTERNET_DISCONNECTED = "InternetDisconnected"
    ADDRESS_UNREACHABLE = "AddressUnreachable"
    BLOCKED_BY_CLIENT = "BlockedByClient"
    BLOCKED_BY_RESPONSE = "BlockedByResponse"


def fetch_enable_params(handle_auth_requests: bool = False) -> dict[str, Any]:
    """Parameters for ``Fetch.enable`` pausing every request."""
    params: dict[str, Any] = {"patterns": FETCH_PATTERNS}
    if handle_auth_requests:
        params["handleAuthRequests"] = True
    return params


class InterceptionMode(str, Enum):
    SANDBOX = "sandbox"
    INTERCEPTOR = "interceptor"


def cdp_request_to_request(request: dict[str, Any]) -> httpx.Request:
    """Convert a CDP ``Network.Request`` into an httpx.Request.

    The body is streamed lazily from the base64 ``postDataEntries`` (or the
    plain ``postData``); read it with ``await request.aread()``.
    """
    content: Optional[AsyncIterator[bytes]] = None
    if request.get("hasPostData") or request.get("postData") is not None:
        content = _post_data_stream(request)

    return httpx.Request(
        request.get("method", "GET"),
        request["url"],
        headers=request.get("headers") or {},
        content=content,
    )


async def _post_data_stream(request: dict[str, Any]) -> AsyncIterator[bytes]:
    entries = request.get("postDataEntries")
    if entries:
        for entry in entries:
            data = entry.get("bytes")
            if data:
                yield base64.b64decode(data)
        return

    post_data = request.get("postData")
    if post_data:
        yield post_data.encode("utf-8")


async def response_to_cdp_response(response: httpx.Response) -> dict[str, Any]:
    """Convert an httpx.Response into ``Fetch.fulfillRequest`` parameters.

    The body is read in full and base64 encoded.
    """
    body = await response.aread()

    params: dict[str, Any] = {
        "responseCode": response.status_code,
        "responseHeaders": [
            {"name": name, "value": value}
            for name, value in response.headers.multi_items()
        ],
    }
    if response.reason_phrase:
        params["responsePhrase"] = response.reason_phrase
    if body:
        params["body"] = base64.b64encode(body).decode("ascii")
    return params


@dataclass
class Decision:
    """Outcome for one paused request."""

    action: str  # 'continue', 'fulfill' or 'fail'
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def method(self) -> str:
        return {
            "continue": "Fetch.continueRequest",
            "fulfill": "Fetch.fulfillRequest",
            "fail": "Fetch.failRequest",
        }[self.action]

    @classmethod
    def proceed(cls, request_id: str) -> "Decision":
        return cls("continue", {"requestId": request_id})

    @classmethod
    def fail(cls, request_id: str, reason: Union[ErrorReason, str]) -> "Decision":
        reason = reason.value if isinstance(reason, ErrorReason) else reason
        return cls("fail", {"requestId": request_id, "errorReason": reason})

    @classmethod
    def fulfill(cls, request_id: str, response_params: dict[str, Any]) -> "Decision":
        return cls("fulfill", {"requestId": request_id, **response_params})


class InterceptionPolicy:
    """Decides every paused request of a page.

    Sandbox mode fails any request whose URL is not granted by the
    permissions. Interceptor mode hands an httpx.Request to the callback:
    returning None continues the request, returning an httpx.Response
    fulfills it, raising InterceptorError fails it with the error's reason.

    Example:
        def interceptor(request: httpx.Request):
            if request.url.host == "ads.example.com":
                raise InterceptorError(ErrorReason.BLOCKED_BY_CLIENT)
            return None

        policy = InterceptionPolicy.intercept(interceptor)
        policy.install(connection)
        await policy.enable(connection)
    """

    def __init__(
        self,
        *,
        permissions: Optional[Permissions] = None,
        callback: Optional[InterceptorCallback] = None,
    ) -> None:
        if (permissions is None) == (callback is None):
            raise ValueError("Exactly one of permissions or callback is required")
        self._permissions = permissions
        self._callback = callback

    @classmethod
    def sandbox(cls, permissions: Optional[Permissions] = None) -> "InterceptionPolicy":
        """Sandbox policy. Defaults to the permissions granted by the environment."""
        return cls(permissions=permissions if permissions is not None else Permissions.from_env())

    @classmethod
    def intercept(cls, callback: InterceptorCallback) -> "InterceptionPolicy":
        return cls(callback=callback)

    @classmethod
    def from_page_options(cls, options: "PageOptions") -> Optional["InterceptionPolicy"]:
        """Policy configured by page options, None when interception is off."""
        permissions = options.sandbox_permissions()
        if permissions is not None:
            return cls.sandbox(permissions)
        if options.interceptor is not None:
            return cls.intercept(options.interceptor)
        return None

    @property
    def mode(self) -> InterceptionMode:
        if self._permissions is not None:
            return InterceptionMode.SANDBOX
        return InterceptionMode.INTERCEPTOR

    @property
    def permissions(self) -> Optional[Permissions]:
        return self._permissions

    def install(self, connection: "CDPConnection") -> Callable[[], None]:
        """Subscribe to ``Fetch.requestPaused`` on ``connection``.

        Returns:
            Callable removing the subscription.
        """

        async def on_request_paused(params: dict[str, Any]) -> None:
            await self.handle_request_paused(connection, params)

        return connection.on("Fetch.requestPaused", on_request_paused)

    async def enable(
        self,
        connection: "CDPConnection",
        *,
        handle_auth_requests: bool = False,
    ) -> None:
        """Enable request pausing for every URL.

        Args:
            connection: Page connection.
            handle_auth_requests: Also pause on HTTP auth challenges
                (``Fetch.authRequired``).
        """
        await connection.send("Fetch.enable", fetch_enable_params(handle_auth_requests))

    async def handle_request_paused(
        self,
        connection: "CDPConnection",
        params: dict[str, Any],
    ) -> None:
        """Decide a paused request and send the decision."""
        decision = await self.decide(params)
        try:
            await connection.send(decision.method, decision.params)
        except (TransportClosedError, CDPError) as e:
            logger.debug(f"Could not {decision.action} request {params.get('requestId')}: {e}")

    async def decide(self, params: dict[str, Any]) -> Decision:
        """Decision for a ``Fetch.requestPaused`` payload."""
        request_id = params["requestId"]
        request = params.get("request", {})

        if self._permissions is not None:
            url = request.get("url", "")
            if self._permissions.check_url(url):
                return Decision.proceed(request_id)
            logger.debug(f"Sandbox blocked request to {url}")
            return Decision.fail(request_id, ErrorReason.BLOCKED_BY_CLIENT)

        callback = self._callback
        if callback is None:
            raise ValueError("InterceptionPolicy has neither permissions nor a callback")
        try:
            result = callback(cdp_request_to_request(request))
            if inspect.isawaitable(result):
                result = await result
        except InterceptorError as e:
            return Decision.fail(request_id, e.reason)
        except Exception as e:
            logger.exception(f"Interceptor raised for {request.get('url')}: {e}")
            return Decision.fail(request_id, ErrorReason.FAILED)

        if result is None:
            return Decision.proceed(request_id)
        if isinstance(result, httpx.Response):
            return Decision.fulfill(request_id, await response_to_cdp_response(result))

        logger.error(
            f"Interceptor returned {type(result).__name__}, expected httpx.Response or None"
        )
        return Decision.fail(request_id, ErrorReason.FAILED)


__all__ = [
    "Decision",
    "ErrorReason",
    "InterceptionMode",
    "InterceptionPolicy",
    "InterceptorCallback",
    "cdp_request_to_request",
    "fetch_enable_params",
    "response_to_cdp_response",
]
