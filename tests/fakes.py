"""
In-memory stand-ins for a DevTools server and a browser process.

FakeBrowserServer replaces ``websockets.connect``: every connection it hands
out is a FakeWebSocket whose commands are answered synchronously by the
server's handlers, so responses and events are queued in a deterministic
order.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import websockets

BROWSER_WS = "ws://127.0.0.1:9222/devtools/browser/abc"

HEADLESS_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) HeadlessChrome/120.0.0.0 Safari/537.36"
)

VERSION = {
    "protocolVersion": "1.3",
    "product": "HeadlessChrome/120.0.0.0",
    "revision": "@abc123",
    "userAgent": HEADLESS_USER_AGENT,
    "jsVersion": "12.0",
}

NO_REPLY = object()
_CLOSED = object()
_DROPPED = object()


@dataclass
class Reply:
    """What the server answers to one command."""

    result: dict[str, Any] = field(default_factory=dict)
    error: Optional[dict[str, Any]] = None
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)


Handler = Callable[["FakeWebSocket", dict[str, Any]], Any]


class FakeWebSocket:
    """Client side of one fake DevTools WebSocket."""

    def __init__(self, url: str, server: "FakeBrowserServer") -> None:
        self.url = url
        self.server = server
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise websockets.exceptions.ConnectionClosedOK(None, None)
        message = json.loads(data)
        self.sent.append(message)
        self.server.handle(self, message)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_CLOSED)

    def feed(self, message: dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(message))

    def feed_raw(self, data: str) -> None:
        self._incoming.put_nowait(data)

    def respond(self, message_id: int, result: Optional[dict[str, Any]] = None) -> None:
        self.feed({"id": message_id, "result": result or {}})

    def emit(self, method: str, params: Optional[dict[str, Any]] = None) -> None:
        self.feed({"method": method, "params": params or {}})

    def drop(self) -> None:
        """Close the socket from the remote end."""
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_DROPPED)

    def methods(self) -> list[str]:
        return [message["method"] for message in self.sent]

    def params_of(self, method: str) -> list[dict[str, Any]]:
        return [m.get("params", {}) for m in self.sent if m["method"] == method]

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if item is _DROPPED:
            raise websockets.exceptions.ConnectionClosedError(None, None)
        return item


class FakeBrowserServer:
    """Answers CDP commands for every FakeWebSocket it created."""

    def __init__(self) -> None:
        self.sockets: dict[str, FakeWebSocket] = {}
        self.all_sockets: list[FakeWebSocket] = []
        self.connect_urls: list[str] = []
        self.closed_targets: list[str] = []
        self.refuse: set[str] = set()
        self._target_count = 0
        self.handlers: dict[str, Handler] = {
            "Target.createTarget": self._create_target,
            "Target.closeTarget": self._close_target,
            "Browser.getVersion": lambda ws, params: dict(VERSION),
            "Browser.close": self._browser_close,
            "Page.navigate": self._navigate,
            "Page.getNavigationHistory": lambda ws, params: {
                "currentIndex": 0,
                "entries": [{"id": 1, "url": "about:blank", "title": ""}],
            },
            "Runtime.evaluate": lambda ws, params: {"result": {"type": "undefined"}},
        }

    async def connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.connect_urls.append(url)
        if url in self.refuse:
            raise OSError(f"Connection refused: {url}")
        ws = FakeWebSocket(url, self)
        self.sockets[url] = ws
        self.all_sockets.append(ws)
        return ws

    @property
    def browser_socket(self) -> FakeWebSocket:
        return self.sockets[BROWSER_WS]

    def page_socket(self, target_id: str) -> FakeWebSocket:
        return self.sockets[f"ws://127.0.0.1:9222/devtools/page/{target_id}"]

    def handle(self, ws: FakeWebSocket, message: dict[str, Any]) -> None:
        handler = self.handlers.get(message["method"])
        reply = handler(ws, message.get("params", {})) if handler else {}
        if reply is NO_REPLY:
            return
        if not isinstance(reply, Reply):
            reply = Reply(reply)

        if reply.error is not None:
            ws.feed({"id": message["id"], "error": reply.error})
        else:
            ws.feed({"id": message["id"], "result": reply.result})
        for method, params in reply.events:
            ws.emit(method, params)

    def drop_all(self) -> None:
        for ws in self.all_sockets:
            ws.drop()

    def _create_target(self, ws: FakeWebSocket, params: dict[str, Any]) -> dict[str, Any]:
        self._target_count += 1
        return {"targetId": f"T{self._target_count}"}

    def _close_target(self, ws: FakeWebSocket, params: dict[str, Any]) -> dict[str, Any]:
        self.closed_targets.append(params["targetId"])
        return {"success": True}

    def _browser_close(self, ws: FakeWebSocket, params: dict[str, Any]) -> dict[str, Any]:
        asyncio.get_running_loop().call_soon(self.drop_all)
        return {}

    def _navigate(self, ws: FakeWebSocket, params: dict[str, Any]) -> Reply:
        return Reply(
            {"frameId": "F1", "loaderId": "L1"},
            events=[
                ("Page.frameNavigated", {"frame": {"id": "F1", "url": params["url"]}}),
                ("Page.loadEventFired", {"timestamp": 1.0}),
            ],
        )


class FakeProcess:
    """Stand-in for an asyncio subprocess with a readable stderr."""

    _next_pid = 1000

    def __init__(
        self,
        lines: tuple[str, ...] = (),
        *,
        exit_code: Optional[int] = None,
        exit_on_terminate: bool = True,
    ) -> None:
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.stderr = asyncio.StreamReader()
        self.returncode: Optional[int] = None
        self.terminated = False
        self.killed = False
        self._exit_on_terminate = exit_on_terminate
        self._exited = asyncio.Event()

        for line in lines:
            self.stderr.feed_data(f"{line}\n".encode())
        if exit_code is not None:
            self._exit(exit_code)

    def write(self, line: str) -> None:
        self.stderr.feed_data(f"{line}\n".encode())

    def terminate(self) -> None:
        self.terminated = True
        if self._exit_on_terminate:
            self._exit(-15)

    def kill(self) -> None:
        self.killed = True
        self._exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def _exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self.stderr.feed_eof()
            self._exited.set()
