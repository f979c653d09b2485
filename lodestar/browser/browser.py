"""
Browser class for lodestar.

A Browser owns the browser-level CDP connection, optionally the browser
process it launched, and the pages opened through it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Union

import httpx

from lodestar.cdp.connection import CDPConnection
from lodestar.cdp.endpoint import close_target, page_ws_url, resolve_ws_endpoint
from lodestar.cdp.launcher import BrowserProcess, generate_bin_args, resolve_binary
from lodestar.config.options import (
    ConnectOptions,
    LaunchOptions,
    PageOptions,
    Product,
    WaitUntil,
)
from lodestar.debug import configure_from_env
from lodestar.exceptions import AlreadyClosedError, BrowserCloseError
from lodestar.models import BrowserVersion
from lodestar.network.sandbox import Permissions
from lodestar.page import Page

logger = logging.getLogger(__name__)


class Browser:
    """Controller for one browser, launched locally or attached remotely.

    Use ``launch`` or ``connect`` to create one.

    Example:
        async with await launch() as browser:
            page = await browser.new_page("https://example.com")
            print(await page.evaluate("document.title"))

        # Attach to a browser someone else started
        browser = await connect("127.0.0.1:9222")
        page = await browser.new_page()
        await browser.close()
    """

    def __init__(
        self,
        connection: CDPConnection,
        ws_endpoint: str,
        *,
        process: Optional[BrowserProcess] = None,
        options: Optional[Union[LaunchOptions, ConnectOptions]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize browser.

        Args:
            connection: Connected browser-level CDP connection.
            ws_endpoint: Browser WebSocket endpoint.
            process: The process this browser owns, None when attached.
            options: Options the browser was created with.
            http_client: Optional httpx client for DevTools HTTP calls.
        """
        self._connection = connection
        self._ws_endpoint = ws_endpoint
        self._process = process
        self._options = options or LaunchOptions()
        self._http_client = http_client
        self._pages: list[Page] = []
        self._page_lock = asyncio.Lock()
        self._closed = False
        self._user_agent: Optional[str] = self._options.user_agent

        connection.add_close_callback(self._on_connection_closed)

    def __repr__(self) -> str:
        kind = "remote" if self.is_remote_connection else "local"
        return f"Browser({kind}, ws_endpoint={self._ws_endpoint!r}, pages={len(self._pages)})"

    @property
    def pages(self) -> list[Page]:
        """Open pages, in creation order."""
        return list(self._pages)

    @property
    def closed(self) -> bool:
        """True once closed, or when the browser connection dropped."""
        return self._closed or self._connection.closed

    @property
    def is_remote_connection(self) -> bool:
        """Whether this browser was attached to rather than launched."""
        return self._process is None

    @property
    def options(self) -> Union[LaunchOptions, ConnectOptions]:
        return self._options

    @property
    def product(self) -> Product:
        return self._options.product

    @property
    def process(self) -> Optional[BrowserProcess]:
        return self._process

    @property
    def connection(self) -> CDPConnection:
        return self._connection

    def ws_endpoint(self) -> str:
        """WebSocket endpoint another client can ``connect`` to."""
        return self._ws_endpoint

    async def version(self) -> str:
        """Browser version as ``<product>/<revision>``."""
        info = await self.version_info()
        return f"{info.product}/{info.revision}"

    async def version_info(self) -> BrowserVersion:
        self._check_open()
        return BrowserVersion.model_validate(await self._connection.send("Browser.getVersion"))

    async def user_agent(self) -> str:
        """User agent given to new pages.

        The configured one, or the browser's own without "Headless".
        """
        if self._user_agent:
            return self._user_agent
        info = await self.version_info()
        return info.user_agent.replace("Headless", "")

    async def new_page(
        self,
        url: Optional[str] = None,
        *,
        wait_until: Optional[Union[WaitUntil, str]] = None,
        timeout: Optional[float] = None,
        sandbox: Union[bool, Permissions] = False,
        interceptor: Optional[Any] = None,
    ) -> Page:
        """Open a new page.

        Args:
            url: Navigate here once the page is set up. Blank when None.
            wait_until: Navigation condition for this page.
            timeout: Default operation timeout for this page, in seconds.
            sandbox: Fail every request not granted by these permissions.
                True uses the permissions granted through the environment.
            interceptor: Callback deciding every request (httpx.Request in,
                httpx.Response or None out). Exclusive with ``sandbox``.

        Returns:
            The new page, already in ``pages``.
        """
        self._check_open()
        fields: dict[str, Any] = {"sandbox": sandbox, "interceptor": interceptor}
        if wait_until is not None:
            fields["wait_until"] = wait_until
        if timeout is not None:
            fields["timeout"] = timeout
        options = PageOptions(**fields)

        # Serialized so concurrent calls land in pages in call order
        async with self._page_lock:
            self._check_open()
            result = await self._connection.send("Target.createTarget", {"url": "about:blank"})
            target_id = result["targetId"]

            connection = CDPConnection(page_ws_url(self._ws_endpoint, target_id))
            try:
                await connection.connect()
            except BaseException:
                await self._discard_target(target_id)
                raise

            page = Page(target_id, connection, self, options)
            self._pages.append(page)
            logger.debug(f"Opened page {target_id}")

        try:
            version = await connection.send("Browser.getVersion")
            user_agent = self._user_agent or version["userAgent"].replace("Headless", "")
            await page._initialize(user_agent)
            if url is not None:
                await page.goto(url)
        except BaseException:
            if not page.closed:
                try:
                    await page.close()
                except Exception as e:
                    logger.warning(f"Failed to close page {target_id} after setup error: {e}")
            raise

        return page

    async def close(self) -> None:
        """Close the browser.

        A launched browser is told to close and its process is terminated.
        An attached browser is left running; only the pages opened through
        it are closed.

        Raises:
            AlreadyClosedError: If close was already called.
            BrowserCloseError: If pages of an attached browser failed to close.
        """
        if self._closed:
            raise AlreadyClosedError("Browser has already been closed")
        self._closed = True

        if self._process is None:
            await self._close_remote()
        else:
            await self._close_local(self._process)
        logger.debug(f"Browser closed: {self._ws_endpoint}")

    async def _close_local(self, process: BrowserProcess) -> None:
        try:
            try:
                await self._connection.send("Browser.close", timeout=self._options_close_timeout())
            except Exception as e:
                logger.warning(f"Browser.close failed: {e}")
            await self._connection.close()
        finally:
            try:
                await process.close()
            finally:
                pages, self._pages = self._pages, []
                for page in pages:
                    page._mark_closed()
                await asyncio.gather(
                    *(page.connection.close() for page in pages),
                    return_exceptions=True,
                )

    async def _close_remote(self) -> None:
        errors: list[BaseException] = []
        try:
            for page in list(self._pages):
                try:
                    await page.close()
                except Exception as e:
                    logger.warning(f"Failed to close page {page.target_id}: {e}")
                    errors.append(e)
        finally:
            await self._connection.close()
        if errors:
            raise BrowserCloseError(errors)

    def _remove_page(self, page: Page) -> None:
        """Drop ``page`` from pages. Identity based; unknown pages are ignored."""
        for index, candidate in enumerate(self._pages):
            if candidate is page:
                del self._pages[index]
                return

    async def _close_target(self, target_id: str) -> None:
        if self._connection.closed:
            logger.debug(f"Not closing target {target_id}: browser connection is closed")
            return
        if self.is_remote_connection:
            await self._connection.send("Target.closeTarget", {"targetId": target_id})
        else:
            await close_target(self._ws_endpoint, target_id, client=self._http_client)

    async def _discard_target(self, target_id: str) -> None:
        try:
            await self._connection.send("Target.closeTarget", {"targetId": target_id})
        except Exception as e:
            logger.debug(f"Failed to discard target {target_id}: {e}")

    def _on_connection_closed(self) -> None:
        if self._pages:
            logger.debug(f"Browser connection dropped, {len(self._pages)} page(s) closed")
        pages, self._pages = self._pages, []
        for page in pages:
            page._mark_closed()

    def _options_close_timeout(self) -> Optional[float]:
        return getattr(self._options, "close_timeout", None)

    def _check_open(self) -> None:
        if self.closed:
            raise AlreadyClosedError("Browser has been closed")

    async def __aenter__(self) -> "Browser":
        return self

    async def __aexit__(self, *args: Any) -> None:
        if not self._closed:
            await self.close()


async def launch(options: Optional[LaunchOptions] = None, **kwargs: Any) -> Browser:
    """Launch a browser, or attach to ``ws_endpoint`` when one is configured.

    Args:
        options: Launch options.
        **kwargs: Overrides for individual LaunchOptions fields.

    Returns:
        Connected browser.

    Raises:
        LaunchError: If the binary is missing or did not start.
    """
    if options is None:
        options = LaunchOptions(**kwargs)
    elif kwargs:
        options = LaunchOptions.model_validate({**options.model_dump(), **kwargs})

    configure_from_env()

    if options.ws_endpoint:
        return await connect(
            options.ws_endpoint,
            product=options.product,
            user_agent=options.user_agent,
        )

    path = resolve_binary(options.product, options.path)
    args = generate_bin_args(
        options.product,
        launch_presets=options.launch_presets,
        args=options.args,
        headless=options.headless,
    )
    process = BrowserProcess(
        path,
        args,
        product=options.product,
        user_data_dir=options.user_data_dir,
        env=options.env,
        timeout=options.timeout,
        close_timeout=options.close_timeout,
    )

    ws_endpoint = await process.launch()
    connection = CDPConnection(ws_endpoint)
    try:
        await connection.connect()
    except BaseException:
        await process.close()
        raise

    logger.debug(f"Browser launched: {ws_endpoint}")
    return Browser(connection, ws_endpoint, process=process, options=options)


async def connect(
    endpoint: str,
    *,
    product: Union[Product, str] = Product.CHROME,
    user_agent: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Browser:
    """Attach to a running browser.

    Args:
        endpoint: ``ws://`` URL used as is, or ``http(s)://host:port`` /
            ``host:port`` resolved through ``/json/version``.
        product: Browser product.
        user_agent: User agent override for new pages.
        http_client: Optional httpx client for DevTools HTTP calls.

    Returns:
        Browser that does not own the process.

    Raises:
        ProtocolVersionMismatch: If the browser speaks another protocol version.
    """
    options = ConnectOptions(endpoint=endpoint, product=product, user_agent=user_agent)
    configure_from_env()

    ws_endpoint = await resolve_ws_endpoint(options.endpoint, client=http_client)
    connection = CDPConnection(ws_endpoint)
    await connection.connect()

    logger.debug(f"Connected to browser: {ws_endpoint}")
    return Browser(connection, ws_endpoint, options=options, http_client=http_client)


__all__ = ["Browser", "connect", "launch"]
