"""
Browser launcher for CDP connections.

Spawns Chrome/Chromium (or Firefox) with remote debugging on an ephemeral
port and reads the DevTools endpoint from its stderr.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import tempfile
from collections import deque
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from lodestar.config.defaults import (
    BASE_ARGS,
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_LAUNCH_TIMEOUT,
    DIAGNOSTIC_TAIL_LINES,
    HARDENED_CHROME_ARGS,
    MAX_TRANSIENT_EXIT_RETRIES,
    MISSING_LIBRARY_SIGNATURE,
    PROFILE_LOCKED_SIGNATURE,
    SINGLETON_LOCK_FILE,
    TRANSPARENT_BACKGROUND_ARG,
    WINDOWS_TRANSIENT_EXIT_CODE,
)
from lodestar.config.env import get_env_settings
from lodestar.config.options import LaunchPresets, Product
from lodestar.exceptions import CommandTimeout, LaunchError
from lodestar.retry import with_deadline

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"

WS_ENDPOINT_PATTERN = re.compile(r"DevTools listening on (ws://\S+)")

MISSING_LIBRARY_HINT = (
    "The browser could not load a shared library it needs. Install the "
    "browser's system dependencies (for example with your package manager) "
    "and try again."
)

CHROME_EXECUTABLES = [
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
]

FIREFOX_EXECUTABLES = [
    "firefox",
    "firefox-esr",
]


def generate_bin_args(
    product: Union[Product, str] = Product.CHROME,
    *,
    launch_presets: Optional[LaunchPresets] = None,
    args: Sequence[str] = (),
    headless: bool = True,
) -> list[str]:
    """Build the browser command line flags.

    Flags from ``LODESTAR_BIN_ARGS`` and ``args`` come last. Duplicates are
    dropped, keeping the first occurrence.

    Args:
        product: Browser product.
        launch_presets: Optional groups of flags to enable.
        args: Additional user flags.
        headless: Run without a window.

    Returns:
        List of flags, always including ``--remote-debugging-port=0``.
    """
    product = Product(product)
    is_chrome = product == Product.CHROME
    bin_args = list(BASE_ARGS)

    if is_chrome:
        bin_args.append("--disable-blink-features=AutomationControlled")

    if headless:
        bin_args.append("--headless=new" if is_chrome else "--headless")
        bin_args.append("--hide-scrollbars")

    if launch_presets is not None:
        if launch_presets.window_size is not None:
            size = launch_presets.window_size
            bin_args.append(f"--window-size={size.width},{size.height}")
        if is_chrome and launch_presets.hardened:
            bin_args.extend(HARDENED_CHROME_ARGS)
        if is_chrome and launch_presets.bg_transparent:
            bin_args.append(TRANSPARENT_BACKGROUND_ARG)

    bin_args.extend(get_env_settings().bin_args)
    bin_args.extend(args)

    return list(dict.fromkeys(bin_args))


def find_browser_executable(product: Union[Product, str] = Product.CHROME) -> Optional[str]:
    """Find a browser executable path.

    Returns:
        Path to browser executable or None if not found.
    """
    product = Product(product)
    executables = CHROME_EXECUTABLES if product == Product.CHROME else FIREFOX_EXECUTABLES

    # Check PATH
    for exe in executables:
        path = shutil.which(exe)
        if path:
            return path

    if IS_WINDOWS:
        program_files = [
            os.environ.get("PROGRAMFILES", "C:\\Program Files"),
            os.environ.get("PROGRAMFILES(X86)", "C:\\Program Files (x86)"),
            os.environ.get("LOCALAPPDATA", ""),
        ]
        if product == Product.CHROME:
            relative = os.path.join("Google", "Chrome", "Application", "chrome.exe")
        else:
            relative = os.path.join("Mozilla Firefox", "firefox.exe")
        for pf in program_files:
            if pf:
                candidate = os.path.join(pf, relative)
                if os.path.isfile(candidate):
                    return candidate
        return None

    if product == Product.CHROME:
        candidates = [
            "/usr/bin/google-chrome",
            "/usr/bin/google-chrome-stable",
            "/usr/bin/chromium",
            "/usr/bin/chromium-browser",
            "/snap/bin/chromium",
            "/opt/google/chrome/chrome",
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
        ]
    else:
        candidates = [
            "/usr/bin/firefox",
            "/snap/bin/firefox",
            "/Applications/Firefox.app/Contents/MacOS/firefox",
        ]
    for candidate in candidates:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate

    return None


def resolve_binary(product: Union[Product, str] = Product.CHROME, path: Optional[str] = None) -> str:
    """Executable to launch: ``path``, ``LODESTAR_BROWSER_PATH``, then a search.

    Raises:
        LaunchError: If no executable could be found.
    """
    explicit = path or get_env_settings().browser_path
    if explicit:
        if not os.path.exists(explicit):
            raise LaunchError(f"Browser executable not found at {explicit}")
        if not os.path.isfile(explicit) or not os.access(explicit, os.X_OK):
            raise LaunchError(f"Browser path is not an executable file: {explicit}")
        return explicit

    found = find_browser_executable(product)
    if not found:
        raise LaunchError(
            f"Browser executable not found. Install {Product(product).value} "
            "or pass its path explicitly."
        )
    return found


class _ProfileLocked(Exception):
    """Another process holds the user data directory lock."""


class _ProcessExited(Exception):
    """The process exited before printing its DevTools endpoint."""

    def __init__(self, exit_code: Optional[int]) -> None:
        self.exit_code = exit_code
        super().__init__(f"exit code {exit_code}")


class BrowserProcess:
    """Manages a browser subprocess with CDP enabled.

    Example:
        process = BrowserProcess("/usr/bin/chromium", generate_bin_args("chrome"))
        ws_endpoint = await process.launch()
        ...
        await process.close()
    """

    def __init__(
        self,
        executable: str,
        args: Sequence[str] = (),
        *,
        product: Union[Product, str] = Product.CHROME,
        user_data_dir: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        timeout: float = DEFAULT_LAUNCH_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
    ) -> None:
        """Initialize browser process manager.

        Args:
            executable: Path to the browser binary.
            args: Command line flags, usually from generate_bin_args.
            product: Browser product, decides the profile flag.
            user_data_dir: Profile directory. A temporary one is created
                (and removed on close) when not given.
            env: Environment for the process. Inherited when None.
            timeout: Launch timeout in seconds.
            close_timeout: Grace period between terminate and kill.
        """
        self._executable = executable
        self._args = list(args)
        self._product = Product(product)
        self._user_data_dir = user_data_dir
        self._env = env
        self._timeout = timeout
        self._close_timeout = close_timeout

        self._process: Optional[asyncio.subprocess.Process] = None
        self._ws_endpoint: Optional[str] = None
        self._temp_dir: Optional[str] = None
        self._drain_task: Optional[asyncio.Task[None]] = None
        self._diagnostics: deque[str] = deque(maxlen=DIAGNOSTIC_TAIL_LINES)

    @property
    def ws_endpoint(self) -> Optional[str]:
        """Get the WebSocket debugger URL."""
        return self._ws_endpoint

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def is_alive(self) -> bool:
        """Whether the process was started and has not exited."""
        return self._process is not None and self._process.returncode is None

    @property
    def user_data_dir(self) -> Optional[str]:
        """Profile directory of the current process."""
        return self._user_data_dir or self._temp_dir

    @property
    def diagnostics(self) -> list[str]:
        """Last lines the browser wrote to stderr."""
        return list(self._diagnostics)

    async def launch(self) -> str:
        """Launch the browser and return the WebSocket endpoint URL.

        Returns:
            WebSocket debugger URL.

        Raises:
            LaunchError: If the browser exits, or the endpoint does not
                show up within the launch timeout.
        """
        if self._process is not None:
            raise LaunchError("Browser process was already launched")

        try:
            self._ws_endpoint = await with_deadline(
                self._launch_until_ready(),
                self._timeout,
                operation="waiting for DevTools endpoint",
            )
        except CommandTimeout as e:
            await self._cleanup()
            raise LaunchError(
                f"Browser did not expose a DevTools endpoint within {self._timeout}s",
                diagnostics=self.diagnostics,
            ) from e
        except BaseException:
            await self._cleanup()
            raise

        self._drain_task = asyncio.create_task(self._drain_stderr())
        logger.debug(f"Browser launched (pid={self.pid}), WebSocket endpoint: {self._ws_endpoint}")
        return self._ws_endpoint

    async def close(self) -> None:
        """Terminate the browser, killing it if it does not exit in time."""
        await self._cleanup()

    async def _launch_until_ready(self) -> str:
        transient_exits = 0
        while True:
            user_data_dir = self._prepare_user_data_dir()
            self._diagnostics.clear()
            self._process = await self._spawn(self._build_args(user_data_dir))
            logger.debug(f"Spawned browser (pid={self._process.pid})")

            try:
                return await self._read_ws_endpoint()
            except _ProfileLocked:
                logger.debug(f"Profile {user_data_dir} is locked, retrying launch")
                await self._terminate()
                Path(user_data_dir, SINGLETON_LOCK_FILE).unlink(missing_ok=True)
            except _ProcessExited as e:
                if (
                    IS_WINDOWS
                    and e.exit_code == WINDOWS_TRANSIENT_EXIT_CODE
                    and transient_exits < MAX_TRANSIENT_EXIT_RETRIES
                ):
                    transient_exits += 1
                    logger.debug(
                        f"Browser exited with code {e.exit_code}, "
                        f"retrying ({transient_exits}/{MAX_TRANSIENT_EXIT_RETRIES})"
                    )
                    continue

                hint = None
                if any(MISSING_LIBRARY_SIGNATURE in line for line in self._diagnostics):
                    hint = MISSING_LIBRARY_HINT
                raise LaunchError(
                    f"Browser exited with code {e.exit_code} before exposing a DevTools endpoint",
                    diagnostics=self.diagnostics,
                    hint=hint,
                    exit_code=e.exit_code,
                ) from None

    def _prepare_user_data_dir(self) -> str:
        if self._user_data_dir:
            return self._user_data_dir
        self._remove_temp_dir()
        self._temp_dir = tempfile.mkdtemp(prefix="lodestar-profile-")
        return self._temp_dir

    def _build_args(self, user_data_dir: str) -> list[str]:
        if self._product == Product.FIREFOX:
            return [self._executable, *self._args, "--profile", user_data_dir]
        return [self._executable, *self._args, f"--user-data-dir={user_data_dir}"]

    async def _spawn(self, args: list[str]) -> asyncio.subprocess.Process:
        logger.debug(f"Launching browser: {args}")
        try:
            return await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
            )
        except OSError as e:
            raise LaunchError(f"Could not start {self._executable}: {e}") from e

    async def _read_ws_endpoint(self) -> str:
        if self._process is None or self._process.stderr is None:
            raise LaunchError("Browser process has no stderr pipe to read the endpoint from")
        stderr = self._process.stderr

        while True:
            raw = await stderr.readline()
            if not raw:
                exit_code = await self._process.wait()
                raise _ProcessExited(exit_code)

            line = raw.decode("utf-8", errors="replace").rstrip()
            self._diagnostics.append(line)

            match = WS_ENDPOINT_PATTERN.search(line)
            if match:
                return match.group(1)
            if PROFILE_LOCKED_SIGNATURE in line:
                raise _ProfileLocked(line)

    async def _drain_stderr(self) -> None:
        """Keep reading stderr so the pipe never fills up."""
        if self._process is None or self._process.stderr is None:
            return
        try:
            while True:
                raw = await self._process.stderr.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip()
                self._diagnostics.append(line)
                logger.debug(f"[browser] {line}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Stopped reading browser output: {e}")

    async def _terminate(self) -> None:
        """Terminate, wait up to close_timeout, then kill and wait."""
        process = self._process
        if process is None or process.returncode is not None:
            return

        try:
            process.terminate()
        except ProcessLookupError:
            pass

        try:
            await asyncio.wait_for(process.wait(), timeout=self._close_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Browser (pid={process.pid}) did not exit within "
                f"{self._close_timeout}s, killing it"
            )
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    async def _cleanup(self) -> None:
        try:
            await self._terminate()
        finally:
            if self._drain_task is not None and not self._drain_task.done():
                self._drain_task.cancel()
                try:
                    await self._drain_task
                except asyncio.CancelledError:
                    pass
            self._drain_task = None
            self._remove_temp_dir()
            logger.debug("Browser process closed")

    def _remove_temp_dir(self) -> None:
        if self._temp_dir:
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            self._temp_dir = None

    async def __aenter__(self) -> "BrowserProcess":
        await self.launch()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


__all__ = [
    "BrowserProcess",
    "IS_WINDOWS",
    "find_browser_executable",
    "generate_bin_args",
    "resolve_binary",
]
