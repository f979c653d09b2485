"""
Configuration options classes for lodestar.

This module provides strongly-typed option classes for launching or
connecting to a browser and for opening pages.
"""

from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lodestar.network.sandbox import Permissions

from .defaults import (
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_HEADLESS,
    DEFAULT_LAUNCH_TIMEOUT,
    DEFAULT_PRODUCT,
    DEFAULT_TIMEOUT,
    DEFAULT_WAIT_UNTIL,
)


class Product(str, Enum):
    """Supported browser products."""

    CHROME = "chrome"
    FIREFOX = "firefox"


class WaitUntil(str, Enum):
    """Navigation completion conditions."""

    NONE = "none"
    LOAD = "load"
    NETWORKIDLE0 = "networkidle0"
    NETWORKIDLE2 = "networkidle2"

    @property
    def idle_connections(self) -> Optional[int]:
        """Connection threshold for network idle waits, None otherwise."""
        return {
            WaitUntil.NETWORKIDLE0: 0,
            WaitUntil.NETWORKIDLE2: 2,
        }.get(self)


class WindowSize(BaseModel):
    """Browser window size."""

    width: int = Field(..., gt=0, description="Window width")
    height: int = Field(..., gt=0, description="Window height")


class LaunchPresets(BaseModel):
    """Groups of launch flags enabled together."""

    hardened: bool = Field(False, description="Strip telemetry and background features")
    window_size: Optional[WindowSize] = Field(None, description="Initial window size")
    bg_transparent: bool = Field(False, description="Transparent default background")


class LaunchOptions(BaseModel):
    """Browser launch configuration options."""

    product: Product = Field(Product(DEFAULT_PRODUCT), description="Browser product")
    headless: bool = Field(DEFAULT_HEADLESS, description="Run in headless mode")
    path: Optional[str] = Field(None, description="Browser executable path")
    args: list[str] = Field(default_factory=list, description="Additional browser arguments")
    user_data_dir: Optional[str] = Field(
        None, description="User data directory. A temporary one is used if not set"
    )
    user_agent: Optional[str] = Field(None, description="User agent override for pages")
    launch_presets: LaunchPresets = Field(
        default_factory=LaunchPresets, description="Launch flag presets"
    )
    env: Optional[dict[str, str]] = Field(None, description="Environment for the process")
    timeout: float = Field(
        DEFAULT_LAUNCH_TIMEOUT, gt=0, description="Launch timeout in seconds"
    )
    close_timeout: float = Field(
        DEFAULT_CLOSE_TIMEOUT, ge=0, description="Grace period before killing the process"
    )
    ws_endpoint: Optional[str] = Field(
        None, description="Connect to this endpoint instead of launching"
    )


class ConnectOptions(BaseModel):
    """Options for attaching to an already running browser."""

    endpoint: str = Field(..., description="ws:// URL, http(s):// URL or host:port")
    product: Product = Field(Product(DEFAULT_PRODUCT), description="Browser product")
    user_agent: Optional[str] = Field(None, description="User agent override for pages")

    @field_validator("endpoint")
    @classmethod
    def check_endpoint(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("endpoint must not be empty")
        return v.strip()


class PageOptions(BaseModel):
    """Options for a new page.

    ``sandbox`` and ``interceptor`` are mutually exclusive. ``sandbox=True``
    applies the permissions granted to the process through the environment.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    wait_until: WaitUntil = Field(
        WaitUntil(DEFAULT_WAIT_UNTIL), description="Navigation completion condition"
    )
    timeout: float = Field(
        DEFAULT_TIMEOUT, gt=0, description="Default operation timeout in seconds"
    )
    sandbox: Union[bool, Permissions] = Field(
        False, description="Fail-closed permission check for every request"
    )
    interceptor: Optional[Callable[..., Any]] = Field(
        None, description="Callback deciding every paused request"
    )

    @model_validator(mode="after")
    def check_interception_mode(self) -> "PageOptions":
        if self.sandbox_enabled and self.interceptor is not None:
            raise ValueError("sandbox and interceptor are mutually exclusive")
        return self

    @property
    def sandbox_enabled(self) -> bool:
        return self.sandbox is not False

    def sandbox_permissions(self) -> Optional[Permissions]:
        """Resolve the sandbox setting to a permission set, None when disabled."""
        if self.sandbox is False:
            return None
        if self.sandbox is True:
            return Permissions.from_env()
        return self.sandbox
