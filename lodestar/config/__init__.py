"""
Configuration module for lodestar.

Provides:
- Strongly-typed option classes (LaunchOptions, ConnectOptions, PageOptions)
- Environment variable toggles, read once per process
- Default values

Environment variables:
    LODESTAR_DEBUG=true                   verbose logging and wire traces
    LODESTAR_BIN_ARGS="--foo --bar"       extra browser flags
    LODESTAR_BROWSER_PATH=/usr/bin/chrome browser executable
    LODESTAR_ALLOW_NET=example.com        sandbox net allow-list
    LODESTAR_ALLOW_READ=/srv/www          sandbox read allow-list
"""

from .defaults import (
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_HEADLESS,
    DEFAULT_IDLE_TIME,
    DEFAULT_LAUNCH_TIMEOUT,
    DEFAULT_PRODUCT,
    DEFAULT_TIMEOUT,
    DEFAULT_WAIT_UNTIL,
    ENV_PREFIX,
    PROTOCOL_VERSION,
)
from .env import (
    EnvSettings,
    get_env,
    get_env_bool,
    get_env_key,
    get_env_list,
    get_env_settings,
    load_env_settings,
)
from .options import (
    ConnectOptions,
    LaunchOptions,
    LaunchPresets,
    PageOptions,
    Product,
    WaitUntil,
    WindowSize,
)

__all__ = [
    # Option classes
    "ConnectOptions",
    "LaunchOptions",
    "LaunchPresets",
    "PageOptions",
    "WindowSize",
    # Enums
    "Product",
    "WaitUntil",
    # Environment
    "EnvSettings",
    "get_env",
    "get_env_bool",
    "get_env_key",
    "get_env_list",
    "get_env_settings",
    "load_env_settings",
    "ENV_PREFIX",
    # Defaults
    "DEFAULT_CLOSE_TIMEOUT",
    "DEFAULT_HEADLESS",
    "DEFAULT_IDLE_TIME",
    "DEFAULT_LAUNCH_TIMEOUT",
    "DEFAULT_PRODUCT",
    "DEFAULT_TIMEOUT",
    "DEFAULT_WAIT_UNTIL",
    "PROTOCOL_VERSION",
]
