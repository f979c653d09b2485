"""
Environment variable support for lodestar.

Environment toggles (verbose logging, extra launch flags, binary path and
sandbox permissions) are read once per process through get_env_settings().
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, TypeVar, Union

from .defaults import ENV_PREFIX

T = TypeVar("T")


def get_env_key(key: str, prefix: str = ENV_PREFIX) -> str:
    """Convert a configuration key to environment variable name.

    Args:
        key: Configuration key (e.g., "bin.args")
        prefix: Environment variable prefix

    Returns:
        Environment variable name (e.g., "LODESTAR_BIN_ARGS")
    """
    return f"{prefix}{key.upper().replace('.', '_').replace('-', '_')}"


def parse_bool(value: str) -> bool:
    """Parse string to boolean."""
    return value.strip().lower() in ("true", "1", "yes", "on", "enabled")


def parse_list(value: str, separator: str = ",") -> list[str]:
    """Parse a separated string to a list, dropping empty items.

    Args:
        value: String value
        separator: Item separator. None splits on any whitespace.

    Returns:
        List of stripped items
    """
    if not value:
        return []
    return [item.strip() for item in value.split(separator) if item.strip()]


def get_env(
    key: str,
    default: Optional[T] = None,
    prefix: str = ENV_PREFIX,
) -> Optional[Union[T, str]]:
    """Get raw configuration value from environment variable.

    Args:
        key: Configuration key
        default: Default value if not set
        prefix: Environment variable prefix

    Returns:
        Raw string value or default
    """
    return os.environ.get(get_env_key(key, prefix), default)


def get_env_bool(key: str, default: bool = False, prefix: str = ENV_PREFIX) -> bool:
    """Get boolean value from environment variable.

    Args:
        key: Configuration key
        default: Default value
        prefix: Environment variable prefix

    Returns:
        Boolean value
    """
    value = get_env(key, None, prefix)
    if value is None or value == "":
        return default
    return parse_bool(value)


def get_env_list(
    key: str,
    default: Optional[list[str]] = None,
    separator: Optional[str] = ",",
    prefix: str = ENV_PREFIX,
) -> list[str]:
    """Get list value from environment variable.

    Args:
        key: Configuration key
        default: Default value
        separator: Item separator. None splits on whitespace.
        prefix: Environment variable prefix

    Returns:
        List value
    """
    value = get_env(key, None, prefix)
    if value is None:
        return list(default) if default is not None else []
    if separator is None:
        return value.split()
    return parse_list(value, separator)


def parse_permission(value: Optional[str]) -> Union[bool, list[str]]:
    """Parse a permission toggle.

    Unset or empty denies, "true"/"*"/"all" grants everything, "false"/"none"
    denies, anything else is a comma-separated allow-list.
    """
    if value is None:
        return False
    value = value.strip()
    if not value or value.lower() in ("false", "0", "no", "none"):
        return False
    if value.lower() in ("true", "1", "yes", "*", "all"):
        return True
    return parse_list(value)


@dataclass(frozen=True)
class EnvSettings:
    """Process-wide toggles read from the environment."""

    debug: bool = False
    bin_args: list[str] = field(default_factory=list)
    browser_path: Optional[str] = None
    allow_net: Union[bool, list[str]] = False
    allow_read: Union[bool, list[str]] = False


def load_env_settings(prefix: str = ENV_PREFIX) -> EnvSettings:
    """Read all toggles from the environment now."""
    return EnvSettings(
        debug=get_env_bool("debug", False, prefix),
        bin_args=get_env_list("bin_args", separator=None, prefix=prefix),
        browser_path=get_env("browser_path", None, prefix) or None,
        allow_net=parse_permission(get_env("allow_net", None, prefix)),
        allow_read=parse_permission(get_env("allow_read", None, prefix)),
    )


@lru_cache(maxsize=1)
def get_env_settings() -> EnvSettings:
    """Get the environment toggles, read once per process.

    Call ``get_env_settings.cache_clear()`` to force a re-read.
    """
    return load_env_settings()
