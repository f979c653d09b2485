"""
Sandbox permissions for lodestar.

A sandboxed page may only reach hosts and files it was explicitly granted.
Checks are fail-closed: anything not affirmatively granted is denied.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, urlsplit
from urllib.request import url2pathname

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

NET_SCHEMES = frozenset({"http", "https", "ws", "wss"})
FILE_SCHEMES = frozenset({"file"})

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}


def split_grant(entry: str) -> tuple[str, Optional[str]]:
    """Split a net grant into host and port, the port being None when absent.

    IPv6 addresses may be given bare (``::1``) or bracketed (``[::1]`` or
    ``[::1]:8000``); a port is only recognised on the bracketed form.
    """
    entry = entry.lower().strip()
    if entry.startswith("["):
        host, _, rest = entry[1:].partition("]")
        return host, rest[1:] if rest.startswith(":") else None
    if entry.count(":") > 1:
        return entry, None
    host, sep, port = entry.partition(":")
    return host, port if sep else None


class Permissions(BaseModel):
    """Network and file read grants for a sandboxed page.

    ``True`` grants everything, ``False`` or an empty list grants nothing,
    a list grants the named hosts (``host`` or ``host:port``) or paths
    (the path itself and everything below it).
    """

    net: Union[bool, list[str]] = Field(False, description="Granted hosts")
    read: Union[bool, list[str]] = Field(False, description="Granted paths")

    @field_validator("net", "read", mode="before")
    @classmethod
    def normalize_grant(cls, v: object) -> object:
        if v is None:
            return False
        if isinstance(v, str):
            return [v]
        return v

    @classmethod
    def from_env(cls) -> "Permissions":
        """Permissions granted to the process through the environment."""
        from lodestar.config.env import get_env_settings

        settings = get_env_settings()
        return cls(net=settings.allow_net, read=settings.allow_read)

    @classmethod
    def none(cls) -> "Permissions":
        return cls(net=False, read=False)

    @classmethod
    def all(cls) -> "Permissions":
        return cls(net=True, read=True)

    def check_net(self, host: str, port: Optional[int] = None) -> bool:
        """Whether ``host`` (optionally on ``port``) may be contacted."""
        if self.net is True:
            return True
        if not self.net or not host:
            return False

        host = host.lower().strip("[]")
        for entry in self.net:
            granted_host, granted_port = split_grant(entry)
            if granted_host != host:
                continue
            if granted_port is None or (port is not None and granted_port == str(port)):
                return True
        return False

    def check_read(self, path: Union[str, os.PathLike[str]]) -> bool:
        """Whether the file at ``path`` may be read."""
        if self.read is True:
            return True
        if not self.read:
            return False

        target = Path(path).resolve()
        for entry in self.read:
            granted = Path(entry).expanduser().resolve()
            if target == granted or granted in target.parents:
                return True
        return False

    def check_url(self, url: str) -> bool:
        """Whether a request to ``url`` is allowed.

        Schemes other than network and file ones (data:, blob:, about: ...)
        are allowed. Any failure while checking denies the request.
        """
        try:
            parts = urlsplit(url)
            scheme = parts.scheme.lower()
            if scheme in NET_SCHEMES:
                port = parts.port or DEFAULT_PORTS[scheme]
                return self.check_net(parts.hostname or "", port)
            if scheme in FILE_SCHEMES:
                return self.check_read(url2pathname(unquote(parts.path)))
            return True
        except (ValueError, OSError) as e:
            logger.debug(f"Sandbox check failed for {url}: {e}")
            return False
