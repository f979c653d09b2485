"""
Core data models for lodestar.

Plain value objects translated from raw protocol notifications.
"""

import json
from typing import Any, Optional

from pydantic import BaseModel, Field


class ConsoleMessage(BaseModel):
    """A console API call made by the page."""

    type: str
    text: str
    args: list[Any] = Field(default_factory=list)
    timestamp: float = 0.0

    @classmethod
    def from_cdp(cls, params: dict[str, Any]) -> "ConsoleMessage":
        """Build from a ``Runtime.consoleAPICalled`` payload."""
        args = params.get("args", [])
        return cls(
            type=params.get("type", "log"),
            text=" ".join(_remote_object_text(arg) for arg in args),
            args=[arg.get("value", arg.get("description")) for arg in args],
            timestamp=params.get("timestamp", 0.0),
        )


class PageError(BaseModel):
    """An uncaught exception thrown in the page."""

    message: str
    url: Optional[str] = None
    line_number: Optional[int] = None
    column_number: Optional[int] = None

    @classmethod
    def from_cdp(cls, params: dict[str, Any]) -> "PageError":
        """Build from a ``Runtime.exceptionThrown`` payload."""
        details = params.get("exceptionDetails", {})
        exception = details.get("exception") or {}
        message = (
            exception.get("description")
            or exception.get("value")
            or details.get("text")
            or "Uncaught exception"
        )
        return cls(
            message=str(message),
            url=details.get("url"),
            line_number=details.get("lineNumber"),
            column_number=details.get("columnNumber"),
        )


class Cookie(BaseModel):
    """HTTP cookie representation."""

    name: str
    value: str
    domain: Optional[str] = None
    path: str = "/"
    url: Optional[str] = None
    expires: Optional[float] = None
    http_only: bool = False
    secure: bool = False
    same_site: Optional[str] = None

    @classmethod
    def from_cdp(cls, cookie: dict[str, Any]) -> "Cookie":
        """Build from a ``Network.Cookie``."""
        expires = cookie.get("expires")
        return cls(
            name=cookie["name"],
            value=cookie["value"],
            domain=cookie.get("domain"),
            path=cookie.get("path", "/"),
            # Session cookies report -1
            expires=expires if expires is not None and expires >= 0 else None,
            http_only=cookie.get("httpOnly", False),
            secure=cookie.get("secure", False),
            same_site=cookie.get("sameSite"),
        )

    def to_cdp(self) -> dict[str, Any]:
        """Parameters for ``Network.setCookies``."""
        params: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "path": self.path,
            "httpOnly": self.http_only,
            "secure": self.secure,
        }
        if self.domain is not None:
            params["domain"] = self.domain
        if self.url is not None:
            params["url"] = self.url
        if self.expires is not None:
            params["expires"] = self.expires
        if self.same_site is not None:
            params["sameSite"] = self.same_site
        return params


class BrowserVersion(BaseModel):
    """Result of ``Browser.getVersion``."""

    protocol_version: str = Field("", alias="protocolVersion")
    product: str = ""
    revision: str = ""
    user_agent: str = Field("", alias="userAgent")
    js_version: str = Field("", alias="jsVersion")

    model_config = {"populate_by_name": True}


def _remote_object_text(arg: dict[str, Any]) -> str:
    if "value" in arg:
        value = arg["value"]
        return value if isinstance(value, str) else json.dumps(value)
    if "unserializableValue" in arg:
        return str(arg["unserializableValue"])
    return str(arg.get("description", arg.get("type", "")))
