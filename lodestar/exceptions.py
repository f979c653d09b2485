"""
Exception hierarchy for lodestar.

Every error raised by the library derives from LodestarError so callers can
catch library failures in one place while still telling them apart.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class LodestarError(Exception):
    """Base class for all lodestar errors."""


class LaunchError(LodestarError):
    """The browser binary did not produce a debug endpoint."""

    def __init__(
        self,
        message: str,
        *,
        diagnostics: Sequence[str] = (),
        hint: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> None:
        self.diagnostics = list(diagnostics)
        self.hint = hint
        self.exit_code = exit_code

        parts = [message]
        if hint:
            parts.append(hint)
        if self.diagnostics:
            parts.append("Browser output:\n" + "\n".join(self.diagnostics))
        super().__init__("\n\n".join(parts))


class ProtocolVersionMismatch(LodestarError):
    """The browser speaks a different protocol version than the client."""

    def __init__(self, expected: str, actual: Optional[str]) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Differing protocol versions between binary ({actual}) "
            f"and client ({expected})"
        )


class CDPError(LodestarError):
    """CDP protocol error."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"CDP Error {code}: {message}")


class TransportClosedError(LodestarError):
    """The CDP connection was closed while a command was pending."""


class CommandTimeout(LodestarError, TimeoutError):
    """An operation did not settle before its deadline."""

    def __init__(self, timeout: float, operation: Optional[str] = None) -> None:
        self.timeout = timeout
        self.operation = operation
        if operation:
            message = f"Timeout {timeout}s exceeded: {operation}"
        else:
            message = f"Timeout {timeout}s exceeded"
        super().__init__(message)


class AlreadyClosedError(LodestarError):
    """Operating on, or closing again, a browser or page that is closed."""


class NavigationError(LodestarError):
    """The browser refused or failed a navigation."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Navigation to {url} failed: {reason}")


class NavigationHistoryUnavailable(LodestarError):
    """go_back/go_forward has no history entry to move to."""

    def __init__(self, direction: str) -> None:
        self.direction = direction
        super().__init__(f"No history entry available ({direction})")


class EvaluationError(LodestarError):
    """A script evaluated in the page threw."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InterceptorError(LodestarError):
    """Raised from an interceptor callback to abort the paused request.

    The request fails in the page with the given network error reason.
    """

    def __init__(self, reason: str = "Failed", message: Optional[str] = None) -> None:
        self.reason = str(getattr(reason, "value", reason))
        super().__init__(message or self.reason)


class BrowserCloseError(LodestarError):
    """One or more pages failed to close while closing a remote browser."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        details = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{len(self.errors)} page(s) failed to close: {details}")


__all__ = [
    "AlreadyClosedError",
    "BrowserCloseError",
    "CDPError",
    "CommandTimeout",
    "EvaluationError",
    "InterceptorError",
    "LaunchError",
    "LodestarError",
    "NavigationError",
    "NavigationHistoryUnavailable",
    "ProtocolVersionMismatch",
    "TransportClosedError",
]
