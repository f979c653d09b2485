"""
Network module for lodestar.

Provides request interception through the CDP Fetch domain:
- InterceptionPolicy: sandbox or callback decisions for paused requests
- Permissions: fail-closed host and path grants for sandboxed pages
"""

from lodestar.network.interceptor import (
    Decision,
    ErrorReason,
    InterceptionMode,
    InterceptionPolicy,
    InterceptorCallback,
    cdp_request_to_request,
    fetch_enable_params,
    response_to_cdp_response,
)
from lodestar.network.sandbox import Permissions

__all__ = [
    "Decision",
    "ErrorReason",
    "InterceptionMode",
    "InterceptionPolicy",
    "InterceptorCallback",
    "Permissions",
    "cdp_request_to_request",
    "fetch_enable_params",
    "response_to_cdp_response",
]
