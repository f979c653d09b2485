"""
Shared fixtures for lodestar tests.
"""

import os

import pytest
import websockets

from fakes import BROWSER_WS, FakeBrowserServer
from lodestar.config.env import get_env_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Run every test without LODESTAR_* variables from the outer environment."""
    for key in list(os.environ):
        if key.startswith("LODESTAR_"):
            monkeypatch.delenv(key)
    get_env_settings.cache_clear()
    yield
    get_env_settings.cache_clear()


@pytest.fixture
def server(monkeypatch):
    """Fake DevTools server answering every websockets.connect call."""
    fake = FakeBrowserServer()
    monkeypatch.setattr(websockets, "connect", fake.connect)
    return fake


@pytest.fixture
def open_browser(server):
    """Factory connecting a Browser to the fake server."""
    from lodestar.browser import Browser
    from lodestar.cdp import CDPConnection

    async def factory(**kwargs):
        connection = await CDPConnection(BROWSER_WS).connect()
        return Browser(connection, BROWSER_WS, **kwargs)

    return factory
