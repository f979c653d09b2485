"""
Tests for the shutdown handler registry.

Run with: pytest tests/test_shutdown.py -v
"""

import asyncio
import importlib
import signal

import pytest

shutdown_module = importlib.import_module("lodestar.shutdown")


@pytest.fixture(autouse=True)
def reset_shutdown():
    shutdown_module.reset()
    yield
    shutdown_module.reset()


class TestShutdownHandlers:
    """Test registering and running shutdown handlers."""

    @pytest.mark.asyncio
    async def test_handlers_run_in_order(self):
        """Test sync and async handlers run once, in registration order."""
        calls = []

        async def close_browser():
            await asyncio.sleep(0)
            calls.append("browser")

        shutdown_module.on_shutdown(lambda: calls.append("first"))
        shutdown_module.on_shutdown(close_browser)

        await shutdown_module.run_handlers()
        await shutdown_module.run_handlers()

        assert calls == ["first", "browser"]

    @pytest.mark.asyncio
    async def test_remove(self):
        """Test a removed handler is not run."""
        calls = []
        remove = shutdown_module.on_shutdown(lambda: calls.append(1))

        remove()
        remove()
        await shutdown_module.run_handlers()

        assert calls == []
        assert shutdown_module.handlers() == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self, caplog):
        """Test a failing handler is logged and the rest still run."""
        calls = []

        def broken():
            raise RuntimeError("cleanup failed")

        shutdown_module.on_shutdown(broken)
        shutdown_module.on_shutdown(lambda: calls.append("after"))

        await shutdown_module.run_handlers()

        assert calls == ["after"]
        assert "cleanup failed" in caplog.text

    @pytest.mark.asyncio
    async def test_shutdown_exits(self):
        """Test shutdown exits with the given code after the handlers ran."""
        calls = []
        shutdown_module.on_shutdown(lambda: calls.append(1))

        with pytest.raises(SystemExit) as exc_info:
            await shutdown_module.shutdown(3)

        assert exc_info.value.code == 3
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_shutdown_without_exit(self):
        """Test shutdown without exiting runs the handlers."""
        calls = []
        shutdown_module.on_shutdown(lambda: calls.append(1))

        await shutdown_module.shutdown(None)

        assert calls == [1]


class TestSignalHandlers:
    """Test routing signals to shutdown."""

    @pytest.mark.asyncio
    async def test_install_registers_signals(self, monkeypatch):
        """Test SIGINT and SIGTERM trigger a single shutdown task."""
        loop = asyncio.get_running_loop()
        registered = {}

        def add_signal_handler(signum, callback, *args):
            registered[signum] = (callback, args)

        monkeypatch.setattr(loop, "add_signal_handler", add_signal_handler)
        monkeypatch.setattr(loop, "remove_signal_handler", lambda signum: True)

        calls = []
        shutdown_module.on_shutdown(lambda: calls.append("closed"))
        shutdown_module.install_signal_handlers(exit_code=None)

        assert set(registered) == {signal.SIGINT, signal.SIGTERM}

        callback, args = registered[signal.SIGTERM]
        callback(*args)
        callback(*args)
        task = shutdown_module._shutdown_task
        await task

        assert calls == ["closed"]
