"""
Tests for navigation waits and network idle tracking.

Run with: pytest tests/test_navigation.py -v
"""

import asyncio

import pytest

from lodestar.events import EventBus


class EventSource(EventBus):
    """Connection stand-in emitting synthetic protocol events."""

    def wait_for_event(self, event, predicate=None):
        return self.wait_for(event, predicate)


def request_started(source, request_id="r1"):
    source.emit("Network.requestWillBeSent", {"requestId": request_id})


def request_finished(source, request_id="r1", failed=False):
    event = "Network.loadingFailed" if failed else "Network.loadingFinished"
    source.emit(event, {"requestId": request_id})


class TestNetworkIdleTracker:
    """Test the network idle timer."""

    @pytest.mark.asyncio
    async def test_idle_without_requests(self):
        """Test an idle network resolves after the idle time."""
        from lodestar.waiters import NetworkIdleTracker

        source = EventSource()
        loop = asyncio.get_running_loop()
        start = loop.time()

        tracker = NetworkIdleTracker(source, idle_time=0.05)
        assert tracker.armed
        await asyncio.wait_for(tracker.wait(), 1)

        assert loop.time() - start >= 0.04
        assert tracker.done

    @pytest.mark.asyncio
    async def test_late_request_resets_window(self):
        """Test a request inside the window starts a fresh one once it finishes."""
        from lodestar.waiters import NetworkIdleTracker

        source = EventSource()
        loop = asyncio.get_running_loop()
        start = loop.time()

        tracker = NetworkIdleTracker(source, idle_time=0.2)
        wait = asyncio.ensure_future(tracker.wait())

        await asyncio.sleep(0.1)
        request_started(source)
        assert not tracker.armed
        assert tracker.in_flight == 1

        await asyncio.sleep(0.05)
        request_finished(source)
        assert tracker.armed

        await asyncio.wait_for(wait, 1)
        # 0.15s until the request finished, plus a full idle window
        assert loop.time() - start >= 0.33

    @pytest.mark.asyncio
    async def test_threshold_allows_connections(self):
        """Test up to idle_connections requests keep the timer armed."""
        from lodestar.waiters import NetworkIdleTracker

        source = EventSource()
        tracker = NetworkIdleTracker(source, idle_connections=2, idle_time=0.05)

        request_started(source, "r1")
        request_started(source, "r2")
        assert tracker.armed

        request_started(source, "r3")
        assert not tracker.armed

        request_finished(source, "r3", failed=True)
        assert tracker.armed
        assert tracker.in_flight == 2

        await asyncio.wait_for(tracker.wait(), 1)

    @pytest.mark.asyncio
    async def test_timer_not_restarted_below_threshold(self):
        """Test finishing requests while armed keeps the running window."""
        from lodestar.waiters import NetworkIdleTracker

        source = EventSource()
        tracker = NetworkIdleTracker(source, idle_connections=2, idle_time=0.05)
        timer = tracker._timer

        request_started(source)
        request_finished(source)

        assert tracker._timer is timer
        await asyncio.wait_for(tracker.wait(), 1)

    @pytest.mark.asyncio
    async def test_in_flight_never_negative(self):
        """Test unmatched finish events do not drive the count below zero."""
        from lodestar.waiters import NetworkIdleTracker

        source = EventSource()
        tracker = NetworkIdleTracker(source, idle_time=0.05)

        request_finished(source)
        request_finished(source)
        assert tracker.in_flight == 0

        request_started(source)
        assert tracker.in_flight == 1
        assert not tracker.armed
        tracker.cancel()

    @pytest.mark.asyncio
    async def test_dispose_unsubscribes(self):
        """Test the tracker leaves no subscriptions behind."""
        from lodestar.waiters import NetworkIdleTracker

        source = EventSource()
        tracker = NetworkIdleTracker(source, idle_time=0.01)
        assert source.listener_count("Network.requestWillBeSent") == 1

        await tracker.wait()

        assert source.listener_count("Network.requestWillBeSent") == 0
        assert source.listener_count("Network.loadingFinished") == 0
        assert source.listener_count("Network.loadingFailed") == 0

    @pytest.mark.asyncio
    async def test_invalid_arguments(self):
        """Test negative thresholds and idle times are rejected."""
        from lodestar.waiters import NetworkIdleTracker

        with pytest.raises(ValueError):
            NetworkIdleTracker(EventSource(), idle_connections=-1)
        with pytest.raises(ValueError):
            NetworkIdleTracker(EventSource(), idle_time=-1)


class TestNavigationWaiter:
    """Test navigation completion conditions."""

    @pytest.mark.asyncio
    async def test_none_resolves_immediately(self):
        """Test waiting for nothing returns at once."""
        from lodestar.waiters import NavigationWaiter

        source = EventSource()
        waiter = NavigationWaiter(source, "none")

        await asyncio.wait_for(waiter.wait(), 1)
        assert source.listener_count("Page.loadEventFired") == 0

    @pytest.mark.asyncio
    async def test_load_registered_before_command(self):
        """Test a load event emitted right after construction is not missed."""
        from lodestar.waiters import NavigationWaiter

        source = EventSource()
        waiter = NavigationWaiter(source, "load")
        source.emit("Page.loadEventFired", {"timestamp": 1.0})

        await asyncio.wait_for(waiter.wait(), 1)

    @pytest.mark.asyncio
    async def test_load_waits_for_event(self):
        """Test the load condition is not met before the load event."""
        from lodestar.waiters import NavigationWaiter

        source = EventSource()
        waiter = NavigationWaiter(source, "load")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(waiter.wait(), 0.05)
        waiter.cancel()

    @pytest.mark.asyncio
    async def test_network_idle_after_load(self):
        """Test network idle is tracked only once the load event fired."""
        from lodestar.waiters import NavigationWaiter

        source = EventSource()
        waiter = NavigationWaiter(source, "networkidle0", idle_time=0.05)
        wait = asyncio.ensure_future(waiter.wait())

        await asyncio.sleep(0.1)
        assert not wait.done()

        source.emit("Page.loadEventFired", {"timestamp": 1.0})
        await asyncio.sleep(0.01)
        request_started(source)
        await asyncio.sleep(0.1)
        assert not wait.done()

        request_finished(source)
        await asyncio.wait_for(wait, 1)

    @pytest.mark.asyncio
    async def test_cancel_drops_subscriptions(self):
        """Test cancelling a waiter drops its subscriptions."""
        from lodestar.waiters import NavigationWaiter

        source = EventSource()
        waiter = NavigationWaiter(source, "networkidle2")
        assert source.listener_count("Page.loadEventFired") == 1

        waiter.cancel()
        await asyncio.sleep(0)

        assert source.listener_count("Page.loadEventFired") == 0
