"""
Wait system for lodestar.

Example:
    from lodestar.waiters import NavigationWaiter

    waiter = NavigationWaiter(connection, "networkidle0")
    await asyncio.gather(connection.send("Page.reload"), waiter.wait())
"""

from lodestar.waiters.navigation import NavigationWaiter, NetworkIdleTracker

__all__ = ["NavigationWaiter", "NetworkIdleTracker"]
