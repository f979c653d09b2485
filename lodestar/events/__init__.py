"""
Event system for lodestar.

- EventBus: synchronous publish/subscribe used by connections and pages
- Dialog, FileChooser: actionable page events
- PageEvent: names of the events a Page surfaces
"""

from .bus import EventBus, EventHandler, HandlerEntry, Unsubscribe
from .types import Dialog, DialogType, FileChooser, PageEvent

__all__ = [
    "Dialog",
    "DialogType",
    "EventBus",
    "EventHandler",
    "FileChooser",
    "HandlerEntry",
    "PageEvent",
    "Unsubscribe",
]
