"""
Progress events for live display.

The orchestrator publishes a SyncEvent after each member and at the end of
every run. Listeners are called synchronously; a listener that raises is
logged and skipped, it never affects the sync.
"""
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Protocol

from guild_sync.services.sync.types import SyncEvent

logger = logging.getLogger(__name__)


class ProgressListener(Protocol):
    def on_progress(self, event: SyncEvent) -> None:
        ...


class ProgressPublisher:
    """Fan-out of progress events to registered listeners."""

    def __init__(self, listeners: Optional[List[ProgressListener]] = None):
        self._listeners: List[ProgressListener] = list(listeners or [])

    def subscribe(self, listener: ProgressListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: ProgressListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: SyncEvent):
        for listener in list(self._listeners):
            try:
                listener.on_progress(event)
            except Exception:
                logger.exception(f"Progress listener {listener!r} failed")


class RecentEventsListener:
    """Keeps the most recent events, plus the latest one per tier."""

    def __init__(self, maxlen: int = 200):
        self.events: Deque[SyncEvent] = deque(maxlen=maxlen)
        self.latest: Dict[str, SyncEvent] = {}

    def on_progress(self, event: SyncEvent) -> None:
        self.events.append(event)
        self.latest[event.tier] = event

    def recent(self, limit: int = 50) -> List[Dict]:
        return [e.to_dict() for e in list(self.events)[-limit:]]
