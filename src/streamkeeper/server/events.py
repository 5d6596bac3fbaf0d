"""Event bus for real-time push notifications.

Provides SSE (Server-Sent Events) push from the playback loop to connected
clients. Recent events are kept in a bounded in-memory buffer.
"""

import logging
import queue
import threading
import time
from collections import deque

logger = logging.getLogger(__name__)

RECENT_EVENTS = 100


class EventBus:
    """Thread-safe event bus with SSE subscriber management.

    Events are emitted from the playback loop thread (state changes, faults)
    and pushed to every connected client via SSE.
    """

    def __init__(self, history: int = RECENT_EVENTS):
        self._subscribers: list[queue.Queue] = []
        self._recent: deque[dict] = deque(maxlen=history)
        self._lock = threading.Lock()

    def emit(self, event_type: str, title: str = "", detail: str = "", data: dict | None = None):
        """Emit an event to all subscribers and remember it.

        Args:
            event_type: Category (e.g. "state", "fault", "signal")
            title: Short human-readable summary
            detail: Longer detail text
            data: Structured payload (e.g. a UI state snapshot)
        """
        event_data = {
            "type": event_type,
            "title": title,
            "detail": detail,
            "data": data or {},
            "timestamp": time.time(),
        }

        dead = []
        with self._lock:
            self._recent.append(event_data)
            for q in self._subscribers:
                try:
                    q.put_nowait(event_data)
                except queue.Full:
                    dead.append(q)

            # Clean up dead subscribers
            for q in dead:
                self._subscribers.remove(q)
                logger.debug("Removed dead SSE subscriber (queue full)")

        logger.debug("Emitted event: %s - %s", event_type, title)

    def subscribe(self) -> queue.Queue:
        """Create a new SSE subscriber queue.

        Returns a Queue that will receive event dicts. Caller should
        iterate over it and format as SSE text/event-stream.
        """
        q = queue.Queue(maxsize=50)
        with self._lock:
            self._subscribers.append(q)
        logger.debug("New SSE subscriber (total: %d)", len(self._subscribers))
        return q

    def unsubscribe(self, q: queue.Queue):
        """Remove a subscriber queue."""
        with self._lock:
            try:
                self._subscribers.remove(q)
            except ValueError:
                pass
        logger.debug("SSE subscriber removed (total: %d)", len(self._subscribers))

    def recent(self, limit: int = 20) -> list[dict]:
        """Most recent events, newest first."""
        with self._lock:
            events = list(self._recent)
        return list(reversed(events))[:limit]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
