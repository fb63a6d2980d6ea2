"""
Change notification.

Stores publish opaque event names after every state change. Subscribers
(an SSE bridge, a file watcher, tests) register callables; a subscriber that
raises is logged and dropped so one broken client never blocks the rest.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

NOTES_UPDATED = "notes-updated"
CONNECTIONS_UPDATED = "connections-updated"

Subscriber = Callable[[str, Optional[str]], None]


class ChangeNotifier:
    """Broadcasts named events to subscribers."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback(event, data). Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: str, data: Optional[str] = None) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        dead = []
        for callback in subscribers:
            try:
                callback(event, data)
            except Exception as e:
                logger.warning("Dropping subscriber after error on %s: %s", event, e)
                dead.append(callback)

        if dead:
            with self._lock:
                self._subscribers = [s for s in self._subscribers if s not in dead]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class NullNotifier:
    """No-op notifier for stores used without subscribers."""

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return lambda: None

    def publish(self, event: str, data: Optional[str] = None) -> None:
        pass
