"""In-process change notification channel: opaque "entity set changed" signals per entity type."""
import logging
import threading
from enum import Enum
from typing import Callable

LOG = logging.getLogger(__name__)


class EntityType(str, Enum):
    UNIT = "unit"
    ALERT = "alert"


ChangeCallback = Callable[[EntityType], None]


class ChangeNotifier:
    """
    Subscribe/unsubscribe/publish for change signals. Signals carry no payload;
    subscribers re-fetch from the store. Publishing is safe from any thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[EntityType, list[ChangeCallback]] = {e: [] for e in EntityType}

    def subscribe(self, entity: EntityType, callback: ChangeCallback) -> Callable[[], bool]:
        """Register callback for entity; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers[entity].append(callback)
        return lambda: self.unsubscribe(entity, callback)

    def unsubscribe(self, entity: EntityType, callback: ChangeCallback) -> bool:
        """Remove callback. Returns True if it was subscribed."""
        with self._lock:
            try:
                self._subscribers[entity].remove(callback)
            except ValueError:
                return False
            return True

    def publish(self, entity: EntityType) -> int:
        """Signal that the entity set changed. Returns the number of subscribers notified."""
        with self._lock:
            callbacks = list(self._subscribers[entity])
        notified = 0
        for callback in callbacks:
            try:
                callback(entity)
                notified += 1
            except Exception:
                LOG.exception("Change subscriber failed for %s", entity.value)
        return notified

    def subscriber_count(self, entity: EntityType) -> int:
        with self._lock:
            return len(self._subscribers[entity])

    def clear(self) -> None:
        """Drop all subscribers (shutdown)."""
        with self._lock:
            for callbacks in self._subscribers.values():
                callbacks.clear()
