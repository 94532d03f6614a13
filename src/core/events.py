"""
Publish/subscribe channel for lock events, keyed by resource id.
Delivery is best-effort: a failing subscriber is logged and skipped.
"""

import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

from util.logging import logger

LOCK_ACQUIRED = "lock_acquired"
LOCK_REFRESHED = "lock_refreshed"
LOCK_RELEASED = "lock_released"
EDIT_SUCCESS = "edit_success"

# Subscribe with this key to receive events for every resource
ALL_RESOURCES = "*"

Subscriber = Callable[[Dict[str, Any]], None]


class LockEventBus:
    """In-process fan-out of lock events to live observers."""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, resource_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register `callback` for events on `resource_id`; returns an unsubscribe function."""
        if not callable(callback):
            raise ValueError(f"Subscriber must be callable: {callback}")

        with self._lock:
            self._subscribers[resource_id].append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(resource_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(resource_id, None)

        return unsubscribe

    def publish(self, event_type: str, resource_id: str, payload: Dict[str, Any] = None) -> int:
        """Deliver an event to subscribers of the resource and wildcard subscribers.

        Returns the number of subscribers that received it.
        """
        event = {"type": event_type, "resource_id": resource_id}
        if payload:
            event.update(payload)

        with self._lock:
            targets = list(self._subscribers.get(resource_id, []))
            targets += self._subscribers.get(ALL_RESOURCES, [])

        delivered = 0
        for callback in targets:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Lock event subscriber failed for {event_type} on {resource_id}: {e}")
        return delivered

    def subscriber_count(self, resource_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(resource_id, []))

    def clear(self):
        with self._lock:
            self._subscribers.clear()


# Global event bus instance
lock_events = LockEventBus()
