"""
STATUS EVENT BUS
Synchronous, non-reentrant dispatch for node status changes.

Mutations append typed events to a flat queue. A single driver drains the
queue and hands each event to every subscriber once. A subscriber that
publishes while a drain is running only enqueues; the running drain picks
the new event up, so dispatch never recurses.
"""
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger("Onboarding.EventBus")

ALL_EVENTS = "*"


class EventType:
    STATUS_CHANGED = "STATUS_CHANGED"
    NODE_COMPLETED = "NODE_COMPLETED"
    DATA_CHANGED = "DATA_CHANGED"
    RE_DERIVED = "RE_DERIVED"


@dataclass(frozen=True)
class StatusEvent:
    type: str
    node_id: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    field_id: Optional[str] = None
    reason: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


Listener = Callable[[StatusEvent], None]


class EventBus:
    def __init__(self, history_limit: int = 500):
        self.subscribers: Dict[str, List[Listener]] = {}
        self.history: Deque[StatusEvent] = deque(maxlen=history_limit)
        self._queue: Deque[StatusEvent] = deque()
        self._queue_lock = threading.Lock()
        self._draining = threading.local()

    def subscribe(self, event_type: str, callback: Listener):
        """Subscribe to one event type, or ALL_EVENTS."""
        self.subscribers.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to {event_type}")

    def unsubscribe(self, event_type: str, callback: Listener):
        if event_type in self.subscribers and callback in self.subscribers[event_type]:
            self.subscribers[event_type].remove(callback)

    def publish(self, event: StatusEvent):
        """Enqueue an event. Nothing is delivered until drain()."""
        with self._queue_lock:
            self._queue.append(event)

    def pending(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def drain(self) -> int:
        """
        Deliver queued events in order.

        Returns:
            Number of events delivered by this call (0 when a drain is
            already running on this thread)
        """
        if getattr(self._draining, "active", False):
            return 0
        self._draining.active = True
        delivered = 0
        try:
            while True:
                with self._queue_lock:
                    if not self._queue:
                        break
                    event = self._queue.popleft()
                self.history.append(event)
                self._dispatch(event)
                delivered += 1
        finally:
            self._draining.active = False
        return delivered

    def _dispatch(self, event: StatusEvent):
        callbacks = list(self.subscribers.get(event.type, [])) + list(self.subscribers.get(ALL_EVENTS, []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Listener failed on {event.type} for {event.node_id}: {e}")

    def get_history(self, event_type: Optional[str] = None, limit: int = 100) -> List[StatusEvent]:
        events = list(self.history)
        if event_type:
            events = [e for e in events if e.type == event_type]
        return events[-limit:]
