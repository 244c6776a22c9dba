"""
Event/notification channel
Append-only event log with synchronous fan-out to listeners and optional bounded queues
"""

import itertools
import logging
import queue
from typing import Any, Callable, Dict, List, Optional

from .models import Event

logger = logging.getLogger(__name__)

EventListener = Callable[[Event], None]


class EventChannel:
    """
    Ordered, append-only log of Events. Listeners are invoked synchronously
    in registration order on the publishing thread; queues opened with
    open_queue() receive every event for consumers on other threads.
    """

    def __init__(self):
        self._events: List[Event] = []
        self._listeners: List[EventListener] = []
        self._queues: List[queue.Queue] = []
        self._counter = itertools.count(1)

    def subscribe(self, listener: EventListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> bool:
        if listener in self._listeners:
            self._listeners.remove(listener)
            return True
        return False

    def open_queue(self, maxsize: int = 100) -> queue.Queue:
        """Open a bounded queue that receives every event published from now on"""
        event_queue = queue.Queue(maxsize=maxsize)
        self._queues.append(event_queue)
        return event_queue

    def close_queue(self, event_queue: queue.Queue) -> bool:
        if event_queue in self._queues:
            self._queues.remove(event_queue)
            return True
        return False

    def publish(self, timestamp: int, event_type: str, description: str,
                train_id: Optional[str] = None, station_id: Optional[str] = None,
                data: Optional[Dict[str, Any]] = None) -> Event:
        event = Event(
            id=f"event_{next(self._counter)}",
            timestamp=timestamp,
            event_type=event_type,
            description=description,
            train_id=train_id,
            station_id=station_id,
            data=data or {}
        )
        self._events.append(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener {listener!r} failed on {event.event_type}: {e}")

        for event_queue in list(self._queues):
            try:
                event_queue.put_nowait(event)
            except queue.Full:
                logger.warning(f"Event queue full, dropping {event.id} ({event.event_type})")

        return event

    @property
    def events(self) -> List[Event]:
        return list(self._events)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def clear_listeners(self):
        self._listeners = []

    def clear(self):
        """Drop the log; listeners and queues stay registered"""
        self._events = []
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._events)
