from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    FAVORITES_CHANGED = "favorites_changed"
    WORKOUT_DATA_CHANGED = "workout_data_changed"


@dataclass(frozen=True)
class Event:
    type: EventType
    exercise_id: Optional[int] = None


Subscriber = Callable[[Event], None]


class EventBus:
    """Typed publish/subscribe with one subscriber list per topic."""

    def __init__(self) -> None:
        self._subscribers: Dict[EventType, List[Subscriber]] = {
            t: [] for t in EventType
        }
        self._lock = threading.Lock()

    def subscribe(self, event_type: EventType, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""
        with self._lock:
            self._subscribers[event_type].append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(event_type, callback)

        return unsubscribe

    def subscribe_all(self, callback: Subscriber) -> Callable[[], None]:
        handles = [self.subscribe(t, callback) for t in EventType]

        def unsubscribe() -> None:
            for handle in handles:
                handle()

        return unsubscribe

    def unsubscribe(self, event_type: EventType, callback: Subscriber) -> None:
        with self._lock:
            try:
                self._subscribers[event_type].remove(callback)
            except ValueError:
                pass

    def subscriber_count(self, event_type: EventType) -> int:
        with self._lock:
            return len(self._subscribers[event_type])

    def publish(self, event: Event) -> None:
        with self._lock:
            targets = list(self._subscribers[event.type])
        logger.debug("publishing %s to %d subscriber(s)", event, len(targets))
        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception("subscriber %r failed handling %s", callback, event)

    def favorites_changed(self, exercise_id: Optional[int] = None) -> None:
        self.publish(Event(EventType.FAVORITES_CHANGED, exercise_id))

    def workout_data_changed(self) -> None:
        self.publish(Event(EventType.WORKOUT_DATA_CHANGED))


class Debouncer:
    """Coalesce bursts of calls into one trailing invocation.

    Every call restarts the window; when it elapses ``callback`` runs once
    with the most recent arguments.
    """

    def __init__(self, callback: Callable[..., None], window: float = 0.3) -> None:
        if window < 0:
            raise ValueError("window must be non-negative")
        self.callback = callback
        self.window = window
        self._timer: threading.Timer | None = None
        self._pending: tuple | None = None
        self._lock = threading.Lock()

    def __call__(self, *args) -> None:
        with self._lock:
            self._pending = args
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.window, self._fire)
            self._timer.daemon = True
            self._timer.start()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def _fire(self) -> None:
        with self._lock:
            args = self._pending
            self._pending = None
            self._timer = None
        if args is not None:
            self.callback(*args)

    def flush(self) -> None:
        """Run a pending invocation now instead of waiting for the window."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
        self._fire()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = None
