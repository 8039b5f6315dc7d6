"""Observable latest-value cells used by the live controller."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    def __init__(self, on_close: Callable[[], None]) -> None:
        self._on_close = on_close
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._on_close()


class StateCell(Generic[T]):
    """Holds the latest value of one signal.

    ``set`` replaces the value atomically and notifies subscribers in emission
    order; ``subscribe`` replays the current value first.
    """

    def __init__(self, initial: T, name: str = "state") -> None:
        self.name = name
        self._value = initial
        self._subscribers: Dict[int, Callable[[T], None]] = {}
        self._next_id = 0
        # Reentrant so a subscriber may read the cell from its callback.
        self._lock = threading.RLock()

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            subscribers = list(self._subscribers.values())
            for callback in subscribers:
                self._notify(callback, value)

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        with self._lock:
            sub_id = self._next_id
            self._next_id += 1
            self._subscribers[sub_id] = callback
            self._notify(callback, self._value)
        return Subscription(lambda: self._unsubscribe(sub_id))

    def _unsubscribe(self, sub_id: int) -> None:
        with self._lock:
            self._subscribers.pop(sub_id, None)

    def _notify(self, callback: Callable[[T], None], value: T) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Subscriber of %s failed", self.name)
