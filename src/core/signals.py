"""Broadcast values observed by views and controllers."""
import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class Signal(Generic[T]):
    """
    A current value plus the callbacks interested in it.

    Only the owner calls `set`; everyone else reads `value` or subscribes.
    Callbacks run synchronously on the event loop, in subscription order.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscribers: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        """Current value."""
        return self._value

    def set(self, value: T) -> None:
        """Replace the value and notify subscribers when it changed."""
        if value == self._value:
            return
        self._value = value
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception:
                # A broken subscriber must not stop the others from being notified
                logger.exception("signal_subscriber_failed")

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        """Register a callback and return a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        """Number of registered callbacks."""
        return len(self._subscribers)
