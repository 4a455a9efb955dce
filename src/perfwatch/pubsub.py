"""
Publish/subscribe channel used for metric and alert fan-out.

Delivery is synchronous, in subscription order. A subscriber that raises
is logged and skipped; remaining subscribers still receive the event.
"""

import logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle returned by EventChannel.subscribe()."""

    def __init__(self, channel: "EventChannel", callback: Callable):
        self._channel = channel
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        """Detach the callback. Safe to call more than once."""
        if self.active:
            self.active = False
            self._channel._remove(self)


class EventChannel(Generic[T]):
    """Typed event channel with explicit unsubscribe handles."""

    def __init__(self, name: str):
        self.name = name
        self._subscriptions: list[Subscription] = []
        self._lock = threading.RLock()
        self._delivery_failures = 0

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            try:
                self._subscriptions.remove(subscription)
            except ValueError:
                pass

    def publish(self, event: T) -> int:
        """
        Deliver ``event`` to every subscriber.

        Returns:
            Number of subscribers that received the event without raising
        """
        with self._lock:
            subscriptions = list(self._subscriptions)

        delivered = 0
        for subscription in subscriptions:
            if not subscription.active:
                continue
            try:
                subscription.callback(event)
                delivered += 1
            except Exception as e:
                self._delivery_failures += 1
                logger.error(f"Subscriber {_callback_name(subscription.callback)} on {self.name} failed: {e}")
        return delivered

    def clear(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.unsubscribe()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    @property
    def delivery_failures(self) -> int:
        return self._delivery_failures


def _callback_name(callback: Callable) -> str:
    return getattr(callback, "__qualname__", None) or repr(callback)
