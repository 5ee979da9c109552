"""
In-process invalidation channel for availability views.

Subscribers are told that the booked times of a ``(shop_scope, date)`` pair
changed and should re-run the availability filter. This is a cache
invalidation signal only; booking correctness never depends on it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityChanged:
    """Event published after a booking or status change."""
    shop_scope: str
    date: date


Subscriber = Callable[[AvailabilityChanged], None]


class AvailabilityNotifier:
    """Fan-out of ``AvailabilityChanged`` events to registered callbacks."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback and return a function that removes it again."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, shop_scope: str, day: date) -> AvailabilityChanged:
        event = AvailabilityChanged(shop_scope=shop_scope, date=day)

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Availability subscriber %r failed for %s on %s",
                    callback,
                    shop_scope,
                    day.isoformat(),
                )

        return event
