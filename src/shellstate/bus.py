"""Named-topic publish/subscribe bus.

Delivery is synchronous: ``publish`` calls every subscriber of the topic,
in registration order, before it returns.  There is no global instance;
stores and the watch service each receive the bus they publish on.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Any], None]


@dataclass(frozen=True, slots=True)
class Subscription:
    """Handle returned by :meth:`ChangeBus.subscribe`."""

    topic: str
    token: int


class ChangeBus:
    """In-process pub/sub with per-topic ordered subscriber lists."""

    def __init__(self) -> None:
        self._topics: dict[str, dict[int, Subscriber]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, topic: str, callback: Subscriber) -> Subscription:
        """Register *callback* as ``callback(topic, payload)`` for *topic*."""
        token = next(self._tokens)
        self._topics.setdefault(topic, {})[token] = callback
        return Subscription(topic=topic, token=token)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription.  Returns ``False`` if it was not registered."""
        callbacks = self._topics.get(subscription.topic)
        if callbacks is None or subscription.token not in callbacks:
            return False
        del callbacks[subscription.token]
        if not callbacks:
            del self._topics[subscription.topic]
        return True

    def publish(self, topic: str, payload: Any) -> int:
        """Deliver *payload* to every subscriber of *topic*.

        A subscriber that raises is logged and does not stop delivery to
        the ones registered after it.  Returns the number of subscribers
        called.
        """
        callbacks = self._topics.get(topic)
        if not callbacks:
            return 0
        # Snapshot so subscribers may (un)subscribe while being called.
        delivered = 0
        for callback in list(callbacks.values()):
            delivered += 1
            try:
                callback(topic, payload)
            except Exception:
                _logger.exception("Subscriber for topic=%s raised", topic)
        return delivered

    def subscribers(self, topic: str) -> int:
        return len(self._topics.get(topic, {}))

    def clear(self, topic: str | None = None) -> None:
        if topic is None:
            self._topics.clear()
        else:
            self._topics.pop(topic, None)
