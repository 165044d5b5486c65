"""
In-Process Event Bus
====================

EventSource for an execution engine that runs in the same process (and for
tests). publish() delivers a payload to every handler subscribed to the
channel, in subscription order.
"""

import inspect
import logging
from typing import Dict, List

from ..contracts import EventHandler, EventSource, Subscription

logger = logging.getLogger(__name__)


class LocalEventBus(EventSource):
    def __init__(self):
        self._subscribers: Dict[str, List[EventHandler]] = {}

    async def subscribe(self, channel: str, handler: EventHandler) -> Subscription:
        self._subscribers.setdefault(channel, []).append(handler)

        def release():
            handlers = self._subscribers.get(channel, [])
            if handler in handlers:
                handlers.remove(handler)

        return Subscription(channel, release)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, []))

    async def publish(self, channel: str, payload: dict) -> None:
        for handler in list(self._subscribers.get(channel, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event handler error on %s", channel)
