import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List

from ..models.redis_models import PortalEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[PortalEvent], Awaitable[None]]

# Subscribing to this topic receives every event.
ALL_TOPICS = "*"


class EventBus:
    """
    In-process publish/subscribe hub for change notifications.

    Services publish after a successful write; interested parties (the Redis forwarder,
    dashboards, tests) subscribe per topic. A failing subscriber is logged and skipped so
    it can never undo or fail the operation that published the event.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[EventCallback]] = defaultdict(list)

    def subscribe(self, topic: str, callback: EventCallback) -> Callable[[], None]:
        """Registers a callback and returns a function that unregisters it."""
        self._subscribers[topic].append(callback)

        def unsubscribe():
            if callback in self._subscribers[topic]:
                self._subscribers[topic].remove(callback)

        return unsubscribe

    async def publish(self, event: PortalEvent) -> None:
        callbacks = list(self._subscribers.get(event.topic, [])) + list(self._subscribers.get(ALL_TOPICS, []))
        for callback in callbacks:
            try:
                await callback(event)
            except Exception:
                logger.error(f"Subscriber failed while handling '{event.topic}'.", exc_info=True)


def redis_forwarder(redis_client) -> EventCallback:
    """Builds a subscriber that relays every event to the shared Redis channel."""
    async def forward(event: PortalEvent) -> None:
        await redis_client.publish_event(event)
    return forward
