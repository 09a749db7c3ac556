# checkin_service/services/event_sink.py
"""
Where lifecycle and check-in notifications go.

The scheduler and the check-in service receive a sink when they are built and
never know who listens. The real-time notifier subscribes to the Redis channel
in production; single-process setups and tests use InProcessEventSink.
Publishing is best-effort: a failed publish is logged and never undoes the
state change that produced the event.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, List

import redis
from pydantic import BaseModel

from checkin_service.core.config import settings

logger = logging.getLogger(__name__)

EventHandler = Callable[[BaseModel], None]


class LifecycleEventSink(ABC):
    @abstractmethod
    def publish(self, event: BaseModel) -> None:
        ...


class RedisEventSink(LifecycleEventSink):
    def __init__(self, client: redis.Redis, channel: str = settings.LIFECYCLE_EVENTS_CHANNEL):
        self.client = client
        self.channel = channel

    def publish(self, event: BaseModel) -> None:
        try:
            self.client.publish(self.channel, event.model_dump_json())
        except redis.RedisError as exc:
            logger.error(f"Failed to publish {getattr(event, 'type', 'event')} to {self.channel}: {exc}")


class InProcessEventSink(LifecycleEventSink):
    """
    Fan-out to local handlers. Keeps the most recent ``history_size`` events
    for inspection; older ones are dropped.
    """

    def __init__(self, history_size: int = settings.EVENT_HISTORY_SIZE):
        self._handlers: List[EventHandler] = []
        self._lock = threading.Lock()
        self.events: Deque[BaseModel] = deque(maxlen=history_size)

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: BaseModel) -> None:
        with self._lock:
            self.events.append(event)
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event)
