"""Outbound notifications from the engine.

Each service is handed an `EventBus` when it is constructed, so separate
engine instances never signal each other and tests can observe exactly what
was published.
"""

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

from .lib.log import log

__all__ = [
    "HABIT_REPLENISHED",
    "PENDING_RECURRENCE_CREATED",
    "TASK_CHANGED",
    "Event",
    "EventBus",
]

PENDING_RECURRENCE_CREATED = "pending_recurrence_created"
TASK_CHANGED = "task_changed"
HABIT_REPLENISHED = "habit_replenished"


@dataclass(frozen=True)
class Event:
    topic: str
    entity_id: str


Handler = Callable[[Event], None]


class EventBus:
    """Routes published events to the handlers registered for their topic."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        if handler in self._handlers[topic]:
            self._handlers[topic].remove(handler)

    def publish(self, topic: str, entity_id: str) -> Event:
        """Deliver to every handler. A failing handler is logged and does not stop the others."""
        event = Event(topic=topic, entity_id=entity_id)
        for handler in list(self._handlers[topic]):
            try:
                handler(event)
            except Exception as e:
                log("events", f"handler {getattr(handler, '__name__', handler)!s} failed on {topic}: {e}")
        return event

    def pending_recurrence_created(self, ticket_id: str) -> Event:
        return self.publish(PENDING_RECURRENCE_CREATED, ticket_id)

    def task_changed(self, task_id: str) -> Event:
        return self.publish(TASK_CHANGED, task_id)

    def habit_replenished(self, habit_id: str) -> Event:
        return self.publish(HABIT_REPLENISHED, habit_id)
